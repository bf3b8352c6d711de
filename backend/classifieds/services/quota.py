from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from ..persistence import Persistence
from ..query import Between
from ..store import store

logger = logging.getLogger(__name__)


def day_window(moment: datetime) -> tuple[datetime, datetime]:
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def count_today(persistence: Persistence, user_id: UUID, collection: str, now: datetime | None = None) -> int:
    start, end = day_window(now or store.now())
    return persistence.count_documents(collection, {"owner": user_id, "createdAt": Between(start, end)})


def can_create(persistence: Persistence, user_id: UUID, collection: str, limit: int, now: datetime | None = None) -> bool:
    # Read-only check; concurrent submissions may overshoot the limit slightly.
    used = count_today(persistence, user_id, collection, now)
    logger.debug("quota %s for %s: %d/%d", collection, user_id, used, limit)
    return used < limit
