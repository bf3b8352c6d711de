from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from ..errors import PersistenceError
from ..persistence import Persistence
from ..store import store
from .push import PushGateway, PushMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailyCounter:
    """Per-user notification counter that resets when the day changes."""

    count: int = 0
    last_date: datetime | None = None

    @classmethod
    def from_user(cls, user: dict[str, Any]) -> "DailyCounter":
        return cls(int(user.get("notificationCount") or 0), user.get("lastNotificationDate"))

    def count_on(self, day: date) -> int:
        if self.last_date is None or self.last_date.date() != day:
            return 0
        return self.count

    def is_capped(self, day: date, cap: int) -> bool:
        return self.count_on(day) >= cap

    def incremented(self, now: datetime) -> "DailyCounter":
        return DailyCounter(self.count_on(now.date()) + 1, now)

    def as_patch(self) -> dict[str, Any]:
        return {"notificationCount": self.count, "lastNotificationDate": self.last_date}


@dataclass
class FanOutReport:
    queued: int = 0
    skipped_no_token: int = 0
    skipped_capped: int = 0
    skipped_author: int = 0
    tickets: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


def notify_new_ad(
    persistence: Persistence,
    gateway: PushGateway,
    exclude_user_id: UUID,
    title: str,
    body: str,
    cap: int,
    now: datetime | None = None,
) -> FanOutReport:
    """Queue one message per eligible user and dispatch them as a single batch.

    Counters are persisted before dispatch and are not rolled back when the
    gateway fails.
    """
    now = now or store.now()
    report = FanOutReport()
    messages: list[PushMessage] = []
    for user in persistence.find("users"):
        token = user.get("pushToken")
        if not token or not gateway.is_valid_token(token):
            report.skipped_no_token += 1
            continue
        if user["id"] == exclude_user_id:
            report.skipped_author += 1
            continue
        counter = DailyCounter.from_user(user)
        if counter.is_capped(now.date(), cap):
            report.skipped_capped += 1
            continue
        try:
            persistence.update_own_fields("users", user["id"], counter.incremented(now).as_patch())
        except PersistenceError:
            logger.warning("notification counter update failed for user %s", user["id"])
            continue
        messages.append(PushMessage(to=token, title=title, body=body))

    report.queued = len(messages)
    if not messages:
        return report
    try:
        report.tickets = gateway.send_batch(messages)
        logger.info("push batch sent: %d messages", len(messages))
    except Exception as exc:
        logger.exception("push batch of %d messages failed", len(messages))
        report.error = str(exc)
    return report
