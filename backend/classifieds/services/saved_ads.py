from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from ..categories import get_category
from ..errors import AlreadySaved, DuplicateRecord, NotFound
from ..persistence import Persistence
from ..schemas import AdCategory
from .listings import NEWEST_FIRST, present

logger = logging.getLogger(__name__)

COLLECTION = "saved_ads"


def save(persistence: Persistence, user_id: UUID, ad_id: UUID, ad_category: AdCategory) -> dict[str, Any]:
    spec = get_category(ad_category)
    if persistence.get(spec.collection, ad_id) is None:
        raise NotFound(f"{spec.label} ad not found: {ad_id}")
    if persistence.find_one(COLLECTION, {"owner": user_id, "adId": ad_id}) is not None:
        raise AlreadySaved()
    try:
        return persistence.insert(COLLECTION, {"owner": user_id, "adId": ad_id, "adCategory": spec.category.value})
    except DuplicateRecord as exc:
        # A concurrent save won the unique (owner, adId) index.
        raise AlreadySaved() from exc


def unsave(persistence: Persistence, user_id: UUID, ad_id: UUID) -> None:
    removed = persistence.delete_many(COLLECTION, {"owner": user_id, "adId": ad_id})
    logger.debug("unsave %s by %s removed %d", ad_id, user_id, removed)


def forget_ad(persistence: Persistence, ad_id: UUID) -> int:
    """Drop every saved relation pointing at a deleted ad."""
    return persistence.delete_many(COLLECTION, {"adId": ad_id})


def list_saved(persistence: Persistence, user_id: UUID) -> list[dict[str, Any]]:
    rows = persistence.find(COLLECTION, {"owner": user_id}, sort=NEWEST_FIRST)
    result = []
    for row in rows:
        spec = get_category(row["adCategory"])
        ad = persistence.get(spec.collection, row["adId"])
        result.append({**row, "ad": present(persistence, ad, user_id) if ad else None})
    return result
