from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping
from uuid import UUID

from ..categories import EXACT, CategorySpec
from ..errors import NotFound
from ..persistence import Persistence
from ..query import DESC, AnyOf, Eq, Filter, IContains

OWNER_PROJECTION = ("username", "profileImageUrl")
NEWEST_FIRST = [("createdAt", DESC)]


@dataclass
class Page:
    items: list[dict[str, Any]]
    page: int
    page_size: int
    total_items: int
    total_pages: int


def build_filter(spec: CategorySpec, params: Mapping[str, Any], no_filter_value: str) -> Filter:
    flt: Filter = {}
    for f in spec.filters:
        values: list[str] = []
        for name in f.query_params():
            raw = params.get(name)
            if raw is None:
                continue
            value = str(raw).strip()
            if not value or value == no_filter_value:
                continue
            values.append(value)
        if not values:
            continue
        if f.kind == EXACT:
            flt[f.name] = Eq(values[0])
        elif len(values) == 1:
            flt[f.name] = IContains(values[0])
        else:
            flt[f.name] = AnyOf(tuple(values))
    return flt


def present(persistence: Persistence, ad: dict[str, Any], requester_id: UUID | None = None) -> dict[str, Any]:
    shown = persistence.populate(ad, "owner", "users", OWNER_PROJECTION, as_field="user")
    if requester_id is not None:
        shown["isMine"] = ad.get("owner") == requester_id
    return shown


def list_ads(
    persistence: Persistence,
    spec: CategorySpec,
    params: Mapping[str, Any],
    page: int,
    page_size: int,
    no_filter_value: str,
    requester_id: UUID | None = None,
) -> Page:
    flt = build_filter(spec, params, no_filter_value)
    total = persistence.count_documents(spec.collection, flt)
    rows = persistence.find(spec.collection, flt, sort=NEWEST_FIRST, skip=(page - 1) * page_size, limit=page_size)
    return Page(
        items=[present(persistence, row, requester_id) for row in rows],
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=math.ceil(total / page_size),
    )


def list_mine(persistence: Persistence, spec: CategorySpec, user_id: UUID) -> list[dict[str, Any]]:
    rows = persistence.find(spec.collection, {"owner": user_id}, sort=NEWEST_FIRST)
    return [present(persistence, row, user_id) for row in rows]


def get_ad(persistence: Persistence, spec: CategorySpec, ad_id: UUID, requester_id: UUID | None = None) -> dict[str, Any]:
    row = persistence.get(spec.collection, ad_id)
    if row is None:
        raise NotFound(f"{spec.label} ad not found: {ad_id}")
    return present(persistence, row, requester_id)
