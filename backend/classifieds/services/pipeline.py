from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from ..categories import CategorySpec, get_category
from ..errors import ClassifiedsError, Forbidden, NotFound, PersistenceError, QuotaExceeded, ValidationError
from ..persistence import Persistence
from ..schemas import AdCategory
from ..store import store
from .images import ImageBatch, ImageBatchProcessor
from .notifications import FanOutReport, notify_new_ad
from .push import PushGateway
from .quota import can_create
from .saved_ads import forget_ad

logger = logging.getLogger(__name__)

Scheduler = Callable[..., Any]


class SubmissionState(str, Enum):
    validating = "validating"
    quota_checking = "quota_checking"
    image_processing = "image_processing"
    persisting = "persisting"
    notify_dispatching = "notify_dispatching"
    done = "done"
    failed = "failed"


@dataclass
class Submission:
    spec: CategorySpec
    requester_id: UUID
    state: SubmissionState = SubmissionState.validating
    history: list[SubmissionState] = field(default_factory=lambda: [SubmissionState.validating])
    ad: dict[str, Any] | None = None
    fan_out: FanOutReport | None = None

    def advance(self, state: SubmissionState) -> None:
        logger.debug("%s submission by %s: %s -> %s", self.spec.label, self.requester_id, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def fail(self, exc: ClassifiedsError) -> None:
        logger.warning("%s submission by %s failed in %s: %s", self.spec.label, self.requester_id, self.state.value, exc.code)
        self.advance(SubmissionState.failed)


def _pydantic_details(exc: PydanticValidationError) -> list[tuple[str, str]]:
    details = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ()))
        details.append((loc or "body", err.get("msg", "validation error")))
    return details


class AdSubmissionPipeline:
    """Create, update and delete ads for every category.

    Create runs validating -> quota check -> image processing -> persisting ->
    notification dispatch. Update and delete skip the quota and notification
    stages and require the requester to own the ad.
    """

    def __init__(self, persistence: Persistence, images: ImageBatchProcessor, push: PushGateway) -> None:
        self.persistence = persistence
        self.images = images
        self.push = push

    # ---- stages ----

    def validate(self, spec: CategorySpec, payload: dict[str, Any]) -> dict[str, Any]:
        images = payload.get("images")
        if isinstance(images, list):
            self.images.check_count(images)
        try:
            model = spec.schema.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(details=_pydantic_details(exc)) from exc
        return model.model_dump(exclude_none=True)

    def _process_images(self, spec: CategorySpec, existing: dict[str, Any], fields: dict[str, Any]) -> dict[str, ImageBatch]:
        batches: dict[str, ImageBatch] = {}
        try:
            batches["images"] = self.images.process(existing.get("images") or [], fields.get("images") or [])
            for name in spec.single_image_fields:
                old = [existing[name]] if existing.get(name) else []
                new = [fields[name]] if fields.get(name) else []
                if old or new:
                    batches[name] = self.images.process(old, new, name, limit=1)
        except ClassifiedsError:
            for batch in batches.values():
                self.images.discard(batch)
            raise
        return batches

    @staticmethod
    def _apply_batches(spec: CategorySpec, fields: dict[str, Any], batches: dict[str, ImageBatch]) -> dict[str, Any]:
        applied = dict(fields)
        for name, batch in batches.items():
            if name in spec.single_image_fields:
                applied[name] = batch.images[0] if batch.images else None
            else:
                applied[name] = batch.images
        return applied

    def _store(self, write: Callable[[], dict[str, Any]], batches: dict[str, ImageBatch]) -> dict[str, Any]:
        try:
            return write()
        except Exception as exc:
            # Leave no uploads behind for a record that was never written.
            for batch in batches.values():
                self.images.discard(batch)
            if isinstance(exc, PersistenceError):
                raise
            logger.exception("storage write failed")
            raise PersistenceError() from exc

    def _load_owned(self, spec: CategorySpec, ad_id: UUID, requester_id: UUID) -> dict[str, Any]:
        existing = self.persistence.get(spec.collection, ad_id)
        if existing is None:
            raise NotFound(f"{spec.label} ad not found: {ad_id}")
        if existing.get("owner") != requester_id:
            raise Forbidden()
        return existing

    # ---- operations ----

    def create(
        self,
        requester_id: UUID,
        category: AdCategory | str,
        payload: dict[str, Any],
        schedule: Scheduler | None = None,
    ) -> Submission:
        spec = get_category(category)
        sub = Submission(spec, requester_id)
        try:
            fields = self.validate(spec, payload)

            sub.advance(SubmissionState.quota_checking)
            if not can_create(self.persistence, requester_id, spec.collection, spec.daily_quota):
                raise QuotaExceeded(spec.label, spec.daily_quota)

            sub.advance(SubmissionState.image_processing)
            batches = self._process_images(spec, {}, fields)

            sub.advance(SubmissionState.persisting)
            record = {
                **self._apply_batches(spec, fields, batches),
                "category": spec.category.value,
                "owner": requester_id,
                "createdAt": store.now(),
            }
            sub.ad = self._store(lambda: self.persistence.insert(spec.collection, record), batches)
        except ClassifiedsError as exc:
            sub.fail(exc)
            raise

        sub.advance(SubmissionState.notify_dispatching)
        if spec.notification is not None:
            if schedule is not None:
                schedule(self.dispatch_notifications, spec, sub.ad)
            else:
                sub.fan_out = self.dispatch_notifications(spec, sub.ad)
        sub.advance(SubmissionState.done)
        logger.info("%s ad %s created by %s", spec.label, sub.ad["id"], requester_id)
        return sub

    def dispatch_notifications(self, spec: CategorySpec, ad: dict[str, Any]) -> FanOutReport | None:
        if spec.notification is None:
            return None
        try:
            return notify_new_ad(
                self.persistence,
                self.push,
                exclude_user_id=ad["owner"],
                title=spec.notification.title,
                body=spec.notification_body(ad["title"]),
                cap=spec.notification.daily_cap,
            )
        except Exception:
            # Ad creation never depends on notification delivery.
            logger.exception("notification fan-out for %s ad %s failed", spec.label, ad.get("id"))
            return None

    def update(self, requester_id: UUID, category: AdCategory | str, ad_id: UUID, patch: dict[str, Any]) -> dict[str, Any]:
        spec = get_category(category)
        existing = self.persistence.get(spec.collection, ad_id)
        if existing is None:
            raise NotFound(f"{spec.label} ad not found: {ad_id}")

        editable = {k: v for k, v in patch.items() if k in spec.field_names}
        current = {k: existing[k] for k in spec.field_names if k in existing}
        fields = self.validate(spec, {**current, **editable})
        if existing.get("owner") != requester_id:
            raise Forbidden()

        batches = self._process_images(spec, existing, fields)
        changes = self._apply_batches(spec, fields, batches)
        # Optional fields explicitly cleared by the patch.
        for key in editable:
            if key not in changes:
                changes[key] = None
        changes["updatedAt"] = store.now()

        updated = self._store(lambda: self.persistence.update_own_fields(spec.collection, ad_id, changes), batches)
        for batch in batches.values():
            self.images.finalize(batch)
        logger.info("%s ad %s updated by %s", spec.label, ad_id, requester_id)
        return updated

    def delete(self, requester_id: UUID, category: AdCategory | str, ad_id: UUID) -> None:
        spec = get_category(category)
        existing = self._load_owned(spec, ad_id, requester_id)
        try:
            self.persistence.delete_one(spec.collection, ad_id)
        except PersistenceError:
            raise
        except Exception as exc:
            logger.exception("delete of %s ad %s failed", spec.label, ad_id)
            raise PersistenceError() from exc
        forget_ad(self.persistence, ad_id)

        urls = list(existing.get("images") or [])
        urls += [existing[name] for name in spec.single_image_fields if existing.get(name)]
        destroyed = self.images.destroy_all(urls)
        logger.info("%s ad %s deleted by %s (%d/%d images removed)", spec.label, ad_id, requester_id, destroyed, len(urls))
