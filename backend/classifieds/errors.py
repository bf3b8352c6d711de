from __future__ import annotations

from typing import Any


class ClassifiedsError(Exception):
    """Base for every error the ad core surfaces or swallows.

    ``status_code`` and ``code`` drive the HTTP error envelope; ``details`` is a
    list of ``(field, message)`` pairs for caller-correctable problems.
    """

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "internal server error"

    def __init__(self, message: str | None = None, details: list[tuple[str, str]] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        return {}


class ValidationError(ClassifiedsError):
    status_code = 422
    code = "VALIDATION_ERROR"
    default_message = "Invalid request payload"


class TooManyImages(ValidationError):
    code = "TOO_MANY_IMAGES"

    def __init__(self, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(
            f"at most {limit} images are allowed, got {count}",
            [("images", f"at most {limit} images are allowed")],
        )


class QuotaExceeded(ClassifiedsError):
    status_code = 429
    code = "QUOTA_EXCEEDED"

    def __init__(self, category: str, limit: int) -> None:
        self.category = category
        self.limit = limit
        super().__init__(f"daily limit of {limit} {category} ads reached")

    def extra(self) -> dict[str, Any]:
        return {"limit": self.limit}


class UploadError(ClassifiedsError):
    status_code = 502
    code = "UPLOAD_FAILED"
    default_message = "image upload failed"


class DestroyError(ClassifiedsError):
    code = "DESTROY_FAILED"
    default_message = "image removal failed"


class PersistenceError(ClassifiedsError):
    code = "PERSISTENCE_ERROR"
    default_message = "internal server error"


class DuplicateRecord(PersistenceError):
    status_code = 409
    code = "CONFLICT"
    default_message = "resource already exists"


class Forbidden(ClassifiedsError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "only the owner may change this ad"


class NotFound(ClassifiedsError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "not found"


class AlreadySaved(ClassifiedsError):
    status_code = 409
    code = "ALREADY_SAVED"
    default_message = "ad already saved"


class Conflict(ClassifiedsError):
    status_code = 409
    code = "CONFLICT"
    default_message = "resource already exists"


class NotificationError(ClassifiedsError):
    code = "NOTIFICATION_FAILED"
    default_message = "push dispatch failed"
