from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..config import settings
from ..errors import TooManyImages, UploadError, ValidationError
from .uploads import ImageUploader, InlineImage, is_inline_image, object_key_from_url, parse_inline_image

logger = logging.getLogger(__name__)

MAX_IMAGES = 5


@dataclass
class ImageBatch:
    """Outcome of reconciling one image field.

    ``images`` is what gets persisted; ``uploaded`` are objects created by this
    batch and ``removed`` are previously stored URLs no longer referenced.
    """

    images: list[str] = field(default_factory=list)
    uploaded: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


class ImageBatchProcessor:
    def __init__(self, uploader: ImageUploader, max_images: int = MAX_IMAGES, max_bytes: int | None = None) -> None:
        self.uploader = uploader
        self.max_images = max_images
        self.max_bytes = max_bytes or settings.max_image_bytes

    def check_count(self, incoming: list[str], limit: int | None = None) -> None:
        limit = self.max_images if limit is None else limit
        if len(incoming) > limit:
            raise TooManyImages(len(incoming), limit)

    def _decode(self, existing: list[str], incoming: list[str], field_name: str) -> list[InlineImage | str]:
        decoded: list[InlineImage | str] = []
        errors: list[tuple[str, str]] = []
        for idx, item in enumerate(incoming):
            loc = f"{field_name}.{idx}"
            if is_inline_image(item):
                try:
                    decoded.append(parse_inline_image(item, self.max_bytes))
                except ValueError as exc:
                    errors.append((loc, str(exc)))
            elif isinstance(item, str) and item in existing:
                decoded.append(item)
            else:
                # Only URLs already stored on this ad are kept.
                errors.append((loc, "must be an inline data:image payload or an image already on this ad"))
        if errors:
            raise ValidationError("invalid images", errors)
        return decoded

    def process(
        self,
        existing: list[str],
        incoming: list[str],
        field_name: str = "images",
        limit: int | None = None,
    ) -> ImageBatch:
        """Upload inline payloads and keep this ad's existing URLs verbatim.

        All payloads are validated before the first upload. If any upload fails
        the objects already uploaded by this batch are destroyed and
        ``UploadError`` is raised. Removed images are only reported here; the
        caller destroys them once the new image list is persisted.
        """
        self.check_count(incoming, limit)
        decoded = self._decode(existing, incoming, field_name)
        batch = ImageBatch(removed=[url for url in existing if url not in incoming])
        for item in decoded:
            if isinstance(item, str):
                batch.images.append(item)
                continue
            try:
                url = self.uploader.upload(item)
            except Exception as exc:
                logger.error("upload of %s failed after %d uploads: %s", field_name, len(batch.uploaded), exc)
                self.destroy_all(batch.uploaded)
                if isinstance(exc, UploadError):
                    raise
                raise UploadError() from exc
            batch.uploaded.append(url)
            batch.images.append(url)
        return batch

    def finalize(self, batch: ImageBatch) -> None:
        self.destroy_all(batch.removed)

    def discard(self, batch: ImageBatch) -> None:
        self.destroy_all(batch.uploaded)

    def destroy_all(self, urls: list[str]) -> int:
        """Best-effort removal; returns how many objects were destroyed."""
        destroyed = 0
        for url in urls:
            try:
                self.uploader.destroy(object_key_from_url(url))
                destroyed += 1
            except Exception as exc:
                logger.warning("could not destroy image %s: %s", url, exc)
        return destroyed
