from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import urlparse
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from ..errors import DestroyError, UploadError

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = {"jpg", "jpeg", "png", "webp", "gif"}
_DATA_URI = re.compile(r"^data:image/(?P<fmt>[A-Za-z0-9.+-]+);base64,(?P<data>.*)$", re.DOTALL)


@dataclass(frozen=True)
class InlineImage:
    fmt: str
    content: bytes

    @property
    def extension(self) -> str:
        return "jpg" if self.fmt == "jpeg" else self.fmt

    @property
    def content_type(self) -> str:
        return f"image/{'jpeg' if self.fmt in {'jpg', 'jpeg'} else self.fmt}"


def is_inline_image(value: object) -> bool:
    return isinstance(value, str) and value.startswith("data:image/")


def parse_inline_image(payload: str, max_bytes: int) -> InlineImage:
    match = _DATA_URI.match(payload)
    if not match:
        raise ValueError("malformed inline image")
    fmt = match.group("fmt").lower()
    if fmt not in ALLOWED_FORMATS:
        raise ValueError(f"unsupported image format: {fmt}")
    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("image is not valid base64") from exc
    if not content:
        raise ValueError("image is empty")
    if len(content) > max_bytes:
        raise ValueError(f"image exceeds {max_bytes} bytes")
    return InlineImage(fmt=fmt, content=content)


def object_key_from_url(url: str) -> str:
    """Last path segment of a stored URL with its extension stripped."""
    name = PurePosixPath(urlparse(url).path).name
    return name.split(".", 1)[0]


class ImageUploader:
    def upload(self, image: InlineImage) -> str:
        raise NotImplementedError

    def destroy(self, object_key: str) -> None:
        raise NotImplementedError


class InMemoryImageUploader(ImageUploader):
    base_url = "https://objects.local"

    def __init__(self, prefix: str = "ads") -> None:
        self.prefix = prefix
        self.objects: dict[str, InlineImage] = {}

    def reset(self) -> None:
        self.objects.clear()

    def upload(self, image: InlineImage) -> str:
        key = uuid4().hex
        self.objects[key] = image
        return f"{self.base_url}/{self.prefix}/{key}.{image.extension}"

    def destroy(self, object_key: str) -> None:
        if self.objects.pop(object_key, None) is None:
            raise DestroyError(f"object not found: {object_key}")


class S3ImageUploader(ImageUploader):
    def __init__(self, bucket: str, prefix: str, public_base_url: str, region: str) -> None:
        if not bucket:
            raise ValueError("S3_BUCKET is required for the s3 upload backend")
        self.bucket = bucket
        self.prefix = prefix
        self.public_base_url = public_base_url or f"https://{bucket}.s3.{region}.amazonaws.com"
        self.client = boto3.client("s3", region_name=region)

    def _key(self, object_key: str) -> str:
        return f"{self.prefix}/{object_key}" if self.prefix else object_key

    def upload(self, image: InlineImage) -> str:
        object_key = uuid4().hex
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self._key(object_key),
                Body=image.content,
                ContentType=image.content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("s3 upload failed: %s", exc)
            raise UploadError() from exc
        # Keys carry no extension so the derived object key maps straight back to it.
        return f"{self.public_base_url}/{self._key(object_key)}"

    def destroy(self, object_key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(object_key))
        except (BotoCoreError, ClientError) as exc:
            raise DestroyError(str(exc)) from exc


def get_uploader() -> ImageUploader:
    if settings.upload_backend == "s3":
        return S3ImageUploader(settings.s3_bucket, settings.s3_prefix, settings.s3_public_base_url, settings.aws_region)
    return InMemoryImageUploader(settings.s3_prefix)
