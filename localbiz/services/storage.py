from __future__ import annotations

import logging
import mimetypes
from abc import ABC, abstractmethod
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from localbiz.core.config import Settings
from localbiz.core.errors import StoreError, ValidationError

logger = logging.getLogger(__name__)

_DURABLE_SCHEMES = ("http://", "https://")


@dataclass(frozen=True)
class StoredImage:
    url: str
    path: str


def has_scheme(ref: str) -> bool:
    head, sep, _ = ref.partition(":")
    return bool(sep) and head.isalpha() and "/" not in head


def is_durable_reference(ref: str | None) -> bool:
    """True for public URLs and bucket-relative paths.

    Browser previews (``blob:``), inline ``data:`` payloads and any other
    scheme are local to a client and must never be persisted.
    """
    if not ref or not ref.strip():
        return False
    ref = ref.strip()
    if ref.startswith(_DURABLE_SCHEMES):
        return True
    return not has_scheme(ref) and not ref.startswith("/")


def check_path(path: str) -> str:
    path = (path or "").strip()
    if not path or path.startswith("/") or ".." in path.split("/") or has_scheme(path):
        raise ValidationError(f"Invalid storage path: {path!r}")
    return path


def generate_object_name(owner_id: str, filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    return f"{owner_id}/{timestamp}-{secrets.token_hex(4)}{ext}"


class ImageStorage(ABC):
    """Object storage for business images."""

    @abstractmethod
    def upload(self, name: str, data: bytes, *, content_type: str | None = None) -> StoredImage:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        ...

    @abstractmethod
    def url_prefix(self) -> str:
        ...

    def path_from_url(self, url: str) -> str | None:
        """Map a public URL produced by this backend back to its object path."""
        prefix = self.url_prefix()
        if url.startswith(prefix):
            return url[len(prefix):] or None
        if not url.startswith(_DURABLE_SCHEMES) and is_durable_reference(url):
            return url
        return None

    def delete_many(self, refs: list[str], *, prefix: str | None = None) -> int:
        """Best-effort removal; returns the number of objects deleted.

        With ``prefix`` set, objects outside it are left in place.
        """
        deleted = 0
        for ref in refs:
            path = self.path_from_url(ref)
            if not path:
                continue
            if prefix is not None and not path.startswith(prefix):
                logger.warning("Skipping cleanup of %s: outside %s", path, prefix)
                continue
            try:
                self.delete(path)
                deleted += 1
            except (StoreError, ValidationError) as exc:
                logger.warning("Image cleanup failed for %s: %s", path, exc)
        return deleted


class LocalImageStorage(ImageStorage):
    """Files under ``media_dir``, served by the app at ``media_url_prefix``."""

    def __init__(self, root: str, *, base_url: str, url_prefix: str = "/media") -> None:
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")
        self.prefix = "/" + url_prefix.strip("/")

    def _file(self, path: str) -> Path:
        return self.root / check_path(path)

    def upload(self, name: str, data: bytes, *, content_type: str | None = None) -> StoredImage:
        target = self._file(name)
        if target.exists():
            raise StoreError(f"Object already exists: {name}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StoreError(f"Upload failed: {exc}") from exc
        return StoredImage(url=self.public_url(name), path=name)

    def delete(self, path: str) -> None:
        try:
            self._file(path).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Delete failed: {exc}") from exc

    def url_prefix(self) -> str:
        return f"{self.base_url}{self.prefix}/"

    def public_url(self, path: str) -> str:
        return f"{self.url_prefix()}{check_path(path)}"


class S3ImageStorage(ImageStorage):
    def __init__(self, bucket: str, *, region: str, endpoint_url: str | None = None, client=None) -> None:
        self.bucket = bucket
        self.region = region
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.client = client or boto3.client("s3", region_name=region, endpoint_url=self.endpoint_url)

    def upload(self, name: str, data: bytes, *, content_type: str | None = None) -> StoredImage:
        key = check_path(name)
        content_type = content_type or mimetypes.guess_type(name)[0] or "application/octet-stream"
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="max-age=3600",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"Upload failed: {exc}") from exc
        return StoredImage(url=self.public_url(key), path=key)

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=check_path(path))
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"Delete failed: {exc}") from exc

    def url_prefix(self) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/"

    def public_url(self, path: str) -> str:
        return f"{self.url_prefix()}{check_path(path)}"


def resolve_image_url(storage: ImageStorage, ref: str | None, *, placeholder: str) -> str:
    """Canonical public URL for a stored reference, or ``placeholder``."""
    if not ref or not ref.strip():
        return placeholder
    ref = ref.strip()
    if ref.startswith(_DURABLE_SCHEMES):
        return ref
    try:
        return storage.public_url(ref)
    except (StoreError, ValidationError):
        logger.warning("Could not resolve image reference %r", ref)
        return placeholder


def build_storage(settings: Settings) -> ImageStorage:
    backend = (settings.storage_backend or "local").lower().strip()
    if backend == "s3":
        return S3ImageStorage(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url or None,
        )
    if backend == "local":
        return LocalImageStorage(
            settings.media_dir,
            base_url=settings.public_base_url,
            url_prefix=settings.media_url_prefix,
        )
    raise ValueError(f"Unknown storage backend: {backend}")
