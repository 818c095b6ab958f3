# services/api/core/image_storage.py
"""
Image storage backends for block images and profile photos.

Both backends validate type and size first, then write under
users/{uid}/memos/{memo_id}/ or users/{uid}/temp/ and return a public URL.
"""
from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Optional, Protocol

from core.drive_client import delete_drive_file, drive_file_id_from_url, upload_image_to_drive
from core.validation import MAX_IMAGE_BYTES, validate_image_upload

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class ImageStorage(Protocol):
    def upload_image(
        self,
        owner_id: str,
        data: bytes,
        *,
        content_type: Optional[str],
        filename: str,
        memo_id: Optional[str] = None,
    ) -> str:
        ...

    def delete_image(self, url: str) -> None:
        ...

    def owns_url(self, url: str) -> bool:
        """True if `url` points at an image this backend stored."""
        ...


def _safe_name(filename: str) -> str:
    name = _UNSAFE.sub("_", Path(filename or "image").name).strip("._")
    return name[:100] or "image"


def object_path(owner_id: str, filename: str, memo_id: Optional[str] = None, ts: Optional[int] = None) -> str:
    """users/{uid}/memos/{memo_id}/{ts}_{name}, or users/{uid}/temp/{ts}_{name} before the memo exists."""
    ts = ts if ts is not None else int(time.time() * 1000)
    folder = f"memos/{memo_id}" if memo_id else "temp"
    return f"users/{owner_id}/{folder}/{ts}_{_safe_name(filename)}"


class LocalImageStorage:
    """Writes files under `root` and serves them from `public_base_url`."""

    def __init__(self, root: str, public_base_url: str, max_bytes: int = MAX_IMAGE_BYTES):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.max_bytes = max_bytes

    def upload_image(
        self,
        owner_id: str,
        data: bytes,
        *,
        content_type: Optional[str],
        filename: str,
        memo_id: Optional[str] = None,
    ) -> str:
        validate_image_upload(content_type, len(data), self.max_bytes)

        rel = object_path(owner_id, filename, memo_id)
        dest = self.root / rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        logger.info(f"Stored image {rel} ({len(data)} bytes)")
        return f"{self.public_base_url}/{rel}"

    def _local_path(self, url: str) -> Optional[Path]:
        prefix = self.public_base_url + "/"
        if not (url or "").startswith(prefix):
            return None
        target = (self.root / url[len(prefix):]).resolve()
        # never outside the upload root
        if self.root.resolve() not in target.parents:
            return None
        return target

    def owns_url(self, url: str) -> bool:
        return self._local_path(url) is not None

    def delete_image(self, url: str) -> None:
        target = self._local_path(url)
        if target is not None and target.exists():
            target.unlink()


class DriveImageStorage:
    """Google Drive backend; folder layout mirrors the object path."""

    def __init__(self, max_bytes: int = MAX_IMAGE_BYTES):
        self.max_bytes = max_bytes

    def upload_image(
        self,
        owner_id: str,
        data: bytes,
        *,
        content_type: Optional[str],
        filename: str,
        memo_id: Optional[str] = None,
    ) -> str:
        validate_image_upload(content_type, len(data), self.max_bytes)

        segments = object_path(owner_id, filename, memo_id).split("/")
        return upload_image_to_drive(
            data=data,
            content_type=(content_type or "").split(";")[0].strip().lower(),
            folder_segments=segments[:-1],
            file_name=segments[-1],
        )

    def owns_url(self, url: str) -> bool:
        return drive_file_id_from_url(url) is not None

    def delete_image(self, url: str) -> None:
        file_id = drive_file_id_from_url(url)
        if file_id:
            delete_drive_file(file_id)


def get_image_storage(settings) -> ImageStorage:
    backend = (settings.image_storage_backend or "local").lower()
    if backend == "drive":
        return DriveImageStorage(max_bytes=settings.max_image_bytes)
    if backend == "local":
        return LocalImageStorage(
            root=settings.image_upload_dir,
            public_base_url=settings.image_public_base_url,
            max_bytes=settings.max_image_bytes,
        )
    raise ValueError(f"Unknown image storage backend: {backend}")
