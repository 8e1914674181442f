"""
Item image upload and removal on top of the storage client.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Iterable, NamedTuple, Optional

from rewear.errors import BackendError, ValidationError
from rewear.storage import StorageClient

logger = logging.getLogger(__name__)

IMAGE_PREFIX = "item_images"
DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024


class ImageUpload(NamedTuple):
    filename: str
    data: bytes
    content_type: str


def _safe_filename(name: str) -> str:
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", base).strip("-.")
    return cleaned or "image"


def build_image_path(
    filename: str, now: Optional[float] = None, token: Optional[str] = None
) -> str:
    """``item_images/<millis>-<token>-<name>``; the token keeps same-named files apart."""
    millis = int((now if now is not None else time.time()) * 1000)
    token = token or uuid.uuid4().hex[:8]
    return f"{IMAGE_PREFIX}/{millis}-{token}-{_safe_filename(filename)}"


def _discard(storage: StorageClient, paths: list[str]) -> None:
    if not paths:
        return
    try:
        storage.remove(paths)
    except Exception as exc:
        logger.exception("images.upload_item_images cleanup failed for %s: %s", paths, exc)


def upload_item_images(
    storage: StorageClient,
    files: Iterable[ImageUpload],
    *,
    cache_control: Optional[str] = "3600",
    max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
) -> list[str]:
    """
    Upload each file and return its public URL, in upload order.

    Files are checked up front so a bad file in the batch uploads nothing. If
    an upload fails part way, the files already stored for this batch are
    removed again before the error is raised.
    """
    files = list(files)
    for upload in files:
        if not (upload.content_type or "").startswith("image/"):
            raise ValidationError(
                f"Only image files can be uploaded: {upload.filename}.", field="images"
            )
        if len(upload.data) > max_bytes:
            raise ValidationError(
                f"Image is too large: {upload.filename}.", field="images"
            )

    stored_paths: list[str] = []
    for upload in files:
        path = build_image_path(upload.filename)
        try:
            stored_paths.append(
                storage.upload_bytes(
                    path,
                    upload.data,
                    content_type=upload.content_type,
                    cache_control=cache_control,
                    upsert=False,
                )
            )
        except Exception as exc:
            logger.exception("images.upload_item_images error: %s", exc)
            _discard(storage, stored_paths)
            raise BackendError(f"Failed to upload image: {upload.filename}.") from exc
    return [storage.public_url(path) for path in stored_paths]


def path_from_public_url(url: str, bucket: str) -> str:
    """Return the object path after the bucket segment, or "" if the URL has none."""
    parts = url.split("/")
    if bucket in parts:
        index = parts.index(bucket)
        return "/".join(parts[index + 1 :])
    return ""


def delete_item_images(storage: StorageClient, urls: Iterable[str]) -> list[str]:
    paths = [path_from_public_url(url, storage.bucket) for url in urls]
    paths = [path for path in paths if path]
    if not paths:
        return []
    try:
        storage.remove(paths)
    except Exception as exc:
        logger.exception("images.delete_item_images error: %s", exc)
        raise BackendError("Failed to delete images.") from exc
    return paths
