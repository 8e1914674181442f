"""
Storage abstraction for S3-compatible object storage and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    bucket: str

    def upload_bytes(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        upsert: bool = False,
    ) -> str:
        ...

    def remove(self, paths: Iterable[str]) -> None:
        ...

    def public_url(self, path: str) -> str:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    cache_control: Optional[str] = None


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    bucket: str = "rewear_images"
    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)

    def upload_bytes(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        upsert: bool = False,
    ) -> str:
        if not upsert and path in self.stored_objects:
            raise FileExistsError(path)
        self.stored_objects[path] = StoredObject(
            data=bytes(data), content_type=content_type, cache_control=cache_control
        )
        return path

    def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.stored_objects.pop(path, None)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{self.bucket}/{path}"

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return stored.data


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, MinIO, R2, COS).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str = ""

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def _exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def upload_bytes(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        upsert: bool = False,
    ) -> str:
        if not upsert and self._exists(path):
            raise FileExistsError(path)
        params = {
            "Bucket": self.bucket,
            "Key": path,
            "Body": data,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = f"max-age={cache_control}"
        self._client.put_object(**params)
        return path

    def remove(self, paths: Iterable[str]) -> None:
        keys = [{"Key": path} for path in paths]
        if not keys:
            return
        response = self._client.delete_objects(
            Bucket=self.bucket, Delete={"Objects": keys, "Quiet": True}
        )
        errors = response.get("Errors") or []
        if errors:
            raise RuntimeError(f"Failed to delete {len(errors)} object(s): {errors[0]}")

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            base = self.public_base_url.rstrip("/")
        else:
            base = (self.endpoint or f"https://s3.{self.region}.amazonaws.com").rstrip("/")
        return f"{base}/{self.bucket}/{path}"

    def get_bytes(self, path: str) -> bytes:
        response = self._client.get_object(Bucket=self.bucket, Key=path)
        return response["Body"].read()
