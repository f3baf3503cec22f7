"""
Storage abstraction for uploaded images: S3-compatible buckets or the local
filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


class StorageError(RuntimeError):
    pass


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def put_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> None:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...

    def delete(self, path: str) -> None:
        ...

    def exists(self, path: str) -> bool:
        ...


@dataclass
class LocalStorageClient:
    """Stores objects as files below ``root``."""

    root: Path

    def __post_init__(self):
        self.root = Path(self.root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, path: str) -> Path:
        safe_key = path.lstrip("/").replace("\\", "/")
        target = (self.root / safe_key).resolve()
        if target != self.root and self.root not in target.parents:
            raise StorageError(f"Refusing to access path outside storage root: {path}")
        return target

    def put_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> None:
        target = self._path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def get_bytes(self, path: str) -> bytes:
        target = self._path(path)
        if not target.is_file():
            raise FileNotFoundError(path)
        return target.read_bytes()

    def delete(self, path: str) -> None:
        target = self._path(path)
        if target.is_file():
            target.unlink()

    def exists(self, path: str) -> bool:
        return self._path(path).is_file()


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS, DigitalOcean Spaces, Tencent COS).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def put_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
        )

    def get_bytes(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(path) from e
            raise StorageError(str(e)) from e
        return response["Body"].read()

    def delete(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            raise StorageError(str(e)) from e

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
            return True
        except ClientError:
            return False


DOCTOR_IMAGES_PREFIX = "doctors"
PROFILE_PICTURES_PREFIX = "profiles"


def storage_key_for_url(url: str | None) -> str | None:
    """
    Map a public image URL stored on a user document back to its storage key.

    ``/api/doctors/images/<name>`` lives under ``doctors/<name>`` and
    ``/uploads/<key>`` is the key itself.
    """
    if not url:
        return None
    path = url.split("?", 1)[0]
    if "/doctors/images/" in path:
        filename = path.rsplit("/", 1)[-1]
        return f"{DOCTOR_IMAGES_PREFIX}/{filename}" if filename else None
    if path.startswith("/uploads/"):
        return path[len("/uploads/"):] or None
    return None
