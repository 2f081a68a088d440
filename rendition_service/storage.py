"""
Output store backends.

The store is a flat key space of output identifier -> bytes. It doubles as
the collision oracle for the name resolver, so every component receives it
explicitly instead of touching the filesystem directly.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Protocol

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import InvalidKeyError, StorageError

logger = logging.getLogger(__name__)


def content_type_for(key: str) -> str:
    return "image/png" if key.lower().endswith(".png") else "image/webp"


def validate_key(key: str) -> str:
    """Reject anything that is not a plain filename."""
    if not key or key in {".", ".."} or "/" in key or "\\" in key or "\x00" in key:
        raise InvalidKeyError(f"Invalid output identifier: {key!r}")
    return key


class OutputStore(Protocol):
    def exists(self, key: str) -> bool: ...

    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> None: ...

    def read(self, key: str) -> bytes: ...

    def size(self, key: str) -> int: ...

    def list(self, prefix: str = "") -> List[str]: ...

    def delete(self, key: str) -> None: ...

    def ensure_writable(self) -> None: ...


class LocalStore:
    """Outputs as files in a single directory on local disk."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create output directory {self.root}") from exc

    def _path(self, key: str) -> Path:
        return self.root / validate_key(key)

    def exists(self, key: str) -> bool:
        try:
            return stat.S_ISREG(self._path(key).stat().st_mode)
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as exc:
            raise StorageError(f"Failed to stat {key}") from exc

    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self._path(key)
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write {key}") from exc

    def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise KeyError(key) from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {key}") from exc

    def size(self, key: str) -> int:
        try:
            return self._path(key).stat().st_size
        except FileNotFoundError as exc:
            raise KeyError(key) from exc
        except OSError as exc:
            raise StorageError(f"Failed to stat {key}") from exc

    def list(self, prefix: str = "") -> List[str]:
        try:
            names = [p.name for p in self.root.iterdir() if p.is_file()]
        except OSError as exc:
            raise StorageError(f"Failed to list {self.root}") from exc
        return sorted(name for name in names if name.startswith(prefix))

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Failed to delete {key}") from exc

    def ensure_writable(self) -> None:
        if not self.root.is_dir() or not os.access(self.root, os.W_OK):
            raise StorageError(f"Output directory is not writable: {self.root}")


class MemoryStore:
    """In-process store used by tests and throwaway deployments."""

    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}
        self._lock = Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            return validate_key(key) in self._objects

    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        with self._lock:
            self._objects[validate_key(key)] = bytes(data)

    def read(self, key: str) -> bytes:
        with self._lock:
            return self._objects[validate_key(key)]

    def size(self, key: str) -> int:
        return len(self.read(key))

    def list(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(validate_key(key), None)

    def ensure_writable(self) -> None:
        return None


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in {"404", "NoSuchKey", "NotFound"}


class R2Store:
    """Outputs as objects in a Cloudflare R2 / S3-compatible bucket."""

    def __init__(self, client, bucket: str, key_prefix: str = "") -> None:
        self.client = client
        self.bucket = bucket
        self.key_prefix = key_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "R2Store":
        required = [
            settings.r2_endpoint,
            settings.r2_access_key_id,
            settings.r2_secret_access_key,
            settings.r2_bucket_name,
        ]
        if any(v is None for v in required):
            raise StorageError("R2 configuration is incomplete; check env vars.")
        session = boto3.session.Session()
        client = session.client(
            service_name="s3",
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            endpoint_url=settings.r2_endpoint,
            config=BotoConfig(signature_version="s3v4"),
        )
        return cls(client, settings.r2_bucket_name, settings.r2_key_prefix)

    def _object_key(self, key: str) -> str:
        return f"{self.key_prefix}{validate_key(key)}"

    def _head(self, key: str) -> Optional[dict]:
        try:
            return self.client.head_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as exc:
            if _is_not_found(exc):
                return None
            raise StorageError(f"Failed to stat {key}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to stat {key}") from exc

    def exists(self, key: str) -> bool:
        return self._head(key) is not None

    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self._object_key(key),
                Body=data,
                ContentType=content_type or content_type_for(key),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload {key}") from exc

    def read(self, key: str) -> bytes:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=self._object_key(key))
            return resp["Body"].read()
        except ClientError as exc:
            if _is_not_found(exc):
                raise KeyError(key) from exc
            raise StorageError(f"Failed to download {key}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to download {key}") from exc

    def size(self, key: str) -> int:
        head = self._head(key)
        if head is None:
            raise KeyError(key)
        return int(head.get("ContentLength", 0))

    def list(self, prefix: str = "") -> List[str]:
        keys: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{self.key_prefix}{prefix}"):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(self.key_prefix):]
                    if name and "/" not in name:
                        keys.append(name)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("Failed to list bucket") from exc
        return sorted(keys)

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._object_key(key))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete {key}") from exc

    def ensure_writable(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Bucket {self.bucket} is not reachable") from exc


def build_store(settings: Settings) -> OutputStore:
    backend = settings.storage_backend
    if backend == "memory":
        return MemoryStore()
    if backend == "r2":
        return R2Store.from_settings(settings)
    return LocalStore(settings.output_dir)
