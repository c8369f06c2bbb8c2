"""Object storage (S3-compatible) cache tier."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from bookhub import logging_manager as log_mgr
from bookhub.config_manager.constants import DEFAULT_S3_PREFIX

from ..errors import TierTransientFailure
from ..keys import object_path
from ..types import CacheEntry
from .base import CacheTier

logger = log_mgr.get_logger().getChild("services.metadata.tiers.object_storage")

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStorage(Protocol):
    """Minimal blocking object store contract."""

    def get(self, path: str) -> Optional[bytes]:
        ...

    def put(self, path: str, data: bytes) -> None:
        ...

    def move(self, path: str, new_path: str) -> None:
        ...


class S3ObjectStorage:
    """:class:`ObjectStorage` over a boto3 S3 client and one bucket."""

    def __init__(self, bucket: str, *, client: Any = None, **client_kwargs: Any) -> None:
        self.bucket = bucket
        self._client = client or boto3.client("s3", **client_kwargs)

    def get(self, path: str) -> Optional[bytes]:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise
        return response["Body"].read()

    def put(self, path: str, data: bytes) -> None:
        self._client.put_object(
            Bucket=self.bucket, Key=path, Body=data, ContentType="application/json"
        )

    def move(self, path: str, new_path: str) -> None:
        self._client.copy_object(
            Bucket=self.bucket,
            Key=new_path,
            CopySource={"Bucket": self.bucket, "Key": path},
        )
        self._client.delete_object(Bucket=self.bucket, Key=path)
        logger.info(
            "Moved object %s to %s",
            path,
            new_path,
            extra={"event": "object_storage.moved", "tier": "object_storage"},
        )


class ObjectStorageTier(CacheTier):
    """Cache entries as JSON objects below a key prefix (``books/v1/`` by default)."""

    name = "object_storage"

    def __init__(self, storage: ObjectStorage, *, prefix: str = DEFAULT_S3_PREFIX) -> None:
        self._storage = storage
        self._prefix = prefix

    def path_for(self, key: str) -> str:
        return object_path(key, self._prefix)

    async def get(self, key: str) -> Optional[CacheEntry]:
        path = self.path_for(key)
        try:
            data = await asyncio.to_thread(self._storage.get, path)
        except (ClientError, BotoCoreError, OSError) as exc:
            raise TierTransientFailure(self.name, f"cannot read {path}: {exc}") from exc
        if data is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(data)).touch()
        except (ValueError, TypeError) as exc:
            raise TierTransientFailure(self.name, f"malformed object {path}") from exc

    async def put(self, key: str, entry: CacheEntry) -> None:
        path = self.path_for(key)
        data = json.dumps(entry.to_dict(), ensure_ascii=False).encode("utf-8")
        try:
            await asyncio.to_thread(self._storage.put, path, data)
        except (ClientError, BotoCoreError, OSError) as exc:
            raise TierTransientFailure(self.name, f"cannot write {path}: {exc}") from exc

    async def move(self, key: str, new_key: str) -> None:
        """Re-home the object stored for ``key`` under ``new_key``."""
        await asyncio.to_thread(self._storage.move, self.path_for(key), self.path_for(new_key))


__all__ = ["ObjectStorage", "ObjectStorageTier", "S3ObjectStorage"]
