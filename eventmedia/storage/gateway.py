"""Object store gateway (S3 compatible bucket fronted by a CDN)."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol
from urllib.parse import urlencode

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from eventmedia.core.config import Settings, get_settings
from eventmedia.core.errors import StorageError, StorageErrorKind

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404", "NoSuchVersion"}
_RATE_LIMIT_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequests",
    "TooManyRequestsException",
}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}


@dataclass(frozen=True)
class StoredObject:
    """One object returned by a listing call."""

    object_id: str
    url: str
    size: int = 0


class ObjectStore(Protocol):
    """What the workers need from the object store."""

    async def upload(
        self,
        data: bytes,
        folder: str,
        file_name: str,
        tags: Optional[Dict[str, str]] = None,
        content_type: str = "application/octet-stream",
    ) -> str: ...

    async def delete(self, object_id: str) -> None: ...

    async def list_objects(self, prefix: str) -> List[StoredObject]: ...


def classify_storage_error(exc: BaseException) -> StorageError:
    """Translate a boto/botocore failure into a StorageError with a kind."""
    if isinstance(exc, StorageError):
        return exc

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        code = str(error.get("Code", ""))
        message = str(error.get("Message", "") or exc)
        status = int((exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode", 0) or 0)

        if code in _NOT_FOUND_CODES or status == 404:
            kind = StorageErrorKind.NOT_FOUND
        elif code in _RATE_LIMIT_CODES or status == 429:
            kind = StorageErrorKind.RATE_LIMITED
        elif code in _TIMEOUT_CODES or status == 408:
            kind = StorageErrorKind.TIMEOUT
        elif status >= 500 or code in {"InternalError", "ServiceUnavailable"}:
            kind = StorageErrorKind.TRANSIENT
        else:
            kind = StorageErrorKind.FATAL
        return StorageError(kind, f"{code or 'ClientError'}: {message}", status_code=status)

    if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError)):
        return StorageError(StorageErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, (EndpointConnectionError, ConnectionClosedError)):
        return StorageError(StorageErrorKind.TRANSIENT, str(exc))
    if isinstance(exc, BotoCoreError):
        return StorageError(StorageErrorKind.FATAL, str(exc))

    return StorageError(StorageErrorKind.FATAL, f"{type(exc).__name__}: {exc}")


class S3ObjectStore:
    """Handles S3 interactions for originals, previews and variants."""

    def __init__(self, settings: Optional[Settings] = None, client=None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self):
        """Lazy S3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=self.settings.AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=self.settings.AWS_SECRET_ACCESS_KEY or None,
                region_name=self.settings.AWS_REGION,
                endpoint_url=self.settings.AWS_S3_ENDPOINT_URL or None,
                config=BotoConfig(
                    s3={"addressing_style": "path"},
                    connect_timeout=10,
                    read_timeout=60,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )
        return self._client

    def _validated_bucket_name(self) -> str:
        bucket = (self.settings.AWS_S3_BUCKET or "").strip()
        # Prevent boto3 raising a cryptic "Invalid bucket name" error when env is misconfigured.
        if not bucket:
            raise StorageError(StorageErrorKind.FATAL, "AWS_S3_BUCKET is not configured.")
        if not re.fullmatch(r"[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]", bucket):
            raise StorageError(StorageErrorKind.FATAL, f"Invalid AWS_S3_BUCKET value '{bucket}'.")
        return bucket

    def public_url(self, key: str) -> str:
        """CDN URL for an object key."""
        base = (self.settings.STORAGE_PUBLIC_BASE_URL or "").strip().rstrip("/")
        if base:
            return f"{base}/{key}"
        bucket = self._validated_bucket_name()
        return f"https://{bucket}.s3.{self.settings.AWS_REGION}.amazonaws.com/{key}"

    # ------------------------------------------------------------------
    # Sync boto calls (run in a worker thread by the async wrappers)
    # ------------------------------------------------------------------

    def _put(self, key: str, data: bytes, content_type: str, tags: Dict[str, str]) -> str:
        params = {
            "Bucket": self._validated_bucket_name(),
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "CacheControl": "public, max-age=31536000",
        }
        if tags:
            params["Tagging"] = urlencode(tags)
        response = self.client.put_object(**params)
        return str(response.get("ETag", "")).strip('"')

    def _delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self._validated_bucket_name(), Key=key)

    def _list(self, prefix: str) -> List[StoredObject]:
        bucket = self._validated_bucket_name()
        folder = prefix.rstrip("/") + "/"
        paginator = self.client.get_paginator("list_objects_v2")
        objects: List[StoredObject] = []
        pages = paginator.paginate(
            Bucket=bucket,
            Prefix=folder,
            PaginationConfig={"PageSize": self.settings.STORAGE_LIST_PAGE_SIZE},
        )
        for page in pages:
            for item in page.get("Contents", []) or []:
                key = item.get("Key")
                if not key or key.endswith("/"):
                    continue
                objects.append(StoredObject(object_id=key, url=self.public_url(key), size=int(item.get("Size") or 0)))
        return objects

    # ------------------------------------------------------------------
    # Async interface
    # ------------------------------------------------------------------

    async def upload(
        self,
        data: bytes,
        folder: str,
        file_name: str,
        tags: Optional[Dict[str, str]] = None,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload bytes at `folder/file_name`, overwriting any existing object."""
        key = f"{folder.strip('/')}/{file_name}"
        try:
            etag = await asyncio.to_thread(self._put, key, data, content_type, dict(tags or {}))
        except (ClientError, BotoCoreError) as e:
            err = classify_storage_error(e)
            logger.error("Error uploading %s to object store: %r", key, err)
            raise err from e

        url = self.public_url(key)
        return f"{url}?v={etag[:12]}" if etag else url

    async def delete(self, object_id: str) -> None:
        """Delete one object by its identifier (the object key)."""
        try:
            await asyncio.to_thread(self._delete, object_id)
        except (ClientError, BotoCoreError) as e:
            raise classify_storage_error(e) from e

    async def list_objects(self, prefix: str) -> List[StoredObject]:
        """Every object under a folder, paginating until exhausted."""
        try:
            return await asyncio.to_thread(self._list, prefix)
        except (ClientError, BotoCoreError) as e:
            err = classify_storage_error(e)
            logger.error("Error listing %s: %r", prefix, err)
            raise err from e
