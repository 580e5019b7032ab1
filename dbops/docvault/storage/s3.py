"""
S3 object store for DocVault.

Uses aiobotocore so uploads, downloads and listings run on the event
loop. Works against AWS S3 and S3-compatible endpoints (MinIO, R2, ...).

Upload strategy:
    - First chunk is held back; if the stream ends there, PutObject
    - Otherwise CreateMultipartUpload and one UploadPart per chunk
    - Any failure or cancellation aborts the multipart upload

Invariants:
    - Every provider error surfaces as StorageError with the key(s)
    - Pages of ListObjectsV2 are followed until exhausted
    - DeleteObjects batches never exceed 1000 keys
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Sequence

import aiohttp
from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from ..errors import NotFoundError, StorageError
from .base import (
    DEFAULT_DOWNLOAD_CHUNK,
    DeleteResult,
    ObjectInfo,
    UploadResult,
    chunked,
    sort_newest_first,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """ObjectStore backed by S3.

    Attributes:
        config: S3 configuration
        bucket: Target bucket

    Example:
        >>> async with S3ObjectStore(config.s3) as store:
        ...     async for chunk in store.download(key):
        ...         ...
    """

    def __init__(self, config: S3Config, client: Any = None) -> None:
        """Initialize the store.

        Args:
            config: S3 configuration (bucket required)
            client: Pre-built aiobotocore client (tests, shared sessions)
        """
        self.config = config
        self.bucket = config.bucket or ""
        self._s3_client = client
        self._s3_ctx = None
        self._session = None

    async def connect(self) -> None:
        """Initialize S3 client."""
        if self._s3_client is not None:
            return

        self._session = get_session()

        client_kwargs: Dict[str, Any] = {
            "region_name": self.config.region,
        }

        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        if self.config.force_path_style:
            client_kwargs["config"] = AioConfig(s3={"addressing_style": "path"})

        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        self._s3_ctx = self._session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_ctx is not None and self._s3_client is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_ctx = None
        self._s3_client = None

    async def __aenter__(self) -> S3ObjectStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _client(self) -> Any:
        if self._s3_client is None:
            raise StorageError("S3 client is not connected")
        return self._s3_client

    async def upload(
        self,
        key: str,
        chunks: AsyncIterable[bytes],
        content_type: str = "application/octet-stream",
    ) -> UploadResult:
        """Upload a stream of unknown length; see module docstring."""
        client = self._client()
        digest = hashlib.sha256()
        size = 0
        upload_id: Optional[str] = None
        parts: List[Dict[str, Any]] = []
        pending: Optional[bytes] = None

        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                digest.update(chunk)
                size += len(chunk)
                if pending is not None:
                    if upload_id is None:
                        response = await client.create_multipart_upload(
                            Bucket=self.bucket,
                            Key=key,
                            ContentType=content_type,
                        )
                        upload_id = response["UploadId"]
                    parts.append(await self._upload_part(key, upload_id, len(parts) + 1, pending))
                pending = chunk

            if upload_id is None:
                response = await client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=pending or b"",
                    ContentType=content_type,
                )
            else:
                if pending is not None:
                    parts.append(await self._upload_part(key, upload_id, len(parts) + 1, pending))
                response = await client.complete_multipart_upload(
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                    MultipartUpload={"Parts": parts},
                )

        except (ClientError, BotoCoreError) as e:
            await self._abort_multipart(key, upload_id)
            raise StorageError(f"Failed to upload s3://{self.bucket}/{key}: {e}", keys=[key]) from e
        except BaseException:
            await self._abort_multipart(key, upload_id)
            raise

        result = UploadResult(
            bucket=self.bucket,
            key=key,
            size_bytes=size,
            content_hash=f"sha256:{digest.hexdigest()}",
            etag=response.get("ETag"),
        )
        logger.info(
            f"Uploaded backup to s3://{self.bucket}/{key}",
            extra={"size_bytes": size, "parts": len(parts) or 1},
        )
        return result

    async def _upload_part(self, key: str, upload_id: str, number: int, body: bytes) -> Dict[str, Any]:
        response = await self._client().upload_part(
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=number,
            Body=body,
        )
        return {"PartNumber": number, "ETag": response["ETag"]}

    async def _abort_multipart(self, key: str, upload_id: Optional[str]) -> None:
        if upload_id is None:
            return
        try:
            await self._client().abort_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
            )
            logger.warning("Aborted multipart upload", extra={"key": key, "upload_id": upload_id})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to abort multipart upload for {key}: {e}")

    async def download(self, key: str, chunk_size: int = DEFAULT_DOWNLOAD_CHUNK) -> AsyncIterator[bytes]:
        """Stream an object's bytes chunk by chunk."""
        client = self._client()
        try:
            response = await client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(f"Backup not found: s3://{self.bucket}/{key}", key=key) from e
            raise StorageError(f"Failed to download s3://{self.bucket}/{key}: {e}", keys=[key]) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to download s3://{self.bucket}/{key}: {e}", keys=[key]) from e

        try:
            async with response["Body"] as body:
                async for chunk in body.iter_chunks(chunk_size):
                    yield chunk
        except (ClientError, BotoCoreError, aiohttp.ClientError) as e:
            raise StorageError(f"Download of s3://{self.bucket}/{key} interrupted: {e}", keys=[key]) from e

    async def list(self, prefix: str) -> List[ObjectInfo]:
        """List every object under prefix, newest first."""
        client = self._client()
        objects: List[ObjectInfo] = []
        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(
                        ObjectInfo(
                            key=obj["Key"],
                            size=obj["Size"],
                            last_modified=obj["LastModified"],
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to list s3://{self.bucket}/{prefix}: {e}", keys=[prefix]) from e

        return sort_newest_first(objects)

    async def delete_batch(self, keys: Sequence[str]) -> DeleteResult:
        """Delete keys in batches of up to 1000; best-effort across batches."""
        client = self._client()
        result = DeleteResult()

        for batch in chunked(keys):
            try:
                response = await client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Batch delete failed: {e}", extra={"keys": batch})
                result.failed.extend(batch)
                continue

            result.deleted.extend(item["Key"] for item in response.get("Deleted", []))
            for error in response.get("Errors", []):
                logger.warning(
                    "Failed to delete object",
                    extra={"key": error.get("Key"), "code": error.get("Code")},
                )
                result.failed.append(error["Key"])

        if result.failed:
            raise StorageError(
                f"Failed to delete {len(result.failed)} of {len(keys)} object(s)",
                keys=result.failed,
                deleted=result.deleted,
            )
        return result
