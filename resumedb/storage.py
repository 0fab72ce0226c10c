"""Blob storage for uploaded resume PDFs.

Two backends share the ``BlobStore`` interface:

- ``S3BlobStore`` keeps files in an S3 (or S3-compatible) bucket.
- ``DatabaseBlobStore`` keeps files in the ``resume_files`` table, written
  through its own session so blob writes never join a resume transaction.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models
from .config import Settings, StorageBackend

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

_MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


class StorageError(Exception):
    """Raised when a blob operation fails."""
    pass


class BlobNotFoundError(StorageError):
    """Raised when the requested blob does not exist."""
    pass


class BlobStore(Protocol):
    """Interface shared by the storage backends."""

    async def put(self, content: bytes, key: str, content_type: str = PDF_CONTENT_TYPE) -> str:
        """Store ``content`` under ``key`` and return its locator URL."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a blob. Raises ``BlobNotFoundError`` if it is already gone."""
        ...

    async def get_signed_read_url(self, key: str, ttl: int) -> str:
        """Time-limited URL for reading the blob."""
        ...

    async def open(self, key: str) -> tuple[bytes, str]:
        """Return the blob bytes and content type."""
        ...


class S3BlobStore:
    """S3 bucket storage. boto3 calls run in worker threads."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        if not bucket:
            raise StorageError("S3 storage requires STORAGE_BUCKET to be set")
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(signature_version="s3v4"),
        )

    def locator(self, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def put(self, content: bytes, key: str, content_type: str = PDF_CONTENT_TYPE) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e
        logger.info(f"Uploaded {key} to bucket {self.bucket} ({len(content)} bytes)")
        return self.locator(key)

    async def delete(self, key: str) -> None:
        # delete_object succeeds on missing keys, so check existence first
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                raise BlobNotFoundError(f"Blob not found: {key}") from e
            raise StorageError(f"Failed to look up {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to look up {key}: {e}") from e

        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e
        logger.info(f"Deleted {key} from bucket {self.bucket}")

    async def get_signed_read_url(self, key: str, ttl: int) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign URL for {key}: {e}") from e

    async def open(self, key: str) -> tuple[bytes, str]:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self.bucket, Key=key)
            body = await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                raise BlobNotFoundError(f"Blob not found: {key}") from e
            raise StorageError(f"Failed to read {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        return body, response.get("ContentType") or PDF_CONTENT_TYPE


class DatabaseBlobStore:
    """Stores files as binary rows in the ``resume_files`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], public_base_url: str):
        self._session_maker = session_maker
        self.public_base_url = public_base_url.rstrip("/")

    def locator(self, key: str) -> str:
        return f"{self.public_base_url}/api/files/{key}"

    async def put(self, content: bytes, key: str, content_type: str = PDF_CONTENT_TYPE) -> str:
        try:
            async with self._session_maker() as session:
                session.add(
                    models.StoredFile(key=key, content=content, content_type=content_type, size=len(content))
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to store {key}: {e}") from e
        logger.info(f"Stored {key} in database ({len(content)} bytes)")
        return self.locator(key)

    async def delete(self, key: str) -> None:
        try:
            async with self._session_maker() as session:
                stored = await session.get(models.StoredFile, key)
                if stored is None:
                    raise BlobNotFoundError(f"Blob not found: {key}")
                await session.delete(stored)
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e
        logger.info(f"Deleted {key} from database")

    async def get_signed_read_url(self, key: str, ttl: int) -> str:
        # Access to the file route is already guarded by member auth
        return self.locator(key)

    async def open(self, key: str) -> tuple[bytes, str]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(models.StoredFile.content, models.StoredFile.content_type).where(
                        models.StoredFile.key == key
                    )
                )
                row = result.first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        if row is None:
            raise BlobNotFoundError(f"Blob not found: {key}")
        return row.content, row.content_type


def build_blob_store(
    config: Settings,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> BlobStore:
    """Create the blob store selected by ``STORAGE_BACKEND``."""
    storage = config.storage
    if storage.backend == StorageBackend.DATABASE:
        if session_maker is None:
            from .db import AsyncSessionMaker

            session_maker = AsyncSessionMaker
        logger.info("Using database blob storage")
        return DatabaseBlobStore(session_maker, storage.public_base_url)

    logger.info(f"Using S3 blob storage (bucket={storage.bucket}, region={storage.region})")
    return S3BlobStore(
        storage.bucket,
        region=storage.region,
        endpoint_url=storage.endpoint_url,
        access_key_id=storage.access_key_id,
        secret_access_key=storage.secret_access_key,
    )
