"""
GridFS blob buckets.

Large binary payloads live in a bucket addressed by a domain name, bound
lazily and once per domain like document collections. A bucket has its own
target and database, independent of any document class. Nothing ties a
blob to the documents that reference it; keeping those references valid is
up to the caller.

Usage:
    from mongolino.database import open_bucket

    avatars = open_bucket("avatars")
    file_id = avatars.upload("ada.png", png_bytes, metadata={"owner": str(user.id)})
    data = avatars.download(file_id)
    avatars.delete(file_id)
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, BinaryIO, Union

from bson import ObjectId
from gridfs import GridFSBucket
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from ..config import get_settings
from ..constants import DEFAULT_BLOB_DOMAIN, DEFAULT_BUCKET_NAME
from ..observability import get_logger, store_context
from .connection import get_async_client, get_client, resolve_uri, verify_client
from .errors import store_operation
from .identifiers import parse_object_id

logger = get_logger(__name__)

BlobSource = Union[bytes, BinaryIO]


@dataclass(frozen=True)
class BoundBucket:
    """Live bucket handles for one domain."""

    bucket: GridFSBucket
    database_name: str
    bucket_name: str
    connection_string: str

    @property
    def async_bucket(self) -> AsyncIOMotorGridFSBucket:
        """The same bucket through the asyncio client of the running loop."""
        database = get_async_client(self.connection_string)[self.database_name]
        return AsyncIOMotorGridFSBucket(database, bucket_name=self.bucket_name)


class BlobBucket:
    """
    A lazily bound GridFS bucket for one domain.

    Identifiers accept an ObjectId or its hex text. A missing file is an
    absent result (``None`` / ``False``), not an error.
    """

    def __init__(
        self,
        domain: str,
        connection_string: str | None = None,
        database: str | None = None,
        bucket_name: str = DEFAULT_BUCKET_NAME,
    ) -> None:
        self.domain = domain
        self.connection_string = connection_string
        self.database = database
        self.bucket_name = bucket_name
        self._bound: BoundBucket | None = None
        self._lock = threading.Lock()

    def resolve(self) -> BoundBucket:
        """
        Resolve the bucket, connecting on first use.

        Raises:
            ConnectivityError: If the target is unreachable
            StoreError: If the server rejects the connection or the names
        """
        bound = self._bound
        if bound is not None:
            return bound

        with self._lock:
            if self._bound is None:
                self._bound = self._open()
            return self._bound

    async def resolve_async(self) -> BoundBucket:
        bound = self._bound
        if bound is not None:
            return bound
        return await asyncio.to_thread(self.resolve)

    def _open(self) -> BoundBucket:
        settings = get_settings()
        connection_string = resolve_uri(self.connection_string)
        if self.database:
            database_name = self.database
        elif self.domain == DEFAULT_BLOB_DOMAIN:
            database_name = settings.blob_db_name
        else:
            database_name = self.domain

        with store_context(database=database_name):
            with store_operation("blob.resolve", **self._context()):
                client = get_client(connection_string)
                verify_client(client, connection_string)
                bucket = GridFSBucket(client[database_name], bucket_name=self.bucket_name)
            logger.info(
                f"Bound blob domain '{self.domain}' to '{database_name}.{self.bucket_name}'"
            )
        return BoundBucket(
            bucket=bucket,
            database_name=database_name,
            bucket_name=self.bucket_name,
            connection_string=connection_string,
        )


    def _context(self, **extra: Any) -> dict[str, Any]:
        return {"bucket": f"{self.domain}/{self.bucket_name}", **extra}

    # ------------------------------------------------------------------
    # Blocking operations
    # ------------------------------------------------------------------

    def upload(
        self, name: str, data: BlobSource, metadata: dict[str, Any] | None = None
    ) -> ObjectId:
        """Store a payload under a name and return its new identifier."""
        bound = self.resolve()
        with store_operation("blob.upload", **self._context(blob_name=name)):
            file_id = bound.bucket.upload_from_stream(name, data, metadata=metadata)
        logger.debug(f"Uploaded blob '{name}' to '{self.domain}' as {file_id}")
        return file_id

    def download(self, file_id: ObjectId | str) -> bytes | None:
        """Read a whole payload, or None when no such blob exists."""
        oid = parse_object_id(file_id)
        bound = self.resolve()
        with store_operation("blob.download", **self._context(file_id=str(oid))):
            try:
                return bound.bucket.open_download_stream(oid).read()
            except NoFile:
                return None

    def delete(self, file_id: ObjectId | str) -> bool:
        """Delete a payload. Returns False when no such blob exists."""
        oid = parse_object_id(file_id)
        bound = self.resolve()
        with store_operation("blob.delete", **self._context(file_id=str(oid))):
            try:
                bound.bucket.delete(oid)
            except NoFile:
                return False
        return True

    def exists(self, file_id: ObjectId | str) -> bool:
        oid = parse_object_id(file_id)
        bound = self.resolve()
        with store_operation("blob.exists", **self._context(file_id=str(oid))):
            return next(iter(bound.bucket.find({"_id": oid}).limit(1)), None) is not None

    # ------------------------------------------------------------------
    # Asyncio operations
    # ------------------------------------------------------------------

    async def upload_async(
        self, name: str, data: BlobSource, metadata: dict[str, Any] | None = None
    ) -> ObjectId:
        bound = await self.resolve_async()
        with store_operation("blob.upload", **self._context(blob_name=name)):
            file_id = await bound.async_bucket.upload_from_stream(name, data, metadata=metadata)
        logger.debug(f"Uploaded blob '{name}' to '{self.domain}' as {file_id}")
        return file_id

    async def download_async(self, file_id: ObjectId | str) -> bytes | None:
        oid = parse_object_id(file_id)
        bound = await self.resolve_async()
        with store_operation("blob.download", **self._context(file_id=str(oid))):
            try:
                grid_out = await bound.async_bucket.open_download_stream(oid)
                return await grid_out.read()
            except NoFile:
                return None

    async def delete_async(self, file_id: ObjectId | str) -> bool:
        oid = parse_object_id(file_id)
        bound = await self.resolve_async()
        with store_operation("blob.delete", **self._context(file_id=str(oid))):
            try:
                await bound.async_bucket.delete(oid)
            except NoFile:
                return False
        return True

    async def exists_async(self, file_id: ObjectId | str) -> bool:
        oid = parse_object_id(file_id)
        bound = await self.resolve_async()
        with store_operation("blob.exists", **self._context(file_id=str(oid))):
            found = await bound.async_bucket.find({"_id": oid}).to_list(length=1)
        return bool(found)


_buckets: dict[str, BlobBucket] = {}
_buckets_lock = threading.Lock()


def open_bucket(
    domain: str = DEFAULT_BLOB_DOMAIN,
    connection_string: str | None = None,
    database: str | None = None,
    bucket_name: str = DEFAULT_BUCKET_NAME,
) -> BlobBucket:
    """
    Get the bucket for a domain, creating it unresolved on first call.

    The connection settings given on the first call for a domain win; later
    calls return the same bucket regardless of their arguments.
    """
    bucket = _buckets.get(domain)
    if bucket is not None:
        return bucket

    with _buckets_lock:
        bucket = _buckets.get(domain)
        if bucket is None:
            bucket = BlobBucket(
                domain,
                connection_string=connection_string,
                database=database,
                bucket_name=bucket_name,
            )
            _buckets[domain] = bucket
        return bucket
