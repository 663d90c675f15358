"""
Remote data gateway.

Every table read/write, every stored product image and the credential table go
through a Gateway. Filters are Mongo-style dicts limited to equality,
``$regex`` (with ``$options: "i"``), ``$in``, ``$or`` and ``$and``; the key
``id`` always means the row's primary key. Rows come back as plain dicts with
a string ``id``.
"""
from __future__ import annotations
import logging
import mimetypes
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Union

from bson import ObjectId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from .errors import GatewayError, NotFoundError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class SelectResult(NamedTuple):
    rows: List[Record]
    count: Optional[int]


def new_id() -> str:
    return str(ObjectId())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Gateway(ABC):
    public_base_url: str = ""

    @abstractmethod
    async def select(self, table: str, filters: Optional[Record] = None, *,
                     order_by: Optional[str] = None, descending: bool = False,
                     offset: int = 0, limit: Optional[int] = None,
                     count: bool = False) -> SelectResult: ...

    @abstractmethod
    async def insert(self, table: str, records: Union[Record, Sequence[Record]]) -> List[Record]: ...

    @abstractmethod
    async def update(self, table: str, patch: Record, match: Record) -> int: ...

    @abstractmethod
    async def delete(self, table: str, match: Record) -> int: ...

    @abstractmethod
    async def upload_file(self, bucket: str, path: str, data: bytes,
                          content_type: Optional[str] = None) -> str: ...

    @abstractmethod
    async def remove_file(self, bucket: str, path: str) -> None: ...

    @abstractmethod
    async def download_file(self, bucket: str, path: str) -> bytes: ...

    async def get(self, table: str, row_id: str) -> Record:
        result = await self.select(table, {"id": row_id}, limit=1)
        if not result.rows:
            raise NotFoundError(f"{table} row {row_id} not found", table=table)
        return result.rows[0]

    async def count(self, table: str, filters: Optional[Record] = None) -> int:
        result = await self.select(table, filters, limit=0, count=True)
        return result.count or 0

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/files/{bucket}/{path}"

    @staticmethod
    def path_from_url(url: str) -> str:
        return url.rstrip("/").rsplit("/", 1)[-1]


def _to_mongo(filters: Any) -> Any:
    if isinstance(filters, dict):
        return {("_id" if k == "id" else k): _to_mongo(v) for k, v in filters.items()}
    if isinstance(filters, list):
        return [_to_mongo(v) for v in filters]
    return filters


def _from_mongo(doc: Record) -> Record:
    row = dict(doc)
    if "_id" in row:
        row["id"] = str(row.pop("_id"))
    return row


class MongoGateway(Gateway):
    """Gateway backed by a motor database; images live in GridFS buckets."""

    def __init__(self, db: AsyncIOMotorDatabase, public_base_url: str = ""):
        self.db = db
        self.public_base_url = public_base_url

    async def select(self, table, filters=None, *, order_by=None, descending=False,
                     offset=0, limit=None, count=False):
        query = _to_mongo(filters or {})
        try:
            total = await self.db[table].count_documents(query) if count else None
            if limit == 0:
                return SelectResult([], total)
            cursor = self.db[table].find(query)
            if order_by:
                cursor = cursor.sort("_id" if order_by == "id" else order_by,
                                     DESCENDING if descending else ASCENDING)
            if offset:
                cursor = cursor.skip(offset)
            if limit is not None:
                cursor = cursor.limit(limit)
            rows = [_from_mongo(d) async for d in cursor]
        except PyMongoError as e:
            raise GatewayError(f"select on {table} failed: {e}", table=table) from e
        return SelectResult(rows, total)

    async def insert(self, table, records):
        batch = [records] if isinstance(records, dict) else list(records)
        now = utcnow()
        docs = []
        for record in batch:
            doc = {k: v for k, v in record.items() if k != "id"}
            doc["_id"] = record.get("id") or new_id()
            doc.setdefault("created_at", now)
            doc["updated_at"] = now
            docs.append(doc)
        if not docs:
            return []
        try:
            await self.db[table].insert_many(docs, ordered=True)
        except PyMongoError as e:
            raise GatewayError(f"insert into {table} failed: {e}", table=table) from e
        return [_from_mongo(d) for d in docs]

    async def update(self, table, patch, match):
        values = {k: v for k, v in patch.items() if k != "id"}
        values["updated_at"] = utcnow()
        try:
            res = await self.db[table].update_many(_to_mongo(match), {"$set": values})
        except PyMongoError as e:
            raise GatewayError(f"update on {table} failed: {e}", table=table) from e
        if res.matched_count == 0:
            raise NotFoundError(f"no {table} row matches {match}", table=table)
        return res.matched_count

    async def delete(self, table, match):
        try:
            res = await self.db[table].delete_many(_to_mongo(match))
        except PyMongoError as e:
            raise GatewayError(f"delete on {table} failed: {e}", table=table) from e
        if res.deleted_count == 0:
            raise NotFoundError(f"no {table} row matches {match}", table=table)
        return res.deleted_count

    def _bucket(self, bucket: str) -> AsyncIOMotorGridFSBucket:
        return AsyncIOMotorGridFSBucket(self.db, bucket_name=bucket)

    async def upload_file(self, bucket, path, data, content_type=None):
        content_type = content_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
        try:
            await self._bucket(bucket).upload_from_stream(
                path, data, metadata={"contentType": content_type}
            )
        except PyMongoError as e:
            raise GatewayError(f"upload of {bucket}/{path} failed: {e}") from e
        logger.debug("stored %s/%s (%d bytes)", bucket, path, len(data))
        return self.public_url(bucket, path)

    async def remove_file(self, bucket, path):
        fs = self._bucket(bucket)
        try:
            found = [f async for f in fs.find({"filename": path})]
            for f in found:
                await fs.delete(f._id)
        except NoFile as e:
            raise NotFoundError(f"file {bucket}/{path} not found") from e
        except PyMongoError as e:
            raise GatewayError(f"removal of {bucket}/{path} failed: {e}") from e
        if not found:
            raise NotFoundError(f"file {bucket}/{path} not found")

    async def download_file(self, bucket, path):
        try:
            stream = await self._bucket(bucket).open_download_stream_by_name(path)
            return await stream.read()
        except NoFile as e:
            raise NotFoundError(f"file {bucket}/{path} not found") from e
        except PyMongoError as e:
            raise GatewayError(f"download of {bucket}/{path} failed: {e}") from e
