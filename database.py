"""
Document stores backing the marketplace.

``MongoStore`` talks to MongoDB through pymongo. ``LocalStore`` is the
fallback used when no ``DATABASE_URL`` is configured: an in-process store,
optionally mirrored to a JSON file, with an optional document quota.

Both return plain dicts with an ``id`` string and ISO-8601 datetimes, and
accept pydantic models or dicts on the way in.
"""
import json
import logging
import os
import threading
from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument

from errors import QuotaExceeded
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

Sort = Tuple[str, int]

SETTLED_STATUSES = ("completed", "cancelled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _to_data(data) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="python")
    data = dict(data)
    data.pop("id", None)
    data.pop("_id", None)
    # unset timestamps are stamped by the store
    for field in ("created_at", "updated_at"):
        if data.get(field) is None:
            data.pop(field, None)
    return data


def _sort_key(field: str):
    def key(doc):
        value = doc.get(field)
        # None sorts first
        return (value is not None, value if value is not None else 0)
    return key


class Store:
    """Row-level document store contract."""

    backend = "base"

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Serialize writers of one aggregate (a buyer's cart, an order, ...)."""
        with self._locks_guard:
            lk = self._locks.setdefault(key, threading.RLock())
        with lk:
            yield

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    def get_documents(self, collection: str, filter_dict: Optional[dict] = None,
                      sort: Optional[Sort] = None, limit: Optional[int] = None,
                      skip: int = 0) -> List[dict]:
        raise NotImplementedError

    def create_document(self, collection: str, data) -> str:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, patch: dict,
               expect: Optional[dict] = None) -> Optional[dict]:
        """Apply ``patch``; when ``expect`` is given, only if those fields still match."""
        raise NotImplementedError

    def increment(self, collection: str, doc_id: str, field: str, amount: int) -> Optional[dict]:
        raise NotImplementedError

    def decrement_if(self, collection: str, doc_id: str, field: str, amount: int) -> Optional[dict]:
        """Atomically ``field -= amount`` where ``field >= amount``; None when not applied."""
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def delete_many(self, collection: str, filter_dict: Optional[dict] = None) -> int:
        raise NotImplementedError

    def count(self, collection: str, filter_dict: Optional[dict] = None) -> int:
        raise NotImplementedError

    def collections(self) -> List[str]:
        raise NotImplementedError


class LocalStore(Store):
    backend = "local"

    def __init__(self, path: Optional[str] = None, max_documents: Optional[int] = None,
                 keep_recent: int = 200, on_quota: Optional[Callable[["LocalStore"], int]] = None):
        super().__init__()
        self.path = path
        self.max_documents = max_documents
        self.keep_recent = keep_recent
        self.on_quota = on_quota or prune_settled_orders
        self._data: Dict[str, Dict[str, dict]] = {}
        self._mutex = threading.RLock()
        if path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as fh:
                self._data = json.load(fh)
            logger.info(f"Loaded local store from {path}")

    def _flush(self):
        if not self.path:
            return
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(self._data, fh)
        os.replace(tmp, self.path)

    def _size(self) -> int:
        return sum(len(docs) for docs in self._data.values())

    def _ensure_capacity(self):
        if self.max_documents is None or self._size() < self.max_documents:
            return
        logger.warning("Local store quota exceeded, attempting cleanup...")
        removed = self.on_quota(self)
        logger.info(f"Quota cleanup removed {removed} documents")
        if self._size() >= self.max_documents:
            raise QuotaExceeded("Storage quota exceeded even after cleanup")

    @staticmethod
    def _matches(doc: dict, filter_dict: Optional[dict]) -> bool:
        if not filter_dict:
            return True
        for k, v in filter_dict.items():
            if isinstance(v, (list, tuple, set, frozenset)):
                if doc.get(k) not in v:
                    return False
            elif doc.get(k) != v:
                return False
        return True

    def get(self, collection, doc_id):
        with self._mutex:
            doc = self._data.get(collection, {}).get(doc_id)
            return deepcopy(doc) if doc else None

    def get_documents(self, collection, filter_dict=None, sort=None, limit=None, skip=0):
        with self._mutex:
            docs = [deepcopy(d) for d in self._data.get(collection, {}).values()
                    if self._matches(d, filter_dict)]
        if sort:
            field, direction = sort
            key = _sort_key(field)
            # ties fall back to insertion order
            ranked = sorted(enumerate(docs), key=lambda pair: (key(pair[1]), pair[0]), reverse=direction < 0)
            docs = [doc for _, doc in ranked]
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return docs

    def create_document(self, collection, data):
        data = _to_data(data)
        now = utcnow()
        data.setdefault("created_at", now)
        data["updated_at"] = now
        with self._mutex:
            self._ensure_capacity()
            doc_id = str(ObjectId())
            data["id"] = doc_id
            self._data.setdefault(collection, {})[doc_id] = _jsonable(data)
            self._flush()
        return doc_id

    def update(self, collection, doc_id, patch, expect=None):
        with self._mutex:
            doc = self._data.get(collection, {}).get(doc_id)
            if doc is None or not self._matches(doc, expect):
                return None
            patch = dict(patch)
            patch.pop("id", None)
            patch["updated_at"] = utcnow()
            doc.update(_jsonable(patch))
            self._flush()
            return deepcopy(doc)

    def increment(self, collection, doc_id, field, amount):
        with self._mutex:
            doc = self._data.get(collection, {}).get(doc_id)
            if doc is None:
                return None
            doc[field] = doc.get(field, 0) + amount
            doc["updated_at"] = utcnow().isoformat()
            self._flush()
            return deepcopy(doc)

    def decrement_if(self, collection, doc_id, field, amount):
        with self._mutex:
            doc = self._data.get(collection, {}).get(doc_id)
            if doc is None or doc.get(field, 0) < amount:
                return None
            doc[field] = doc.get(field, 0) - amount
            doc["updated_at"] = utcnow().isoformat()
            self._flush()
            return deepcopy(doc)

    def delete(self, collection, doc_id):
        with self._mutex:
            removed = self._data.get(collection, {}).pop(doc_id, None)
            if removed is not None:
                self._flush()
            return removed is not None

    def delete_many(self, collection, filter_dict=None):
        with self._mutex:
            docs = self._data.get(collection, {})
            doomed = [k for k, d in docs.items() if self._matches(d, filter_dict)]
            for k in doomed:
                del docs[k]
            if doomed:
                self._flush()
            return len(doomed)

    def count(self, collection, filter_dict=None):
        with self._mutex:
            return sum(1 for d in self._data.get(collection, {}).values() if self._matches(d, filter_dict))

    def collections(self):
        with self._mutex:
            return [name for name, docs in self._data.items() if docs]


def prune_settled_orders(store: LocalStore) -> int:
    """Drop the oldest settled orders (and their payments) beyond ``keep_recent``."""
    settled = store.get_documents("order", {"status": list(SETTLED_STATUSES)}, sort=("created_at", -1))
    removed = 0
    for order in settled[store.keep_recent:]:
        removed += store.delete_many("payment", {"order_id": order["id"]})
        removed += int(store.delete("order", order["id"]))
    return removed


class MongoStore(Store):
    backend = "mongodb"

    def __init__(self, database):
        super().__init__()
        self.db = database

    @staticmethod
    def _oid(doc_id: str) -> Optional[ObjectId]:
        return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else None

    def _query(self, filter_dict: Optional[dict]) -> dict:
        query = {}
        for k, v in (filter_dict or {}).items():
            if k == "id":
                k, v = "_id", self._oid(v)
            if isinstance(v, (list, tuple, set, frozenset)):
                v = {"$in": list(v)}
            query[k] = v
        return query

    def get(self, collection, doc_id):
        oid = self._oid(doc_id)
        if oid is None:
            return None
        return serialize_doc(self.db[collection].find_one({"_id": oid}))

    def get_documents(self, collection, filter_dict=None, sort=None, limit=None, skip=0):
        cursor = self.db[collection].find(self._query(filter_dict))
        if sort:
            field, direction = sort
            cursor = cursor.sort([(field, direction), ("_id", direction)])
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [serialize_doc(d) for d in cursor]

    def create_document(self, collection, data):
        data = _to_data(data)
        now = utcnow()
        data.setdefault("created_at", now)
        data["updated_at"] = now
        result = self.db[collection].insert_one(data)
        return str(result.inserted_id)

    def update(self, collection, doc_id, patch, expect=None):
        oid = self._oid(doc_id)
        if oid is None:
            return None
        patch = dict(patch)
        patch.pop("id", None)
        patch["updated_at"] = utcnow()
        query = {"_id": oid, **self._query(expect)}
        doc = self.db[collection].find_one_and_update(
            query, {"$set": patch}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(doc)

    def increment(self, collection, doc_id, field, amount):
        oid = self._oid(doc_id)
        if oid is None:
            return None
        doc = self.db[collection].find_one_and_update(
            {"_id": oid},
            {"$inc": {field: amount}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def decrement_if(self, collection, doc_id, field, amount):
        oid = self._oid(doc_id)
        if oid is None:
            return None
        doc = self.db[collection].find_one_and_update(
            {"_id": oid, field: {"$gte": amount}},
            {"$inc": {field: -amount}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def delete(self, collection, doc_id):
        oid = self._oid(doc_id)
        if oid is None:
            return False
        return self.db[collection].delete_one({"_id": oid}).deleted_count > 0

    def delete_many(self, collection, filter_dict=None):
        return self.db[collection].delete_many(self._query(filter_dict)).deleted_count

    def count(self, collection, filter_dict=None):
        return self.db[collection].count_documents(self._query(filter_dict))

    def collections(self):
        return self.db.list_collection_names()


def build_store(settings: Settings) -> Store:
    if settings.database_url and settings.database_name:
        client = MongoClient(settings.database_url)
        logger.info(f"Using MongoDB database {settings.database_name}")
        return MongoStore(client[settings.database_name])
    logger.warning("DATABASE_URL not set, falling back to local store")
    return LocalStore(
        path=settings.local_store_path,
        max_documents=settings.local_store_max_documents,
        keep_recent=settings.storage_keep_recent,
    )


_store: Optional[Store] = None
_store_guard = threading.Lock()


def get_store() -> Store:
    """FastAPI dependency returning the process-wide store."""
    global _store
    with _store_guard:
        if _store is None:
            _store = build_store(get_settings())
        return _store
