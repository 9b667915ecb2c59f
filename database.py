"""
Document store for the restaurant service.

Thin layer over a pymongo database handle: CRUD by id, filtered queries,
all-or-nothing batches and live snapshot subscriptions. Every document is
handed out with its ObjectId rendered as a string under "id".
"""

import logging
import threading
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from errors import StoreWriteError
from schemas import utcnow

logger = logging.getLogger(__name__)

SortSpec = Optional[Sequence[Tuple[str, int]]]


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    # Convert nested ObjectIds if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        if isinstance(v, list):
            new_list = []
            for item in v:
                if isinstance(item, dict) and "_id" in item:
                    item = serialize_doc(item)
                elif isinstance(item, ObjectId):
                    item = str(item)
                new_list.append(item)
            doc[k] = new_list
    return doc


def to_object_id(doc_id: Any) -> Optional[ObjectId]:
    if isinstance(doc_id, ObjectId):
        return doc_id
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return ObjectId(doc_id)
    return None


def _as_dict(data: Any) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


@dataclass
class Snapshot:
    """Result set of a subscribed query plus what changed since the last push."""
    collection: str
    documents: List[Dict[str, Any]]
    added: List[Dict[str, Any]] = field(default_factory=list)
    modified: List[Dict[str, Any]] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


@dataclass
class _Subscription:
    collection: str
    filter: Dict[str, Any]
    sort: SortSpec
    limit: Optional[int]
    callback: Callable[[Snapshot], None]
    last: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    active: bool = True


class Batch:
    """
    Writes collected here become visible together or not at all.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[Tuple[str, str, ObjectId, Dict[str, Any]]] = []

    @staticmethod
    def new_id() -> str:
        return str(ObjectId())

    def set(self, collection: str, doc_id: str, data: Any) -> "Batch":
        oid = to_object_id(doc_id)
        if oid is None:
            raise StoreWriteError(f"Invalid document id: {doc_id}")
        self._ops.append(("set", collection, oid, _as_dict(data)))
        return self

    def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> "Batch":
        oid = to_object_id(doc_id)
        if oid is None:
            raise StoreWriteError(f"Invalid document id: {doc_id}")
        self._ops.append(("update", collection, oid, dict(patch)))
        return self

    def commit(self) -> None:
        if self._ops:
            self._store._commit(self._ops)
            self._ops = []


class DocumentStore:
    def __init__(self, db, use_transactions: bool = False):
        self.db = db
        self.use_transactions = use_transactions
        self._write_lock = threading.RLock()
        self._subs_lock = threading.Lock()
        self._subscriptions: List[_Subscription] = []

    def _reading(self):
        # Without transactions a batch is applied step by step; readers wait
        # for it so they never see half of one.
        return nullcontext() if self.use_transactions else self._write_lock

    @classmethod
    def from_settings(cls, settings) -> "DocumentStore":
        client = MongoClient(settings.database_url)
        return cls(client[settings.database_name], use_transactions=settings.mongo_transactions)

    # ----------------------------
    # Reads
    # ----------------------------
    def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        try:
            with self._reading():
                doc = self.db[collection].find_one({"_id": oid})
        except PyMongoError as e:
            logger.error("Read of %s/%s failed: %s", collection, doc_id, e)
            raise StoreWriteError(f"Failed to read {collection}: {e}") from e
        return serialize_doc(doc) if doc else None

    def get_documents(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None,
                      sort: SortSpec = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            with self._reading():
                cursor = self.db[collection].find(filter_dict or {})
                if sort:
                    cursor = cursor.sort(list(sort))
                if limit:
                    cursor = cursor.limit(limit)
                return [serialize_doc(d) for d in cursor]
        except PyMongoError as e:
            logger.error("Query on %s failed: %s", collection, e)
            raise StoreWriteError(f"Failed to query {collection}: {e}") from e

    # ----------------------------
    # Single-document writes
    # ----------------------------
    def create_document(self, collection: str, data: Any, doc_id: Optional[str] = None) -> str:
        doc = _as_dict(data)
        now = utcnow()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        oid = to_object_id(doc_id) if doc_id else ObjectId()
        if oid is None:
            raise StoreWriteError(f"Invalid document id: {doc_id}")
        doc["_id"] = oid
        with self._write_lock:
            try:
                self.db[collection].insert_one(doc)
            except PyMongoError as e:
                logger.error("Insert into %s failed: %s", collection, e)
                raise StoreWriteError(f"Failed to create {collection} document: {e}") from e
        self._notify([collection])
        return str(oid)

    def update_document(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> bool:
        oid = to_object_id(doc_id)
        if oid is None:
            return False
        with self._write_lock:
            try:
                result = self.db[collection].update_one({"_id": oid}, {"$set": dict(patch)})
            except PyMongoError as e:
                logger.error("Update of %s/%s failed: %s", collection, doc_id, e)
                raise StoreWriteError(f"Failed to update {collection} document: {e}") from e
        if result.matched_count:
            self._notify([collection])
        return bool(result.matched_count)

    def delete_document(self, collection: str, doc_id: str) -> bool:
        oid = to_object_id(doc_id)
        if oid is None:
            return False
        with self._write_lock:
            try:
                result = self.db[collection].delete_one({"_id": oid})
            except PyMongoError as e:
                logger.error("Delete of %s/%s failed: %s", collection, doc_id, e)
                raise StoreWriteError(f"Failed to delete {collection} document: {e}") from e
        if result.deleted_count:
            self._notify([collection])
        return bool(result.deleted_count)

    # ----------------------------
    # Batches
    # ----------------------------
    def batch(self) -> Batch:
        return Batch(self)

    def _commit(self, ops) -> None:
        with self._write_lock:
            try:
                if self.use_transactions:
                    self._commit_transaction(ops)
                else:
                    self._commit_with_undo(ops)
            except PyMongoError as e:
                logger.error("Batch commit failed: %s", e)
                raise StoreWriteError(f"Batch write failed: {e}") from e
        self._notify({collection for _, collection, _, _ in ops})

    def _commit_transaction(self, ops) -> None:
        client = self.db.client
        with client.start_session() as session:
            with session.start_transaction():
                for kind, collection, oid, data in ops:
                    col = self.db[collection]
                    if kind == "set":
                        col.replace_one({"_id": oid}, {**data, "_id": oid}, upsert=True, session=session)
                    else:
                        result = col.update_one({"_id": oid}, {"$set": data}, session=session)
                        if not result.matched_count:
                            raise StoreWriteError(f"{collection}/{oid} does not exist")

    def _commit_with_undo(self, ops) -> None:
        # Standalone servers have no transactions: apply in order and put back
        # every touched document if a later step fails.
        undo = []
        try:
            for kind, collection, oid, data in ops:
                col = self.db[collection]
                previous = col.find_one({"_id": oid})
                if kind == "set":
                    col.replace_one({"_id": oid}, {**data, "_id": oid}, upsert=True)
                else:
                    if previous is None:
                        raise StoreWriteError(f"{collection}/{oid} does not exist")
                    col.update_one({"_id": oid}, {"$set": data})
                undo.append((collection, oid, previous))
        except Exception:
            for collection, oid, previous in reversed(undo):
                if previous is None:
                    self.db[collection].delete_one({"_id": oid})
                else:
                    self.db[collection].replace_one({"_id": oid}, previous)
            logger.warning("Rolled back %d batch step(s)", len(undo))
            raise

    # ----------------------------
    # Live subscriptions
    # ----------------------------
    def subscribe(self, collection: str, filter_dict: Optional[Dict[str, Any]],
                  callback: Callable[[Snapshot], None], sort: SortSpec = None,
                  limit: Optional[int] = None) -> Callable[[], None]:
        """
        Push the current result set to ``callback`` now and after every write
        that changes it. Returns the unsubscribe handle.
        """
        sub = _Subscription(collection, dict(filter_dict or {}), sort, limit, callback)
        with self._subs_lock:
            self._subscriptions.append(sub)
        self._push(sub, initial=True)

        def unsubscribe() -> None:
            sub.active = False
            with self._subs_lock:
                if sub in self._subscriptions:
                    self._subscriptions.remove(sub)

        return unsubscribe

    def _notify(self, collections: Iterable[str]) -> None:
        touched = set(collections)
        with self._subs_lock:
            subs = [s for s in self._subscriptions if s.collection in touched]
        for sub in subs:
            self._push(sub)

    def _push(self, sub: _Subscription, initial: bool = False) -> None:
        if not sub.active:
            return
        try:
            docs = self.get_documents(sub.collection, sub.filter, sub.sort, sub.limit)
        except StoreWriteError:
            logger.exception("Snapshot query on %s failed", sub.collection)
            return
        current = {d["id"]: d for d in docs}
        added = [d for i, d in current.items() if i not in sub.last]
        modified = [d for i, d in current.items() if i in sub.last and sub.last[i] != d]
        removed = [i for i in sub.last if i not in current]
        reordered = list(current) != list(sub.last)
        if not initial and not (added or modified or removed or reordered):
            return
        sub.last = current
        snapshot = Snapshot(sub.collection, docs, added, modified, removed)
        try:
            sub.callback(snapshot)
        except Exception:
            logger.exception("Snapshot listener on %s raised", sub.collection)
