"""
MongoDB access for the Vrbo backend.

The client is created once per process (see main.py) and handed to routes
through the get_db dependency. Every helper here converts pymongo failures
into StoreUnavailable so the routes only deal with the app error family.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.server_api import ServerApi

from config import Settings
from errors import Conflict, InvalidInput, PartialReconcileError, StoreUnavailable
from validation import check_field_names

logger = logging.getLogger(__name__)

USERS = "users"
ALL_RESORTS = "allResorts"
HOTEL_LIST = "hotelList"
BOOKINGS = "bookings"
PROPERTY_DATA = "propertyData"
USER_INFO = "userInfo"
YEARLY_EARNINGS = "yearlyEarnings"
EARNINGS_SUMMARY = "earningsSummary"


# ------- Connection -------

def connect(settings: Settings) -> MongoClient:
    """Open the process-wide client and make sure the cluster answers."""
    client = MongoClient(
        settings.mongo_uri,
        server_api=ServerApi("1", strict=True, deprecation_errors=True),
        timeoutMS=settings.store_timeout_ms,
        serverSelectionTimeoutMS=settings.store_timeout_ms,
    )
    try:
        client.admin.command("ping")
    except PyMongoError as e:
        client.close()
        logger.error("Failed to connect to MongoDB: %s", e)
        raise StoreUnavailable("Failed to connect to MongoDB")
    logger.info("Connected to MongoDB")
    return client


def ensure_indexes(db: Database) -> None:
    """Unique indexes on the natural keys; the upserts are only the fast path."""
    indexes = [
        (USERS, [("email", ASCENDING)]),
        (BOOKINGS, [("email", ASCENDING), ("resortId", ASCENDING)]),
        (USER_INFO, [("email", ASCENDING)]),
        (YEARLY_EARNINGS, [("year", ASCENDING)]),
    ]
    for name, keys in indexes:
        try:
            db[name].create_index(keys, unique=True)
        except PyMongoError as e:
            # Existing duplicates block the index; the service still runs on upserts alone.
            logger.warning("Could not create unique index on %s %s: %s", name, keys, e)


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise StoreUnavailable("Database not available")
    return db


# ------- Document helpers -------

def serialize_doc(doc: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])
    return d


def _store_call(action: str, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.error("Store failure while %s: %s", action, e)
        raise StoreUnavailable(f"Error {action}")


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    try:
        result = _store_call(f"creating {collection_name}", db[collection_name].insert_one, data_dict)
    except DuplicateKeyError:
        raise Conflict(f"Duplicate {collection_name} record")
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List[Tuple[str, int]]] = None) -> List[Dict[str, Any]]:
    def run():
        cursor = db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        return [serialize_doc(d) for d in cursor]

    return _store_call(f"fetching {collection_name}", run)


def get_document(db: Database, collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    doc = _store_call(f"fetching {collection_name}", db[collection_name].find_one, filter_dict)
    return serialize_doc(doc)


def update_document(db: Database, collection_name: str, filter_dict: Dict[str, Any],
                    fields: Dict[str, Any]) -> bool:
    """$set fields on the single matching record. False when nothing matched."""
    try:
        result = _store_call(f"updating {collection_name}", db[collection_name].update_one,
                             filter_dict, {"$set": fields})
    except DuplicateKeyError:
        raise Conflict(f"Update would duplicate an existing {collection_name} record")
    return result.matched_count > 0


def delete_document(db: Database, collection_name: str, filter_dict: Dict[str, Any]) -> bool:
    result = _store_call(f"deleting {collection_name}", db[collection_name].delete_one, filter_dict)
    return result.deleted_count > 0


# ------- Upsert reconciliation -------

class ReconcileResult(BaseModel):
    created: bool
    affected: bool
    upserted_id: Optional[str] = None


def _check_key_filter(key_filter: Mapping[str, Any]) -> None:
    if not isinstance(key_filter, Mapping):
        raise InvalidInput("Key filter must be an object")
    check_field_names(key_filter, "key filter")
    for key, value in key_filter.items():
        if key == "_id":
            raise InvalidInput("Key filter may not address _id")
        if isinstance(value, (dict, list)) or value is None:
            raise InvalidInput(f"Key field {key!r} must be a plain value")


def _merge_payload(key_filter: Mapping[str, Any], payload: Mapping[str, Any]) -> Dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise InvalidInput("Payload must be an object")
    check_field_names(payload)
    if "_id" in payload:
        raise InvalidInput("Payload may not set _id")
    for key, value in key_filter.items():
        if key in payload and payload[key] != value:
            raise InvalidInput(f"Payload contradicts key field {key!r}")
    fields = {**key_filter, **payload}
    if not fields:
        raise InvalidInput("Nothing to reconcile")
    return fields


def reconcile(collection: Collection, key_filter: Mapping[str, Any], payload: Mapping[str, Any]) -> ReconcileResult:
    """
    Create the record matching key_filter if absent, otherwise merge payload
    onto it, in one atomic upsert.

    The created record holds the key fields plus the payload. Running the same
    call twice leaves the same stored state and the second call reports
    created=False. An empty key_filter addresses the collection's singleton
    document.
    """
    _check_key_filter(key_filter)
    fields = _merge_payload(key_filter, payload)
    try:
        result = _store_call(f"reconciling {collection.name}", collection.update_one,
                             dict(key_filter), {"$set": fields}, upsert=True)
    except DuplicateKeyError:
        raise Conflict(f"Concurrent write on the same {collection.name} key")
    created = result.upserted_id is not None
    return ReconcileResult(
        created=created,
        affected=created or result.modified_count > 0,
        upserted_id=str(result.upserted_id) if created else None,
    )


def insert_if_absent(collection: Collection, key_filter: Mapping[str, Any],
                     document: Mapping[str, Any]) -> ReconcileResult:
    """Insert document under key_filter only when no record has that key yet."""
    _check_key_filter(key_filter)
    if not key_filter:
        raise InvalidInput("Key filter may not be empty")
    fields = _merge_payload(key_filter, document)
    try:
        result = _store_call(f"inserting into {collection.name}", collection.update_one,
                             dict(key_filter), {"$setOnInsert": fields}, upsert=True)
    except DuplicateKeyError:
        # Lost a race with a concurrent insert of the same key.
        return ReconcileResult(created=False, affected=False)
    created = result.upserted_id is not None
    return ReconcileResult(
        created=created,
        affected=created,
        upserted_id=str(result.upserted_id) if created else None,
    )


def reconcile_many(collection: Collection,
                   items: Iterable[Tuple[Mapping[str, Any], Mapping[str, Any]]]) -> List[ReconcileResult]:
    """
    Reconcile each (key_filter, payload) pair in order.

    There is no atomicity across the batch. If the store fails part way,
    PartialReconcileError reports the keys already applied and the keys left
    untouched; the applied writes are not rolled back.
    """
    items = list(items)
    # whole batch is validated before the first write
    for key_filter, payload in items:
        _check_key_filter(key_filter)
        _merge_payload(key_filter, payload)

    results: List[ReconcileResult] = []
    for i, (key_filter, payload) in enumerate(items):
        try:
            results.append(reconcile(collection, key_filter, payload))
        except (StoreUnavailable, Conflict) as e:
            applied = [dict(k) for k, _ in items[:i]]
            pending = [dict(k) for k, _ in items[i:]]
            logger.error("Batch on %s stopped after %d of %d writes", collection.name, i, len(items))
            raise PartialReconcileError(
                f"Stored {i} of {len(items)} records before the store failed",
                applied=applied,
                pending=pending,
                cause=e,
            )
    return results


def timestamp() -> datetime:
    return datetime.now(timezone.utc)
