"""Service layer for storing and querying a user's transactions."""
import logging
import re
import time
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError

from models.transaction import Transaction, TransactionBase, TransactionCreate

logger = logging.getLogger(__name__)

SORT_ORDER = [("date", -1), ("created_at", -1)]
UPDATABLE_FIELDS = ("amount", "type", "category", "description", "date")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_document(user_id: str, data: TransactionBase, created_at: Optional[int] = None) -> Dict[str, Any]:
    doc = data.model_dump(include=set(UPDATABLE_FIELDS))
    # Dates are stored as YYYY-MM-DD strings so range queries compare lexicographically
    doc["date"] = data.date.isoformat()
    doc["_id"] = str(uuid.uuid4())
    doc["user_id"] = user_id
    doc["created_at"] = created_at or _now_ms()
    return doc


def _from_document(doc: Dict[str, Any]) -> Transaction:
    if '_id' in doc:
        doc['id'] = str(doc.pop('_id'))
    return Transaction(**doc)


def build_filter(
    user_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    tx_type: Optional[str] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    """Builds the MongoDB query for a user's transactions with optional filters."""
    query: Dict[str, Any] = {"user_id": user_id}
    date_range: Dict[str, str] = {}
    if start:
        date_range["$gte"] = start.isoformat()
    if end:
        date_range["$lte"] = end.isoformat()
    if date_range:
        query["date"] = date_range
    if tx_type:
        query["type"] = tx_type.upper()
    term = (search or "").strip()
    if term:
        pattern = {"$regex": re.escape(term), "$options": "i"}
        clauses: List[Dict[str, Any]] = [
            {"description": pattern},
            {"category": pattern},
            {"date": pattern},
        ]
        try:
            clauses.append({"amount": round(abs(float(term)), 2)})
        except ValueError:
            pass
        query["$or"] = clauses
    return query


async def list_transactions(
    collection: AsyncIOMotorCollection,
    user_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    tx_type: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Transaction]:
    """Fetches the user's transactions, newest day first, then newest entry first."""
    query = build_filter(user_id, start=start, end=end, tx_type=tx_type, search=search)
    logger.info(f"Fetching transactions from collection '{collection.name}' with filter {query}")
    transactions = []
    try:
        cursor = collection.find(query, sort=SORT_ORDER)
        async for doc in cursor:
            try:
                transactions.append(_from_document(doc))
            except ValidationError as e:
                logger.error(f"Data validation error for document ID {doc.get('id', 'N/A')}: {e}")
                continue
    except Exception as e:
        logger.error(f"Database error fetching transactions: {e}")
        raise ConnectionError(f"Database error fetching transactions: {e}")
    logger.info(f"Fetched {len(transactions)} transactions for user {user_id}.")
    return transactions


async def get_transaction(collection: AsyncIOMotorCollection, user_id: str, transaction_id: str) -> Optional[Transaction]:
    """Returns the transaction only if it belongs to the user."""
    try:
        doc = await collection.find_one({"_id": transaction_id, "user_id": user_id})
    except Exception as e:
        logger.error(f"Database error fetching transaction {transaction_id}: {e}")
        raise ConnectionError(f"Database error fetching transaction: {e}")
    return _from_document(doc) if doc else None


async def create_transaction(collection: AsyncIOMotorCollection, user_id: str, data: TransactionCreate) -> Transaction:
    doc = _to_document(user_id, data, created_at=data.created_at)
    try:
        await collection.insert_one(doc)
    except Exception as e:
        logger.error(f"Database error inserting transaction: {e}")
        raise ConnectionError(f"Database error inserting transaction: {e}")
    logger.info(f"Created transaction {doc['_id']} for user {user_id}.")
    return _from_document(doc)


async def create_many_transactions(
    collection: AsyncIOMotorCollection,
    user_id: str,
    items: List[TransactionBase],
) -> List[Transaction]:
    """Inserts several transactions in one bulk write, keeping their order."""
    if not items:
        return []
    base_ms = _now_ms()
    docs = []
    for index, item in enumerate(items):
        created_at = getattr(item, "created_at", None)
        # Distinct timestamps keep the newest-first ordering stable within a batch
        docs.append(_to_document(user_id, item, created_at=created_at or base_ms + index))
    logger.info(f"Attempting bulk insert of {len(docs)} transactions for user {user_id}.")
    try:
        await collection.insert_many(docs, ordered=True)
    except Exception as e:
        logger.error(f"Database error during bulk insert: {e}")
        raise ConnectionError(f"Database error during bulk insert: {e}")
    return [_from_document(doc) for doc in docs]


async def update_transaction(
    collection: AsyncIOMotorCollection,
    user_id: str,
    transaction_id: str,
    data: TransactionBase,
) -> Optional[Transaction]:
    """Overwrites the editable fields of an owned transaction. Returns None if not found."""
    changes = data.model_dump(include=set(UPDATABLE_FIELDS))
    changes["date"] = data.date.isoformat()
    try:
        result = await collection.update_one({"_id": transaction_id, "user_id": user_id}, {"$set": changes})
    except Exception as e:
        logger.error(f"Database error updating transaction {transaction_id}: {e}")
        raise ConnectionError(f"Database error updating transaction: {e}")
    if result.matched_count == 0:
        logger.warning(f"Update skipped: transaction {transaction_id} not found for user {user_id}.")
        return None
    return await get_transaction(collection, user_id, transaction_id)


async def delete_transaction(collection: AsyncIOMotorCollection, user_id: str, transaction_id: str) -> bool:
    """Deletes one owned transaction. Returns False if nothing matched."""
    try:
        result = await collection.delete_one({"_id": transaction_id, "user_id": user_id})
    except Exception as e:
        logger.error(f"Database error deleting transaction {transaction_id}: {e}")
        raise ConnectionError(f"Database error deleting transaction: {e}")
    deleted = result.deleted_count == 1
    if deleted:
        logger.info(f"Deleted transaction {transaction_id} for user {user_id}.")
    return deleted
