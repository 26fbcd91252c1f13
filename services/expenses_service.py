"""Service layer for handling expense-related logic."""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection  # Type hint for collection
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from models.expense import (
    EXPENSE_CATEGORIES,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    from_document,
    to_document,
    utcnow,
)

logger = logging.getLogger(__name__)

ALLOWED_SORT_FIELDS = ["date", "amount", "category", "description", "createdAt"]


def _object_id(value: str) -> Optional[ObjectId]:
    """Parses a hex id, returning None for anything malformed."""
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


async def _ensure_booking_exists(bookings: Optional[AsyncIOMotorCollection], booking_id: Optional[str]) -> None:
    """Referential check for the optional booking reference."""
    if not booking_id:
        return
    if bookings is None:
        logger.warning(f"No bookings collection available, cannot verify booking {booking_id}.")
        raise ConnectionError("Bookings collection not available.")
    booking = await bookings.find_one({"_id": ObjectId(booking_id)}, {"_id": 1})
    if booking is None:
        logger.warning(f"Rejected expense referencing missing booking {booking_id}.")
        raise ValueError("Referenced booking does not exist")


# --- Database Interaction Functions (Depend on collection passed from route) ---

async def list_expenses(
    collection: AsyncIOMotorCollection,
    booking_id: Optional[str] = None,
    category: Optional[str] = None,
    sort_by: str = "date",
    sort_order: int = -1,
) -> List[Expense]:
    """Fetches expenses from the collection, optionally filtered by booking and category."""
    if sort_by not in ALLOWED_SORT_FIELDS:
        raise ValueError(f"Invalid sort_by field. Allowed fields: {', '.join(ALLOWED_SORT_FIELDS)}")
    if sort_order not in (1, -1):
        raise ValueError("Invalid sort_order value. Use 1 for ascending or -1 for descending.")

    query: Dict[str, Any] = {}
    if booking_id:
        oid = _object_id(booking_id)
        if oid is None:
            raise ValueError("Invalid booking id")
        query["bookingId"] = oid
    if category:
        if category not in EXPENSE_CATEGORIES:
            raise ValueError(f"Category must be one of: {', '.join(EXPENSE_CATEGORIES)}")
        query["category"] = category

    logger.info(f"Fetching expenses with filter {query}, sorting by {sort_by} ({'desc' if sort_order == -1 else 'asc'})...")
    expenses = []
    try:
        cursor = collection.find(query, sort=[(sort_by, sort_order)])
        async for doc in cursor:
            try:
                expenses.append(from_document(doc))
            except ValidationError as e:
                logger.error(f"Data validation error for document ID {doc.get('_id', 'N/A')}: {e}")
                # Skip invalid documents
                continue
    except PyMongoError as e:
        logger.error(f"Database error fetching expenses: {e}")
        raise ConnectionError(f"Database error fetching expenses: {e}")
    logger.info(f"Fetched {len(expenses)} expenses successfully.")
    return expenses


async def get_expense(collection: AsyncIOMotorCollection, expense_id: str) -> Optional[Expense]:
    """Returns a single expense, or None when the id is unknown or malformed."""
    oid = _object_id(expense_id)
    if oid is None:
        logger.info(f"Malformed expense id requested: {expense_id}")
        return None
    try:
        doc = await collection.find_one({"_id": oid})
    except PyMongoError as e:
        logger.error(f"Database error fetching expense {expense_id}: {e}")
        raise ConnectionError(f"Database error fetching expense: {e}")
    if not doc:
        return None
    try:
        return from_document(doc)
    except ValidationError as e:
        logger.error(f"Data validation error for document ID {expense_id}: {e}")
        return None


async def create_expense(
    collection: AsyncIOMotorCollection,
    bookings: Optional[AsyncIOMotorCollection],
    data: ExpenseCreate,
) -> Expense:
    """Validates references, stamps timestamps and inserts a new expense."""
    await _ensure_booking_exists(bookings, data.booking_id)

    now = utcnow()
    doc = to_document(data)
    doc.setdefault("date", now)
    doc["createdAt"] = now
    doc["updatedAt"] = now

    try:
        result = await collection.insert_one(doc)
    except PyMongoError as e:
        logger.error(f"Database error inserting expense: {e}")
        raise ConnectionError(f"Database error saving expense: {e}")

    doc["_id"] = result.inserted_id
    logger.info(f"Created expense {result.inserted_id} ({data.category.value}, {data.amount}) by {data.added_by}.")
    return from_document(doc)


async def update_expense(
    collection: AsyncIOMotorCollection,
    bookings: Optional[AsyncIOMotorCollection],
    expense_id: str,
    data: ExpenseUpdate,
) -> Optional[Expense]:
    """
    Replaces the user-editable fields of an expense.

    createdAt is preserved, updatedAt is refreshed. A body without a date
    keeps the stored one. The booking link is left alone unless bookingId
    is sent; an explicit null or empty bookingId clears it.
    Returns None when the expense does not exist.
    """
    oid = _object_id(expense_id)
    if oid is None:
        return None
    await _ensure_booking_exists(bookings, data.booking_id)

    changes = to_document(data)
    changes["updatedAt"] = utcnow()
    update: Dict[str, Any] = {"$set": changes}
    if "booking_id" in data.model_fields_set and not data.booking_id:
        update["$unset"] = {"bookingId": ""}

    try:
        result = await collection.update_one({"_id": oid}, update)
        if result.matched_count == 0:
            logger.info(f"Expense {expense_id} not found for update.")
            return None
        doc = await collection.find_one({"_id": oid})
    except PyMongoError as e:
        logger.error(f"Database error updating expense {expense_id}: {e}")
        raise ConnectionError(f"Database error updating expense: {e}")

    logger.info(f"Updated expense {expense_id}.")
    return from_document(doc)


async def delete_expense(collection: AsyncIOMotorCollection, expense_id: str) -> bool:
    """Deletes one expense. Returns False when nothing matched."""
    oid = _object_id(expense_id)
    if oid is None:
        return False
    logger.warning(f"Deleting expense {expense_id}.")
    try:
        result = await collection.delete_one({"_id": oid})
    except PyMongoError as e:
        logger.error(f"Database error deleting expense {expense_id}: {e}")
        raise ConnectionError(f"Database error deleting expense: {e}")
    return result.deleted_count == 1


async def summarize_expenses(collection: AsyncIOMotorCollection, booking_id: Optional[str] = None) -> Dict[str, Any]:
    """Totals per category plus a grand total, optionally for a single booking."""
    match: Dict[str, Any] = {}
    if booking_id:
        oid = _object_id(booking_id)
        if oid is None:
            raise ValueError("Invalid booking id")
        match["bookingId"] = oid

    pipeline = [
        {"$match": match},
        {"$group": {"_id": "$category", "total": {"$sum": "$amount"}, "count": {"$sum": 1}}},
    ]
    by_category = {category: 0.0 for category in EXPENSE_CATEGORIES}
    count = 0
    try:
        async for row in collection.aggregate(pipeline):
            by_category[row["_id"]] = float(row["total"])
            count += row["count"]
    except PyMongoError as e:
        logger.error(f"Database error summarizing expenses: {e}")
        raise ConnectionError(f"Database error summarizing expenses: {e}")

    return {
        "by_category": by_category,
        "total": sum(by_category.values()),
        "count": count,
    }
