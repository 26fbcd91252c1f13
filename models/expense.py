"""Pydantic models and MongoDB collection schema for Expense data"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pydantic import BaseModel, Field, field_validator
from pymongo.errors import CollectionInvalid

logger = logging.getLogger(__name__)

EXPENSES_COLLECTION = "expenses"
BOOKINGS_COLLECTION = "bookings"


class ExpenseCategory(str, Enum):
    DECOR = "decor"
    CATERING = "catering"
    LABOR = "labor"
    MISC = "misc"


EXPENSE_CATEGORIES = tuple(category.value for category in ExpenseCategory)

# Messages used when a required field is missing from a request body
REQUIRED_MESSAGES = {
    "description": "Please provide expense description",
    "amount": "Please provide expense amount",
    "category": "Please provide expense category",
    "addedBy": "Please provide the name of the person who added this expense",
}


def utcnow() -> datetime:
    # BSON dates only keep milliseconds
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class ExpenseBase(BaseModel):
    """
    Fields shared by every representation of an expense.

    A booking reference is optional so that generic expenses not tied
    to a specific event can be recorded.
    """
    booking_id: Optional[str] = Field(default=None, alias="bookingId")
    description: str
    amount: float
    category: ExpenseCategory
    date: datetime = Field(default_factory=utcnow)
    added_by: str = Field(..., alias="addedBy")

    class Config:
        populate_by_name = True
        from_attributes = True

    @field_validator("booking_id")
    @classmethod
    def check_booking_id(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not ObjectId.is_valid(value):
            raise ValueError("Invalid booking id")
        return value

    @field_validator("description")
    @classmethod
    def check_description(cls, value: str) -> str:
        if len(value) < 3:
            raise ValueError("Description must be at least 3 characters")
        return value

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Amount must be positive")
        return value

    @field_validator("category", mode="before")
    @classmethod
    def check_category(cls, value: Any) -> Any:
        if isinstance(value, ExpenseCategory):
            return value
        if value not in EXPENSE_CATEGORIES:
            raise ValueError(f"Category must be one of: {', '.join(EXPENSE_CATEGORIES)}")
        return value

    @field_validator("added_by")
    @classmethod
    def check_added_by(cls, value: str) -> str:
        if len(value) < 2:
            raise ValueError("Added by must be at least 2 characters")
        return value


class ExpenseCreate(ExpenseBase):
    """Request body for POST /api/expenses."""


class ExpenseUpdate(ExpenseBase):
    """Request body for PUT /api/expenses/{id}; an omitted date or bookingId keeps the stored one."""
    date: Optional[datetime] = None


class Expense(ExpenseBase):
    """
    Represents a stored expense record.
    """
    id: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


# --- Document conversion ---

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # The driver hands back naive datetimes that are already UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_document(expense: ExpenseBase) -> Dict[str, Any]:
    """Converts a validated model into the dict stored in MongoDB (without _id)."""
    doc = expense.model_dump(by_alias=True, exclude_none=True)
    doc["category"] = expense.category.value
    if expense.booking_id:
        doc["bookingId"] = ObjectId(expense.booking_id)
    return doc


def from_document(doc: Dict[str, Any]) -> Expense:
    """Builds an Expense from a raw MongoDB document."""
    data = dict(doc)
    if "_id" in data:
        data["id"] = str(data.pop("_id"))
    if isinstance(data.get("bookingId"), ObjectId):
        data["bookingId"] = str(data["bookingId"])
    for key in ("date", "createdAt", "updatedAt"):
        if isinstance(data.get(key), datetime):
            data[key] = _as_utc(data[key])
    return Expense.model_validate(data)


# --- Collection registration ---

EXPENSE_JSON_SCHEMA = {
    "bsonType": "object",
    "required": ["description", "amount", "category", "date", "addedBy"],
    "properties": {
        "bookingId": {"bsonType": ["objectId", "null"]},
        "description": {"bsonType": "string", "minLength": 3},
        "amount": {
            "bsonType": ["double", "int", "long", "decimal"],
            "minimum": 0,
            "exclusiveMinimum": True,
        },
        "category": {"enum": list(EXPENSE_CATEGORIES)},
        "date": {"bsonType": "date"},
        "addedBy": {"bsonType": "string", "minLength": 2},
        "createdAt": {"bsonType": "date"},
        "updatedAt": {"bsonType": "date"},
    },
}


async def register_expense_collection(db: AsyncIOMotorDatabase) -> AsyncIOMotorCollection:
    """
    Registers the expenses collection with its $jsonSchema validator.

    Safe to call on every startup: an existing collection is reused as-is
    and its validator is never redefined. Index creation is idempotent.
    """
    existing = await db.list_collection_names(filter={"name": EXPENSES_COLLECTION})
    if EXPENSES_COLLECTION in existing:
        logger.info(f"Collection '{EXPENSES_COLLECTION}' already registered, reusing it.")
        collection = db.get_collection(EXPENSES_COLLECTION)
    else:
        try:
            collection = await db.create_collection(
                EXPENSES_COLLECTION,
                validator={"$jsonSchema": EXPENSE_JSON_SCHEMA},
            )
            logger.info(f"Created collection '{EXPENSES_COLLECTION}' with schema validator.")
        except CollectionInvalid:
            # Another worker created it between the check and the create
            logger.info(f"Collection '{EXPENSES_COLLECTION}' was created concurrently, reusing it.")
            collection = db.get_collection(EXPENSES_COLLECTION)

    await collection.create_index("bookingId")
    await collection.create_index([("date", -1)])
    return collection
