"""API Routes for expenses"""
import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from motor.motor_asyncio import AsyncIOMotorCollection

from models.expense import Expense, ExpenseCreate, ExpenseUpdate
from services import expenses_service

router = APIRouter()
logger = logging.getLogger(__name__)


# --- Dependency Functions ---
def get_expenses_collection(request: Request) -> AsyncIOMotorCollection:
    """Dependency to get the MongoDB expenses collection from the request state."""
    collection = getattr(request.state, "expenses_collection", None)
    if collection is None:
        logger.error("Expenses collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection


def get_bookings_collection(request: Request) -> Optional[AsyncIOMotorCollection]:
    """Bookings are only needed to verify references, so absence is tolerated here."""
    return getattr(request.state, "bookings_collection", None)


# Type hints for the dependencies
ExpensesCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_expenses_collection)]
BookingsCollectionDep = Annotated[Optional[AsyncIOMotorCollection], Depends(get_bookings_collection)]


# --- API Routes ---

@router.get("/expenses", response_model=List[Expense], summary="List Expenses", description="Retrieves expense records, sorted by date descending by default.")
async def get_expenses(
    collection: ExpensesCollectionDep,
    booking_id: Optional[str] = Query(None, alias="bookingId", description="Only expenses linked to this booking."),
    category: Optional[str] = Query(None, description="Only expenses of this category."),
    sort_by: str = Query("date", description="Field to sort by (e.g., 'date', 'amount')."),
    sort_order: int = Query(-1, description="Sort order: 1 for ascending, -1 for descending."),
) -> List[Expense]:
    logger.info(f"GET /expenses called. bookingId={booking_id} category={category} sort={sort_by}/{sort_order}")
    try:
        return await expenses_service.list_expenses(
            collection, booking_id=booking_id, category=category, sort_by=sort_by, sort_order=sort_order
        )
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except ConnectionError as ce:
        logger.error(f"Connection error fetching expenses: {ce}")
        raise HTTPException(status_code=503, detail="Database connection error.")


@router.get("/expenses/summary", summary="Expense Totals", description="Totals per category, optionally for one booking.")
async def get_expenses_summary(
    collection: ExpensesCollectionDep,
    booking_id: Optional[str] = Query(None, alias="bookingId"),
):
    try:
        return await expenses_service.summarize_expenses(collection, booking_id=booking_id)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except ConnectionError as ce:
        logger.error(f"Connection error summarizing expenses: {ce}")
        raise HTTPException(status_code=503, detail="Database connection error.")


@router.get("/expenses/{expense_id}", response_model=Expense, summary="Get Expense")
async def get_expense(expense_id: str, collection: ExpensesCollectionDep) -> Expense:
    try:
        expense = await expenses_service.get_expense(collection, expense_id)
    except ConnectionError as ce:
        logger.error(f"Connection error fetching expense {expense_id}: {ce}")
        raise HTTPException(status_code=503, detail="Database connection error.")
    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


@router.post("/expenses", response_model=Expense, status_code=status.HTTP_201_CREATED, summary="Create Expense")
async def create_expense(
    expense_in: ExpenseCreate,
    collection: ExpensesCollectionDep,
    bookings: BookingsCollectionDep,
) -> Expense:
    logger.info(f"POST /expenses called by {expense_in.added_by}: {expense_in.description[:50]}")
    try:
        return await expenses_service.create_expense(collection, bookings, expense_in)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except ConnectionError as ce:
        logger.error(f"ConnectionError creating expense: {ce}")
        raise HTTPException(status_code=503, detail="Database connection error.")


@router.put("/expenses/{expense_id}", response_model=Expense, summary="Update Expense")
async def update_expense(
    expense_id: str,
    expense_in: ExpenseUpdate,
    collection: ExpensesCollectionDep,
    bookings: BookingsCollectionDep,
) -> Expense:
    logger.info(f"PUT /expenses/{expense_id} called.")
    try:
        expense = await expenses_service.update_expense(collection, bookings, expense_id, expense_in)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except ConnectionError as ce:
        logger.error(f"ConnectionError updating expense {expense_id}: {ce}")
        raise HTTPException(status_code=503, detail="Database connection error.")
    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


@router.delete("/expenses/{expense_id}", summary="Delete Expense")
async def delete_expense(expense_id: str, collection: ExpensesCollectionDep):
    logger.warning(f"DELETE /expenses/{expense_id} called.")
    try:
        deleted = await expenses_service.delete_expense(collection, expense_id)
    except ConnectionError as ce:
        logger.error(f"ConnectionError deleting expense {expense_id}: {ce}")
        raise HTTPException(status_code=503, detail="Database connection error.")
    if not deleted:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"status": "success", "deleted_id": expense_id}
