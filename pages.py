"""Server-rendered dashboard pages for expenses"""
import logging
from contextlib import asynccontextmanager
from html import escape
from typing import Annotated, AsyncIterator, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from config import settings
from forms.expense_form import (
    FORM_FIELDS,
    LISTING_PATH,
    CreateIntent,
    EditIntent,
    ExpenseForm,
    FormStatus,
)
from forms.feedback import Toast
from forms.rendering import CATEGORY_LABELS, render_expense_form, render_toasts
from models.expense import Expense
from models.session import Session, current_user_name
from routes import ExpensesCollectionDep
from services import expenses_service

router = APIRouter(tags=["pages"])
logger = logging.getLogger(__name__)

NEW_EXPENSE_PATH = f"{LISTING_PATH}/new"


def get_session_identity(request: Request) -> Optional[Session]:
    """Reads the signed-in user forwarded by the auth proxy; None means anonymous."""
    return Session.for_user(request.headers.get(settings.session_user_header))


SessionDep = Annotated[Optional[Session], Depends(get_session_identity)]


@asynccontextmanager
async def api_client(request: Request) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client that reaches this app's JSON API in-process."""
    transport = httpx.ASGITransport(app=request.app)
    async with httpx.AsyncClient(transport=transport, base_url=str(request.base_url)) as client:
        yield client


# --- Layout helpers ---

def _layout(title: str, body: str, session: Optional[Session], toasts: Sequence[Toast] = ()) -> str:
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{escape(title)}</title>
  <link rel="stylesheet" href="/static/styles.css">
</head>
<body>
  <header class="topbar">
    <a href="{LISTING_PATH}">Expenses</a>
    <span class="user">{escape(current_user_name(session))}</span>
  </header>
  <main class="page">
    {render_toasts(list(toasts))}
    {body}
  </main>
</body>
</html>"""


def _back_link() -> str:
    return f'<div class="nav"><a class="back" href="{LISTING_PATH}">&larr; Back to Expenses</a></div>'


def _form_page(form: ExpenseForm, action_url: str, status_code: int = 200) -> HTMLResponse:
    body = (
        f"{_back_link()}"
        f'<div class="heading"><h1>{escape(form.title)}</h1><p class="muted">{escape(form.subtitle)}</p></div>'
        f"{render_expense_form(form, action_url)}"
    )
    return HTMLResponse(_layout(form.title, body, form.session, form.notifier.toasts), status_code=status_code)


def _load_failed_page(form: ExpenseForm) -> HTMLResponse:
    body = f'{_back_link()}<div class="heading"><h1>{escape(form.title)}</h1></div>'
    return HTMLResponse(_layout(form.title, body, form.session, form.notifier.toasts))


def _redirect_to_listing(form: ExpenseForm) -> RedirectResponse:
    location = form.navigator.location or LISTING_PATH
    toast = form.notifier.last
    if toast is not None:
        location = f"{location}?{urlencode({'notice': toast.description})}"
    return RedirectResponse(location, status_code=303)


async def _submitted_values(request: Request) -> Dict[str, str]:
    data = await request.form()
    return {field: str(data[field]) for field in FORM_FIELDS if field in data}


# --- Form pages ---

@router.get(NEW_EXPENSE_PATH, response_class=HTMLResponse)
async def new_expense_page(request: Request, session: SessionDep):
    async with api_client(request) as client:
        form = ExpenseForm(CreateIntent(), client, session=session)
    return _form_page(form, NEW_EXPENSE_PATH)


@router.post(NEW_EXPENSE_PATH, response_class=HTMLResponse)
async def create_expense_page(request: Request, session: SessionDep):
    submitted = await _submitted_values(request)
    async with api_client(request) as client:
        form = ExpenseForm(CreateIntent(), client, session=session)
        form.set_values(submitted)
        saved = await form.submit()
    if saved:
        return _redirect_to_listing(form)
    return _form_page(form, NEW_EXPENSE_PATH, status_code=400)


@router.get(LISTING_PATH + "/{expense_id}/edit", response_class=HTMLResponse)
async def edit_expense_page(expense_id: str, request: Request, session: SessionDep):
    async with api_client(request) as client:
        form = ExpenseForm(EditIntent(expense_id), client, session=session)
        task = form.mount()
        try:
            await task
        finally:
            await form.teardown()
    if form.status is FormStatus.LOAD_FAILED:
        return _load_failed_page(form)
    return _form_page(form, f"{LISTING_PATH}/{expense_id}/edit")


@router.post(LISTING_PATH + "/{expense_id}/edit", response_class=HTMLResponse)
async def update_expense_page(expense_id: str, request: Request, session: SessionDep):
    submitted = await _submitted_values(request)
    async with api_client(request) as client:
        form = ExpenseForm(EditIntent(expense_id), client, session=session)
        if not await form.load():
            return _load_failed_page(form)
        form.set_values(submitted)
        saved = await form.submit()
    if saved:
        return _redirect_to_listing(form)
    return _form_page(form, f"{LISTING_PATH}/{expense_id}/edit", status_code=400)


@router.post(LISTING_PATH + "/{expense_id}/delete")
async def delete_expense_page(expense_id: str, request: Request):
    async with api_client(request) as client:
        response = await client.delete(f"/api/expenses/{expense_id}")
    if response.is_success:
        query = urlencode({"notice": "Expense deleted successfully"})
    else:
        logger.warning(f"Delete of expense {expense_id} failed with HTTP {response.status_code}")
        query = urlencode({"error": "Failed to delete expense. Please try again."})
    return RedirectResponse(f"{LISTING_PATH}?{query}", status_code=303)


# --- Listing view ---

def _expense_rows(expenses: List[Expense]) -> str:
    if not expenses:
        return '<tr><td colspan="6" class="muted">No expenses recorded yet.</td></tr>'
    rows = []
    for expense in expenses:
        rows.append(
            "<tr>"
            f"<td>{expense.date.strftime('%Y-%m-%d')}</td>"
            f"<td>{escape(expense.description)}</td>"
            f"<td>{CATEGORY_LABELS[expense.category.value]}</td>"
            f'<td class="num">₹{expense.amount:,.2f}</td>'
            f"<td>{escape(expense.added_by)}</td>"
            f'<td class="actions"><a href="{LISTING_PATH}/{expense.id}/edit">Edit</a>'
            f'<form method="post" action="{LISTING_PATH}/{expense.id}/delete">'
            '<button type="submit" class="link danger">Delete</button></form></td>'
            "</tr>"
        )
    return "".join(rows)


def _summary_block(summary: Dict) -> str:
    cells = "".join(
        f'<div class="stat"><span>{label}</span><strong>₹{summary["by_category"][key]:,.2f}</strong></div>'
        for key, label in CATEGORY_LABELS.items()
    )
    return (
        f'<div class="summary">{cells}'
        f'<div class="stat total"><span>Total ({summary["count"]})</span><strong>₹{summary["total"]:,.2f}</strong></div></div>'
    )


@router.get(LISTING_PATH, response_class=HTMLResponse)
async def expenses_listing_page(
    collection: ExpensesCollectionDep,
    session: SessionDep,
    category: Optional[str] = Query(None),
    notice: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
):
    try:
        expenses = await expenses_service.list_expenses(collection, category=category or None)
        summary = await expenses_service.summarize_expenses(collection)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except ConnectionError as ce:
        logger.error(f"Connection error rendering expenses listing: {ce}")
        raise HTTPException(status_code=503, detail="Database connection error.")

    toasts = []
    if notice:
        toasts.append(Toast(title="Success", description=notice))
    if error:
        toasts.append(Toast(title="Error", description=error, variant="destructive"))

    body = f"""
<div class="heading">
  <h1>Expenses</h1>
  <a class="button" href="{NEW_EXPENSE_PATH}">Add Expense</a>
</div>
{_summary_block(summary)}
<table class="expenses">
  <thead><tr><th>Date</th><th>Description</th><th>Category</th><th>Amount</th><th>Added By</th><th></th></tr></thead>
  <tbody>{_expense_rows(expenses)}</tbody>
</table>"""
    return HTMLResponse(_layout("Expenses", body, session, toasts))
