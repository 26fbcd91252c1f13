"""Tests for the expense form workflow."""
import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from forms.expense_form import (
    LISTING_PATH,
    LOAD_FAILED_MESSAGE,
    CreateIntent,
    EditIntent,
    ExpenseForm,
    FormStatus,
    to_iso_timestamp,
)
from models.session import Session, UNKNOWN_USER

EXISTING = {
    "id": "65a000000000000000000001",
    "description": "Flowers",
    "amount": 1500,
    "category": "decor",
    "date": "2024-01-01",
    "addedBy": "Alice",
}


class Recorder:
    """Request handler that records calls and replays canned responses."""

    def __init__(self, *responses):
        self.requests = []
        self.responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _fill(form, **overrides):
    values = {
        "description": "Stage flowers",
        "amount": "2500",
        "category": "decor",
        "date": datetime(2024, 3, 5, 10, 30, tzinfo=timezone.utc),
    }
    values.update(overrides)
    form.set_values(values)


# --- Create mode ---

def test_create_defaults_use_session_identity(make_client):
    form = ExpenseForm(CreateIntent(), make_client(Recorder()), session=Session.for_user("Bob"))

    assert form.status is FormStatus.READY
    assert form.values["addedBy"] == "Bob"
    assert form.values["category"] == "misc"
    assert form.values["amount"] == 0
    assert form.values["description"] == ""
    assert isinstance(form.values["date"], datetime)
    assert form.title == "Add New Expense"
    assert form.submit_label == "Add Expense"


def test_anonymous_session_uses_sentinel(make_client):
    form = ExpenseForm(CreateIntent(), make_client(Recorder()))
    assert form.values["addedBy"] == UNKNOWN_USER


def test_late_session_updates_added_by_in_create_mode(make_client):
    form = ExpenseForm(CreateIntent(), make_client(Recorder()))

    form.session_changed(Session.for_user("Bob"))

    assert form.values["addedBy"] == "Bob"


def test_unknown_field_is_rejected(make_client):
    form = ExpenseForm(CreateIntent(), make_client(Recorder()))
    with pytest.raises(KeyError):
        form.set_value("bookingId", "x")


@pytest.mark.asyncio
async def test_zero_amount_blocks_submission_without_network(make_client):
    recorder = Recorder()
    form = ExpenseForm(CreateIntent(), make_client(recorder), session=Session.for_user("Bob"))
    _fill(form, amount=0)

    assert await form.submit() is False

    assert recorder.requests == []
    assert form.errors == {"amount": "Amount must be greater than 0"}
    assert form.status is FormStatus.READY


@pytest.mark.asyncio
async def test_all_invalid_fields_are_flagged_at_once(make_client):
    recorder = Recorder()
    form = ExpenseForm(CreateIntent(), make_client(recorder))
    form.set_values({"description": "ab", "amount": -1, "category": "food", "date": None, "addedBy": "A"})

    assert await form.submit() is False

    assert set(form.errors) == {"description", "amount", "category", "date", "addedBy"}
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_create_round_trip(make_client):
    recorder = Recorder(httpx.Response(201, json={"id": "abc"}))
    form = ExpenseForm(CreateIntent(), make_client(recorder), session=Session.for_user("Bob"))
    _fill(form, amount="0.01", description="Tea")

    assert await form.submit() is True

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/expenses"
    assert json.loads(request.content) == {
        "description": "Tea",
        "amount": 0.01,
        "category": "decor",
        "date": "2024-03-05T10:30:00.000Z",
        "addedBy": "Bob",
    }
    assert form.notifier.last.description == "Expense created successfully"
    assert form.navigator.location == LISTING_PATH
    assert form.navigator.refresh_requested is True
    assert form.status is FormStatus.NAVIGATED_AWAY


@pytest.mark.asyncio
async def test_added_by_override_is_sent(make_client):
    recorder = Recorder(httpx.Response(201, json={}))
    form = ExpenseForm(CreateIntent(), make_client(recorder), session=Session.for_user("Bob"))
    _fill(form, addedBy="Front desk")

    await form.submit()

    assert json.loads(recorder.requests[0].content)["addedBy"] == "Front desk"


@pytest.mark.asyncio
async def test_server_message_is_shown_and_values_kept(make_client):
    recorder = Recorder(httpx.Response(400, json={"message": "Amount must be positive"}))
    form = ExpenseForm(CreateIntent(), make_client(recorder), session=Session.for_user("Bob"))
    _fill(form)

    assert await form.submit() is False

    assert form.notifier.last.description == "Amount must be positive"
    assert form.notifier.last.variant == "destructive"
    assert form.values["description"] == "Stage flowers"
    assert form.values["amount"] == "2500"
    assert form.status is FormStatus.READY
    assert form.submit_disabled is False
    assert form.navigator.location is None


@pytest.mark.asyncio
async def test_generic_message_when_body_has_none(make_client):
    recorder = Recorder(httpx.Response(500, text="Internal Server Error"))
    form = ExpenseForm(CreateIntent(), make_client(recorder), session=Session.for_user("Bob"))
    _fill(form)

    await form.submit()

    assert form.notifier.last.description == "Failed to create expense. Please try again."


@pytest.mark.asyncio
async def test_network_error_becomes_notification(make_client):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    form = ExpenseForm(CreateIntent(), make_client(handler), session=Session.for_user("Bob"))
    _fill(form)

    assert await form.submit() is False
    assert form.notifier.last.description == "Failed to create expense. Please try again."
    assert form.status is FormStatus.READY


@pytest.mark.asyncio
async def test_only_one_submission_in_flight(make_client):
    release = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        await release.wait()
        return httpx.Response(201, json={})

    form = ExpenseForm(CreateIntent(), make_client(handler), session=Session.for_user("Bob"))
    _fill(form)

    first = asyncio.create_task(form.submit())
    await asyncio.sleep(0.01)
    assert form.busy is True
    assert form.submit_disabled is True
    assert await form.submit() is False

    release.set()
    assert await first is True
    assert len(calls) == 1


def test_cancel_navigates_without_network(make_client):
    recorder = Recorder()
    form = ExpenseForm(CreateIntent(), make_client(recorder))
    _fill(form)

    form.cancel()

    assert recorder.requests == []
    assert form.navigator.location == LISTING_PATH
    assert form.status is FormStatus.NAVIGATED_AWAY


# --- Edit mode ---

@pytest.mark.asyncio
async def test_edit_load_populates_fields_and_keeps_added_by(make_client):
    recorder = Recorder(httpx.Response(200, json=EXISTING))
    form = ExpenseForm(EditIntent(EXISTING["id"]), make_client(recorder), session=Session.for_user("Bob"))
    assert form.status is FormStatus.INITIAL_LOADING

    assert await form.load() is True

    assert recorder.requests[0].url.path == f"/api/expenses/{EXISTING['id']}"
    assert form.values == {
        "description": "Flowers",
        "amount": 1500,
        "category": "decor",
        "date": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "addedBy": "Alice",
    }
    assert form.status is FormStatus.READY

    form.session_changed(Session.for_user("Bob"))
    assert form.values["addedBy"] == "Alice"


@pytest.mark.asyncio
async def test_fetch_failure_shows_error_and_populates_nothing(make_client):
    recorder = Recorder(httpx.Response(500, json={"message": "boom"}))
    form = ExpenseForm(EditIntent(EXISTING["id"]), make_client(recorder), session=Session.for_user("Bob"))
    defaults = dict(form.values)

    assert await form.load() is False

    assert form.status is FormStatus.LOAD_FAILED
    assert form.notifier.last.description == LOAD_FAILED_MESSAGE
    assert form.values["description"] == defaults["description"] == ""
    assert form.values["addedBy"] == "Bob"
    assert form.submit_disabled is True


@pytest.mark.asyncio
async def test_malformed_record_counts_as_fetch_failure(make_client):
    recorder = Recorder(httpx.Response(200, json={"description": "Flowers"}))
    form = ExpenseForm(EditIntent(EXISTING["id"]), make_client(recorder))

    assert await form.load() is False
    assert form.status is FormStatus.LOAD_FAILED


@pytest.mark.asyncio
async def test_edit_submit_uses_put(make_client):
    recorder = Recorder(
        httpx.Response(200, json=EXISTING),
        httpx.Response(200, json=EXISTING),
    )
    form = ExpenseForm(EditIntent(EXISTING["id"]), make_client(recorder))
    await form.load()
    form.set_value("amount", 1750)

    assert await form.submit() is True

    request = recorder.requests[1]
    assert request.method == "PUT"
    assert request.url.path == f"/api/expenses/{EXISTING['id']}"
    body = json.loads(request.content)
    assert body["amount"] == 1750
    assert body["addedBy"] == "Alice"
    assert body["date"] == "2024-01-01T00:00:00.000Z"
    assert form.notifier.last.description == "Expense updated successfully"


@pytest.mark.asyncio
async def test_edit_failure_without_message_names_update(make_client):
    recorder = Recorder(httpx.Response(200, json=EXISTING), httpx.Response(502))
    form = ExpenseForm(EditIntent(EXISTING["id"]), make_client(recorder))
    await form.load()

    await form.submit()

    assert form.notifier.last.description == "Failed to update expense. Please try again."


@pytest.mark.asyncio
async def test_mount_runs_initial_load(make_client):
    recorder = Recorder(httpx.Response(200, json=EXISTING))
    form = ExpenseForm(EditIntent(EXISTING["id"]), make_client(recorder))

    task = form.mount()
    await task

    assert form.status is FormStatus.READY
    assert form.values["description"] == "Flowers"


@pytest.mark.asyncio
async def test_mount_does_nothing_in_create_mode(make_client):
    form = ExpenseForm(CreateIntent(), make_client(Recorder()))
    assert form.mount() is None


@pytest.mark.asyncio
async def test_teardown_cancels_pending_load(make_client):
    started = asyncio.Event()

    async def handler(request):
        started.set()
        await asyncio.sleep(10)
        return httpx.Response(200, json=EXISTING)

    form = ExpenseForm(EditIntent(EXISTING["id"]), make_client(handler))
    task = form.mount()
    await started.wait()

    await form.teardown()

    assert task.cancelled()
    assert form.values["description"] == ""
    assert form.notifier.toasts == []
    assert form.status is not FormStatus.INITIAL_LOADING


def test_iso_timestamp_for_naive_values():
    assert to_iso_timestamp(datetime(2024, 1, 1, 12, 0)) == "2024-01-01T12:00:00.000Z"
