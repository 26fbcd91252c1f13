"""Create/edit workflow for expense records."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set, Union

import httpx

from forms.errors import FetchError, FormValidationError, SubmissionError
from forms.feedback import Navigator, Notifier
from forms.rules import parse_date, validate_fields
from models.expense import ExpenseCategory, utcnow
from models.session import Session, current_user_name

logger = logging.getLogger(__name__)

API_PATH = "/api/expenses"
LISTING_PATH = "/dashboard/expenses"
LOAD_FAILED_MESSAGE = "Failed to load necessary data. Please try again."

FORM_FIELDS = ("description", "amount", "category", "date", "addedBy")


@dataclass(frozen=True)
class CreateIntent:
    pass


@dataclass(frozen=True)
class EditIntent:
    expense_id: str


FormIntent = Union[CreateIntent, EditIntent]


class FormStatus(str, Enum):
    INITIAL_LOADING = "initial-loading"
    LOAD_FAILED = "load-failed"
    READY = "ready"
    SUBMITTING = "submitting"
    NAVIGATED_AWAY = "navigated-away"


def to_iso_timestamp(value: datetime) -> str:
    """UTC timestamp with millisecond precision and a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ExpenseForm:
    """
    State machine behind the expense form.

    The intent decides the mode: CreateIntent starts `ready` with defaults
    derived from the session, EditIntent starts `initial-loading` until the
    record has been fetched. The session is passed in explicitly and can be
    swapped later through session_changed().

    Only one submission runs at a time; submit() is ignored unless the form
    is `ready`.
    """

    def __init__(
        self,
        intent: FormIntent,
        client: httpx.AsyncClient,
        notifier: Optional[Notifier] = None,
        navigator: Optional[Navigator] = None,
        session: Optional[Session] = None,
    ):
        self.intent = intent
        self.client = client
        self.notifier = notifier or Notifier()
        self.navigator = navigator or Navigator()
        self.session = session
        self.values: Dict[str, Any] = self.default_values(session)
        self.errors: Dict[str, str] = {}
        self.status = FormStatus.INITIAL_LOADING if self.is_editing else FormStatus.READY
        self._tasks: Set[asyncio.Task] = set()
        self._torn_down = False

    @staticmethod
    def default_values(session: Optional[Session] = None) -> Dict[str, Any]:
        return {
            "description": "",
            "amount": 0,
            "category": ExpenseCategory.MISC.value,
            "date": utcnow(),
            "addedBy": current_user_name(session),
        }

    @property
    def is_editing(self) -> bool:
        return isinstance(self.intent, EditIntent)

    @property
    def expense_id(self) -> Optional[str]:
        return self.intent.expense_id if isinstance(self.intent, EditIntent) else None

    @property
    def action(self) -> str:
        return "update" if self.is_editing else "create"

    @property
    def busy(self) -> bool:
        return self.status is FormStatus.SUBMITTING

    @property
    def submit_disabled(self) -> bool:
        return self.status is not FormStatus.READY

    @property
    def title(self) -> str:
        return "Edit Expense" if self.is_editing else "Add New Expense"

    @property
    def subtitle(self) -> str:
        return "Update expense details" if self.is_editing else "Record a new expense for your business"

    @property
    def submit_label(self) -> str:
        return "Update Expense" if self.is_editing else "Add Expense"

    # --- Lifetime ---

    def mount(self) -> Optional[asyncio.Task]:
        """Starts the initial load in edit mode. The task belongs to the form."""
        if not self.is_editing:
            return None
        task = asyncio.create_task(self.load())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def teardown(self) -> None:
        """Cancels owned tasks; results arriving afterwards are dropped."""
        self._torn_down = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- Loading ---

    async def load(self) -> bool:
        """Fetches the record being edited and copies it into the form."""
        if not self.is_editing:
            return True
        try:
            values = await self._fetch_record()
            if self._torn_down:
                logger.debug(f"Discarding late load result for expense {self.expense_id}.")
                return False
            # addedBy comes from the record, never from the current session
            self.values = values
            self.errors = {}
            self.status = FormStatus.READY
            return True
        except FetchError as e:
            logger.error(f"Error fetching expense {self.expense_id}: {e}")
            if not self._torn_down:
                self.notifier.error(LOAD_FAILED_MESSAGE)
            return False
        finally:
            if self.status is FormStatus.INITIAL_LOADING:
                self.status = FormStatus.LOAD_FAILED

    async def _fetch_record(self) -> Dict[str, Any]:
        url = f"{API_PATH}/{self.expense_id}"
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise FetchError(f"GET {url} failed: {e}") from e
        if not response.is_success:
            raise FetchError(f"Failed to fetch expense (HTTP {response.status_code})")
        try:
            record = response.json()
            return {
                "description": record["description"],
                "amount": record["amount"],
                "category": record["category"],
                "date": parse_date(record["date"]),
                "addedBy": record["addedBy"],
            }
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Malformed expense payload: {e}") from e

    # --- Editing ---

    def session_changed(self, session: Optional[Session]) -> None:
        """Keeps addedBy in sync with a late session, in create mode only."""
        self.session = session
        if not self.is_editing and session is not None and session.user_name:
            self.values["addedBy"] = session.user_name

    def set_value(self, field: str, value: Any) -> None:
        if field not in FORM_FIELDS:
            raise KeyError(f"Unknown expense form field: {field}")
        self.values[field] = value

    def set_values(self, values: Mapping[str, Any]) -> None:
        for field, value in values.items():
            self.set_value(field, value)

    def build_payload(self) -> Dict[str, Any]:
        """Validates all fields and returns the JSON body to send."""
        cleaned, errors = validate_fields(self.values)
        self.errors = errors
        if errors:
            raise FormValidationError(errors)
        return {
            "description": cleaned["description"],
            "amount": cleaned["amount"],
            "category": cleaned["category"],
            "date": to_iso_timestamp(cleaned["date"]),
            "addedBy": cleaned["addedBy"],
        }

    # --- Submitting ---

    async def submit(self) -> bool:
        """
        Validates and sends the form.

        Returns True once the record was saved and the user was sent back
        to the listing. Any failure leaves the entered values untouched and
        the form `ready` again.
        """
        if self.status is not FormStatus.READY:
            logger.warning(f"Ignoring submit while the expense form is {self.status.value}.")
            return False
        try:
            payload = self.build_payload()
        except FormValidationError as e:
            logger.info(f"Expense form rejected: {e}")
            return False

        self.status = FormStatus.SUBMITTING
        try:
            await self._send(payload)
            self.notifier.success(f"Expense {'updated' if self.is_editing else 'created'} successfully")
            self.navigator.push(LISTING_PATH)
            self.navigator.refresh()
            self.status = FormStatus.NAVIGATED_AWAY
            return True
        except SubmissionError as e:
            logger.error(f"Error saving expense: {e}")
            self.notifier.error(str(e))
            return False
        finally:
            if self.status is FormStatus.SUBMITTING:
                self.status = FormStatus.READY

    async def _send(self, payload: Dict[str, Any]) -> httpx.Response:
        if self.is_editing:
            method, url = "PUT", f"{API_PATH}/{self.expense_id}"
        else:
            method, url = "POST", API_PATH
        fallback = f"Failed to {self.action} expense. Please try again."

        try:
            response = await self.client.request(method, url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise SubmissionError(fallback) from e

        if not response.is_success:
            logger.warning(f"{method} {url} returned HTTP {response.status_code}")
            raise SubmissionError(self._error_message(response) or fallback)
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return None

    def cancel(self) -> None:
        """Drops pending edits and returns to the listing; nothing is sent."""
        logger.info(f"Expense form cancelled ({self.action}).")
        self.navigator.push(LISTING_PATH)
        self.status = FormStatus.NAVIGATED_AWAY
