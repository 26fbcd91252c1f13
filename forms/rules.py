"""Declarative field rules evaluated when the expense form is submitted"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from models.expense import EXPENSE_CATEGORIES


@dataclass(frozen=True)
class FieldRule:
    """coerce turns the raw form value into its typed form, check decides validity.

    A coerce failure (ValueError/TypeError) reports coerce_message when set,
    otherwise message.
    """
    coerce: Callable[[Any], Any]
    check: Callable[[Any], bool]
    message: str
    coerce_message: Optional[str] = None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _choice(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return _text(value)


def to_amount(value: Any) -> float:
    """Numeric coercion; blank input counts as 0 like an empty number field."""
    if isinstance(value, bool):
        raise TypeError("Booleans are not amounts")
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    result = float(value)
    if math.isnan(result) or math.isinf(result):
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def parse_date(value: Any) -> datetime:
    """Accepts datetimes, dates and ISO-8601 strings. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        result = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a date: {value!r}")
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


EXPENSE_FIELD_RULES: Dict[str, FieldRule] = {
    "description": FieldRule(
        coerce=_text,
        check=lambda value: len(value) >= 3,
        message="Description must be at least 3 characters",
    ),
    "amount": FieldRule(
        coerce=to_amount,
        check=lambda value: value > 0,
        message="Amount must be greater than 0",
        coerce_message="Amount must be a number",
    ),
    "category": FieldRule(
        coerce=_choice,
        check=lambda value: value in EXPENSE_CATEGORIES,
        message="Please select a category",
    ),
    "date": FieldRule(
        coerce=parse_date,
        check=lambda value: True,
        message="Please select a date",
    ),
    "addedBy": FieldRule(
        coerce=_text,
        check=lambda value: len(value) >= 2,
        message="Added by must be at least 2 characters",
    ),
}


def validate_fields(
    values: Mapping[str, Any],
    rules: Mapping[str, FieldRule] = EXPENSE_FIELD_RULES,
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """
    Runs every rule against the values.

    Returns (cleaned, errors): cleaned holds the coerced values of the
    fields that passed, errors maps each failing field to its message.
    All fields are evaluated so every violation is reported at once.
    """
    cleaned: Dict[str, Any] = {}
    errors: Dict[str, str] = {}
    for field, rule in rules.items():
        try:
            value = rule.coerce(values.get(field))
        except (TypeError, ValueError):
            errors[field] = rule.coerce_message or rule.message
            continue
        if rule.check(value):
            cleaned[field] = value
        else:
            errors[field] = rule.message
    return cleaned, errors
