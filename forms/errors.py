"""Errors raised inside the expense form workflow"""
from typing import Dict


class FormError(Exception):
    """Base class for form workflow failures."""


class FormValidationError(FormError):
    """One or more fields failed their rule; nothing is sent."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{field}: {message}" for field, message in self.errors.items()))


class FetchError(FormError):
    """The record to edit could not be loaded."""


class SubmissionError(FormError):
    """The create or update request was rejected or never completed.

    The message is what the user gets to see.
    """
