"""Notification and navigation collaborators used by forms"""
import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Toast:
    title: str
    description: str
    variant: str = "default"


class Notifier:
    """Collects user-visible notifications in the order they were raised."""

    def __init__(self):
        self.toasts: List[Toast] = []

    def success(self, description: str) -> Toast:
        return self._push(Toast(title="Success", description=description))

    def error(self, description: str) -> Toast:
        return self._push(Toast(title="Error", description=description, variant="destructive"))

    @property
    def last(self) -> Optional[Toast]:
        return self.toasts[-1] if self.toasts else None

    def _push(self, toast: Toast) -> Toast:
        logger.debug(f"Notification [{toast.variant}] {toast.title}: {toast.description}")
        self.toasts.append(toast)
        return toast


class Navigator:
    """Records where the user was sent and whether the target must reload its data."""

    def __init__(self):
        self.location: Optional[str] = None
        self.refresh_requested = False

    def push(self, path: str) -> None:
        logger.debug(f"Navigating to {path}")
        self.location = path

    def refresh(self) -> None:
        self.refresh_requested = True
