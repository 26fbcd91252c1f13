"""Session identity supplied by the authentication layer"""
from typing import Optional

from pydantic import BaseModel

UNKNOWN_USER = "Unknown User"


class SessionUser(BaseModel):
    name: Optional[str] = None


class Session(BaseModel):
    """Mirrors the `{user: {name}}` payload of the auth provider."""
    user: Optional[SessionUser] = None

    @property
    def user_name(self) -> Optional[str]:
        if self.user and self.user.name:
            return self.user.name
        return None

    @classmethod
    def for_user(cls, name: Optional[str]) -> Optional["Session"]:
        if not name:
            return None
        return cls(user=SessionUser(name=name))


def current_user_name(session: Optional[Session]) -> str:
    """Display name of the signed-in user, or the anonymous sentinel."""
    if session is not None and session.user_name:
        return session.user_name
    return UNKNOWN_USER
