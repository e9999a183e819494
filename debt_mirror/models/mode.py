"""
Access Mode Value Object

The active identity is passed explicitly into the data layer as a Mode,
re-derived on every call. There is no module-level "current user".
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from debt_mirror.models.entities import GuestSession


class AccessMode(str, Enum):
    """Who is currently allowed to read and write data."""
    GUEST = "guest"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class Mode(BaseModel):
    """
    Immutable snapshot of the active identity.

    GUEST carries the session it was derived from.
    AUTHENTICATED carries the account's user id.
    """
    model_config = ConfigDict(frozen=True)

    kind: AccessMode
    user_id: Optional[str] = None
    session: Optional[GuestSession] = None

    @model_validator(mode='after')
    def validate_identity(self) -> 'Mode':
        if self.kind == AccessMode.AUTHENTICATED and not self.user_id:
            raise ValueError("Authenticated mode requires a user id")
        if self.kind == AccessMode.GUEST and self.session is None:
            raise ValueError("Guest mode requires a session")
        return self

    @classmethod
    def guest(cls, session: GuestSession) -> 'Mode':
        return cls(kind=AccessMode.GUEST, session=session)

    @classmethod
    def authenticated(cls, user_id: str) -> 'Mode':
        return cls(kind=AccessMode.AUTHENTICATED, user_id=user_id)

    @classmethod
    def unauthenticated(cls) -> 'Mode':
        return cls(kind=AccessMode.UNAUTHENTICATED)

    @property
    def is_guest(self) -> bool:
        return self.kind == AccessMode.GUEST

    @property
    def is_authenticated(self) -> bool:
        return self.kind == AccessMode.AUTHENTICATED
