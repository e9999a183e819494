"""
Identity Provider

The data layer never authenticates anyone. It asks an identity provider
who is signed in, and listens for sign-in and sign-out events so the
mode controller can run the guest-to-account migration.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, model_validator


logger = structlog.get_logger(__name__)


class AuthEventKind(str, Enum):
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


class AuthEvent(BaseModel):
    """A change of authenticated identity."""

    kind: AuthEventKind
    user_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_user(self) -> 'AuthEvent':
        if self.kind == AuthEventKind.SIGNED_IN and not self.user_id:
            raise ValueError("A sign-in event requires a user id")
        return self


AuthListener = Callable[[AuthEvent], Awaitable[None]]
Unsubscribe = Callable[[], None]


class IdentityProviderInterface(ABC):
    """Source of the current account identity."""

    @abstractmethod
    def current_user_id(self) -> Optional[str]:
        """The signed-in user's id, or None."""
        pass

    @abstractmethod
    def subscribe(self, listener: AuthListener) -> Unsubscribe:
        """
        Register a listener for auth events.

        Returns:
            A callable that removes the listener again
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass


class LocalIdentityProvider(IdentityProviderInterface):
    """
    In-process identity provider.

    For tests, and for applications that authenticate somewhere else
    and only need to tell the data layer the outcome.
    """

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners: list[AuthListener] = []

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def subscribe(self, listener: AuthListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_in(self, user_id: str) -> None:
        self._user_id = user_id
        logger.info("identity_signed_in", user_id=user_id)
        await self._notify(AuthEvent(kind=AuthEventKind.SIGNED_IN, user_id=user_id))

    async def sign_out(self) -> None:
        user_id = self._user_id
        self._user_id = None
        logger.info("identity_signed_out", user_id=user_id)
        await self._notify(AuthEvent(kind=AuthEventKind.SIGNED_OUT, user_id=user_id))

    async def _notify(self, event: AuthEvent) -> None:
        # Copy so a listener may unsubscribe while being notified
        for listener in list(self._listeners):
            await listener(event)
