"""
Authentication state observer

Login and registration live outside the storefront core. What the core
needs is read access to the current credential and a way to hear about
changes, so the auth state is injected rather than reached for globally.
"""

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

logger = logging.getLogger(__name__)

AuthListener = Callable[[bool], Union[None, Awaitable[None]]]


class AuthSession:
    """
    Holds the bearer token of the signed-in user, if any, and notifies
    listeners whenever the authenticated flag changes.
    """

    def __init__(self, token: Optional[str] = None):
        self._token = token
        self._listeners: List[AuthListener] = []

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_in(self, token: str) -> None:
        """Record a fresh credential (after login or registration)"""
        was_authenticated = self.is_authenticated
        self._token = token
        if not was_authenticated:
            logger.info("User authenticated")
            await self._notify()

    async def sign_out(self) -> None:
        was_authenticated = self.is_authenticated
        self._token = None
        if was_authenticated:
            logger.info("User signed out")
            await self._notify()

    async def _notify(self) -> None:
        authenticated = self.is_authenticated
        for listener in list(self._listeners):
            try:
                result = listener(authenticated)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Auth listener failed: {e}")
