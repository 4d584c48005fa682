"""
Guest payment linking

A guest can pay before having an account. Once the payment succeeded and
a credential exists (now, or after a later sign-in) the payment is
attached to the account, exactly once per payment id. A guest may complete
several payments before signing in; every one of them is linked.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Set

from subscription.errors import GatewayError

logger = logging.getLogger(__name__)

ALREADY_LINKED_MESSAGE = "Already linked to you"


class GuestLinkingCoordinator:
    """
    Links successful guest payments to the signed-in account.

    Args:
        gateway: ActivationGateway (link_payment)
        auth: AuthSession; the coordinator subscribes to its changes
        pending_store: PendingPaymentStore; unlinked successes are listed in
            it durably and the pending record is cleared after a confirmed link
    """

    def __init__(self, gateway, auth, pending_store=None):
        self._gateway = gateway
        self._auth = auth
        self._pending_store = pending_store
        self._linked: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._awaiting_auth: List[str] = []
        self._resume: Optional[Callable[[], Awaitable[Any]]] = None
        self._unsubscribe = auth.subscribe(self._on_auth_change)

    def set_resume(self, resume: Callable[[], Awaitable[Any]]) -> None:
        """
        Hook used on sign-in when a pending payment id is stored whose success
        was never observed. The hook must re-check the payment's status; a
        successful check comes back through on_payment_success.
        """
        self._resume = resume

    @property
    def awaiting_auth(self) -> List[str]:
        """Successful payment ids waiting for the user to sign in, oldest first"""
        ids = list(self._awaiting_auth)
        if self._pending_store is not None:
            ids += [p for p in self._pending_store.unlinked() if p not in ids]
        return [p for p in ids if p not in self._linked]

    def is_linked(self, payment_id: str) -> bool:
        return payment_id in self._linked

    def close(self) -> None:
        self._unsubscribe()

    def _remember(self, payment_id: str) -> None:
        if payment_id not in self._awaiting_auth:
            self._awaiting_auth.append(payment_id)
        if self._pending_store is not None:
            self._pending_store.add_unlinked(payment_id)

    def _forget(self, payment_id: str) -> None:
        if payment_id in self._awaiting_auth:
            self._awaiting_auth.remove(payment_id)
        if self._pending_store is not None:
            self._pending_store.discard_unlinked(payment_id)
            self._pending_store.clear(payment_id)

    async def on_payment_success(self, payment_id: str) -> bool:
        """
        Try to link payment_id. Returns True once the payment is known to be
        attached to the account; never raises on gateway refusal.
        """
        if payment_id in self._linked:
            return True

        if not self._auth.is_authenticated:
            logger.info(f"Payment {payment_id} succeeded as guest; linking after sign-in")
            self._remember(payment_id)
            return False

        if payment_id in self._in_flight:
            return False

        self._in_flight.add(payment_id)
        try:
            result = await self._gateway.link_payment(payment_id, self._auth.token)
        except GatewayError as e:
            logger.warning(f"Failed to link payment {payment_id}: {e.message}")
            self._remember(payment_id)
            return False
        finally:
            self._in_flight.discard(payment_id)

        if result.get("ok") or result.get("message") == ALREADY_LINKED_MESSAGE:
            self._linked.add(payment_id)
            self._forget(payment_id)
            logger.info(f"Payment {payment_id} linked to account")
            return True

        logger.warning(
            f"Gateway refused to link payment {payment_id}: "
            f"{result.get('message') or result.get('error') or 'unknown reason'}"
        )
        return False

    async def _on_auth_change(self, authenticated: bool) -> None:
        if not authenticated:
            return

        awaiting = self.awaiting_auth
        for payment_id in awaiting:
            await self.on_payment_success(payment_id)

        stored = self._pending_store.get() if self._pending_store is not None else None
        if stored and stored not in awaiting and stored not in self._linked and self._resume is not None:
            logger.info(f"Signed in with stored pending payment {stored}; re-checking its status")
            await self._resume()
