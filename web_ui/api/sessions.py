"""
Storefront sessions

Each browser (identified by the session cookie) gets its own portal
identity, auth state, payment reconciler and redemption service. The
session-scoped identity lives in memory; the pending payment id goes to a
per-session JSON file so it survives a server restart.
"""

import logging
import re
import secrets
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable, List, Optional

from portal.identity import PortalIdentityResolver
from portal.storage import JsonFileStore, MemoryStore, PendingPaymentStore
from subscription.auth import AuthSession
from subscription.devices import DeviceManager
from subscription.linking import GuestLinkingCoordinator
from subscription.models import PackageOffer
from subscription.payment_machine import PaymentReconciler, PaymentState, PollingPolicy
from subscription.redemption import RedemptionService

logger = logging.getLogger(__name__)

# Cookie values are used in file names
SESSION_ID_REGEX = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


class StorefrontSession:
    """All storefront state belonging to one browser session"""

    def __init__(self, session_id: str, gateway, scheduler, durable_store, policy: Optional[PollingPolicy] = None):
        self.session_id = session_id
        self.session_store = MemoryStore()
        self.identity = PortalIdentityResolver(self.session_store, detector=gateway)
        self.auth = AuthSession()
        self.pending = PendingPaymentStore(durable_store)
        self.coordinator = GuestLinkingCoordinator(gateway, self.auth, self.pending)
        self.reconciler = PaymentReconciler(
            gateway,
            scheduler,
            self.pending,
            identity_resolver=self.identity,
            coordinator=self.coordinator,
            policy=policy,
        )
        self.coordinator.set_resume(self.reconciler.resume)
        self.redemption = RedemptionService(gateway, self.auth)
        self.devices = DeviceManager(gateway, self.auth)
        self.catalog: Optional[List[PackageOffer]] = None
        self.last_seen = 0.0

    @property
    def is_busy(self) -> bool:
        """A payment is still being polled"""
        return self.reconciler.state == PaymentState.POLLING

    def close(self) -> None:
        self.reconciler.cancel()
        self.coordinator.close()


class SessionRegistry:
    """
    Creates and looks up StorefrontSession objects by cookie value.

    Sessions idle for longer than idle_timeout are closed and dropped, except
    while a payment is still polling. At most max_sessions are kept; the
    least recently used one is closed to make room. A dropped session comes
    back with its durable pending payment the next time its cookie is seen.

    Args:
        gateway: shared ActivationGateway
        scheduler: shared scheduler for every payment machine
        storage_dir: directory for per-session pending payment files;
            None keeps everything in memory
        policy: polling policy handed to each reconciler
        max_sessions: upper bound on live sessions
        idle_timeout: seconds without a request before a session is dropped
        clock: monotonic time source
    """

    def __init__(
        self,
        gateway,
        scheduler,
        storage_dir: Optional[str] = None,
        policy: Optional[PollingPolicy] = None,
        max_sessions: int = 1000,
        idle_timeout: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._gateway = gateway
        self._scheduler = scheduler
        self._storage_dir = Path(storage_dir) if storage_dir else None
        self._policy = policy
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: "OrderedDict[str, StorefrontSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _durable_store(self, session_id: str):
        if self._storage_dir is None:
            return MemoryStore()
        return JsonFileStore(self._storage_dir / f"{session_id}.json")

    def get(self, session_id: Optional[str]) -> Optional[StorefrontSession]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: Optional[str]) -> StorefrontSession:
        """
        Return the session for session_id, creating it if needed. Unknown but
        well-formed ids are reused so the durable pending payment is found
        again after a restart; malformed ids get a fresh one.
        """
        now = self._clock()
        self.evict_idle(now)

        if not session_id or not SESSION_ID_REGEX.match(session_id):
            session_id = new_session_id()

        session = self._sessions.get(session_id)
        if session is None:
            while len(self._sessions) >= max(self.max_sessions, 1):
                self._evict_oldest()
            session = StorefrontSession(
                session_id,
                self._gateway,
                self._scheduler,
                self._durable_store(session_id),
                policy=self._policy,
            )
            self._sessions[session_id] = session
            logger.debug(f"Storefront session created: {session_id[:8]}...")
        else:
            self._sessions.move_to_end(session_id)

        session.last_seen = now
        return session

    def evict_idle(self, now: Optional[float] = None) -> int:
        """Close sessions idle past idle_timeout; returns how many were dropped"""
        now = self._clock() if now is None else now
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_seen >= self.idle_timeout and not session.is_busy
        ]
        for session_id in expired:
            self._sessions.pop(session_id).close()
        if expired:
            logger.debug(f"Dropped {len(expired)} idle storefront sessions")
        return len(expired)

    def _evict_oldest(self) -> None:
        session_id, session = self._sessions.popitem(last=False)
        session.close()
        logger.debug(f"Session limit reached; dropped {session_id[:8]}...")

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
