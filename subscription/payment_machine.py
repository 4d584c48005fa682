"""
Payment Reconciliation - M-Pesa checkout lifecycle

An STK push completes out-of-band on the user's phone, so the storefront
only learns the outcome by polling. This module owns that lifecycle:

    IDLE -> INITIATING -> POLLING -> SUCCESS | FAILED | TIMED_OUT

- PaymentStateMachine: one instance per payment; terminal states are final
- PaymentReconciler: owns the current machine, persists the pending payment
  id durably and hands successful payments to the linking coordinator

Polling is serialized (the next check is only scheduled once the previous
one resolved) and bounded twice: by a poll count and by an absolute
wall-clock deadline. Both end in one final status check.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from portal.validation import (
    normalize_mac_address,
    normalize_phone,
    validate_checkout_phone,
    validate_mac_address,
)
from subscription.errors import GatewayError, InputValidationError, InvalidTransitionError
from subscription.models import PackageOffer, Payment, PaymentStatus, find_package

logger = logging.getLogger(__name__)


class PaymentState(str, Enum):
    """Client-side checkout states"""
    IDLE = "idle"
    INITIATING = "initiating"
    POLLING = "polling"
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES: FrozenSet[PaymentState] = frozenset(
    {PaymentState.SUCCESS, PaymentState.FAILED, PaymentState.TIMED_OUT}
)

# IDLE -> POLLING is the resume path for an id recovered from durable storage
_TRANSITIONS: Dict[PaymentState, FrozenSet[PaymentState]] = {
    PaymentState.IDLE: frozenset({PaymentState.INITIATING, PaymentState.POLLING}),
    PaymentState.INITIATING: frozenset({PaymentState.POLLING, PaymentState.FAILED}),
    PaymentState.POLLING: TERMINAL_STATES,
    PaymentState.SUCCESS: frozenset(),
    PaymentState.FAILED: frozenset(),
    PaymentState.TIMED_OUT: frozenset(),
}

INITIATED_MESSAGE = "Payment initiated! Please check your phone for the M-Pesa prompt."
PENDING_MESSAGE = "Waiting for payment confirmation..."
SUCCESS_MESSAGE = "Payment successful!"
FAILED_MESSAGE = "Payment failed"
START_FAILED_MESSAGE = "Checkout failed"
TIMEOUT_MESSAGE = (
    "Payment is still processing. Please check your account later for confirmation."
)


@dataclass
class PollingPolicy:
    """How often and for how long a pending payment is polled"""
    interval: float = 3.0
    max_polls: int = 100
    timeout: float = 300.0

    @classmethod
    def from_settings(cls, settings) -> 'PollingPolicy':
        return cls(
            interval=settings.POLL_INTERVAL_SECONDS,
            max_polls=settings.MAX_POLLS,
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        )


TransitionListener = Callable[['PaymentStateMachine', PaymentState, PaymentState], None]


class PaymentStateMachine:
    """
    Lifecycle of a single payment.

    Args:
        gateway: ActivationGateway (start_checkout, check_status)
        scheduler: AsyncioScheduler in production, ManualScheduler in tests
        policy: polling interval and ceilings
        on_transition: called synchronously after every transition
        on_created: called with the payment id right before polling starts
        on_success: awaited with the payment id after SUCCESS
    """

    def __init__(
        self,
        gateway,
        scheduler,
        policy: Optional[PollingPolicy] = None,
        on_transition: Optional[TransitionListener] = None,
        on_created: Optional[Callable[[str], None]] = None,
        on_success: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self._gateway = gateway
        self._scheduler = scheduler
        self.policy = policy or PollingPolicy()
        self._on_transition = on_transition
        self._on_created = on_created
        self._on_success = on_success

        self.state = PaymentState.IDLE
        self.message: Optional[str] = None
        self.payment: Optional[Payment] = None
        self.poll_count = 0
        self.started_at: Optional[float] = None

        self._poll_handle = None
        self._deadline_handle = None
        self._finalizing = False
        self._cancelled = False

    # ========== Introspection ==========

    @property
    def payment_id(self) -> Optional[str]:
        return self.payment.id if self.payment else None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def has_active_timers(self) -> bool:
        return self._poll_handle is not None or self._deadline_handle is not None

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "message": self.message,
            "paymentId": self.payment_id,
            "payment": self.payment.to_dict() if self.payment else None,
            "pollCount": self.poll_count,
        }

    # ========== Transition function ==========

    def _transition(self, target: PaymentState, message: Optional[str] = None) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal payment transition {self.state.value} -> {target.value}"
            )

        previous = self.state
        if previous == PaymentState.POLLING:
            # Leaving POLLING stops both the interval and the deadline in one step
            self._clear_timers()

        self.state = target
        self.message = message
        logger.info(
            f"Payment {self.payment_id or '-'}: {previous.value} -> {target.value}"
            + (f" ({message})" if message else "")
        )

        if self._on_transition:
            self._on_transition(self, previous, target)

    def _clear_timers(self) -> None:
        for handle in (self._poll_handle, self._deadline_handle):
            if handle is not None:
                handle.cancel()
        self._poll_handle = None
        self._deadline_handle = None

    def _is_stale(self, expected: PaymentState = PaymentState.POLLING) -> bool:
        return self._cancelled or self.state != expected

    # ========== Initiation ==========

    async def initiate(
        self,
        phone: str,
        package_key: str,
        mac: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> PaymentState:
        """Start the STK push; on success begin polling"""
        self._transition(PaymentState.INITIATING, INITIATED_MESSAGE)

        try:
            payment_id = await self._gateway.start_checkout(phone, package_key, mac, ip)
        except GatewayError as e:
            if not self._is_stale(PaymentState.INITIATING):
                logger.error(f"Checkout start failed: {e.message}")
                self._transition(PaymentState.FAILED, e.message or START_FAILED_MESSAGE)
            return self.state

        if self._is_stale(PaymentState.INITIATING):
            return self.state

        if not payment_id:
            self._transition(PaymentState.FAILED, START_FAILED_MESSAGE)
            return self.state

        self.payment = Payment(
            id=payment_id,
            status=PaymentStatus.PENDING,
            phone=phone,
            package_key=package_key,
            mac=mac,
            ip=ip,
        )
        if self._on_created:
            self._on_created(payment_id)

        self._begin_polling(first_delay=self.policy.interval)
        return self.state

    def resume(self, payment_id: str) -> None:
        """
        Re-enter POLLING for an id recovered after a reload. The first check
        runs immediately: a stored id is only a hint until re-validated.
        """
        self.payment = Payment(id=payment_id)
        self._begin_polling(first_delay=0.0)

    def _begin_polling(self, first_delay: float) -> None:
        self._transition(PaymentState.POLLING, PENDING_MESSAGE)
        self.started_at = self._scheduler.now()
        self._deadline_handle = self._scheduler.call_later(self.policy.timeout, self._on_deadline)
        self._schedule_poll(first_delay)

    # ========== Polling ==========

    def _schedule_poll(self, delay: float) -> None:
        self._poll_handle = self._scheduler.call_later(delay, self._on_poll_timer)

    def _on_poll_timer(self) -> None:
        self._poll_handle = None
        if self._is_stale() or self._finalizing:
            return
        self._scheduler.spawn(self._poll())

    def _on_deadline(self) -> None:
        self._deadline_handle = None
        if self._is_stale():
            return
        logger.warning(
            f"Payment {self.payment_id}: wall-clock limit of {self.policy.timeout}s reached "
            f"after {self.poll_count} polls"
        )
        self._scheduler.spawn(self._final_check())

    async def _check(self) -> Optional[Payment]:
        """One status request; transient failures are logged and reported as None"""
        self.poll_count += 1
        try:
            return await self._gateway.check_status(self.payment_id)
        except Exception as e:
            logger.warning(f"Status check {self.poll_count} for {self.payment_id} failed: {e}")
            return None

    async def _poll(self) -> None:
        payment = await self._check()
        if self._is_stale():
            return
        if payment is not None and await self._apply(payment):
            return
        if self._finalizing:
            return

        if self.poll_count >= self.policy.max_polls:
            await self._final_check()
        else:
            self._schedule_poll(self.policy.interval)

    async def _final_check(self) -> None:
        if self._finalizing or self._is_stale():
            return
        self._finalizing = True
        self._clear_timers()

        payment = await self._check()
        if self._is_stale():
            return
        if payment is not None and await self._apply(payment):
            return
        self._transition(PaymentState.TIMED_OUT, TIMEOUT_MESSAGE)

    async def _apply(self, payment: Payment) -> bool:
        """Record a status snapshot; returns True when it was terminal"""
        self.payment = payment

        if payment.status == PaymentStatus.SUCCESS:
            self._transition(PaymentState.SUCCESS, SUCCESS_MESSAGE)
            if self._on_success:
                try:
                    await self._on_success(payment.id)
                except Exception as e:
                    logger.error(f"Post-payment handoff failed for {payment.id}: {e}")
            return True

        if payment.status == PaymentStatus.FAILED:
            self._transition(PaymentState.FAILED, payment.error_message or FAILED_MESSAGE)
            return True

        self.message = PENDING_MESSAGE
        return False

    # ========== Cancellation ==========

    def cancel(self) -> None:
        """
        Stop this machine. Timers are cleared immediately; a status request
        already in flight may still complete but its result is discarded.
        """
        if self._cancelled:
            return
        self._cancelled = True
        self._clear_timers()
        logger.info(f"Payment {self.payment_id or '-'}: polling cancelled in state {self.state.value}")


StateListener = Callable[[PaymentState, Optional[PaymentStateMachine]], None]


class PaymentReconciler:
    """
    Front door for M-Pesa checkout.

    Owns at most one live PaymentStateMachine; starting a new checkout,
    cancelling or resetting revokes the previous machine's right to write
    state. The pending payment id is written to durable storage as soon as
    the gateway returns it.
    """

    def __init__(
        self,
        gateway,
        scheduler,
        pending_store,
        identity_resolver=None,
        coordinator=None,
        policy: Optional[PollingPolicy] = None,
    ):
        self._gateway = gateway
        self._scheduler = scheduler
        self._pending_store = pending_store
        self._identity = identity_resolver
        self._coordinator = coordinator
        self.policy = policy or PollingPolicy()
        self._machine: Optional[PaymentStateMachine] = None
        self._listeners: List[StateListener] = []

    @property
    def machine(self) -> Optional[PaymentStateMachine]:
        return self._machine

    @property
    def state(self) -> PaymentState:
        return self._machine.state if self._machine else PaymentState.IDLE

    @property
    def payment(self) -> Optional[Payment]:
        return self._machine.payment if self._machine else None

    @property
    def message(self) -> Optional[str]:
        return self._machine.message if self._machine else None

    def snapshot(self) -> dict:
        if self._machine is None:
            return {"state": PaymentState.IDLE.value, "message": None, "paymentId": None,
                    "payment": None, "pollCount": 0}
        return self._machine.snapshot()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _new_machine(self) -> PaymentStateMachine:
        return PaymentStateMachine(
            self._gateway,
            self._scheduler,
            policy=self.policy,
            on_transition=self._handle_transition,
            on_created=self._pending_store.set,
            on_success=self._handle_success,
        )

    def _handle_transition(self, machine: PaymentStateMachine, previous: PaymentState, state: PaymentState) -> None:
        if machine is not self._machine:
            return
        for listener in list(self._listeners):
            try:
                listener(state, machine)
            except Exception as e:
                logger.error(f"Payment state listener failed: {e}")

    async def _handle_success(self, payment_id: str) -> None:
        if self._coordinator is not None:
            await self._coordinator.on_payment_success(payment_id)

    async def start_checkout(
        self,
        phone: str,
        package_key: str,
        packages: Optional[List[PackageOffer]] = None,
    ) -> PaymentStateMachine:
        """
        Validate input, cancel whatever was running and start a fresh payment.

        Raises:
            InputValidationError: bad phone or unknown package; nothing is
                cancelled and no request is sent
        """
        phone_check = validate_checkout_phone(phone)
        if not phone_check.is_valid:
            raise InputValidationError(phone_check.message, field="phone")
        if not package_key:
            raise InputValidationError("Please choose a package", field="package_key")
        if packages is not None and find_package(packages, package_key) is None:
            raise InputValidationError("Package not found", field="package_key")

        mac, ip = self._device()

        self.cancel()
        machine = self._new_machine()
        self._machine = machine
        await machine.initiate(normalize_phone(phone), package_key, mac, ip)
        return machine

    async def resume(self, payment_id: Optional[str] = None) -> Optional[PaymentStateMachine]:
        """
        Resume polling for payment_id or the durably stored pending id.

        Resuming the payment already being polled is a no-op; anything else
        starts a fresh machine whose first action is a status check.
        """
        payment_id = payment_id or self._pending_store.get()
        if not payment_id:
            return None

        current = self._machine
        if (
            current is not None
            and current.payment_id == payment_id
            and current.state == PaymentState.POLLING
            and not current.cancelled
        ):
            return current

        self.cancel()
        machine = self._new_machine()
        self._machine = machine
        logger.info(f"Resuming payment {payment_id}")
        machine.resume(payment_id)
        return machine

    def cancel(self) -> None:
        """Stop the current machine (navigation away, new payment, try again)"""
        if self._machine is not None:
            self._machine.cancel()
            self._machine = None

    def reset(self) -> None:
        """Cancel and forget the durable pending payment"""
        self.cancel()
        self._pending_store.clear()

    def _device(self):
        identity = self._identity.get() if self._identity else None
        if identity is None:
            return None, None
        mac = None
        if identity.mac:
            if validate_mac_address(identity.mac).is_valid:
                mac = normalize_mac_address(identity.mac)
            else:
                logger.warning(f"Ignoring malformed portal MAC {identity.mac!r} for checkout")
        return mac, identity.ip or None
