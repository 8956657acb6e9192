"""
Points-exchange flow controller.

Drives one exchange from product selection to submission:

    BROWSING -> QUANTITY_SELECTION -> CODE_VERIFICATION -> SUBMITTING
                                             ^                 |
                                             |           SUCCESS | FAILED
                                             +---- FAILED        |
    BROWSING <------------------------------------------ SUCCESS (after refresh)

The controller holds the last fetched product list and balance, checks
eligibility locally before anything reaches the server, owns the resend
countdown, and turns every failure into a notification so the presentation
layer never has to handle raw service errors.

Local rule violations raise FlowError subclasses (after notifying). Server-side
exchange failures do not raise: submit_exchange() returns an ExchangeOutcome
and leaves the flow in CODE_VERIFICATION.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from points_exchange.exceptions import (
    CancelNotAllowed,
    CodeCooldownActive,
    CodeSendFailed,
    FlowError,
    IneligibleProduct,
    InsufficientPoints,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    MissingVerificationCode,
    MonthlyLimitReached,
    QuantityExceedsLimit,
    ServiceError,
)
from points_exchange.exchange.countdown import Countdown, Sleep
from points_exchange.exchange.errors import ClassifiedError, Classifier, classify_exchange_error
from points_exchange.models import CodeSentAck, Product
from points_exchange.notifications import Notifier
from points_exchange.observability.logging import correlation_id_context
from points_exchange.observability.metrics import (
    exchange_submissions_total,
    exchange_validation_failures_total,
    verification_codes_sent_total,
)
from points_exchange.services import CatalogService, ExchangeService

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    BROWSING = "browsing"
    QUANTITY_SELECTION = "quantity_selection"
    CODE_VERIFICATION = "code_verification"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILED = "failed"


StateListener = Callable[[FlowState, FlowState], None]

_VALIDATION_TITLES = {
    MonthlyLimitReached: "Sold out for this month",
    QuantityExceedsLimit: "Exchange limit exceeded",
    InsufficientPoints: "Not enough points",
    InsufficientStock: "Insufficient stock",
}


class VerificationSession:
    """Client-local state of the verification-code input."""

    def __init__(self, countdown: Countdown):
        self.countdown = countdown
        self.sent = False
        self.code = ""
        self.last_error: Optional[str] = None

    @property
    def countdown_seconds(self) -> int:
        return self.countdown.remaining

    def reset(self) -> None:
        self.countdown.cancel()
        self.sent = False
        self.code = ""
        self.last_error = None


@dataclass
class ExchangeOutcome:
    success: bool
    product_id: str
    quantity: int
    error: Optional[ClassifiedError] = None


def _reason(exc: BaseException) -> str:
    if isinstance(exc, ServiceError):
        return exc.message
    return str(exc) or type(exc).__name__


class ExchangeFlowController:
    """
    Args:
        catalog: product list and balance source
        exchange: code dispatch and exchange submission
        notifier: receives every user-visible message
        classifier: maps server failure messages onto error kinds
        countdown_seconds: resend cooldown after a successful code dispatch
        sleep: clock used by the countdown (tests pass a manual one)
    """

    def __init__(
        self,
        catalog: CatalogService,
        exchange: ExchangeService,
        *,
        notifier: Optional[Notifier] = None,
        classifier: Classifier = classify_exchange_error,
        countdown_seconds: int = 60,
        sleep: Optional[Sleep] = None,
    ):
        self.catalog = catalog
        self.exchange = exchange
        self.notifier = notifier or Notifier()
        self.classifier = classifier

        self.state = FlowState.BROWSING
        self.products: List[Product] = []
        self.balance = 0
        self.loaded = False
        self.selected: Optional[Product] = None
        self.quantity = 1
        self.sending_code = False
        self.last_outcome: Optional[ExchangeOutcome] = None

        self.countdown = Countdown(countdown_seconds, sleep=sleep)
        self.verification = VerificationSession(self.countdown)
        self._state_listeners: List[StateListener] = []

    async def __aenter__(self) -> "ExchangeFlowController":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Stop the countdown task; call when the exchange view goes away."""
        self.countdown.cancel()

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, new_state: FlowState) -> None:
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        logger.debug(f"[ExchangeFlow] {old_state.value} -> {new_state.value}")
        for listener in list(self._state_listeners):
            listener(old_state, new_state)

    def _require(self, operation: str, *states: FlowState) -> None:
        if self.state not in states:
            raise InvalidTransition(operation, self.state.value)

    @property
    def remaining(self) -> int:
        return self.selected.remaining if self.selected else 0

    @property
    def required_points(self) -> int:
        return self.selected.points * self.quantity if self.selected else 0

    @property
    def can_send_code(self) -> bool:
        return (
            self.state is FlowState.CODE_VERIFICATION
            and not self.countdown.active
            and not self.sending_code
        )

    @property
    def can_cancel(self) -> bool:
        return self.state in (FlowState.QUANTITY_SELECTION, FlowState.CODE_VERIFICATION)

    def find_product(self, product_id: str) -> Optional[Product]:
        for product in self.products:
            if product.id == product_id:
                return product
        return None

    # ------------------------------------------------------------------
    # Data loading
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """Fetch products and balance concurrently and wait for both.

        Each failure is reported on its own; one does not hide the other.
        """
        products, balance = await asyncio.gather(
            self.catalog.list_products(),
            self.catalog.get_balance(),
            return_exceptions=True,
        )

        if isinstance(products, BaseException):
            if not isinstance(products, ServiceError):
                raise products
            logger.error(f"[ExchangeFlow] Failed to load products: {_reason(products)}")
            self.notifier.error("Failed to load products", _reason(products))
        else:
            self.products = list(products)
            if self.selected is not None:
                self.selected = self.find_product(self.selected.id) or self.selected

        if isinstance(balance, BaseException):
            if not isinstance(balance, ServiceError):
                raise balance
            logger.warning(f"[ExchangeFlow] Failed to load balance: {_reason(balance)}")
            self.notifier.warning("Failed to load points balance", _reason(balance))
            if not self.loaded:
                self.balance = 0
        else:
            self.balance = balance

        self.loaded = True

    # ------------------------------------------------------------------
    # Selection and validation
    # ------------------------------------------------------------------

    def select_product(self, product: Product) -> None:
        self._require("select a product", FlowState.BROWSING)

        snapshot = self.find_product(product.id) or product
        if not snapshot.exchangeable:
            raise IneligibleProduct(snapshot.id, remaining=snapshot.remaining, stock=snapshot.stock)

        self.selected = snapshot
        self.quantity = 1
        self.verification.code = ""
        self.verification.last_error = None
        self._set_state(FlowState.QUANTITY_SELECTION)

    def set_quantity(self, quantity: int) -> None:
        self._require("change the quantity", FlowState.QUANTITY_SELECTION, FlowState.CODE_VERIFICATION)

        remaining = self.remaining
        if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= remaining:
            raise InvalidQuantity(quantity, remaining=remaining)
        self.quantity = quantity

    def _validate(self) -> None:
        product = self.selected
        remaining = product.remaining

        if remaining == 0:
            raise MonthlyLimitReached()
        if self.quantity > remaining:
            raise QuantityExceedsLimit(remaining)
        required = product.points * self.quantity
        if self.balance < required:
            raise InsufficientPoints(balance=self.balance, required=required)
        if product.stock < self.quantity:
            raise InsufficientStock(product.stock, requested=self.quantity)

    def request_exchange(self) -> None:
        """Run the local eligibility checks and open the verification step."""
        self._require("request an exchange", FlowState.QUANTITY_SELECTION, FlowState.CODE_VERIFICATION)

        try:
            self._validate()
        except FlowError as e:
            exchange_validation_failures_total.labels(check=type(e).__name__).inc()
            self.notifier.error(_VALIDATION_TITLES.get(type(e), "Cannot exchange"), e.message)
            raise

        self._set_state(FlowState.CODE_VERIFICATION)

    # ------------------------------------------------------------------
    # Verification code
    # ------------------------------------------------------------------

    def set_verification_code(self, code: str) -> None:
        self._require("enter a verification code", FlowState.CODE_VERIFICATION)
        self.verification.code = code
        self.verification.last_error = None

    async def send_verification_code(self) -> Optional[CodeSentAck]:
        """Dispatch a code and start the resend countdown.

        Returns None when a dispatch is already in flight.
        """
        self._require("send a verification code", FlowState.CODE_VERIFICATION)
        if self.countdown.active:
            raise CodeCooldownActive(self.countdown.remaining)
        if self.sending_code:
            return None

        self.sending_code = True
        self.verification.last_error = None
        try:
            ack = await self.exchange.send_verification_code()
        except ServiceError as e:
            verification_codes_sent_total.labels(outcome="error").inc()
            logger.warning(f"[ExchangeFlow] Code dispatch failed: {e.message}")
            self.notifier.error("Failed to send verification code", e.message)
            raise CodeSendFailed(e.message) from e
        finally:
            self.sending_code = False

        verification_codes_sent_total.labels(outcome="ok").inc()
        self.verification.sent = True
        self.countdown.start()

        if ack.code:
            self.notifier.success("Verification code sent", f"Code: {ack.code} (shown in development only)")
        else:
            self.notifier.success("Verification code sent", "Check your phone for the code")
        return ack

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_exchange(self) -> Optional[ExchangeOutcome]:
        """Submit the exchange exactly once.

        Returns None (and does nothing) while a submission is pending or the
        previous one is still settling.
        """
        if self.state in (FlowState.SUBMITTING, FlowState.SUCCESS):
            logger.debug(f"[ExchangeFlow] Submission ignored while {self.state.value}")
            return None
        self._require("submit an exchange", FlowState.CODE_VERIFICATION)

        code = self.verification.code.strip()
        if not code:
            error = MissingVerificationCode()
            self.verification.last_error = error.message
            raise error

        product = self.selected
        quantity = self.quantity
        self.verification.last_error = None
        self._set_state(FlowState.SUBMITTING)

        with correlation_id_context():
            logger.info(f"[ExchangeFlow] Submitting exchange product={product.id} quantity={quantity}")
            try:
                await self.exchange.submit_exchange(product.id, quantity, code)
            except ServiceError as e:
                outcome = self._handle_failure(product, quantity, e)
            except BaseException:
                self._set_state(FlowState.CODE_VERIFICATION)
                raise
            else:
                outcome = await self._handle_success(product, quantity)

        self.last_outcome = outcome
        return outcome

    async def _handle_success(self, product: Product, quantity: int) -> ExchangeOutcome:
        exchange_submissions_total.labels(outcome="ok", kind="none").inc()
        self._set_state(FlowState.SUCCESS)
        self.verification.reset()
        self.notifier.success(
            "Exchange successful",
            f"You exchanged {product.name} x{quantity}; "
            "the coupon will arrive in your account within 24 hours",
        )
        logger.info(f"[ExchangeFlow] Exchange completed product={product.id} quantity={quantity}")

        # The exchange already went through; always end in BROWSING.
        try:
            await self.refresh()
        except Exception as e:
            logger.exception("[ExchangeFlow] Reload after exchange failed")
            self.notifier.error("Failed to reload products and balance", _reason(e))
        finally:
            self.selected = None
            self.quantity = 1
            self._set_state(FlowState.BROWSING)
        return ExchangeOutcome(success=True, product_id=product.id, quantity=quantity)

    def _handle_failure(self, product: Product, quantity: int, error: ServiceError) -> ExchangeOutcome:
        self._set_state(FlowState.FAILED)
        classified = self.classifier(error.message)
        exchange_submissions_total.labels(outcome="error", kind=classified.kind.value).inc()
        logger.warning(
            f"[ExchangeFlow] Exchange failed product={product.id} "
            f"kind={classified.kind.value}: {error.message}"
        )

        # Code errors stay at the input so the user can correct and retry
        # without requesting a new code.
        if classified.verification_scoped:
            self.verification.last_error = classified.message
        else:
            self.verification.last_error = None
            self.notifier.error("Exchange failed", classified.description)

        self._set_state(FlowState.CODE_VERIFICATION)
        return ExchangeOutcome(success=False, product_id=product.id, quantity=quantity, error=classified)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Abandon the current exchange and go back to browsing.

        The resend countdown keeps running so the cooldown cannot be skipped
        by cancelling and reopening the flow.
        """
        if self.state is FlowState.SUBMITTING:
            raise CancelNotAllowed()
        self._require("cancel", FlowState.QUANTITY_SELECTION, FlowState.CODE_VERIFICATION)

        self.selected = None
        self.quantity = 1
        self.verification.code = ""
        self.verification.last_error = None
        self._set_state(FlowState.BROWSING)
