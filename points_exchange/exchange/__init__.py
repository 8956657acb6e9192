from points_exchange.exchange.controller import (
    ExchangeFlowController,
    ExchangeOutcome,
    FlowState,
    VerificationSession,
)
from points_exchange.exchange.countdown import Countdown
from points_exchange.exchange.errors import (
    ClassifiedError,
    ExchangeErrorKind,
    classify_exchange_error,
)

__all__ = [
    "ClassifiedError",
    "Countdown",
    "ExchangeErrorKind",
    "ExchangeFlowController",
    "ExchangeOutcome",
    "FlowState",
    "VerificationSession",
    "classify_exchange_error",
]
