"""Classification of exchange failure messages.

The backend reports exchange failures as free-text (Chinese) messages. This
module maps them onto ExchangeErrorKind by substring. Keep every known marker
here so the matching can be replaced wholesale once the backend returns
structured error codes.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple


class ExchangeErrorKind(str, Enum):
    VERIFICATION_CODE_INVALID = "verification_code_invalid"
    INSUFFICIENT_POINTS = "insufficient_points"
    INSUFFICIENT_STOCK = "insufficient_stock"
    MONTHLY_LIMIT_REACHED = "monthly_limit_reached"
    PHONE_NOT_BOUND = "phone_not_bound"
    PRODUCT_NOT_FOUND = "product_not_found"
    USER_NOT_FOUND = "user_not_found"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class ClassifiedError:
    kind: ExchangeErrorKind
    message: str
    description: str
    used: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None

    @property
    def verification_scoped(self) -> bool:
        """True when the error belongs at the code input, not in a notification."""
        return self.kind is ExchangeErrorKind.VERIFICATION_CODE_INVALID


Classifier = Callable[[str], ClassifiedError]

VERIFICATION_MARKERS = ("验证码",)
INSUFFICIENT_POINTS_MARKERS = ("积分不足",)
INSUFFICIENT_STOCK_MARKERS = ("库存不足",)
MONTHLY_LIMIT_MARKERS = ("月度兑换限制", "超过月度")
PHONE_MARKERS = ("手机号",)
PRODUCT_NOT_FOUND_MARKERS = ("产品不存在",)
USER_NOT_FOUND_MARKERS = ("用户不存在",)

# "超过月度兑换限制，本月已兑换 5 次，限制 5 次，剩余 0 次"
_MONTHLY_COUNTS = re.compile(r"本月已兑换\s*(\d+)\s*次.*限制\s*(\d+)\s*次.*剩余\s*(\d+)\s*次")

_RULES: Tuple[Tuple[Tuple[str, ...], ExchangeErrorKind, str], ...] = (
    (INSUFFICIENT_POINTS_MARKERS, ExchangeErrorKind.INSUFFICIENT_POINTS,
     "Not enough points, earn more points first"),
    (INSUFFICIENT_STOCK_MARKERS, ExchangeErrorKind.INSUFFICIENT_STOCK,
     "Out of stock, please choose another product"),
    (MONTHLY_LIMIT_MARKERS, ExchangeErrorKind.MONTHLY_LIMIT_REACHED,
     "Monthly exchange limit reached, try again next month or choose another product"),
    (PHONE_MARKERS, ExchangeErrorKind.PHONE_NOT_BOUND,
     "Please bind a phone number first"),
    (PRODUCT_NOT_FOUND_MARKERS, ExchangeErrorKind.PRODUCT_NOT_FOUND,
     "Product not found or no longer available, please refresh"),
    (USER_NOT_FOUND_MARKERS, ExchangeErrorKind.USER_NOT_FOUND,
     "Account problem, please log in again"),
)


def _contains(message: str, markers: Tuple[str, ...]) -> bool:
    return any(marker in message for marker in markers)


def classify_exchange_error(message: str) -> ClassifiedError:
    """Map a server failure message onto an ExchangeErrorKind.

    Verification-code markers win over everything else; unmatched messages are
    returned verbatim as UNCLASSIFIED.
    """
    message = message or ""

    if _contains(message, VERIFICATION_MARKERS):
        return ClassifiedError(ExchangeErrorKind.VERIFICATION_CODE_INVALID, message, message)

    for markers, kind, description in _RULES:
        if not _contains(message, markers):
            continue
        if kind is ExchangeErrorKind.MONTHLY_LIMIT_REACHED:
            return _monthly_limit(message, description)
        return ClassifiedError(kind, message, description)

    return ClassifiedError(ExchangeErrorKind.UNCLASSIFIED, message, message)


def _monthly_limit(message: str, generic: str) -> ClassifiedError:
    match = _MONTHLY_COUNTS.search(message)
    if not match:
        return ClassifiedError(ExchangeErrorKind.MONTHLY_LIMIT_REACHED, message, generic)

    used, limit, remaining = (int(group) for group in match.groups())
    return ClassifiedError(
        ExchangeErrorKind.MONTHLY_LIMIT_REACHED,
        message,
        f"Monthly exchange limit reached ({used} of {limit} used, {remaining} left), "
        "try again next month or choose another product",
        used=used,
        limit=limit,
        remaining=remaining,
    )
