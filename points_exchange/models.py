"""Typed models for the points backend's JSON payloads.

The backend speaks camelCase; fields are snake_case here with aliases, and
every model accepts either spelling.
"""

from __future__ import annotations

from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

RecordFilter = Literal["all", "earned", "spent"]
TimeRange = Literal["30days", "3months", "12months", "2years"]
RecordType = Literal["earn", "spend"]

T = TypeVar("T")


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ApiEnvelope(WireModel, Generic[T]):
    """Uniform response wrapper: code 200 means success."""

    code: int
    message: str = ""
    data: Optional[T] = None
    timestamp: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.code == 200


class Product(WireModel):
    id: str
    name: str
    description: str = ""
    image: str = ""
    points: int = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    monthly_limit: int = Field(0, ge=0, alias="monthlyLimit")
    used_this_month: int = Field(0, ge=0, alias="usedThisMonth")
    status: Optional[int] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("used_this_month", mode="before")
    @classmethod
    def _default_used(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def remaining(self) -> int:
        """Exchanges still allowed this month, never negative."""
        return max(0, self.monthly_limit - self.used_this_month)

    @property
    def exchangeable(self) -> bool:
        return self.remaining > 0 and self.stock > 0


class ProductDraft(WireModel):
    """Admin payload for creating or updating a product."""

    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    points: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    monthly_limit: Optional[int] = Field(None, ge=0, alias="monthlyLimit")
    status: Optional[int] = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class UserInfo(WireModel):
    user_id: str = Field(..., alias="userId")
    username: str
    nickname: Optional[str] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)


class LoginResult(WireModel):
    token: str
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    expires_in: Optional[int] = Field(None, alias="expiresIn")
    user_info: Optional[UserInfo] = Field(None, alias="userInfo")


class ExchangeRequest(WireModel):
    product_id: str = Field(..., alias="productId")
    quantity: int = Field(..., ge=1)
    verification_code: str = Field(..., alias="verificationCode")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class PointsRecord(WireModel):
    id: str
    date: Optional[str] = None
    type: RecordType
    points: int
    description: str = ""
    balance: Optional[int] = None
    details: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("date", mode="before")
    @classmethod
    def _format_date(cls, value: Any) -> Optional[str]:
        # "2024-05-01T12:30:00" -> "2024-05-01 12:30:00"
        if value is None:
            return None
        text = str(value)
        if "T" in text:
            text = text.replace("T", " ", 1).split(".", 1)[0]
        return text


class ExchangeRecord(WireModel):
    id: str
    user_id: str = Field(..., alias="userId")
    username: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    product_id: str = Field(..., alias="productId")
    product_name: Optional[str] = Field(None, alias="productName")
    quantity: int
    points: int
    status: str
    coupon_code: Optional[str] = Field(None, alias="couponCode")
    created_at: str = Field(..., alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")

    @field_validator("id", "user_id", "product_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> str:
        return str(value)


class CodeSentAck(BaseModel):
    """Acknowledgement of a dispatched verification code.

    ``code`` is only populated in non-production deployments.
    """

    code: Optional[str] = None


def parse_products(items: Optional[List[Any]]) -> List[Product]:
    return [Product.model_validate(item) for item in items or []]
