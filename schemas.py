from datetime import datetime
from typing import ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from models import CurrencyCode, PaymentMethod

HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"

# keeps ids and cent totals inside SQLite's 64-bit INTEGER
MAX_ID = 2**63 - 1
MAX_AMOUNT = 1e12
MAX_PAGE = 1_000_000


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class PatchModel(ApiModel):
    """Partial update body; only fields the client sent are applied."""

    non_nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def reject_null_required(self):
        for name in sorted(self.model_fields_set & self.non_nullable):
            if getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class RegisterIn(ApiModel):
    username: str = Field(
        ..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$"
    )
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    full_name: str = Field(..., min_length=1, max_length=100)
    monthly_budget: float = Field(
        default=0, ge=0, le=MAX_AMOUNT, allow_inf_nan=False
    )
    currency: CurrencyCode = CurrencyCode.inr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginIn(ApiModel):
    identifier: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProfileUpdate(PatchModel):
    non_nullable: ClassVar[frozenset[str]] = frozenset(
        {"full_name", "monthly_budget", "currency"}
    )

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    monthly_budget: Optional[float] = Field(
        default=None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False
    )
    currency: Optional[CurrencyCode] = None


class CategoryIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    icon: Optional[str] = Field(default=None, min_length=3, max_length=50)


class CategoryUpdate(PatchModel):
    non_nullable: ClassVar[frozenset[str]] = frozenset({"name", "color", "icon"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    icon: Optional[str] = Field(default=None, min_length=3, max_length=50)


def _clean_tags(tags: Optional[list[str]]) -> Optional[list[str]]:
    if tags is None:
        return None
    return [tag.strip() for tag in tags if tag and tag.strip()]


class ExpenseIn(ApiModel):
    title: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    description: Optional[str] = Field(default=None, max_length=500)
    category: int = Field(..., ge=1, le=MAX_ID)
    date: Optional[datetime] = None
    payment_method: PaymentMethod = PaymentMethod.cash
    tags: list[str] = Field(default_factory=list)
    receipt: Optional[str] = Field(default=None, max_length=500)

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _clean_tags(value)


class ExpenseUpdate(PatchModel):
    non_nullable: ClassVar[frozenset[str]] = frozenset(
        {"title", "amount", "category", "date", "payment_method", "tags"}
    )

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[float] = Field(
        default=None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False
    )
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[int] = Field(default=None, ge=1, le=MAX_ID)
    date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    tags: Optional[list[str]] = None
    receipt: Optional[str] = Field(default=None, max_length=500)

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _clean_tags(value)


class OutModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    def dump(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class UserOut(OutModel):
    id: int
    username: str
    email: str
    full_name: str
    monthly_budget: float
    currency: CurrencyCode
    created_at: datetime


class CategoryRef(OutModel):
    id: int
    name: str
    color: str
    icon: str


class CategoryOut(OutModel):
    id: int
    name: str
    description: Optional[str]
    color: str
    icon: str
    is_default: bool
    user_id: int
    created_at: datetime
    updated_at: datetime


class ExpenseOut(OutModel):
    id: int
    title: str
    amount: float
    description: Optional[str]
    category: Optional[CategoryRef]
    user_id: int
    date: datetime
    payment_method: PaymentMethod
    tags: list[str]
    receipt: Optional[str]
    created_at: datetime
    updated_at: datetime
