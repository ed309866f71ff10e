from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import cents_to_amount


class CurrencyCode(str, Enum):
    inr = "INR"
    usd = "USD"
    eur = "EUR"
    gbp = "GBP"
    jpy = "JPY"
    cad = "CAD"
    aud = "AUD"


CURRENCY_CODE_ENUM = SAEnum(
    CurrencyCode,
    name="currencycode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class PaymentMethod(str, Enum):
    cash = "cash"
    card = "card"
    upi = "upi"
    netbanking = "netbanking"
    other = "other"


DEFAULT_CATEGORY_COLOR = "#007bff"
DEFAULT_CATEGORY_ICON = "fas fa-tag"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    monthly_budget_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.inr
    )

    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="user"
    )

    __table_args__ = (
        CheckConstraint(
            "monthly_budget_cents >= 0", name="ck_users_budget_non_negative"
        ),
    )

    @property
    def monthly_budget(self) -> float:
        return cents_to_amount(self.monthly_budget_cents)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    color: Mapped[str] = mapped_column(
        String(7), nullable=False, default=DEFAULT_CATEGORY_COLOR
    )
    icon: Mapped[str] = mapped_column(
        String(50), nullable=False, default=DEFAULT_CATEGORY_ICON
    )
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user: Mapped["User"] = relationship("User", back_populates="categories")
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod), nullable=False, default=PaymentMethod.cash
    )
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    receipt: Mapped[Optional[str]] = mapped_column(String(500))

    category: Mapped["Category"] = relationship("Category", back_populates="expenses")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category", "user_id", "category_id"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_non_negative"),
    )

    @property
    def amount(self) -> float:
        return cents_to_amount(self.amount_cents)
