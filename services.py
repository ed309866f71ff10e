from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from auth import hash_password, verify_password
from models import (
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    Category,
    Expense,
    PaymentMethod,
    User,
)
from money import amount_to_cents, cents_to_amount, currency_symbol
from periods import (
    MONTH_LABELS,
    Period,
    calendar_year,
    date_range,
    month_to_date,
    now_local,
    to_local_naive,
    trailing_days,
    year_to_date,
)
from schemas import (
    CategoryIn,
    CategoryUpdate,
    ExpenseIn,
    ExpenseUpdate,
    ProfileUpdate,
    RegisterIn,
)

logger = logging.getLogger(__name__)


DEFAULT_CATEGORIES = (
    {"name": "Food & Dining", "icon": "fas fa-utensils", "color": "#e74c3c"},
    {"name": "Transportation", "icon": "fas fa-car", "color": "#3498db"},
    {"name": "Shopping", "icon": "fas fa-shopping-bag", "color": "#f39c12"},
    {"name": "Entertainment", "icon": "fas fa-film", "color": "#9b59b6"},
    {"name": "Bills & Utilities", "icon": "fas fa-file-invoice", "color": "#34495e"},
    {"name": "Healthcare", "icon": "fas fa-heartbeat", "color": "#e67e22"},
    {"name": "Education", "icon": "fas fa-graduation-cap", "color": "#2ecc71"},
    {"name": "Other", "icon": "fas fa-ellipsis-h", "color": "#95a5a6"},
)
FALLBACK_CATEGORY_NAME = "Other"

SORT_COLUMNS = {
    "date": Expense.date,
    "amount": Expense.amount_cents,
    "title": Expense.title,
    "paymentMethod": Expense.payment_method,
    "createdAt": Expense.created_at,
    "updatedAt": Expense.updated_at,
}

RECENT_EXPENSES_LIMIT = 5


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class InvalidCategoryError(ValueError):
    pass


class AuthenticationError(ValueError):
    pass


def default_categories_for(user_id: int) -> list[Category]:
    return [
        Category(user_id=user_id, is_default=True, **definition)
        for definition in DEFAULT_CATEGORIES
    ]


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def register(self, data: RegisterIn) -> User:
        existing = self.session.scalar(
            select(User.id).where(
                or_(User.email == data.email, User.username == data.username)
            )
        )
        if existing:
            raise ConflictError("User already exists with this email or username")

        user = User(
            username=data.username,
            email=data.email,
            password_hash=hash_password(data.password),
            full_name=data.full_name,
            monthly_budget_cents=amount_to_cents(data.monthly_budget),
            currency=data.currency,
        )
        # user row and its default categories commit together or not at all
        try:
            self.session.add(user)
            self.session.flush()
            self.session.add_all(default_categories_for(user.id))
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(
                "User already exists with this email or username"
            ) from exc
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(f"register_failed: username={data.username}")
            raise
        self.session.refresh(user)
        logger.info(
            f"user_registered: user_id={user.id} "
            f"default_categories={len(DEFAULT_CATEGORIES)}"
        )
        return user

    def authenticate(self, identifier: str, password: str) -> User:
        clean = identifier.strip()
        user = self.session.scalar(
            select(User).where(
                or_(User.email == clean.lower(), User.username == clean)
            )
        )
        if not user or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid credentials")
        return user

    def update_profile(self, user_id: int, data: ProfileUpdate) -> User:
        user = self.get(user_id)
        changes = data.changes()
        if "full_name" in changes:
            user.full_name = changes["full_name"]
        if "monthly_budget" in changes:
            user.monthly_budget_cents = amount_to_cents(changes["monthly_budget"])
        if "currency" in changes:
            user.currency = changes["currency"]
        self.session.commit()
        self.session.refresh(user)
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.created_at.desc(), Category.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.user_id == self.user_id
            )
        )
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.name):
            raise ConflictError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            description=data.description,
            color=data.color or DEFAULT_CATEGORY_COLOR,
            icon=data.icon or DEFAULT_CATEGORY_ICON,
            is_default=False,
        )
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Category with this name already exists") from exc
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.changes()
        if "name" in changes:
            if self._name_taken(changes["name"], exclude_id=category.id):
                raise ConflictError("Category with this name already exists")
            category.name = changes["name"].strip()
        for field in ("description", "color", "icon"):
            if field in changes:
                setattr(category, field, changes[field])
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Category with this name already exists") from exc
        self.session.refresh(category)
        return category

    def _fallback_category_id(self) -> Optional[int]:
        stmt = (
            select(Category.id)
            .where(Category.user_id == self.user_id, Category.is_default.is_(True))
            .order_by(
                (Category.name == FALLBACK_CATEGORY_NAME).desc(), Category.id.asc()
            )
            .limit(1)
        )
        return self.session.scalar(stmt)

    def delete(self, category_id: int) -> None:
        deletable = (
            Category.id == category_id,
            Category.user_id == self.user_id,
            Category.is_default.is_(False),
        )
        fallback_id = self._fallback_category_id()
        try:
            if fallback_id is not None:
                moved = self.session.execute(
                    update(Expense)
                    .where(
                        Expense.user_id == self.user_id,
                        Expense.category_id == category_id,
                        select(Category.id).where(*deletable).exists(),
                    )
                    .values(category_id=fallback_id)
                    .execution_options(synchronize_session="fetch")
                )
                if moved.rowcount:
                    logger.info(
                        f"category_expenses_reassigned: user_id={self.user_id} "
                        f"category_id={category_id} to={fallback_id} "
                        f"count={moved.rowcount}"
                    )
            result = self.session.execute(
                delete(Category)
                .where(*deletable)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 0:
                self.session.rollback()
                raise NotFoundError("Category not found or is a default category")
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Category is still used by expenses") from exc


@dataclass
class ExpenseQuery:
    category_id: Optional[int] = None
    start: Optional[date] = None
    end: Optional[date] = None
    search: Optional[str] = None
    sort_by: str = "date"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 10


@dataclass
class ExpensePage:
    items: list[Expense]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _owned_category(self, category_id: int) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.user_id == self.user_id
            )
        )

    def list(self, query: ExpenseQuery) -> ExpensePage:
        if query.sort_by not in SORT_COLUMNS:
            raise ValueError(f"Unsupported sort field: {query.sort_by}")
        conditions = [Expense.user_id == self.user_id]
        if query.category_id is not None:
            conditions.append(Expense.category_id == query.category_id)
        window = date_range(query.start, query.end)
        if window.start:
            conditions.append(Expense.date >= window.start)
        if window.end:
            conditions.append(Expense.date < window.end)
        needle = (query.search or "").strip().lower()
        if needle:
            conditions.append(
                or_(
                    func.lower(Expense.title).contains(needle, autoescape=True),
                    func.lower(func.coalesce(Expense.description, "")).contains(
                        needle, autoescape=True
                    ),
                )
            )

        total = self.session.scalar(select(func.count(Expense.id)).where(*conditions))

        column = SORT_COLUMNS[query.sort_by]
        if query.sort_order == "asc":
            ordering = (column.asc(), Expense.id.asc())
        else:
            ordering = (column.desc(), Expense.id.desc())
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(*conditions)
            .order_by(*ordering)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        items = list(self.session.scalars(stmt).all())
        return ExpensePage(
            items=items, total=int(total or 0), page=query.page, limit=query.limit
        )

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.id == expense_id, Expense.user_id == self.user_id)
            .execution_options(populate_existing=True)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def recent(self, limit: int = RECENT_EXPENSES_LIMIT) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: ExpenseIn) -> Expense:
        if self._owned_category(data.category) is None:
            raise InvalidCategoryError("Invalid category")
        expense = Expense(
            user_id=self.user_id,
            title=data.title,
            amount_cents=amount_to_cents(data.amount),
            description=data.description,
            category_id=data.category,
            date=to_local_naive(data.date) if data.date else now_local(),
            payment_method=data.payment_method,
            tags=list(data.tags),
            receipt=data.receipt,
        )
        self.session.add(expense)
        try:
            self.session.commit()
        except IntegrityError as exc:
            # category removed between the ownership check and the insert
            self.session.rollback()
            raise InvalidCategoryError("Invalid category") from exc
        return self.get(expense.id)

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        values: dict[str, object] = {}
        for key, value in data.changes().items():
            if key == "amount":
                values["amount_cents"] = amount_to_cents(value)
            elif key == "category":
                values["category_id"] = value
            elif key == "date":
                values["date"] = to_local_naive(value)
            elif key == "tags":
                values["tags"] = list(value)
            else:
                values[key] = value

        if not values:
            return self.get(expense_id)

        conditions = [Expense.id == expense_id, Expense.user_id == self.user_id]
        if "category_id" in values:
            conditions.append(
                select(Category.id)
                .where(
                    Category.id == values["category_id"],
                    Category.user_id == self.user_id,
                )
                .exists()
            )
        try:
            result = self.session.execute(
                update(Expense)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
        except IntegrityError as exc:
            self.session.rollback()
            raise InvalidCategoryError("Invalid category") from exc
        if result.rowcount == 0:
            self.session.rollback()
            self.get(expense_id)
            raise InvalidCategoryError("Invalid category")
        self.session.commit()
        return self.get(expense_id)

    def delete(self, expense_id: int) -> None:
        result = self.session.execute(
            delete(Expense)
            .where(Expense.id == expense_id, Expense.user_id == self.user_id)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFoundError("Expense not found")
        self.session.commit()


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _window(self, period: Period) -> list:
        conditions = [Expense.user_id == self.user_id]
        if period.start is not None:
            conditions.append(Expense.date >= period.start)
        if period.end is not None:
            conditions.append(Expense.date < period.end)
        return conditions

    def _totals_cents(self, period: Period) -> tuple[int, int]:
        stmt = select(
            func.coalesce(func.sum(Expense.amount_cents), 0),
            func.count(Expense.id),
        ).where(*self._window(period))
        total, count = self.session.execute(stmt).one()
        return int(total or 0), int(count or 0)

    def totals(self, period: Period) -> dict[str, object]:
        total, count = self._totals_cents(period)
        return {"total": cents_to_amount(total), "count": count}

    def category_breakdown(self, period: Period) -> list[dict[str, object]]:
        total = func.sum(Expense.amount_cents).label("total")
        stmt = (
            select(
                Category.id,
                Category.name,
                Category.color,
                Category.icon,
                total,
                func.count(Expense.id).label("count"),
            )
            .select_from(Expense)
            .join(Category, Category.id == Expense.category_id)
            .where(*self._window(period))
            .group_by(Category.id, Category.name, Category.color, Category.icon)
            .order_by(total.desc(), Category.name.asc())
        )
        return [
            {
                "id": row.id,
                "name": row.name,
                "color": row.color,
                "icon": row.icon,
                "total": cents_to_amount(int(row.total or 0)),
                "count": int(row.count),
            }
            for row in self.session.execute(stmt)
        ]

    def dashboard(self, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or now_local()
        user = self.session.get(User, self.user_id)
        if not user:
            raise NotFoundError("User not found")

        this_month = month_to_date(now)
        monthly_total, monthly_count = self._totals_cents(this_month)
        remaining = user.monthly_budget_cents - monthly_total

        return {
            "monthly": {
                "total": cents_to_amount(monthly_total),
                "count": monthly_count,
                "budget": user.monthly_budget,
                "remaining": cents_to_amount(remaining),
            },
            "yearly": self.totals(year_to_date(now)),
            "category_breakdown": self.category_breakdown(this_month),
            "recent_expenses": ExpenseService(self.session, self.user_id).recent(),
            "currency": {
                "code": user.currency.value,
                "symbol": currency_symbol(user.currency.value),
            },
        }

    def monthly_chart(self, year: int) -> list[dict[str, object]]:
        month = func.strftime("%m", Expense.date).label("month")
        stmt = (
            select(
                month,
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(*self._window(calendar_year(year)))
            .group_by("month")
        )
        by_month: dict[int, tuple[int, int]] = {}
        for row in self.session.execute(stmt):
            by_month[int(row.month)] = (int(row.total or 0), int(row.count))

        out: list[dict[str, object]] = []
        for index, label in enumerate(MONTH_LABELS, start=1):
            total, count = by_month.get(index, (0, 0))
            out.append({"month": label, "amount": cents_to_amount(total), "count": count})
        return out

    def trends(
        self, days: int = 30, now: Optional[datetime] = None
    ) -> list[dict[str, object]]:
        day = func.strftime("%Y-%m-%d", Expense.date).label("day")
        stmt = (
            select(
                day,
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
                func.count(Expense.id).label("count"),
            )
            .where(*self._window(trailing_days(days, now)))
            .group_by("day")
            .order_by("day")
        )
        return [
            {
                "date": row.day,
                "total": cents_to_amount(int(row.total or 0)),
                "count": int(row.count),
            }
            for row in self.session.execute(stmt)
        ]


SAMPLE_EXPENSES = (
    {
        "title": "Grocery Shopping",
        "amount_cents": 250_000,
        "description": "Weekly grocery shopping at supermarket",
        "category": "Food & Dining",
        "payment_method": PaymentMethod.card,
        "days_ago": 2,
    },
    {
        "title": "Uber Ride",
        "amount_cents": 45_000,
        "description": "Ride to office",
        "category": "Transportation",
        "payment_method": PaymentMethod.upi,
        "days_ago": 1,
    },
    {
        "title": "Movie Tickets",
        "amount_cents": 80_000,
        "description": "Weekend movie with friends",
        "category": "Entertainment",
        "payment_method": PaymentMethod.card,
        "days_ago": 3,
    },
    {
        "title": "Electricity Bill",
        "amount_cents": 120_000,
        "description": "Monthly electricity bill payment",
        "category": "Bills & Utilities",
        "payment_method": PaymentMethod.netbanking,
        "days_ago": 5,
    },
    {
        "title": "Online Shopping",
        "amount_cents": 320_000,
        "description": "Bought clothes and accessories",
        "category": "Shopping",
        "payment_method": PaymentMethod.card,
        "days_ago": 7,
    },
)


class DevDataService:
    """Sample-data helpers behind the development-only endpoints."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def seed_sample_data(self, now: Optional[datetime] = None) -> int:
        now = now or now_local()
        categories = CategoryService(self.session, self.user_id).list_all()
        if not categories:
            raise ValueError("No categories found. Please create categories first.")
        categories.sort(key=lambda c: c.id)
        by_name = {c.name: c for c in categories}

        expenses = []
        for index, sample in enumerate(SAMPLE_EXPENSES):
            category = by_name.get(sample["category"]) or categories[
                index % len(categories)
            ]
            expenses.append(
                Expense(
                    user_id=self.user_id,
                    title=sample["title"],
                    amount_cents=sample["amount_cents"],
                    description=sample["description"],
                    category_id=category.id,
                    payment_method=sample["payment_method"],
                    date=now - timedelta(days=sample["days_ago"]),
                    tags=[],
                )
            )
        self.session.add_all(expenses)
        self.session.commit()
        logger.info(f"sample_data_seeded: user_id={self.user_id} count={len(expenses)}")
        return len(expenses)

    def clear_data(self) -> dict[str, int]:
        expenses = self.session.execute(
            delete(Expense).where(Expense.user_id == self.user_id)
        )
        categories = self.session.execute(
            delete(Category).where(
                Category.user_id == self.user_id, Category.is_default.is_(False)
            )
        )
        self.session.commit()
        logger.info(
            f"user_data_cleared: user_id={self.user_id} "
            f"expenses={expenses.rowcount} categories={categories.rowcount}"
        )
        return {"expenses": expenses.rowcount, "categories": categories.rowcount}

    def stats(self) -> dict[str, int]:
        users = self.session.scalar(select(func.count(User.id)))
        categories = self.session.scalar(
            select(func.count(Category.id)).where(Category.user_id == self.user_id)
        )
        expenses = self.session.scalar(
            select(func.count(Expense.id)).where(Expense.user_id == self.user_id)
        )
        return {
            "total_users": int(users or 0),
            "user_categories": int(categories or 0),
            "user_expenses": int(expenses or 0),
        }
