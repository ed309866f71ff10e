"""initial schema

Revision ID: 202410190900
Revises:
Create Date: 2024-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410190900"
down_revision = None
branch_labels = None
depends_on = None

CURRENCY_CODES = ("INR", "USD", "EUR", "GBP", "JPY", "CAD", "AUD")
PAYMENT_METHODS = ("cash", "card", "upi", "netbanking", "other")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=30), nullable=False, unique=True),
        sa.Column("email", sa.String(length=254), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=128), nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=False),
        sa.Column(
            "monthly_budget_cents", sa.BigInteger(), nullable=False, server_default="0"
        ),
        sa.Column(
            "currency",
            sa.Enum(*CURRENCY_CODES, name="currencycode"),
            nullable=False,
            server_default="INR",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "monthly_budget_cents >= 0", name="ck_users_budget_non_negative"
        ),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "color", sa.String(length=7), nullable=False, server_default="#007bff"
        ),
        sa.Column(
            "icon", sa.String(length=50), nullable=False, server_default="fas fa-tag"
        ),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column(
            "payment_method",
            sa.Enum(*PAYMENT_METHODS, name="paymentmethod"),
            nullable=False,
            server_default="cash",
        ),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("receipt", sa.String(length=500)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_expenses_amount_non_negative"
        ),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_user_category", "expenses", ["user_id", "category_id"]
    )


def downgrade():
    op.drop_index("ix_expenses_user_category", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("categories")
    op.drop_table("users")
