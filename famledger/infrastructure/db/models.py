"""
SQLAlchemy ORM models (ledger tables + budget tables)
"""
from decimal import Decimal
from datetime import date as date_type
from sqlalchemy import (
    String, DateTime, Integer, Text, Date, func, Boolean, Numeric,
    UniqueConstraint, Index, ForeignKey, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from famledger.infrastructure.db.session import Base


class IncomeEventModel(Base):
    """
    Expected or received inflow (one row per recurrence anchor)

    allocated_amount / remaining_amount are derived totals written only by
    the attribution ledger.
    """
    __tablename__ = "income_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    scheduled_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="once", server_default="once")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled", server_default="scheduled")

    actual_amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    actual_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    # Derived totals
    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_income_events_family_date", "family_id", "scheduled_date"),
    )


class SpendingCategoryModel(Base):
    """Spending bucket a payment is filed under, optionally rolled up into a budget category"""
    __tablename__ = "spending_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    budget_category_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_categories.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class PaymentModel(Base):
    """
    Expected or settled outflow

    attributed_amount / remaining_amount are derived totals written only by
    the attribution ledger.
    """
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    payee: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    due_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    payment_type: Mapped[str] = mapped_column(String(16), nullable=False, default="once", server_default="once")
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="once", server_default="once")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled", server_default="scheduled")

    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    paid_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    spending_category_id: Mapped[int | None] = mapped_column(
        ForeignKey("spending_categories.id", ondelete="SET NULL"), nullable=True
    )
    auto_pay_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Derived totals
    attributed_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_payments_family_due", "family_id", "due_date"),
    )


class PaymentAttributionModel(Base):
    """Ledger edge: part of one payment funded by one income event"""
    __tablename__ = "payment_attributions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    income_event_id: Mapped[int] = mapped_column(
        ForeignKey("income_events.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    attribution_type: Mapped[str] = mapped_column(String(16), nullable=False, default="manual", server_default="manual")
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_attributions_amount_positive"),
    )


class BudgetCategoryModel(Base):
    """Named spending bucket with a family-wide target percentage (soft-deleted via is_active)"""
    __tablename__ = "budget_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    target_percentage: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    color: Mapped[str] = mapped_column(String(16), nullable=False, default="#3B82F6", server_default="#3B82F6")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class BudgetTemplateModel(Base):
    """Reusable percentage template"""
    __tablename__ = "budget_templates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class BudgetAllocationModel(Base):
    """Percentage assigned to a budget category within a template"""
    __tablename__ = "budget_allocations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("budget_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    budget_category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=2), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (
        UniqueConstraint("template_id", "budget_category_id", name="uq_budget_allocation_template_category"),
    )


class IncomeBudgetAllocationModel(Base):
    """Concrete dollar target generated for one income event from a template"""
    __tablename__ = "income_budget_allocations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    income_event_id: Mapped[int] = mapped_column(
        ForeignKey("income_events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    budget_category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    template_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=2), nullable=False)

    __table_args__ = (
        UniqueConstraint("income_event_id", "budget_category_id", name="uq_income_budget_allocation"),
    )


class AccountModel(Base):
    """Account balance snapshot supplied by the calling layer (net worth input)"""
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(16), nullable=False)  # checking, savings, credit, loan, investment
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, default=Decimal("0"), server_default="0"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
