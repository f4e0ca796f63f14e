"""
Plain read views returned by the engine services.

Views are frozen snapshots built from ORM rows; they carry the derived
totals and the effective amounts so callers never recompute them.
"""
from dataclasses import dataclass, fields
from datetime import date, datetime
from decimal import Decimal

from famledger.domain.statuses import income_effective_amount, payment_effective_amount


def serialize(value):
    """JSON-friendly rendering: YYYY-MM-DD dates, 2-decimal amount strings."""
    if isinstance(value, Serializable):
        return value.to_dict()
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


class Serializable:
    def to_dict(self) -> dict:
        return {f.name: serialize(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class IncomeEventView(Serializable):
    id: int
    family_id: int
    name: str
    source: str | None
    amount: Decimal
    scheduled_date: date
    frequency: str
    status: str
    actual_amount: Decimal | None
    actual_date: date | None
    effective_amount: Decimal
    allocated_amount: Decimal
    remaining_amount: Decimal

    @classmethod
    def from_model(cls, row) -> "IncomeEventView":
        return cls(
            id=row.id,
            family_id=row.family_id,
            name=row.name,
            source=row.source,
            amount=row.amount,
            scheduled_date=row.scheduled_date,
            frequency=row.frequency,
            status=row.status,
            actual_amount=row.actual_amount,
            actual_date=row.actual_date,
            effective_amount=income_effective_amount(row.status, row.amount, row.actual_amount),
            allocated_amount=row.allocated_amount,
            remaining_amount=row.remaining_amount,
        )


@dataclass(frozen=True)
class PaymentView(Serializable):
    id: int
    family_id: int
    payee: str
    amount: Decimal
    due_date: date
    payment_type: str
    frequency: str
    status: str
    paid_amount: Decimal | None
    paid_date: date | None
    spending_category_id: int | None
    effective_amount: Decimal
    attributed_amount: Decimal
    remaining_amount: Decimal

    @classmethod
    def from_model(cls, row) -> "PaymentView":
        return cls(
            id=row.id,
            family_id=row.family_id,
            payee=row.payee,
            amount=row.amount,
            due_date=row.due_date,
            payment_type=row.payment_type,
            frequency=row.frequency,
            status=row.status,
            paid_amount=row.paid_amount,
            paid_date=row.paid_date,
            spending_category_id=row.spending_category_id,
            effective_amount=payment_effective_amount(row.paid_date, row.amount, row.paid_amount),
            attributed_amount=row.attributed_amount,
            remaining_amount=row.remaining_amount,
        )


@dataclass(frozen=True)
class AttributionView(Serializable):
    id: int
    payment_id: int
    income_event_id: int
    amount: Decimal
    attribution_type: str
    created_at: datetime | None

    @classmethod
    def from_model(cls, row) -> "AttributionView":
        return cls(
            id=row.id,
            payment_id=row.payment_id,
            income_event_id=row.income_event_id,
            amount=row.amount,
            attribution_type=row.attribution_type,
            created_at=row.created_at,
        )
