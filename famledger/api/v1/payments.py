"""
Payment API endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from famledger.api.deps import get_db, get_family_id, get_lock_table
from famledger.application.ledger_locks import KeyedLockTable
from famledger.application.payments import (
    CreatePaymentUseCase, BulkCreatePaymentsUseCase, UpdatePaymentUseCase,
    MarkPaymentPaidUseCase, RevertPaymentPaidUseCase, CancelPaymentUseCase,
    DeletePaymentUseCase, PaymentQueries,
)
from famledger.domain.money import parse_amount


router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


# === Request models ===

class CreatePaymentRequest(BaseModel):
    payee: str
    amount: str
    due_date: date
    payment_type: str = "once"  # once, recurring, variable
    frequency: str = "once"
    spending_category_id: int | None = None
    auto_pay_enabled: bool = False
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class BulkCreatePaymentsRequest(BaseModel):
    items: list[CreatePaymentRequest]


class UpdatePaymentRequest(BaseModel):
    payee: str | None = None
    amount: str | None = None
    due_date: date | None = None
    payment_type: str | None = None
    frequency: str | None = None
    spending_category_id: int | None = None
    auto_pay_enabled: bool | None = None
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return None if v is None else str(parse_amount(v))


class MarkPaidRequest(BaseModel):
    paid_amount: str | None = None  # defaults to the nominal amount
    paid_date: date | None = None

    @field_validator("paid_amount")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return None if v is None else str(parse_amount(v, field="paid_amount"))


# === Endpoints ===

@router.post("/", status_code=201)
def create_payment(
    req: CreatePaymentRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return CreatePaymentUseCase(db).execute(family_id=family_id, **req.model_dump()).to_dict()


@router.post("/bulk", status_code=201)
def bulk_create_payments(
    req: BulkCreatePaymentsRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    views = BulkCreatePaymentsUseCase(db).execute(family_id, [item.model_dump() for item in req.items])
    return [v.to_dict() for v in views]


@router.get("/")
def list_payments(
    status: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    spending_category_id: int | None = None,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    views = PaymentQueries(db).list(family_id, status, from_date, to_date, spending_category_id)
    return [v.to_dict() for v in views]


@router.get("/upcoming")
def upcoming_payments(
    days: int = 30,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [v.to_dict() for v in PaymentQueries(db).upcoming(family_id, days)]


@router.get("/overdue")
def overdue_payments(
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [v.to_dict() for v in PaymentQueries(db).overdue(family_id)]


@router.get("/summary")
def payment_summary(
    from_date: date,
    to_date: date,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return PaymentQueries(db).summary(family_id, from_date, to_date).to_dict()


@router.get("/{payment_id}")
def get_payment(
    payment_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return PaymentQueries(db).get(family_id, payment_id).to_dict()


@router.patch("/{payment_id}")
def update_payment(
    payment_id: int,
    req: UpdatePaymentRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    changes = req.model_dump(exclude_unset=True)
    return UpdatePaymentUseCase(db, locks).execute(family_id, payment_id, **changes).to_dict()


@router.post("/{payment_id}/mark-paid")
def mark_payment_paid(
    payment_id: int,
    req: MarkPaidRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    view = MarkPaymentPaidUseCase(db, locks).execute(
        family_id, payment_id, paid_amount=req.paid_amount, paid_date=req.paid_date,
    )
    return view.to_dict()


@router.post("/{payment_id}/revert")
def revert_payment_paid(
    payment_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    return RevertPaymentPaidUseCase(db, locks).execute(family_id, payment_id).to_dict()


@router.post("/{payment_id}/cancel")
def cancel_payment(
    payment_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    return CancelPaymentUseCase(db, locks).execute(family_id, payment_id).to_dict()


@router.delete("/{payment_id}", status_code=204)
def delete_payment(
    payment_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    DeletePaymentUseCase(db, locks).execute(family_id, payment_id)
    return Response(status_code=204)
