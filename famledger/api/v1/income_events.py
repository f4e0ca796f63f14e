"""
Income event API endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from famledger.api.deps import get_db, get_family_id, get_lock_table
from famledger.application.income_events import (
    CreateIncomeEventUseCase, BulkCreateIncomeEventsUseCase, UpdateIncomeEventUseCase,
    MarkIncomeReceivedUseCase, RevertIncomeReceivedUseCase, CancelIncomeEventUseCase,
    DeleteIncomeEventUseCase, IncomeEventQueries,
)
from famledger.application.ledger_locks import KeyedLockTable
from famledger.domain.money import parse_amount


router = APIRouter(prefix="/api/v1/income-events", tags=["income-events"])


# === Request models ===

class CreateIncomeEventRequest(BaseModel):
    name: str
    amount: str
    scheduled_date: date
    frequency: str = "once"  # once, weekly, biweekly, monthly, quarterly, annual
    source: str | None = None
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class BulkCreateIncomeEventsRequest(BaseModel):
    items: list[CreateIncomeEventRequest]


class UpdateIncomeEventRequest(BaseModel):
    name: str | None = None
    amount: str | None = None
    scheduled_date: date | None = None
    frequency: str | None = None
    source: str | None = None
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return None if v is None else str(parse_amount(v))


class MarkReceivedRequest(BaseModel):
    actual_amount: str | None = None  # defaults to the nominal amount
    actual_date: date | None = None

    @field_validator("actual_amount")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return None if v is None else str(parse_amount(v, field="actual_amount"))


# === Endpoints ===

@router.post("/", status_code=201)
def create_income_event(
    req: CreateIncomeEventRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    view = CreateIncomeEventUseCase(db).execute(family_id=family_id, **req.model_dump())
    return view.to_dict()


@router.post("/bulk", status_code=201)
def bulk_create_income_events(
    req: BulkCreateIncomeEventsRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    views = BulkCreateIncomeEventsUseCase(db).execute(family_id, [item.model_dump() for item in req.items])
    return [v.to_dict() for v in views]


@router.get("/")
def list_income_events(
    status: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [v.to_dict() for v in IncomeEventQueries(db).list(family_id, status, from_date, to_date)]


@router.get("/upcoming")
def upcoming_income_events(
    days: int = 30,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [v.to_dict() for v in IncomeEventQueries(db).upcoming(family_id, days)]


@router.get("/summary")
def income_summary(
    from_date: date,
    to_date: date,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return IncomeEventQueries(db).summary(family_id, from_date, to_date).to_dict()


@router.get("/{income_event_id}")
def get_income_event(
    income_event_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return IncomeEventQueries(db).get(family_id, income_event_id).to_dict()


@router.patch("/{income_event_id}")
def update_income_event(
    income_event_id: int,
    req: UpdateIncomeEventRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    changes = req.model_dump(exclude_unset=True)
    return UpdateIncomeEventUseCase(db, locks).execute(family_id, income_event_id, **changes).to_dict()


@router.post("/{income_event_id}/mark-received")
def mark_income_received(
    income_event_id: int,
    req: MarkReceivedRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    view = MarkIncomeReceivedUseCase(db, locks).execute(
        family_id, income_event_id, actual_amount=req.actual_amount, actual_date=req.actual_date,
    )
    return view.to_dict()


@router.post("/{income_event_id}/revert")
def revert_income_received(
    income_event_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    return RevertIncomeReceivedUseCase(db, locks).execute(family_id, income_event_id).to_dict()


@router.post("/{income_event_id}/cancel")
def cancel_income_event(
    income_event_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    return CancelIncomeEventUseCase(db, locks).execute(family_id, income_event_id).to_dict()


@router.delete("/{income_event_id}", status_code=204)
def delete_income_event(
    income_event_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    DeleteIncomeEventUseCase(db, locks).execute(family_id, income_event_id)
    return Response(status_code=204)
