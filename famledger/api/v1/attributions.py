"""
Attribution ledger API endpoints
"""
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from famledger.api.deps import get_db, get_family_id, get_lock_table
from famledger.application.attributions import AttributionLedger
from famledger.application.ledger_locks import KeyedLockTable
from famledger.domain.money import parse_amount


router = APIRouter(prefix="/api/v1", tags=["attributions"])


# === Request models ===

class CreateAttributionRequest(BaseModel):
    income_event_id: int
    amount: str
    attribution_type: str = "manual"  # manual, automatic
    created_by: int | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class SplitItem(BaseModel):
    income_event_id: int
    amount: str

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class SplitPaymentRequest(BaseModel):
    splits: list[SplitItem]
    attribution_type: str = "manual"
    created_by: int | None = None


class ValidateCapacityRequest(BaseModel):
    proposed: list[SplitItem]


def _ledger(db: Session, locks: KeyedLockTable) -> AttributionLedger:
    return AttributionLedger(db, locks)


# === Endpoints ===

@router.post("/payments/{payment_id}/attributions", status_code=201)
def create_attribution(
    payment_id: int,
    req: CreateAttributionRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    view = _ledger(db, locks).create_attribution(
        family_id, payment_id, req.income_event_id, req.amount,
        attribution_type=req.attribution_type, created_by=req.created_by,
    )
    return view.to_dict()


@router.get("/payments/{payment_id}/attributions")
def list_payment_attributions(
    payment_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    return _ledger(db, locks).list_for_payment(family_id, payment_id).to_dict()


@router.get("/income-events/{income_event_id}/attributions")
def list_income_event_attributions(
    income_event_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    return _ledger(db, locks).list_for_income_event(family_id, income_event_id).to_dict()


@router.delete("/attributions/{attribution_id}", status_code=204)
def delete_attribution(
    attribution_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    _ledger(db, locks).delete_attribution(family_id, attribution_id)
    return Response(status_code=204)


@router.post("/payments/{payment_id}/split", status_code=201)
def split_payment(
    payment_id: int,
    req: SplitPaymentRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    views = _ledger(db, locks).split_payment(
        family_id, payment_id, [(s.income_event_id, s.amount) for s in req.splits],
        attribution_type=req.attribution_type, created_by=req.created_by,
    )
    return [v.to_dict() for v in views]


@router.get("/payments/{payment_id}/attribution-suggestions")
def suggest_attributions(
    payment_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    return [s.to_dict() for s in _ledger(db, locks).suggest_attributions(family_id, payment_id)]


@router.post("/payments/{payment_id}/auto-attribute")
def auto_attribute_payment(
    payment_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    view = _ledger(db, locks).auto_attribute_payment(family_id, payment_id)
    return {"attribution": view.to_dict() if view is not None else None}


@router.post("/payments/{payment_id}/validate-attributions")
def validate_attributions(
    payment_id: int,
    req: ValidateCapacityRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
    locks: KeyedLockTable = Depends(get_lock_table),
):
    check = _ledger(db, locks).validate_capacity(
        family_id, payment_id, [(p.income_event_id, p.amount) for p in req.proposed],
    )
    return check.to_dict()
