"""
Report API endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from famledger.api.deps import get_db, get_family_id
from famledger.application.reports import ReportComposer
from famledger.config import get_settings
from famledger.domain.money import parse_percentage


router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


def _composer(db: Session) -> ReportComposer:
    return ReportComposer(db, max_occurrences=get_settings().RECURRENCE_MAX_OCCURRENCES)


@router.get("/cash-flow")
def cash_flow(
    from_date: date,
    to_date: date,
    group_by: str = "month",
    include_projections: bool = False,
    projection_periods: int = 3,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    report = _composer(db).cash_flow(
        family_id, from_date, to_date, group_by,
        include_projections=include_projections, projection_periods=projection_periods,
    )
    return report.to_dict()


@router.get("/monthly-summary")
def monthly_summary(
    year: int,
    month: int,
    template_id: int | None = None,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return _composer(db).monthly_summary(family_id, year, month, template_id=template_id).to_dict()


@router.get("/annual-summary")
def annual_summary(
    year: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return _composer(db).annual_summary(family_id, year).to_dict()


@router.get("/savings-rate")
def savings_rate(
    from_date: date,
    to_date: date,
    target_rate: str = "20",
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    target = parse_percentage(target_rate, field="target_rate")
    return _composer(db).savings_rate(family_id, from_date, to_date, target_rate=target).to_dict()


@router.get("/net-worth")
def net_worth(
    from_date: date | None = None,
    to_date: date | None = None,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return _composer(db).net_worth(family_id, from_date, to_date).to_dict()


@router.get("/budget-overview")
def budget_overview(
    template_id: int,
    from_date: date,
    to_date: date,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return _composer(db).budget_overview(family_id, template_id, from_date, to_date).to_dict()


@router.get("/budget-projection")
def budget_projection(
    template_id: int,
    months: int = 6,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return _composer(db).budget_projection(family_id, template_id, months=months).to_dict()


@router.get("/debt-analysis")
def debt_analysis(
    debt_category_id: list[int] = Query(default=[]),
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    """Debt report; ``debt_category_id`` (repeatable) marks the spending categories holding debt payments"""
    return _composer(db).debt_analysis(family_id, debt_category_ids=debt_category_id).to_dict()
