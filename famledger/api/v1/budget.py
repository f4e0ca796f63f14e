"""
Budget API endpoints (categories, templates, resolver, income allocations)
"""
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from famledger.api.deps import get_db, get_family_id
from famledger.application.budget import (
    BudgetAllocationResolver, BudgetQueries,
    CreateBudgetCategoryUseCase, UpdateBudgetCategoryUseCase, DeactivateBudgetCategoryUseCase,
    CreateSpendingCategoryUseCase, CreateTemplateUseCase, CreateTemplateFromCategoriesUseCase,
    ApplyTemplateUseCase, GenerateIncomeAllocationUseCase,
)
from famledger.domain.money import parse_percentage


router = APIRouter(prefix="/api/v1/budget", tags=["budget"])


# === Request models ===

class CreateBudgetCategoryRequest(BaseModel):
    name: str
    target_percentage: str = "0"
    color: str = "#3B82F6"
    sort_order: int = 0

    @field_validator("target_percentage")
    @classmethod
    def validate_percentage(cls, v: str) -> str:
        return str(parse_percentage(v, field="target_percentage"))


class UpdateBudgetCategoryRequest(BaseModel):
    name: str | None = None
    target_percentage: str | None = None
    color: str | None = None
    sort_order: int | None = None

    @field_validator("target_percentage")
    @classmethod
    def validate_percentage(cls, v: str | None) -> str | None:
        return None if v is None else str(parse_percentage(v, field="target_percentage"))


class CreateSpendingCategoryRequest(BaseModel):
    name: str
    budget_category_id: int | None = None


class TemplateAllocationItem(BaseModel):
    budget_category_id: int
    percentage: str

    @field_validator("percentage")
    @classmethod
    def validate_percentage(cls, v: str) -> str:
        return str(parse_percentage(v))


class CreateTemplateRequest(BaseModel):
    name: str
    allocations: list[TemplateAllocationItem]


class CreateTemplateFromCategoriesRequest(BaseModel):
    name: str


class GenerateAllocationRequest(BaseModel):
    template_id: int


# === Categories ===

@router.get("/categories")
def list_budget_categories(
    include_inactive: bool = False,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [c.to_dict() for c in BudgetQueries(db).list_categories(family_id, include_inactive)]


@router.post("/categories", status_code=201)
def create_budget_category(
    req: CreateBudgetCategoryRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return CreateBudgetCategoryUseCase(db).execute(family_id=family_id, **req.model_dump()).to_dict()


@router.patch("/categories/{category_id}")
def update_budget_category(
    category_id: int,
    req: UpdateBudgetCategoryRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    changes = req.model_dump(exclude_unset=True)
    return UpdateBudgetCategoryUseCase(db).execute(family_id, category_id, **changes).to_dict()


@router.delete("/categories/{category_id}", status_code=204)
def deactivate_budget_category(
    category_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    DeactivateBudgetCategoryUseCase(db).execute(family_id, category_id)
    return Response(status_code=204)


@router.get("/spending-categories")
def list_spending_categories(
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [c.to_dict() for c in BudgetQueries(db).list_spending_categories(family_id)]


@router.post("/spending-categories", status_code=201)
def create_spending_category(
    req: CreateSpendingCategoryRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    view = CreateSpendingCategoryUseCase(db).execute(family_id, req.name, req.budget_category_id)
    return view.to_dict()


# === Templates ===

@router.get("/templates")
def list_templates(
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [t.to_dict() for t in BudgetQueries(db).list_templates(family_id)]


@router.post("/templates", status_code=201)
def create_template(
    req: CreateTemplateRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    allocations = [(a.budget_category_id, a.percentage) for a in req.allocations]
    return CreateTemplateUseCase(db).execute(family_id, req.name, allocations).to_dict()


@router.post("/templates/from-categories", status_code=201)
def create_template_from_categories(
    req: CreateTemplateFromCategoriesRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return CreateTemplateFromCategoriesUseCase(db).execute(family_id, req.name).to_dict()


@router.get("/templates/{template_id}")
def get_template(
    template_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return BudgetQueries(db).get_template(family_id, template_id).to_dict()


@router.get("/templates/{template_id}/resolve")
def resolve_template(
    template_id: int,
    income_amount: str,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return BudgetAllocationResolver(db).resolve(family_id, template_id, income_amount).to_dict()


@router.post("/templates/{template_id}/apply")
def apply_template(
    template_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [c.to_dict() for c in ApplyTemplateUseCase(db).execute(family_id, template_id)]


# === Income allocations ===

@router.post("/income-events/{income_event_id}/allocation", status_code=201)
def generate_income_allocation(
    income_event_id: int,
    req: GenerateAllocationRequest,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    rows = GenerateIncomeAllocationUseCase(db).execute(family_id, income_event_id, req.template_id)
    return [r.to_dict() for r in rows]


@router.get("/income-events/{income_event_id}/allocation")
def list_income_allocation(
    income_event_id: int,
    family_id: int = Depends(get_family_id),
    db: Session = Depends(get_db),
):
    return [r.to_dict() for r in BudgetQueries(db).list_income_allocations(family_id, income_event_id)]
