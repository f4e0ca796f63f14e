"""
Budget categories, percentage templates and the allocation resolver.

The resolver turns a template's percentages into dollar targets for an
income amount. Every target is rounded independently (half-up, cents); the
rounding residual is reported, never redistributed.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Sequence, Tuple

from sqlalchemy.orm import Session

from famledger.domain.errors import (
    TemplateNotFound, BudgetCategoryNotFound, IncomeEventNotFound,
    InvalidInputError, InvalidTemplate, ConflictError,
)
from famledger.domain.money import ZERO, HUNDRED, parse_amount, parse_percentage, percent_of, quantize
from famledger.domain.statuses import INCOME_CANCELLED, income_effective_amount
from famledger.domain.views import Serializable
from famledger.infrastructure.db.models import (
    BudgetCategoryModel, BudgetTemplateModel, BudgetAllocationModel,
    IncomeBudgetAllocationModel, SpendingCategoryModel,
)
from famledger.infrastructure.db.repository import LedgerRepository

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#3B82F6"


# ----------------------------------------------------------------------
# Views
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class BudgetCategoryView(Serializable):
    id: int
    name: str
    target_percentage: Decimal
    color: str
    sort_order: int
    is_active: bool

    @classmethod
    def from_model(cls, row: BudgetCategoryModel) -> "BudgetCategoryView":
        return cls(row.id, row.name, row.target_percentage, row.color, row.sort_order, row.is_active)


@dataclass(frozen=True)
class TemplateAllocationView(Serializable):
    budget_category_id: int
    percentage: Decimal
    sort_order: int


@dataclass(frozen=True)
class BudgetTemplateView(Serializable):
    id: int
    name: str
    allocations: List[TemplateAllocationView]
    total_percentage: Decimal


@dataclass(frozen=True)
class SpendingCategoryView(Serializable):
    id: int
    name: str
    budget_category_id: int | None
    is_active: bool


@dataclass(frozen=True)
class ResolvedTarget(Serializable):
    budget_category_id: int
    name: str
    color: str
    percentage: Decimal
    target_amount: Decimal


@dataclass(frozen=True)
class ResolvedBudget(Serializable):
    template_id: int
    income_amount: Decimal
    targets: List[ResolvedTarget]
    total_allocated: Decimal
    total_percentage: Decimal
    residual: Decimal  # income - sum(targets), rounding and unallocated share


@dataclass(frozen=True)
class IncomeAllocationView(Serializable):
    income_event_id: int
    budget_category_id: int
    template_id: int | None
    amount: Decimal
    percentage: Decimal


# ----------------------------------------------------------------------
# Resolver
# ----------------------------------------------------------------------

class BudgetAllocationResolver:
    """Resolve a percentage template into per-category dollar targets"""

    def __init__(self, db: Session):
        self.repo = LedgerRepository(db)

    def resolve(self, family_id: int, template_id: int, income_amount) -> ResolvedBudget:
        """
        Targets ordered by allocation sort order, then category sort order.

        Raises:
            TemplateNotFound: missing or owned by another family
            InvalidTemplate: percentages out of range or over 100 in total,
                or an allocation pointing at an inactive/deleted category
            InvalidInputError: negative or malformed income amount
        """
        income = parse_amount(income_amount, field="income_amount", allow_zero=True)

        template = self.repo.get_template(family_id, template_id)
        if template is None:
            raise TemplateNotFound(template_id)

        allocations = self.repo.template_allocations(template_id)
        categories = self.repo.budget_categories_by_ids(family_id, [a.budget_category_id for a in allocations])

        total_pct = ZERO
        rows = []
        for alloc in allocations:
            if not ZERO <= alloc.percentage <= HUNDRED:
                raise InvalidTemplate(
                    f"Template #{template_id}: percentage {alloc.percentage} is outside [0, 100]",
                    field="percentage",
                    entity=f"BudgetTemplate:{template_id}",
                )
            category = categories.get(alloc.budget_category_id)
            if category is None or not category.is_active:
                raise InvalidTemplate(
                    f"Template #{template_id} references inactive budget category #{alloc.budget_category_id}",
                    field="budget_category_id",
                    entity=f"BudgetTemplate:{template_id}",
                )
            total_pct += alloc.percentage
            rows.append((alloc, category))

        if total_pct > HUNDRED:
            raise InvalidTemplate(
                f"Template #{template_id} allocates {total_pct}%, more than 100%",
                field="percentage",
                entity=f"BudgetTemplate:{template_id}",
            )

        rows.sort(key=lambda pair: (pair[0].sort_order, pair[1].sort_order, pair[1].id))
        targets = [
            ResolvedTarget(
                budget_category_id=category.id,
                name=category.name,
                color=category.color,
                percentage=alloc.percentage,
                target_amount=percent_of(income, alloc.percentage),
            )
            for alloc, category in rows
        ]
        total = sum((t.target_amount for t in targets), ZERO)
        return ResolvedBudget(
            template_id=template_id,
            income_amount=income,
            targets=targets,
            total_allocated=total,
            total_percentage=quantize(total_pct),
            residual=income - total,
        )


# ----------------------------------------------------------------------
# Budget categories
# ----------------------------------------------------------------------

def validate_category_percentages(repo: LedgerRepository, family_id: int, percentage: Decimal,
                                  exclude_id: int | None = None) -> None:
    """Active categories of a family may not target more than 100% in total."""
    others = sum(
        (c.target_percentage for c in repo.budget_categories(family_id) if c.id != exclude_id),
        ZERO,
    )
    if others + percentage > HUNDRED:
        raise InvalidInputError(
            f"Category percentages would total {others + percentage}%, at most 100% is allowed",
            field="target_percentage",
        )


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("name is required", field="name")
    return name


class CreateBudgetCategoryUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)

    def execute(self, family_id: int, name: str, target_percentage=Decimal("0"),
                color: str = DEFAULT_COLOR, sort_order: int = 0) -> BudgetCategoryView:
        try:
            pct = parse_percentage(target_percentage, field="target_percentage")
            validate_category_percentages(self.repo, family_id, pct)
            row = BudgetCategoryModel(
                family_id=family_id,
                name=_validate_name(name),
                target_percentage=pct,
                color=color or DEFAULT_COLOR,
                sort_order=sort_order,
                is_active=True,
            )
            self.repo.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Budget category #%d created: %s (%s%%)", row.id, row.name, row.target_percentage)
        return BudgetCategoryView.from_model(row)


class UpdateBudgetCategoryUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)

    def execute(self, family_id: int, category_id: int, **changes) -> BudgetCategoryView:
        try:
            row = self.repo.get_budget_category(family_id, category_id)
            if row is None:
                raise BudgetCategoryNotFound(category_id)
            if changes.get("name") is not None:
                row.name = _validate_name(changes["name"])
            if changes.get("target_percentage") is not None:
                pct = parse_percentage(changes["target_percentage"], field="target_percentage")
                if row.is_active:
                    validate_category_percentages(self.repo, family_id, pct, exclude_id=category_id)
                row.target_percentage = pct
            if changes.get("color") is not None:
                row.color = changes["color"]
            if changes.get("sort_order") is not None:
                row.sort_order = changes["sort_order"]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return BudgetCategoryView.from_model(row)


class DeactivateBudgetCategoryUseCase:
    """Soft delete: the category stays referenced by history but drops out of templates"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)

    def execute(self, family_id: int, category_id: int) -> None:
        row = self.repo.get_budget_category(family_id, category_id)
        if row is None:
            raise BudgetCategoryNotFound(category_id)
        row.is_active = False
        self.db.commit()
        logger.info("Budget category #%d deactivated", category_id)


class CreateSpendingCategoryUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)

    def execute(self, family_id: int, name: str, budget_category_id: int | None = None) -> SpendingCategoryView:
        try:
            if budget_category_id is not None and self.repo.get_budget_category(family_id, budget_category_id) is None:
                raise BudgetCategoryNotFound(budget_category_id)
            row = SpendingCategoryModel(
                family_id=family_id,
                name=_validate_name(name),
                budget_category_id=budget_category_id,
                is_active=True,
            )
            self.repo.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return SpendingCategoryView(row.id, row.name, row.budget_category_id, row.is_active)


# ----------------------------------------------------------------------
# Templates
# ----------------------------------------------------------------------

class CreateTemplateUseCase:
    """
    Use case: save a percentage template

    Args (execute):
        allocations: (budget_category_id, percentage) pairs, in display order
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)

    def execute(self, family_id: int, name: str,
                allocations: Sequence[Tuple[int, object]]) -> BudgetTemplateView:
        try:
            row = self._create(family_id, name, allocations)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Budget template #%d created: %s", row.id, row.name)
        return _template_view(self.repo, row)

    def _create(self, family_id: int, name: str, allocations: Iterable[Tuple[int, object]]) -> BudgetTemplateModel:
        parsed = []
        seen = set()
        for i, (category_id, pct) in enumerate(allocations):
            if category_id in seen:
                raise InvalidTemplate(f"budget category #{category_id} appears twice", field="allocations")
            seen.add(category_id)
            parsed.append((category_id, parse_percentage(pct, field=f"allocations[{i}].percentage")))

        total = sum((pct for _, pct in parsed), ZERO)
        if total > HUNDRED:
            raise InvalidTemplate(f"template allocates {total}%, more than 100%", field="allocations")

        categories = self.repo.budget_categories_by_ids(family_id, seen)
        for category_id, _ in parsed:
            category = categories.get(category_id)
            if category is None or not category.is_active:
                raise BudgetCategoryNotFound(category_id)

        template = BudgetTemplateModel(family_id=family_id, name=_validate_name(name))
        self.repo.add(template)
        for order, (category_id, pct) in enumerate(parsed):
            self.repo.add(BudgetAllocationModel(
                template_id=template.id,
                budget_category_id=category_id,
                percentage=pct,
                sort_order=order,
            ))
        return template


class CreateTemplateFromCategoriesUseCase(CreateTemplateUseCase):
    """Snapshot the active categories' target percentages as a template"""

    def execute(self, family_id: int, name: str, allocations=None) -> BudgetTemplateView:
        categories = [c for c in self.repo.budget_categories(family_id) if c.target_percentage > 0]
        if not categories:
            raise InvalidInputError("no active budget categories with a target percentage", field="categories")
        return super().execute(family_id, name, [(c.id, c.target_percentage) for c in categories])


class ApplyTemplateUseCase:
    """
    Use case: make a template the family's active budget

    Categories in the template are activated with its percentages; every
    other category is deactivated.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)

    def execute(self, family_id: int, template_id: int) -> List[BudgetCategoryView]:
        try:
            template = self.repo.get_template(family_id, template_id)
            if template is None:
                raise TemplateNotFound(template_id)
            allocations = {a.budget_category_id: a for a in self.repo.template_allocations(template_id)}

            for category in self.repo.budget_categories(family_id, include_inactive=True):
                alloc = allocations.pop(category.id, None)
                if alloc is None:
                    category.is_active = False
                else:
                    category.is_active = True
                    category.target_percentage = alloc.percentage
                    category.sort_order = alloc.sort_order
            if allocations:
                missing = sorted(allocations)[0]
                raise InvalidTemplate(
                    f"Template #{template_id} references deleted budget category #{missing}",
                    field="budget_category_id",
                    entity=f"BudgetTemplate:{template_id}",
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Budget template #%d applied for family %d", template_id, family_id)
        return [BudgetCategoryView.from_model(c) for c in self.repo.budget_categories(family_id)]


class GenerateIncomeAllocationUseCase:
    """
    Use case: persist dollar targets for one income event

    The income's effective amount is resolved against the template; an
    income event holds at most one generated set.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)
        self.resolver = BudgetAllocationResolver(db)

    def execute(self, family_id: int, income_event_id: int, template_id: int) -> List[IncomeAllocationView]:
        try:
            income = self.repo.get_income_event(family_id, income_event_id)
            if income is None:
                raise IncomeEventNotFound(income_event_id)
            if income.status == INCOME_CANCELLED:
                raise ConflictError(f"Income event #{income_event_id} is cancelled",
                                    entity=f"IncomeEvent:{income_event_id}")
            if self.repo.income_allocations(income_event_id):
                raise ConflictError(
                    f"Budget allocation already generated for income event #{income_event_id}",
                    entity=f"IncomeEvent:{income_event_id}",
                )
            resolved = self.resolver.resolve(
                family_id, template_id, income_effective_amount(income.status, income.amount, income.actual_amount),
            )
            rows = []
            for target in resolved.targets:
                row = IncomeBudgetAllocationModel(
                    income_event_id=income_event_id,
                    budget_category_id=target.budget_category_id,
                    template_id=template_id,
                    amount=target.target_amount,
                    percentage=target.percentage,
                )
                self.repo.add(row)
                rows.append(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Generated %d budget allocation(s) for income event #%d from template #%d",
                    len(rows), income_event_id, template_id)
        return [_allocation_view(r) for r in rows]


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

class BudgetQueries:
    def __init__(self, db: Session):
        self.repo = LedgerRepository(db)

    def list_categories(self, family_id: int, include_inactive: bool = False) -> List[BudgetCategoryView]:
        return [BudgetCategoryView.from_model(c)
                for c in self.repo.budget_categories(family_id, include_inactive=include_inactive)]

    def list_spending_categories(self, family_id: int) -> List[SpendingCategoryView]:
        return [SpendingCategoryView(c.id, c.name, c.budget_category_id, c.is_active)
                for c in self.repo.spending_categories(family_id)]

    def get_template(self, family_id: int, template_id: int) -> BudgetTemplateView:
        template = self.repo.get_template(family_id, template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return _template_view(self.repo, template)

    def list_templates(self, family_id: int) -> List[BudgetTemplateView]:
        return [_template_view(self.repo, t) for t in self.repo.list_templates(family_id)]

    def list_income_allocations(self, family_id: int, income_event_id: int) -> List[IncomeAllocationView]:
        if self.repo.get_income_event(family_id, income_event_id) is None:
            raise IncomeEventNotFound(income_event_id)
        return [_allocation_view(r) for r in self.repo.income_allocations(income_event_id)]


def _template_view(repo: LedgerRepository, template: BudgetTemplateModel) -> BudgetTemplateView:
    allocations = [
        TemplateAllocationView(a.budget_category_id, a.percentage, a.sort_order)
        for a in repo.template_allocations(template.id)
    ]
    return BudgetTemplateView(
        id=template.id,
        name=template.name,
        allocations=allocations,
        total_percentage=sum((a.percentage for a in allocations), ZERO),
    )


def _allocation_view(row: IncomeBudgetAllocationModel) -> IncomeAllocationView:
    return IncomeAllocationView(
        income_event_id=row.income_event_id,
        budget_category_id=row.budget_category_id,
        template_id=row.template_id,
        amount=row.amount,
        percentage=row.percentage,
    )
