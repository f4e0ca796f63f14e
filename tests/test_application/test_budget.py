"""
Tests for budget categories, templates and the allocation resolver
"""
from datetime import date
from decimal import Decimal

import pytest

from famledger.application.budget import (
    ApplyTemplateUseCase, BudgetAllocationResolver, BudgetQueries, CreateBudgetCategoryUseCase,
    CreateSpendingCategoryUseCase, CreateTemplateFromCategoriesUseCase, CreateTemplateUseCase,
    DeactivateBudgetCategoryUseCase, GenerateIncomeAllocationUseCase, UpdateBudgetCategoryUseCase,
)
from famledger.application.income_events import CreateIncomeEventUseCase, MarkIncomeReceivedUseCase
from famledger.domain.errors import (
    BudgetCategoryNotFound, ConflictError, InvalidInputError, InvalidTemplate, TemplateNotFound,
)
from famledger.infrastructure.db.models import BudgetAllocationModel, BudgetTemplateModel


def _category(db, family_id, name, pct="0", sort_order=0):
    return CreateBudgetCategoryUseCase(db).execute(family_id, name, pct, sort_order=sort_order)


def _fifty_twenty_thirty(db, family_id):
    needs = _category(db, family_id, "Needs")
    wants = _category(db, family_id, "Wants")
    savings = _category(db, family_id, "Savings")
    template = CreateTemplateUseCase(db).execute(
        family_id, "50/30/20", [(needs.id, "50"), (savings.id, "20"), (wants.id, "30")],
    )
    return template, (needs, wants, savings)


class TestResolve:
    def test_fifty_twenty_thirty_on_4000(self, db_session, family_id):
        template, _ = _fifty_twenty_thirty(db_session, family_id)

        resolved = BudgetAllocationResolver(db_session).resolve(family_id, template.id, "4000.00")

        assert [(t.name, t.target_amount) for t in resolved.targets] == [
            ("Needs", Decimal("2000.00")),
            ("Savings", Decimal("800.00")),
            ("Wants", Decimal("1200.00")),
        ]
        assert resolved.total_allocated == Decimal("4000.00")
        assert resolved.total_percentage == Decimal("100.00")
        assert resolved.residual == Decimal("0.00")

    def test_rounding_residual(self, db_session, family_id):
        cats = [_category(db_session, family_id, n) for n in ("A", "B", "C")]
        template = CreateTemplateUseCase(db_session).execute(
            family_id, "Thirds", [(c.id, "33.33") for c in cats],
        )

        resolved = BudgetAllocationResolver(db_session).resolve(family_id, template.id, "100")

        assert all(t.target_amount == Decimal("33.33") for t in resolved.targets)
        assert resolved.residual == Decimal("0.01")

    def test_partial_template_leaves_unallocated_share(self, db_session, family_id):
        cat = _category(db_session, family_id, "Needs")
        template = CreateTemplateUseCase(db_session).execute(family_id, "Half", [(cat.id, "50")])

        resolved = BudgetAllocationResolver(db_session).resolve(family_id, template.id, "1000")

        assert resolved.total_allocated == Decimal("500.00")
        assert resolved.residual == Decimal("500.00")

    def test_zero_income(self, db_session, family_id):
        template, _ = _fifty_twenty_thirty(db_session, family_id)

        resolved = BudgetAllocationResolver(db_session).resolve(family_id, template.id, "0")

        assert all(t.target_amount == Decimal("0.00") for t in resolved.targets)

    def test_negative_income_rejected(self, db_session, family_id):
        template, _ = _fifty_twenty_thirty(db_session, family_id)

        with pytest.raises(InvalidInputError) as exc:
            BudgetAllocationResolver(db_session).resolve(family_id, template.id, "-1")
        assert exc.value.field == "income_amount"

    def test_other_family_template_not_found(self, db_session, family_id, other_family_id):
        template, _ = _fifty_twenty_thirty(db_session, family_id)

        with pytest.raises(TemplateNotFound):
            BudgetAllocationResolver(db_session).resolve(other_family_id, template.id, "4000")

    def test_stored_template_over_100_is_invalid(self, db_session, family_id):
        a = _category(db_session, family_id, "A")
        b = _category(db_session, family_id, "B")
        template = BudgetTemplateModel(family_id=family_id, name="Broken")
        db_session.add(template)
        db_session.flush()
        db_session.add_all([
            BudgetAllocationModel(template_id=template.id, budget_category_id=a.id,
                                  percentage=Decimal("60"), sort_order=0),
            BudgetAllocationModel(template_id=template.id, budget_category_id=b.id,
                                  percentage=Decimal("50"), sort_order=1),
        ])
        db_session.commit()

        with pytest.raises(InvalidTemplate):
            BudgetAllocationResolver(db_session).resolve(family_id, template.id, "1000")

    def test_inactive_category_makes_template_invalid(self, db_session, family_id):
        template, (needs, _, _) = _fifty_twenty_thirty(db_session, family_id)
        DeactivateBudgetCategoryUseCase(db_session).execute(family_id, needs.id)

        with pytest.raises(InvalidTemplate):
            BudgetAllocationResolver(db_session).resolve(family_id, template.id, "4000")


class TestTemplates:
    def test_over_100_rejected(self, db_session, family_id):
        a = _category(db_session, family_id, "A")
        b = _category(db_session, family_id, "B")

        with pytest.raises(InvalidTemplate):
            CreateTemplateUseCase(db_session).execute(family_id, "Too much", [(a.id, "70"), (b.id, "40")])

        assert BudgetQueries(db_session).list_templates(family_id) == []

    def test_duplicate_category_rejected(self, db_session, family_id):
        a = _category(db_session, family_id, "A")

        with pytest.raises(InvalidTemplate):
            CreateTemplateUseCase(db_session).execute(family_id, "Dup", [(a.id, "10"), (a.id, "10")])

    def test_foreign_category_rejected(self, db_session, family_id, other_family_id):
        foreign = _category(db_session, other_family_id, "Theirs")

        with pytest.raises(BudgetCategoryNotFound):
            CreateTemplateUseCase(db_session).execute(family_id, "Mine", [(foreign.id, "10")])

    def test_view_keeps_order_and_total(self, db_session, family_id):
        template, (needs, wants, savings) = _fifty_twenty_thirty(db_session, family_id)

        view = BudgetQueries(db_session).get_template(family_id, template.id)

        assert [a.budget_category_id for a in view.allocations] == [needs.id, savings.id, wants.id]
        assert view.total_percentage == Decimal("100.00")

    def test_from_categories_snapshots_targets(self, db_session, family_id):
        _category(db_session, family_id, "Needs", "60")
        _category(db_session, family_id, "Fun", "0")
        _category(db_session, family_id, "Savings", "25")

        view = CreateTemplateFromCategoriesUseCase(db_session).execute(family_id, "Current")

        assert [a.percentage for a in view.allocations] == [Decimal("60.00"), Decimal("25.00")]

    def test_from_categories_requires_targets(self, db_session, family_id):
        _category(db_session, family_id, "Fun", "0")

        with pytest.raises(InvalidInputError):
            CreateTemplateFromCategoriesUseCase(db_session).execute(family_id, "Empty")

    def test_apply_activates_template_categories_only(self, db_session, family_id):
        needs = _category(db_session, family_id, "Needs", "10")
        other = _category(db_session, family_id, "Other", "10")
        template = CreateTemplateUseCase(db_session).execute(family_id, "Needs only", [(needs.id, "80")])

        active = ApplyTemplateUseCase(db_session).execute(family_id, template.id)

        assert [(c.id, c.target_percentage) for c in active] == [(needs.id, Decimal("80.00"))]
        inactive = [c for c in BudgetQueries(db_session).list_categories(family_id, include_inactive=True)
                    if not c.is_active]
        assert [c.id for c in inactive] == [other.id]


class TestCategories:
    def test_percentages_capped_at_100(self, db_session, family_id):
        _category(db_session, family_id, "Needs", "70")

        with pytest.raises(InvalidInputError) as exc:
            _category(db_session, family_id, "Wants", "40")
        assert exc.value.field == "target_percentage"

    def test_update_excludes_own_percentage(self, db_session, family_id):
        needs = _category(db_session, family_id, "Needs", "70")
        _category(db_session, family_id, "Wants", "30")

        view = UpdateBudgetCategoryUseCase(db_session).execute(family_id, needs.id, target_percentage="65")

        assert view.target_percentage == Decimal("65.00")

    def test_deactivated_category_frees_percentage(self, db_session, family_id):
        needs = _category(db_session, family_id, "Needs", "70")
        DeactivateBudgetCategoryUseCase(db_session).execute(family_id, needs.id)

        _category(db_session, family_id, "Wants", "90")

    def test_spending_category_links_to_budget_category(self, db_session, family_id, other_family_id):
        needs = _category(db_session, family_id, "Needs")

        view = CreateSpendingCategoryUseCase(db_session).execute(family_id, "Groceries", needs.id)
        assert view.budget_category_id == needs.id

        with pytest.raises(BudgetCategoryNotFound):
            CreateSpendingCategoryUseCase(db_session).execute(other_family_id, "Groceries", needs.id)


class TestIncomeAllocation:
    def test_generated_from_effective_amount(self, db_session, family_id, locks):
        template, _ = _fifty_twenty_thirty(db_session, family_id)
        income = CreateIncomeEventUseCase(db_session).execute(family_id, "Salary", "4000", date(2024, 6, 1))
        MarkIncomeReceivedUseCase(db_session, locks).execute(
            family_id, income.id, actual_amount="3000", actual_date=date(2024, 6, 1),
        )

        rows = GenerateIncomeAllocationUseCase(db_session).execute(family_id, income.id, template.id)

        assert [r.amount for r in rows] == [Decimal("1500.00"), Decimal("600.00"), Decimal("900.00")]
        assert BudgetQueries(db_session).list_income_allocations(family_id, income.id) == rows

    def test_generated_once(self, db_session, family_id):
        template, _ = _fifty_twenty_thirty(db_session, family_id)
        income = CreateIncomeEventUseCase(db_session).execute(family_id, "Salary", "4000", date(2024, 6, 1))
        use_case = GenerateIncomeAllocationUseCase(db_session)
        use_case.execute(family_id, income.id, template.id)

        with pytest.raises(ConflictError):
            use_case.execute(family_id, income.id, template.id)
