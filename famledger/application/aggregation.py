"""
Period aggregator: buckets received income, settled payments and
attributions into calendar-aligned periods.

Dating rules:
- income: received events, dated by actual date (else scheduled date),
  counted at their effective amount
- expenses: settled payments (paid/partial), dated by paid date (else due
  date), counted at their effective amount
- category totals: attribution amounts of non-cancelled payments grouped by
  the payment's spending category id, dated like expenses

``savings_rate`` and ``budget_variance`` are the only savings-rate/variance
formulas; every report goes through them.
"""
import bisect
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Sequence

from sqlalchemy.orm import Session

from famledger.domain.errors import InvalidDateRange
from famledger.domain.money import ZERO, ratio_percent, quantize
from famledger.domain.periods import Period, partition
from famledger.domain.statuses import income_effective_amount, payment_effective_amount
from famledger.domain.views import Serializable
from famledger.infrastructure.db.repository import LedgerRepository

UNCATEGORIZED = "Uncategorized"


def savings_rate(income: Decimal, net_flow: Decimal) -> Decimal:
    """``net_flow / income × 100`` rounded to 0.01; 0 when there is no income."""
    return ratio_percent(net_flow, income)


def budget_variance(allocated: Decimal, spent: Decimal) -> tuple[Decimal, Decimal]:
    """(allocated - spent, percent of the allocation used)."""
    return quantize(allocated - spent), ratio_percent(spent, allocated)


@dataclass(frozen=True)
class CategoryTotal(Serializable):
    spending_category_id: int | None  # None: uncategorized
    name: str
    amount: Decimal


@dataclass(frozen=True)
class PeriodBucket(Serializable):
    label: str
    start: date
    end: date
    income: Decimal
    expenses: Decimal
    net_flow: Decimal
    savings_rate: Decimal
    running_balance: Decimal
    category_totals: List[CategoryTotal] = field(default_factory=list)
    income_count: int = 0
    expense_count: int = 0
    projected: bool = False


@dataclass(frozen=True)
class AggregateSummary(Serializable):
    period_count: int
    total_income: Decimal
    total_expenses: Decimal
    net_flow: Decimal
    savings_rate: Decimal
    average_savings_rate: Decimal


@dataclass(frozen=True)
class BreakdownItem(Serializable):
    label: str
    amount: Decimal
    count: int
    percentage: Decimal
    spending_category_id: int | None = None


class PeriodTotals:
    def __init__(self):
        self.income = ZERO
        self.expenses = ZERO
        self.income_count = 0
        self.expense_count = 0
        self.categories: Dict[int | None, Decimal] = {}


class PeriodAggregator:
    def __init__(self, db: Session):
        self.repo = LedgerRepository(db)

    def aggregate(self, family_id: int, from_date: date, to_date: date, group_by: str) -> List[PeriodBucket]:
        """
        Buckets covering [from_date, to_date], empty periods included.

        Raises:
            InvalidDateRange: from_date > to_date (checked before any query)
            InvalidInputError: unknown group_by
        """
        periods = partition(from_date, to_date, group_by)
        starts = [p.start for p in periods]
        acc = [PeriodTotals() for _ in periods]

        def slot(d: date) -> PeriodTotals:
            return acc[bisect.bisect_right(starts, d) - 1]

        for inc in self.repo.received_income_between(family_id, from_date, to_date):
            a = slot(inc.actual_date or inc.scheduled_date)
            a.income += income_effective_amount(inc.status, inc.amount, inc.actual_amount)
            a.income_count += 1

        for pay in self.repo.settled_payments_between(family_id, from_date, to_date):
            a = slot(pay.paid_date or pay.due_date)
            a.expenses += payment_effective_amount(pay.paid_date, pay.amount, pay.paid_amount)
            a.expense_count += 1

        names = self._category_names(family_id)
        for attribution, pay in self.repo.attributions_with_payments_between(family_id, from_date, to_date):
            a = slot(pay.paid_date or pay.due_date)
            key = pay.spending_category_id if pay.spending_category_id in names else None
            a.categories[key] = a.categories.get(key, ZERO) + attribution.amount

        return build_buckets(periods, acc, category_names=names)

    def income_breakdown(self, family_id: int, from_date: date, to_date: date) -> List[BreakdownItem]:
        """Received income by source (event name when no source is set), largest first."""
        _check_range(from_date, to_date)
        totals: Dict[str, list] = {}
        for inc in self.repo.received_income_between(family_id, from_date, to_date):
            label = inc.source or inc.name
            entry = totals.setdefault(label, [label, ZERO, 0])
            entry[1] += income_effective_amount(inc.status, inc.amount, inc.actual_amount)
            entry[2] += 1
        return _breakdown(totals)

    def expense_breakdown(self, family_id: int, from_date: date, to_date: date) -> List[BreakdownItem]:
        """Settled payments by spending category, largest first."""
        _check_range(from_date, to_date)
        names = self._category_names(family_id)
        totals: Dict[int | None, list] = {}
        for pay in self.repo.settled_payments_between(family_id, from_date, to_date):
            key = pay.spending_category_id if pay.spending_category_id in names else None
            entry = totals.setdefault(key, [names.get(key, UNCATEGORIZED), ZERO, 0])
            entry[1] += payment_effective_amount(pay.paid_date, pay.amount, pay.paid_amount)
            entry[2] += 1
        return _breakdown(totals, by_category=True)

    def budget_category_spend(self, family_id: int, from_date: date, to_date: date) -> Dict[int, Decimal]:
        """
        Settled spending rolled up into budget categories.

        Payments whose spending category has no budget category (or that have
        no spending category) are left out.
        """
        _check_range(from_date, to_date)
        rollup = {c.id: c.budget_category_id for c in self.repo.spending_categories(family_id)}
        spent: Dict[int, Decimal] = {}
        for pay in self.repo.settled_payments_between(family_id, from_date, to_date):
            budget_category_id = rollup.get(pay.spending_category_id)
            if budget_category_id is None:
                continue
            amount = payment_effective_amount(pay.paid_date, pay.amount, pay.paid_amount)
            spent[budget_category_id] = spent.get(budget_category_id, ZERO) + amount
        return {k: quantize(v) for k, v in spent.items()}

    def _category_names(self, family_id: int) -> Dict[int, str]:
        return {c.id: c.name for c in self.repo.spending_categories(family_id)}


def build_buckets(periods: Sequence[Period], acc: Sequence, projected: bool = False,
                  opening_balance: Decimal = ZERO,
                  category_names: Dict[int, str] | None = None) -> List[PeriodBucket]:
    """Turn per-period accumulators into buckets with a running balance."""
    names = category_names or {}
    buckets = []
    balance = opening_balance
    for period, a in zip(periods, acc):
        net = a.income - a.expenses
        balance += net
        buckets.append(PeriodBucket(
            label=period.label,
            start=period.start,
            end=period.end,
            income=quantize(a.income),
            expenses=quantize(a.expenses),
            net_flow=quantize(net),
            savings_rate=savings_rate(a.income, net),
            running_balance=quantize(balance),
            category_totals=_category_totals(a.categories, names),
            income_count=a.income_count,
            expense_count=a.expense_count,
            projected=projected,
        ))
    return buckets


def summarize(buckets: Sequence[PeriodBucket]) -> AggregateSummary:
    income = sum((b.income for b in buckets), ZERO)
    expenses = sum((b.expenses for b in buckets), ZERO)
    rates = [b.savings_rate for b in buckets if b.income > 0]
    return AggregateSummary(
        period_count=len(buckets),
        total_income=income,
        total_expenses=expenses,
        net_flow=income - expenses,
        savings_rate=savings_rate(income, income - expenses),
        average_savings_rate=quantize(sum(rates, ZERO) / len(rates)) if rates else ZERO,
    )


def _check_range(from_date: date, to_date: date) -> None:
    if from_date > to_date:
        raise InvalidDateRange(from_date, to_date)


def _category_totals(totals: Dict[int | None, Decimal], names: Dict[int, str]) -> List[CategoryTotal]:
    items = [
        CategoryTotal(spending_category_id=k, name=names.get(k, UNCATEGORIZED), amount=quantize(amount))
        for k, amount in totals.items()
    ]
    # uncategorized sorts after named categories
    return sorted(items, key=lambda c: (c.spending_category_id is None, c.name, c.spending_category_id or 0))


def _breakdown(totals: Dict, by_category: bool = False) -> List[BreakdownItem]:
    grand = sum((amount for _, amount, _ in totals.values()), ZERO)
    items = [
        BreakdownItem(
            label=label,
            amount=quantize(amount),
            count=count,
            percentage=ratio_percent(amount, grand),
            spending_category_id=key if by_category else None,
        )
        for key, (label, amount, count) in totals.items()
    ]
    return sorted(items, key=lambda i: (-i.amount, i.label, i.spending_category_id or 0))
