"""
Report composer - financial reports built from the period aggregator,
the budget resolver and the recurrence calculator.

Reports are read-only and take no locks. Every amount is a Decimal and
every savings rate / budget variance comes from
``famledger.application.aggregation``.
"""
import bisect
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_CEILING
from typing import Dict, List, Sequence

from sqlalchemy.orm import Session

from famledger.application.aggregation import (
    PeriodAggregator, PeriodBucket, PeriodTotals, AggregateSummary, BreakdownItem,
    build_buckets, summarize, budget_variance,
)
from famledger.application.budget import BudgetAllocationResolver
from famledger.domain.errors import InvalidInputError, InvalidDateRange, SpendingCategoryNotFound
from famledger.domain.money import ZERO, HUNDRED, quantize, ratio_percent
from famledger.domain.periods import (
    GROUP_MONTH, following_periods, month_bounds,
)
from famledger.domain.recurrence import expand, add_months
from famledger.domain.statuses import (
    FREQ_ONCE, FREQ_WEEKLY, FREQ_BIWEEKLY, FREQ_MONTHLY, FREQ_QUARTERLY, FREQ_ANNUAL,
    INCOME_CANCELLED, INCOME_RECEIVED, PAYMENT_CANCELLED, PAYMENT_PAID,
    ASSET_ACCOUNT_TYPES, LIABILITY_ACCOUNT_TYPES,
)
from famledger.domain.views import Serializable
from famledger.infrastructure.db.repository import LedgerRepository

logger = logging.getLogger(__name__)

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"
TREND_THRESHOLD = Decimal("2")

STATUS_UNDER_BUDGET = "under_budget"
STATUS_ON_TRACK = "on_track"
STATUS_OVER_BUDGET = "over_budget"
STATUS_WAY_OVER_BUDGET = "way_over_budget"

# debt analysis
MONTHLY_INTEREST_ESTIMATE = Decimal("0.015")  # ~18% APR
DEBT_INCOME_MONTHS = 3
DTI_CRITICAL = Decimal("40")
CONSOLIDATION_ACCOUNT_COUNT = 5
_MONTHLY_FACTORS = {
    FREQ_WEEKLY: Decimal(52) / 12,
    FREQ_BIWEEKLY: Decimal(26) / 12,
    FREQ_MONTHLY: Decimal(1),
    FREQ_QUARTERLY: Decimal(1) / 3,
    FREQ_ANNUAL: Decimal(1) / 12,
}


def budget_status(percent_used: Decimal) -> str:
    if percent_used <= 75:
        return STATUS_UNDER_BUDGET
    if percent_used <= 100:
        return STATUS_ON_TRACK
    if percent_used <= 125:
        return STATUS_OVER_BUDGET
    return STATUS_WAY_OVER_BUDGET


def performance_score(total_allocated: Decimal, total_spent: Decimal) -> Decimal:
    """100 minus the overspend percentage, clamped to [0, 100]."""
    _, used = budget_variance(total_allocated, total_spent)
    overspend = max(used - HUNDRED, ZERO)
    return quantize(min(max(HUNDRED - overspend, ZERO), HUNDRED))


def savings_trend(rates: List[Decimal]) -> str:
    """
    Compare the mean of the last three rates with the three before.

    Shorter series compare their last ``n // 2`` points with the ones
    before; fewer than two points is stable.
    """
    window = min(3, len(rates) // 2)
    if window == 0:
        return TREND_STABLE
    recent = sum(rates[-window:], ZERO) / window
    prior = sum(rates[-2 * window:-window], ZERO) / window
    if recent - prior > TREND_THRESHOLD:
        return TREND_INCREASING
    if prior - recent > TREND_THRESHOLD:
        return TREND_DECREASING
    return TREND_STABLE


def debt_health_score(debt_to_income: Decimal, overdue_count: int, payment_rate: Decimal,
                      covers_interest: bool) -> int:
    """0-100, starting at 100 with deductions for each warning sign."""
    score = 100
    if debt_to_income > 40:
        score -= 30
    elif debt_to_income > 30:
        score -= 20
    elif debt_to_income > 20:
        score -= 10
    score -= min(30, overdue_count * 10)
    if payment_rate < 90:
        score -= 20
    elif payment_rate < 95:
        score -= 10
    if not covers_interest:
        score -= 30
    return max(0, score)


# ----------------------------------------------------------------------
# Report types
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CashFlowReport(Serializable):
    from_date: date
    to_date: date
    group_by: str
    buckets: List[PeriodBucket]
    summary: AggregateSummary
    projections: List[PeriodBucket]


@dataclass(frozen=True)
class PeriodDelta(Serializable):
    label: str
    income_change: Decimal
    expense_change: Decimal
    net_change: Decimal


@dataclass(frozen=True)
class MonthlySummary(Serializable):
    year: int
    month: int
    bucket: PeriodBucket
    income_sources: List[BreakdownItem]
    expense_categories: List[BreakdownItem]
    budget_score: Decimal | None
    previous_month: PeriodBucket
    change: PeriodDelta


@dataclass(frozen=True)
class AnnualSummary(Serializable):
    year: int
    months: List[PeriodBucket]
    summary: AggregateSummary
    month_over_month: List[PeriodDelta]
    best_month: str | None
    worst_month: str | None


@dataclass(frozen=True)
class SavingsRatePoint(Serializable):
    label: str
    income: Decimal
    expenses: Decimal
    net_flow: Decimal
    savings_rate: Decimal


@dataclass(frozen=True)
class SavingsRateReport(Serializable):
    from_date: date
    to_date: date
    monthly: List[SavingsRatePoint]
    current_rate: Decimal
    average_rate: Decimal
    target_rate: Decimal
    meets_target: bool
    trend: str


@dataclass(frozen=True)
class NetWorthPoint(Serializable):
    label: str
    date: date
    net_worth: Decimal


@dataclass(frozen=True)
class NetWorthReport(Serializable):
    as_of: date
    total_assets: Decimal
    total_liabilities: Decimal
    net_worth: Decimal
    by_account_type: Dict[str, Decimal]
    trend: List[NetWorthPoint]


@dataclass(frozen=True)
class BudgetLine(Serializable):
    budget_category_id: int
    name: str
    color: str
    percentage: Decimal
    allocated: Decimal
    spent: Decimal
    variance: Decimal
    percent_used: Decimal
    status: str


@dataclass(frozen=True)
class BudgetOverview(Serializable):
    template_id: int
    from_date: date
    to_date: date
    income: Decimal
    lines: List[BudgetLine]
    total_allocated: Decimal
    total_spent: Decimal
    total_variance: Decimal
    unallocated: Decimal
    performance_score: Decimal


@dataclass(frozen=True)
class BudgetProjectionMonth(Serializable):
    label: str
    start: date
    end: date
    projected_income: Decimal
    targets: Dict[str, Decimal]


@dataclass(frozen=True)
class BudgetProjection(Serializable):
    template_id: int
    average_monthly_income: Decimal
    months: List[BudgetProjectionMonth]


@dataclass(frozen=True)
class DebtTypeLine(Serializable):
    account_type: str
    total_amount: Decimal
    account_count: int
    average_balance: Decimal
    percentage_of_total: Decimal


@dataclass(frozen=True)
class DebtAccountLine(Serializable):
    id: int
    name: str
    account_type: str
    balance: Decimal


@dataclass(frozen=True)
class DebtRecommendation(Serializable):
    level: str  # critical, warning, info
    message: str
    amount: Decimal | None


@dataclass(frozen=True)
class DebtAnalysis(Serializable):
    as_of: date
    total_debt: Decimal
    account_count: int
    by_type: List[DebtTypeLine]
    accounts: List[DebtAccountLine]
    monthly_obligations: Decimal
    average_monthly_income: Decimal
    debt_to_income_ratio: Decimal
    estimated_monthly_interest: Decimal
    net_principal_reduction: Decimal
    payment_rate: Decimal
    overdue_count: int
    overdue_amount: Decimal
    months_to_payoff: int | None  # None: payments do not cover interest
    payoff_date: date | None
    total_interest_projected: Decimal
    total_cost_of_debt: Decimal
    avalanche_target: DebtAccountLine | None
    snowball_target: DebtAccountLine | None
    health_score: int
    recommendations: List[DebtRecommendation]


# ----------------------------------------------------------------------
# Composer
# ----------------------------------------------------------------------

class ReportComposer:
    """
    Financial reports for one family

    Args:
        db: read session
        today: reference date (defaults to date.today())
        max_occurrences: recurrence expansion cap for projections
    """

    def __init__(self, db: Session, today: date | None = None, max_occurrences: int = 500):
        self.repo = LedgerRepository(db)
        self.aggregator = PeriodAggregator(db)
        self.resolver = BudgetAllocationResolver(db)
        self._today = today
        self.max_occurrences = max_occurrences

    @property
    def today(self) -> date:
        return self._today or date.today()

    # --- cash flow --------------------------------------------------------

    def cash_flow(
        self,
        family_id: int,
        from_date: date,
        to_date: date,
        group_by: str = GROUP_MONTH,
        include_projections: bool = False,
        projection_periods: int = 3,
    ) -> CashFlowReport:
        buckets = self.aggregator.aggregate(family_id, from_date, to_date, group_by)
        projections: List[PeriodBucket] = []
        if include_projections:
            if projection_periods < 1:
                raise InvalidInputError("projection_periods must be >= 1", field="projection_periods")
            opening = buckets[-1].running_balance if buckets else ZERO
            projections = self._project(family_id, to_date, group_by, projection_periods, opening)
        return CashFlowReport(
            from_date=from_date,
            to_date=to_date,
            group_by=group_by,
            buckets=buckets,
            summary=summarize(buckets),
            projections=projections,
        )

    def _project(self, family_id: int, after: date, group_by: str, count: int,
                 opening: Decimal) -> List[PeriodBucket]:
        """
        Forecast buckets from the latest anchor of every recurring series
        (nominal amounts). The first bucket starts the day after ``after``.
        """
        periods = following_periods(after, group_by, count)
        window_start, window_end = periods[0].start, periods[-1].end + timedelta(days=1)
        starts = [p.start for p in periods]
        acc = [PeriodTotals() for _ in periods]

        def slot(d: date) -> PeriodTotals:
            return acc[bisect.bisect_right(starts, d) - 1]

        incomes = [r for r in self.repo.list_income_events(family_id) if r.status != INCOME_CANCELLED]
        for row in _latest_anchors(incomes, lambda r: (r.name, r.frequency), lambda r: r.scheduled_date,
                                   settled=lambda r: r.status == INCOME_RECEIVED):
            for d in expand(row.scheduled_date, row.frequency, window_end, window_start, self.max_occurrences):
                t = slot(d)
                t.income += row.amount
                t.income_count += 1

        payments = [r for r in self.repo.list_payments(family_id) if r.status != PAYMENT_CANCELLED]
        for row in _latest_anchors(payments, lambda r: (r.payee, r.frequency), lambda r: r.due_date,
                                   settled=lambda r: r.paid_date is not None):
            for d in expand(row.due_date, row.frequency, window_end, window_start, self.max_occurrences):
                t = slot(d)
                t.expenses += row.amount
                t.expense_count += 1

        logger.debug("Projected %d %s period(s) after %s for family %d", count, group_by, after, family_id)
        return build_buckets(periods, acc, projected=True, opening_balance=opening)

    # --- monthly / annual -------------------------------------------------

    def monthly_summary(self, family_id: int, year: int, month: int,
                        template_id: int | None = None) -> MonthlySummary:
        start, end = month_bounds(year, month)
        prev_start, prev_end = month_bounds(*_previous_month(year, month))
        bucket = self.aggregator.aggregate(family_id, start, end, GROUP_MONTH)[0]
        previous = self.aggregator.aggregate(family_id, prev_start, prev_end, GROUP_MONTH)[0]

        score = None
        if template_id is not None:
            score = self.budget_overview(family_id, template_id, start, end).performance_score

        return MonthlySummary(
            year=year,
            month=month,
            bucket=bucket,
            income_sources=self.aggregator.income_breakdown(family_id, start, end),
            expense_categories=self.aggregator.expense_breakdown(family_id, start, end),
            budget_score=score,
            previous_month=previous,
            change=_delta(bucket.label, previous, bucket),
        )

    def annual_summary(self, family_id: int, year: int) -> AnnualSummary:
        months = self.aggregator.aggregate(family_id, date(year, 1, 1), date(year, 12, 31), GROUP_MONTH)
        active = [m for m in months if m.income or m.expenses]
        return AnnualSummary(
            year=year,
            months=months,
            summary=summarize(months),
            month_over_month=[_delta(cur.label, prev, cur) for prev, cur in zip(months, months[1:])],
            best_month=max(active, key=lambda m: m.net_flow).label if active else None,
            worst_month=min(active, key=lambda m: m.net_flow).label if active else None,
        )

    # --- savings rate -----------------------------------------------------

    def savings_rate(self, family_id: int, from_date: date, to_date: date,
                     target_rate=Decimal("20")) -> SavingsRateReport:
        target = Decimal(str(target_rate)) if not isinstance(target_rate, Decimal) else target_rate
        months = self.aggregator.aggregate(family_id, from_date, to_date, GROUP_MONTH)
        summary = summarize(months)
        points = [SavingsRatePoint(m.label, m.income, m.expenses, m.net_flow, m.savings_rate) for m in months]
        current = points[-1].savings_rate if points else ZERO
        return SavingsRateReport(
            from_date=from_date,
            to_date=to_date,
            monthly=points,
            current_rate=current,
            average_rate=summary.average_savings_rate,
            target_rate=quantize(target),
            meets_target=current >= target,
            trend=savings_trend([p.savings_rate for p in points]),
        )

    # --- net worth --------------------------------------------------------

    def net_worth(self, family_id: int, from_date: date | None = None,
                  to_date: date | None = None) -> NetWorthReport:
        """
        Current net worth from account balances, plus a month-end trend
        walked backwards from it using each month's net flow.
        """
        to_date = to_date or self.today
        from_date = from_date or add_months(to_date.replace(day=1), -11)
        if from_date > to_date:
            raise InvalidDateRange(from_date, to_date)

        by_type: Dict[str, Decimal] = {}
        assets = liabilities = ZERO
        for account in self.repo.active_accounts(family_id):
            # liabilities are amounts owed, positive whatever sign the balance is stored with
            if account.account_type in ASSET_ACCOUNT_TYPES:
                amount = account.current_balance
                assets += amount
            elif account.account_type in LIABILITY_ACCOUNT_TYPES:
                amount = abs(account.current_balance)
                liabilities += amount
            else:
                continue
            by_type[account.account_type] = by_type.get(account.account_type, ZERO) + amount
        current = assets - liabilities

        months = self.aggregator.aggregate(family_id, from_date, to_date, GROUP_MONTH)
        trend: List[NetWorthPoint] = []
        value = current
        for bucket in reversed(months):
            trend.append(NetWorthPoint(bucket.label, bucket.end, quantize(value)))
            value -= bucket.net_flow
        trend.reverse()

        return NetWorthReport(
            as_of=to_date,
            total_assets=quantize(assets),
            total_liabilities=quantize(liabilities),
            net_worth=quantize(current),
            by_account_type={k: quantize(v) for k, v in sorted(by_type.items())},
            trend=trend,
        )

    # --- budget -----------------------------------------------------------

    def budget_overview(self, family_id: int, template_id: int,
                        from_date: date, to_date: date) -> BudgetOverview:
        months = self.aggregator.aggregate(family_id, from_date, to_date, GROUP_MONTH)
        income = summarize(months).total_income
        resolved = self.resolver.resolve(family_id, template_id, income)

        spent_by_category = self.aggregator.budget_category_spend(family_id, from_date, to_date)
        lines = []
        for target in resolved.targets:
            spent = spent_by_category.get(target.budget_category_id, ZERO)
            variance, used = budget_variance(target.target_amount, spent)
            lines.append(BudgetLine(
                budget_category_id=target.budget_category_id,
                name=target.name,
                color=target.color,
                percentage=target.percentage,
                allocated=target.target_amount,
                spent=spent,
                variance=variance,
                percent_used=used,
                status=budget_status(used),
            ))

        total_spent = sum((line.spent for line in lines), ZERO)
        total_variance, _ = budget_variance(resolved.total_allocated, total_spent)
        return BudgetOverview(
            template_id=template_id,
            from_date=from_date,
            to_date=to_date,
            income=income,
            lines=lines,
            total_allocated=resolved.total_allocated,
            total_spent=total_spent,
            total_variance=total_variance,
            unallocated=resolved.residual,
            performance_score=performance_score(resolved.total_allocated, total_spent),
        )

    def budget_projection(self, family_id: int, template_id: int, months: int = 6,
                          today: date | None = None) -> BudgetProjection:
        """Targets for the next ``months`` months from the last six months' average received income."""
        if months < 1:
            raise InvalidInputError("months must be >= 1", field="months")
        today = today or self.today
        history_end = today.replace(day=1) - timedelta(days=1)
        history_start = add_months(today.replace(day=1), -6)
        history = self.aggregator.aggregate(family_id, history_start, history_end, GROUP_MONTH)
        average = quantize(summarize(history).total_income / len(history))

        resolved = self.resolver.resolve(family_id, template_id, average)
        targets = {t.name: t.target_amount for t in resolved.targets}
        upcoming = following_periods(history_end, GROUP_MONTH, months)
        return BudgetProjection(
            template_id=template_id,
            average_monthly_income=average,
            months=[BudgetProjectionMonth(p.label, p.start, p.end, average, dict(targets)) for p in upcoming],
        )

    # --- debt -------------------------------------------------------------

    def debt_analysis(self, family_id: int, debt_category_ids: Sequence[int] = (),
                      today: date | None = None) -> DebtAnalysis:
        """
        Liability accounts weighed against debt payments and income.

        Debt payments are the payments filed under ``debt_category_ids``.
        Monthly obligations come from the latest anchor of each recurring
        debt payment series, scaled to a month. Income is the average
        received over the three calendar months before the current one.
        Interest is estimated at 1.5% of the outstanding debt per month.

        Raises:
            SpendingCategoryNotFound: a debt category is missing or belongs
                to another family
        """
        today = today or self.today
        for category_id in debt_category_ids:
            if self.repo.get_spending_category(family_id, category_id) is None:
                raise SpendingCategoryNotFound(category_id)
        debt_ids = set(debt_category_ids)

        liabilities = sorted(
            (a for a in self.repo.active_accounts(family_id) if a.account_type in LIABILITY_ACCOUNT_TYPES),
            key=lambda a: (-abs(a.current_balance), a.id),
        )
        accounts = [DebtAccountLine(a.id, a.name, a.account_type, quantize(abs(a.current_balance)))
                    for a in liabilities]
        total_debt = sum((a.balance for a in accounts), ZERO)

        balances_by_type: Dict[str, List[Decimal]] = {}
        for a in accounts:
            balances_by_type.setdefault(a.account_type, []).append(a.balance)
        by_type = [
            DebtTypeLine(
                account_type=account_type,
                total_amount=sum(balances, ZERO),
                account_count=len(balances),
                average_balance=quantize(sum(balances, ZERO) / len(balances)),
                percentage_of_total=ratio_percent(sum(balances, ZERO), total_debt),
            )
            for account_type, balances in sorted(balances_by_type.items())
        ]

        payments = [p for p in self.repo.list_payments(family_id)
                    if p.spending_category_id in debt_ids and p.status != PAYMENT_CANCELLED]
        recurring = _latest_anchors(payments, lambda r: (r.payee, r.frequency), lambda r: r.due_date,
                                    settled=lambda r: True)
        monthly = quantize(sum((r.amount * _MONTHLY_FACTORS[r.frequency] for r in recurring), ZERO))

        month_start = today.replace(day=1)
        history = self.aggregator.aggregate(
            family_id, add_months(month_start, -DEBT_INCOME_MONTHS), month_start - timedelta(days=1), GROUP_MONTH,
        )
        income = quantize(summarize(history).total_income / len(history))
        dti = ratio_percent(monthly, income)

        due = [p for p in payments if add_months(today, -12) <= p.due_date <= today]
        overdue = [p for p in due if p.paid_date is None and p.due_date < today]
        overdue_amount = sum((p.amount for p in overdue), ZERO)
        payment_rate = ratio_percent(sum(1 for p in due if p.status == PAYMENT_PAID), len(due)) if due else HUNDRED

        interest = quantize(total_debt * MONTHLY_INTEREST_ESTIMATE)
        covers_interest = not total_debt or monthly > interest
        if not total_debt:
            months_to_payoff = 0
        elif covers_interest:
            months_to_payoff = int((total_debt / (monthly - interest)).to_integral_value(rounding=ROUND_CEILING))
        else:
            months_to_payoff = None
        projected_interest = quantize(interest * months_to_payoff) if months_to_payoff else ZERO

        recommendations = []
        if dti > DTI_CRITICAL:
            recommendations.append(DebtRecommendation(
                "critical", "High debt-to-income ratio: make debt reduction the top priority", dti,
            ))
        if not covers_interest:
            recommendations.append(DebtRecommendation(
                "critical", "Monthly payments do not cover the estimated interest: increase payment amounts",
                quantize(interest - monthly),
            ))
        if overdue:
            recommendations.append(DebtRecommendation(
                "warning", f"{len(overdue)} overdue debt payment(s): pay them to avoid penalties", overdue_amount,
            ))
        if len(accounts) > CONSOLIDATION_ACCOUNT_COUNT:
            recommendations.append(DebtRecommendation(
                "info", "Consider consolidating debts to simplify payments", None,
            ))

        logger.debug("Debt analysis for family %d: %s owed across %d account(s)", family_id, total_debt, len(accounts))
        return DebtAnalysis(
            as_of=today,
            total_debt=total_debt,
            account_count=len(accounts),
            by_type=by_type,
            accounts=accounts,
            monthly_obligations=monthly,
            average_monthly_income=income,
            debt_to_income_ratio=dti,
            estimated_monthly_interest=interest,
            net_principal_reduction=max(monthly - interest, ZERO),
            payment_rate=payment_rate,
            overdue_count=len(overdue),
            overdue_amount=overdue_amount,
            months_to_payoff=months_to_payoff,
            payoff_date=add_months(today, months_to_payoff) if months_to_payoff is not None else None,
            total_interest_projected=projected_interest,
            total_cost_of_debt=total_debt + projected_interest,
            avalanche_target=accounts[0] if accounts else None,
            snowball_target=accounts[-1] if accounts else None,
            health_score=debt_health_score(dti, len(overdue), payment_rate, covers_interest),
            recommendations=recommendations,
        )


def _latest_anchors(rows, series_key, anchor_date, settled):
    """
    One anchor per recurring series (its latest record) plus every unsettled
    one-off record.
    """
    latest = {}
    for row in rows:
        if row.frequency == FREQ_ONCE:
            if not settled(row):
                yield row
            continue
        key = series_key(row)
        if key not in latest or anchor_date(row) > anchor_date(latest[key]):
            latest[key] = row
    yield from latest.values()


def _previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def _delta(label: str, previous: PeriodBucket, current: PeriodBucket) -> PeriodDelta:
    return PeriodDelta(
        label=label,
        income_change=current.income - previous.income,
        expense_change=current.expenses - previous.expenses,
        net_change=current.net_flow - previous.net_flow,
    )
