"""
Attribution ledger: links parts of a payment to the income events funding it.

The ledger is the only writer of PaymentAttribution rows and of the derived
totals on both parents (Payment.attributed_amount / remaining_amount,
IncomeEvent.allocated_amount / remaining_amount).

Write path (create / delete / split):
1. Validate the request (amount, type) - nothing is locked yet
2. Take the per-entity locks of every parent involved (sorted order)
3. Load the parents FOR UPDATE, family-scoped
4. Check both sum invariants against the freshly loaded totals
5. Insert/delete edges, recompute both parents' totals and payment status
6. Commit; any failure rolls the whole transaction back
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Sequence, Tuple

from sqlalchemy.orm import Session

from famledger.application.ledger_locks import KeyedLockTable, payment_key, income_key
from famledger.domain.errors import (
    PaymentNotFound, IncomeEventNotFound, AttributionNotFound,
    AttributionExceedsPayment, AttributionExceedsIncome,
    InvalidInputError, ConflictError,
)
from famledger.domain.money import ZERO, parse_amount, quantize
from famledger.domain.statuses import (
    ATTRIBUTION_TYPES, ATTRIBUTION_MANUAL, ATTRIBUTION_AUTOMATIC,
    INCOME_SCHEDULED, INCOME_CANCELLED, PAYMENT_CANCELLED,
    income_effective_amount, payment_effective_amount, derive_payment_status,
)
from famledger.domain.views import AttributionView, PaymentView, IncomeEventView, Serializable
from famledger.infrastructure.db.models import PaymentAttributionModel, PaymentModel, IncomeEventModel
from famledger.infrastructure.db.repository import LedgerRepository

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Derived totals (single writer)
# ----------------------------------------------------------------------

def recompute_payment_totals(repo: LedgerRepository, payment: PaymentModel, today: date) -> None:
    """Rewrite attributed/remaining amounts and the unsettled status of a payment."""
    total = sum((a.amount for a in repo.attributions_for_payment(payment.id)), ZERO)
    effective = payment_effective_amount(payment.paid_date, payment.amount, payment.paid_amount)
    payment.attributed_amount = quantize(total)
    payment.remaining_amount = quantize(effective - total)
    payment.status = derive_payment_status(
        payment.status, payment.due_date, payment.paid_date, total, effective, today,
    )


def recompute_income_totals(repo: LedgerRepository, income: IncomeEventModel) -> None:
    """Rewrite allocated/remaining amounts of an income event."""
    total = sum((a.amount for a in repo.attributions_for_income_event(income.id)), ZERO)
    effective = income_effective_amount(income.status, income.amount, income.actual_amount)
    income.allocated_amount = quantize(total)
    income.remaining_amount = quantize(effective - total)


# ----------------------------------------------------------------------
# Result types
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class PaymentAttributions(Serializable):
    payment: PaymentView
    attributions: List[AttributionView]
    total_attributed: Decimal


@dataclass(frozen=True)
class IncomeEventAttributions(Serializable):
    income_event: IncomeEventView
    attributions: List[AttributionView]
    total_allocated: Decimal


@dataclass(frozen=True)
class AttributionSuggestion(Serializable):
    income_event_id: int
    income_event_name: str
    scheduled_date: date
    available_amount: Decimal
    suggested_amount: Decimal
    confidence: str  # high, medium, low


@dataclass(frozen=True)
class CapacityCheck(Serializable):
    is_valid: bool
    errors: List[str]
    total_proposed: Decimal
    payment_amount: Decimal


_CONFIDENCE_ORDER = {"high": 3, "medium": 2, "low": 1}


class AttributionLedger:
    """
    Attribution ledger service

    Args:
        db: session whose transaction each write operation commits
        locks: process-wide KeyedLockTable shared by all ledger writers
        today: fixed "today" for status derivation (defaults to date.today())
    """

    def __init__(self, db: Session, locks: KeyedLockTable, today: date | None = None):
        self.db = db
        self.repo = LedgerRepository(db, lock_timeout=locks.timeout)
        self.locks = locks
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_attribution(
        self,
        family_id: int,
        payment_id: int,
        income_event_id: int,
        amount,
        attribution_type: str = ATTRIBUTION_MANUAL,
        created_by: int | None = None,
    ) -> AttributionView:
        amount = parse_amount(amount)
        _validate_type(attribution_type)

        with self.locks.hold([payment_key(payment_id), income_key(income_event_id)]):
            try:
                row = self._create_locked(family_id, payment_id, income_event_id, amount,
                                          attribution_type, created_by)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            "Attribution #%d created: payment #%d <- income #%d, amount=%s (%s)",
            row.id, payment_id, income_event_id, amount, attribution_type,
        )
        return AttributionView.from_model(row)

    def delete_attribution(self, family_id: int, attribution_id: int) -> None:
        existing = self.repo.get_attribution(family_id, attribution_id)
        if existing is None:
            raise AttributionNotFound(attribution_id)
        payment_id, income_event_id = existing.payment_id, existing.income_event_id

        with self.locks.hold([payment_key(payment_id), income_key(income_event_id)]):
            try:
                row = self.repo.get_attribution(family_id, attribution_id)
                if row is None:
                    raise AttributionNotFound(attribution_id)
                payment = self._load_payment(family_id, payment_id)
                income = self._load_income(family_id, income_event_id)
                amount = row.amount
                self.repo.delete(row)
                recompute_payment_totals(self.repo, payment, self.today)
                recompute_income_totals(self.repo, income)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            "Attribution #%d deleted: payment #%d <- income #%d, amount=%s",
            attribution_id, payment_id, income_event_id, amount,
        )

    def split_payment(
        self,
        family_id: int,
        payment_id: int,
        splits: Sequence[Tuple[int, object]],
        attribution_type: str = ATTRIBUTION_MANUAL,
        created_by: int | None = None,
    ) -> List[AttributionView]:
        """
        Fund a payment from several income events in one transaction.

        The payment must not be attributed yet and the split amounts must add
        up to its effective amount. Either every attribution is written or
        none is.
        """
        _validate_type(attribution_type)
        if not splits:
            raise InvalidInputError("at least one split is required", field="splits")
        parsed = [(income_id, parse_amount(amount, field=f"splits[{i}].amount"))
                  for i, (income_id, amount) in enumerate(splits)]

        keys = [payment_key(payment_id)] + [income_key(income_id) for income_id, _ in parsed]
        with self.locks.hold(keys):
            try:
                payment = self._load_payment(family_id, payment_id)
                if self.repo.count_attributions(payment_id=payment_id):
                    raise ConflictError(
                        f"Payment #{payment_id} already has attributions, delete them before splitting",
                        entity=f"Payment:{payment_id}",
                    )
                effective = payment_effective_amount(payment.paid_date, payment.amount, payment.paid_amount)
                total = sum((amount for _, amount in parsed), ZERO)
                if total != effective:
                    raise InvalidInputError(
                        f"Split amounts add up to {total}, payment #{payment_id} requires {effective}",
                        field="splits",
                    )
                rows = [
                    self._create_locked(family_id, payment_id, income_id, amount, attribution_type, created_by)
                    for income_id, amount in parsed
                ]
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info("Payment #%d split across %d income event(s), total=%s", payment_id, len(rows), total)
        return [AttributionView.from_model(r) for r in rows]

    def auto_attribute_payment(self, family_id: int, payment_id: int,
                               created_by: int | None = None) -> AttributionView | None:
        """
        Attribute the whole payment to the earliest scheduled income event on
        or before its due date that can still cover it. Returns None when no
        income event fits.
        """
        payment = self.repo.get_payment(family_id, payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        if self.repo.count_attributions(payment_id=payment_id):
            raise ConflictError(f"Payment #{payment_id} already has attributions", entity=f"Payment:{payment_id}")

        needed = payment.remaining_amount
        candidates = [
            inc for inc in self.repo.list_income_events(family_id, status=INCOME_SCHEDULED, to_date=payment.due_date)
            if inc.remaining_amount >= needed
        ]
        if not candidates or needed <= 0:
            logger.info("No income event can cover payment #%d (%s)", payment_id, needed)
            return None
        return self.create_attribution(
            family_id, payment_id, candidates[0].id, needed,
            attribution_type=ATTRIBUTION_AUTOMATIC, created_by=created_by,
        )

    # ------------------------------------------------------------------
    # Reads (no locking)
    # ------------------------------------------------------------------

    def list_for_payment(self, family_id: int, payment_id: int) -> PaymentAttributions:
        payment = self.repo.get_payment(family_id, payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        rows = self.repo.attributions_for_payment(payment_id)
        return PaymentAttributions(
            payment=PaymentView.from_model(payment),
            attributions=[AttributionView.from_model(r) for r in rows],
            total_attributed=sum((r.amount for r in rows), ZERO),
        )

    def list_for_income_event(self, family_id: int, income_event_id: int) -> IncomeEventAttributions:
        income = self.repo.get_income_event(family_id, income_event_id)
        if income is None:
            raise IncomeEventNotFound(income_event_id)
        rows = self.repo.attributions_for_income_event(income_event_id)
        return IncomeEventAttributions(
            income_event=IncomeEventView.from_model(income),
            attributions=[AttributionView.from_model(r) for r in rows],
            total_allocated=sum((r.amount for r in rows), ZERO),
        )

    def suggest_attributions(self, family_id: int, payment_id: int, limit: int = 10) -> List[AttributionSuggestion]:
        """Rank scheduled income events with spare capacity for a payment."""
        payment = self.repo.get_payment(family_id, payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)

        needed = payment.remaining_amount
        suggestions = []
        for inc in self.repo.list_income_events(family_id, status=INCOME_SCHEDULED):
            available = inc.remaining_amount
            if available <= 0:
                continue
            if inc.scheduled_date <= payment.due_date and available >= needed:
                confidence = "high"
            elif available >= needed / 2:
                confidence = "medium"
            else:
                confidence = "low"
            suggestions.append(AttributionSuggestion(
                income_event_id=inc.id,
                income_event_name=inc.name,
                scheduled_date=inc.scheduled_date,
                available_amount=available,
                suggested_amount=min(needed, available),
                confidence=confidence,
            ))
            if len(suggestions) >= limit:
                break
        # stable sort keeps scheduled-date order inside a confidence level
        return sorted(suggestions, key=lambda s: -_CONFIDENCE_ORDER[s.confidence])

    def validate_capacity(self, family_id: int, payment_id: int,
                          proposed: Iterable[Tuple[int, object]]) -> CapacityCheck:
        """Dry-run of a set of attributions: collects every problem, writes nothing."""
        payment = self.repo.get_payment(family_id, payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)

        errors: list[str] = []
        total = ZERO
        per_income: dict[int, Decimal] = {}
        for i, (income_id, raw_amount) in enumerate(proposed):
            try:
                amount = parse_amount(raw_amount, field=f"proposed[{i}].amount")
            except InvalidInputError as e:
                errors.append(e.message)
                continue
            total += amount
            per_income[income_id] = per_income.get(income_id, ZERO) + amount

        if payment.attributed_amount + total > payment_effective_amount(
                payment.paid_date, payment.amount, payment.paid_amount):
            errors.append(
                f"Total attributions {payment.attributed_amount + total} exceed payment amount "
                f"{payment_effective_amount(payment.paid_date, payment.amount, payment.paid_amount)}"
            )
        for income_id, amount in per_income.items():
            income = self.repo.get_income_event(family_id, income_id)
            if income is None:
                errors.append(f"Income event not found: {income_id}")
            elif income.status == INCOME_CANCELLED:
                errors.append(f"Income event {income.name} is cancelled")
            elif amount > income.remaining_amount:
                errors.append(f"Amount {amount} exceeds available income {income.remaining_amount} for {income.name}")

        return CapacityCheck(
            is_valid=not errors,
            errors=errors,
            total_proposed=total,
            payment_amount=payment.amount,
        )

    # ------------------------------------------------------------------
    # Internals (caller holds the locks)
    # ------------------------------------------------------------------

    def _load_payment(self, family_id: int, payment_id: int) -> PaymentModel:
        payment = self.repo.get_payment(family_id, payment_id, for_update=True)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    def _load_income(self, family_id: int, income_event_id: int) -> IncomeEventModel:
        income = self.repo.get_income_event(family_id, income_event_id, for_update=True)
        if income is None:
            raise IncomeEventNotFound(income_event_id)
        return income

    def _create_locked(
        self,
        family_id: int,
        payment_id: int,
        income_event_id: int,
        amount: Decimal,
        attribution_type: str,
        created_by: int | None,
    ) -> PaymentAttributionModel:
        payment = self._load_payment(family_id, payment_id)
        income = self._load_income(family_id, income_event_id)

        if payment.status == PAYMENT_CANCELLED:
            raise ConflictError(f"Payment #{payment_id} is cancelled", entity=f"Payment:{payment_id}")
        if income.status == INCOME_CANCELLED:
            raise ConflictError(f"Income event #{income_event_id} is cancelled",
                                entity=f"IncomeEvent:{income_event_id}")

        income_effective = income_effective_amount(income.status, income.amount, income.actual_amount)
        if income.allocated_amount + amount > income_effective:
            logger.info("Rejected attribution %s: income #%d has %s left",
                        amount, income_event_id, income_effective - income.allocated_amount)
            raise AttributionExceedsIncome(income_event_id, amount, income_effective - income.allocated_amount)

        payment_effective = payment_effective_amount(payment.paid_date, payment.amount, payment.paid_amount)
        if payment.attributed_amount + amount > payment_effective:
            logger.info("Rejected attribution %s: payment #%d has %s unattributed",
                        amount, payment_id, payment_effective - payment.attributed_amount)
            raise AttributionExceedsPayment(payment_id, amount, payment_effective - payment.attributed_amount)

        row = PaymentAttributionModel(
            payment_id=payment_id,
            income_event_id=income_event_id,
            amount=amount,
            attribution_type=attribution_type,
            created_by=created_by,
        )
        self.repo.add(row)
        recompute_payment_totals(self.repo, payment, self.today)
        recompute_income_totals(self.repo, income)
        return row


def _validate_type(attribution_type: str) -> None:
    if attribution_type not in ATTRIBUTION_TYPES:
        raise InvalidInputError(
            f"attribution_type must be one of {', '.join(ATTRIBUTION_TYPES)}",
            field="attribution_type",
        )
