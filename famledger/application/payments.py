"""
Payment use cases - lifecycle of scheduled and settled bills
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List

from sqlalchemy.orm import Session

from famledger.application.attributions import recompute_payment_totals
from famledger.application.ledger_locks import KeyedLockTable, payment_key
from famledger.domain.errors import (
    PaymentNotFound, SpendingCategoryNotFound, ConflictError, InvariantViolation, InvalidInputError,
)
from famledger.domain.money import ZERO, parse_amount
from famledger.domain.recurrence import validate_frequency, next_occurrence
from famledger.domain.statuses import (
    FREQ_ONCE, PAYMENT_TYPES, PAYMENT_TYPE_ONCE, PAYMENT_TYPE_RECURRING,
    PAYMENT_SCHEDULED, PAYMENT_PAID, PAYMENT_OVERDUE, PAYMENT_PARTIAL, PAYMENT_CANCELLED,
    settlement_status, payment_effective_amount,
)
from famledger.domain.views import PaymentView, Serializable
from famledger.infrastructure.db.models import PaymentModel
from famledger.infrastructure.db.repository import LedgerRepository

logger = logging.getLogger(__name__)


def _get_or_raise(repo: LedgerRepository, family_id: int, payment_id: int,
                  for_update: bool = False) -> PaymentModel:
    row = repo.get_payment(family_id, payment_id, for_update=for_update)
    if row is None:
        raise PaymentNotFound(payment_id)
    return row


def _validate_payee(payee: str) -> str:
    payee = (payee or "").strip()
    if not payee:
        raise InvalidInputError("payee is required", field="payee")
    if len(payee) > 255:
        raise InvalidInputError("payee must be at most 255 characters", field="payee")
    return payee


def _validate_payment_type(payment_type: str) -> str:
    if payment_type not in PAYMENT_TYPES:
        raise InvalidInputError(
            f"payment_type must be one of {', '.join(PAYMENT_TYPES)}", field="payment_type"
        )
    return payment_type


def _check_category(repo: LedgerRepository, family_id: int, category_id: int | None) -> int | None:
    if category_id is None:
        return None
    category = repo.get_spending_category(family_id, category_id)
    if category is None or not category.is_active:
        raise SpendingCategoryNotFound(category_id)
    return category_id


class CreatePaymentUseCase:
    """
    Use case: schedule a payment

    Args (execute):
        spending_category_id: active category of the same family, or None
        today: reference date for the initial status (overdue when already past due)
    """

    def __init__(self, db: Session, today: date | None = None):
        self.db = db
        self.repo = LedgerRepository(db)
        self.today = today

    def execute(
        self,
        family_id: int,
        payee: str,
        amount,
        due_date: date,
        payment_type: str = PAYMENT_TYPE_ONCE,
        frequency: str = FREQ_ONCE,
        spending_category_id: int | None = None,
        auto_pay_enabled: bool = False,
        notes: str | None = None,
    ) -> PaymentView:
        try:
            row = self._build(family_id, payee, amount, due_date, payment_type, frequency,
                              spending_category_id, auto_pay_enabled, notes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Payment #%d created: %s %s due %s", row.id, row.payee, row.amount, row.due_date)
        return PaymentView.from_model(row)

    def _build(self, family_id, payee, amount, due_date, payment_type, frequency,
               spending_category_id, auto_pay_enabled, notes) -> PaymentModel:
        row = PaymentModel(
            family_id=family_id,
            payee=_validate_payee(payee),
            amount=parse_amount(amount),
            due_date=due_date,
            payment_type=_validate_payment_type(payment_type),
            frequency=validate_frequency(frequency),
            status=PAYMENT_SCHEDULED,
            spending_category_id=_check_category(self.repo, family_id, spending_category_id),
            auto_pay_enabled=bool(auto_pay_enabled),
            notes=notes,
        )
        self.repo.add(row)
        recompute_payment_totals(self.repo, row, self.today or date.today())
        return row


class BulkCreatePaymentsUseCase(CreatePaymentUseCase):
    """Create several payments; all are written or none is"""

    def execute(self, family_id: int, items: Iterable[dict]) -> List[PaymentView]:
        rows = []
        try:
            for item in items:
                rows.append(self._build(
                    family_id,
                    item.get("payee"),
                    item.get("amount"),
                    item.get("due_date"),
                    item.get("payment_type", PAYMENT_TYPE_ONCE),
                    item.get("frequency", FREQ_ONCE),
                    item.get("spending_category_id"),
                    item.get("auto_pay_enabled", False),
                    item.get("notes"),
                ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Bulk-created %d payment(s) for family %d", len(rows), family_id)
        return [PaymentView.from_model(r) for r in rows]


class _PaymentWriteUseCase:
    """Common wiring for use cases that change a payment's effective amount or status"""

    def __init__(self, db: Session, locks: KeyedLockTable, today: date | None = None):
        self.db = db
        self.repo = LedgerRepository(db, lock_timeout=locks.timeout)
        self.locks = locks
        self.today = today or date.today()


class UpdatePaymentUseCase(_PaymentWriteUseCase):
    """
    Use case: edit an unsettled payment

    The amount may not drop below what is already attributed.
    """

    def execute(self, family_id: int, payment_id: int, **changes) -> PaymentView:
        with self.locks.hold([payment_key(payment_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, payment_id, for_update=True)
                if row.paid_date is not None or row.status == PAYMENT_CANCELLED:
                    raise ConflictError(
                        f"Payment #{payment_id} is {row.status} and cannot be edited",
                        entity=f"Payment:{payment_id}",
                    )

                if changes.get("payee") is not None:
                    row.payee = _validate_payee(changes["payee"])
                if changes.get("amount") is not None:
                    amount = parse_amount(changes["amount"])
                    if amount < row.attributed_amount:
                        raise InvariantViolation(
                            f"amount {amount} is below the attributed amount {row.attributed_amount}",
                            field="amount",
                            entity=f"Payment:{payment_id}",
                        )
                    row.amount = amount
                if changes.get("due_date") is not None:
                    row.due_date = changes["due_date"]
                if changes.get("payment_type") is not None:
                    row.payment_type = _validate_payment_type(changes["payment_type"])
                if changes.get("frequency") is not None:
                    row.frequency = validate_frequency(changes["frequency"])
                if "spending_category_id" in changes:
                    row.spending_category_id = _check_category(
                        self.repo, family_id, changes["spending_category_id"]
                    )
                if changes.get("auto_pay_enabled") is not None:
                    row.auto_pay_enabled = bool(changes["auto_pay_enabled"])
                if "notes" in changes:
                    row.notes = changes["notes"]

                recompute_payment_totals(self.repo, row, self.today)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Payment #%d updated", payment_id)
        return PaymentView.from_model(row)


class MarkPaymentPaidUseCase(_PaymentWriteUseCase):
    """
    Use case: settle a payment

    Process:
    1. Reject cancelled/already settled payments and a paid amount below
       the attributed amount (effective amount switches to the paid amount)
    2. Set paid amount/date and the settlement status (paid or partial)
    3. Recurring payments: schedule the next occurrence unless it exists
    """

    def execute(self, family_id: int, payment_id: int, paid_amount=None,
                paid_date: date | None = None) -> PaymentView:
        with self.locks.hold([payment_key(payment_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, payment_id, for_update=True)
                if row.status == PAYMENT_CANCELLED or row.paid_date is not None:
                    raise ConflictError(
                        f"Payment #{payment_id} is already {row.status}",
                        entity=f"Payment:{payment_id}",
                    )
                paid = row.amount if paid_amount is None else parse_amount(paid_amount, field="paid_amount")
                if paid < row.attributed_amount:
                    raise InvariantViolation(
                        f"paid amount {paid} is below the attributed amount {row.attributed_amount}",
                        field="paid_amount",
                        entity=f"Payment:{payment_id}",
                    )

                row.paid_amount = paid
                row.paid_date = paid_date or self.today
                row.status = settlement_status(row.amount, paid, row.attributed_amount)
                recompute_payment_totals(self.repo, row, self.today)

                spawned = self._schedule_next(row)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info("Payment #%d settled as %s: %s on %s", row.id, row.status, row.paid_amount, row.paid_date)
        if spawned is not None:
            logger.info("Next occurrence of payment #%d scheduled as #%d due %s",
                        row.id, spawned.id, spawned.due_date)
        return PaymentView.from_model(row)

    def _schedule_next(self, row: PaymentModel) -> PaymentModel | None:
        if row.payment_type != PAYMENT_TYPE_RECURRING:
            return None
        next_date = next_occurrence(row.due_date, row.frequency)
        if next_date is None or self.repo.payment_exists_on(row.family_id, row.payee, next_date):
            return None
        nxt = PaymentModel(
            family_id=row.family_id,
            payee=row.payee,
            amount=row.amount,
            due_date=next_date,
            payment_type=row.payment_type,
            frequency=row.frequency,
            status=PAYMENT_SCHEDULED,
            spending_category_id=row.spending_category_id,
            auto_pay_enabled=row.auto_pay_enabled,
            notes=row.notes,
        )
        self.repo.add(nxt)
        recompute_payment_totals(self.repo, nxt, self.today)
        return nxt


class RevertPaymentPaidUseCase(_PaymentWriteUseCase):
    """Use case: undo a settlement; status is re-derived from due date and funding"""

    def execute(self, family_id: int, payment_id: int) -> PaymentView:
        with self.locks.hold([payment_key(payment_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, payment_id, for_update=True)
                if row.paid_date is None:
                    raise ConflictError(f"Payment #{payment_id} is not paid", entity=f"Payment:{payment_id}")
                if row.attributed_amount > row.amount:
                    raise InvariantViolation(
                        f"attributed amount {row.attributed_amount} exceeds the nominal amount {row.amount}",
                        field="amount",
                        entity=f"Payment:{payment_id}",
                    )
                row.paid_amount = None
                row.paid_date = None
                row.status = PAYMENT_SCHEDULED
                recompute_payment_totals(self.repo, row, self.today)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Payment #%d reverted to %s", payment_id, row.status)
        return PaymentView.from_model(row)


class CancelPaymentUseCase(_PaymentWriteUseCase):
    """Use case: cancel an unsettled payment that nothing funds"""

    def execute(self, family_id: int, payment_id: int) -> PaymentView:
        with self.locks.hold([payment_key(payment_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, payment_id, for_update=True)
                if row.paid_date is not None or row.status == PAYMENT_CANCELLED:
                    raise ConflictError(
                        f"Payment #{payment_id} is {row.status} and cannot be cancelled",
                        entity=f"Payment:{payment_id}",
                    )
                if self.repo.count_attributions(payment_id=payment_id):
                    raise ConflictError(
                        f"Payment #{payment_id} has attributions, delete them first",
                        entity=f"Payment:{payment_id}",
                    )
                row.status = PAYMENT_CANCELLED
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Payment #%d cancelled", payment_id)
        return PaymentView.from_model(row)


class DeletePaymentUseCase(_PaymentWriteUseCase):
    """Use case: delete a payment that no attribution references"""

    def execute(self, family_id: int, payment_id: int) -> None:
        with self.locks.hold([payment_key(payment_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, payment_id, for_update=True)
                if self.repo.count_attributions(payment_id=payment_id):
                    raise ConflictError(
                        f"Payment #{payment_id} has attributions and cannot be deleted",
                        entity=f"Payment:{payment_id}",
                    )
                self.repo.delete(row)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Payment #%d deleted", payment_id)


def refresh_overdue_statuses(db: Session, locks: KeyedLockTable, today: date | None = None) -> int:
    """
    Re-derive the status of every unsettled payment past its due date.

    Runs across all families (scheduler job). Returns the number of
    payments whose status changed.
    """
    today = today or date.today()
    repo = LedgerRepository(db, lock_timeout=locks.timeout)
    changed = 0
    for candidate in repo.unsettled_payments_due_before(today):
        with locks.hold([payment_key(candidate.id)]):
            try:
                row = repo.get_payment(candidate.family_id, candidate.id, for_update=True)
                if row is None:
                    continue
                before = row.status
                recompute_payment_totals(repo, row, today)
                db.commit()
            except Exception:
                db.rollback()
                raise
        if row.status != before:
            changed += 1
            logger.info("Payment #%d status %s -> %s", row.id, before, row.status)
    return changed


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class PaymentSummary(Serializable):
    from_date: date
    to_date: date
    total_due: Decimal
    total_paid: Decimal
    total_attributed: Decimal
    total_unattributed: Decimal
    payment_count: int
    paid_count: int
    overdue_count: int


class PaymentQueries:
    """Read-only payment projections (no locking)"""

    def __init__(self, db: Session):
        self.repo = LedgerRepository(db)

    def get(self, family_id: int, payment_id: int) -> PaymentView:
        return PaymentView.from_model(_get_or_raise(self.repo, family_id, payment_id))

    def list(self, family_id: int, status: str | None = None, from_date: date | None = None,
             to_date: date | None = None, spending_category_id: int | None = None) -> List[PaymentView]:
        rows = self.repo.list_payments(family_id, status=status, from_date=from_date, to_date=to_date,
                                       spending_category_id=spending_category_id)
        return [PaymentView.from_model(r) for r in rows]

    def upcoming(self, family_id: int, days: int = 30, today: date | None = None) -> List[PaymentView]:
        if days < 0:
            raise InvalidInputError("days must be >= 0", field="days")
        today = today or date.today()
        rows = self.repo.list_payments(family_id, from_date=today, to_date=today + timedelta(days=days))
        return [PaymentView.from_model(r) for r in rows if r.paid_date is None and r.status != PAYMENT_CANCELLED]

    def overdue(self, family_id: int, today: date | None = None) -> List[PaymentView]:
        today = today or date.today()
        rows = self.repo.list_payments(family_id, to_date=today - timedelta(days=1))
        return [
            PaymentView.from_model(r) for r in rows
            if r.paid_date is None and r.status in (PAYMENT_SCHEDULED, PAYMENT_OVERDUE, PAYMENT_PARTIAL)
        ]

    def summary(self, family_id: int, from_date: date, to_date: date) -> PaymentSummary:
        rows = [
            r for r in self.repo.list_payments(family_id, from_date=from_date, to_date=to_date)
            if r.status != PAYMENT_CANCELLED
        ]
        settled = [r for r in rows if r.paid_date is not None]
        return PaymentSummary(
            from_date=from_date,
            to_date=to_date,
            total_due=sum((r.amount for r in rows), ZERO),
            total_paid=sum((payment_effective_amount(r.paid_date, r.amount, r.paid_amount) for r in settled), ZERO),
            total_attributed=sum((r.attributed_amount for r in rows), ZERO),
            total_unattributed=sum((r.remaining_amount for r in rows), ZERO),
            payment_count=len(rows),
            paid_count=sum(1 for r in settled if r.status == PAYMENT_PAID),
            overdue_count=sum(1 for r in rows if r.status == PAYMENT_OVERDUE),
        )
