"""
IncomeEvent use cases - lifecycle of expected and received income
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List

from sqlalchemy.orm import Session

from famledger.application.attributions import recompute_income_totals
from famledger.application.ledger_locks import KeyedLockTable, income_key
from famledger.domain.errors import IncomeEventNotFound, ConflictError, InvariantViolation, InvalidInputError
from famledger.domain.money import ZERO, parse_amount
from famledger.domain.recurrence import validate_frequency, next_occurrence
from famledger.domain.statuses import (
    FREQ_ONCE, INCOME_SCHEDULED, INCOME_RECEIVED, INCOME_CANCELLED, income_effective_amount,
)
from famledger.domain.views import IncomeEventView, Serializable
from famledger.infrastructure.db.models import IncomeEventModel
from famledger.infrastructure.db.repository import LedgerRepository

logger = logging.getLogger(__name__)


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("name is required", field="name")
    if len(name) > 255:
        raise InvalidInputError("name must be at most 255 characters", field="name")
    return name


def _get_or_raise(repo: LedgerRepository, family_id: int, income_event_id: int,
                  for_update: bool = False) -> IncomeEventModel:
    row = repo.get_income_event(family_id, income_event_id, for_update=for_update)
    if row is None:
        raise IncomeEventNotFound(income_event_id)
    return row


class CreateIncomeEventUseCase:
    """
    Use case: create a scheduled income event (one record per recurrence anchor)
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)

    def execute(
        self,
        family_id: int,
        name: str,
        amount,
        scheduled_date: date,
        frequency: str = FREQ_ONCE,
        source: str | None = None,
        notes: str | None = None,
    ) -> IncomeEventView:
        try:
            row = self._build(family_id, name, amount, scheduled_date, frequency, source, notes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Income event #%d created: %s %s on %s (%s)",
                    row.id, row.name, row.amount, row.scheduled_date, row.frequency)
        return IncomeEventView.from_model(row)

    def _build(self, family_id, name, amount, scheduled_date, frequency, source, notes) -> IncomeEventModel:
        row = IncomeEventModel(
            family_id=family_id,
            name=_validate_name(name),
            amount=parse_amount(amount),
            scheduled_date=scheduled_date,
            frequency=validate_frequency(frequency),
            status=INCOME_SCHEDULED,
            source=source,
            notes=notes,
        )
        self.repo.add(row)
        recompute_income_totals(self.repo, row)
        return row


class BulkCreateIncomeEventsUseCase(CreateIncomeEventUseCase):
    """Create several income events; all are written or none is"""

    def execute(self, family_id: int, items: Iterable[dict]) -> List[IncomeEventView]:
        rows = []
        try:
            for item in items:
                rows.append(self._build(
                    family_id,
                    item.get("name"),
                    item.get("amount"),
                    item.get("scheduled_date"),
                    item.get("frequency", FREQ_ONCE),
                    item.get("source"),
                    item.get("notes"),
                ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Bulk-created %d income event(s) for family %d", len(rows), family_id)
        return [IncomeEventView.from_model(r) for r in rows]


class UpdateIncomeEventUseCase:
    """
    Use case: edit a scheduled income event

    Received and cancelled events are read-only. The nominal amount may not
    drop below what is already allocated to payments.
    """

    def __init__(self, db: Session, locks: KeyedLockTable):
        self.db = db
        self.repo = LedgerRepository(db, lock_timeout=locks.timeout)
        self.locks = locks

    def execute(self, family_id: int, income_event_id: int, **changes) -> IncomeEventView:
        with self.locks.hold([income_key(income_event_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, income_event_id, for_update=True)
                if row.status != INCOME_SCHEDULED:
                    raise ConflictError(
                        f"Income event #{income_event_id} is {row.status} and cannot be edited",
                        entity=f"IncomeEvent:{income_event_id}",
                    )

                if changes.get("name") is not None:
                    row.name = _validate_name(changes["name"])
                if changes.get("amount") is not None:
                    amount = parse_amount(changes["amount"])
                    if amount < row.allocated_amount:
                        raise InvariantViolation(
                            f"amount {amount} is below the allocated amount {row.allocated_amount}",
                            field="amount",
                            entity=f"IncomeEvent:{income_event_id}",
                        )
                    row.amount = amount
                if changes.get("scheduled_date") is not None:
                    row.scheduled_date = changes["scheduled_date"]
                if changes.get("frequency") is not None:
                    row.frequency = validate_frequency(changes["frequency"])
                if "source" in changes:
                    row.source = changes["source"]
                if "notes" in changes:
                    row.notes = changes["notes"]

                recompute_income_totals(self.repo, row)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Income event #%d updated", income_event_id)
        return IncomeEventView.from_model(row)


class MarkIncomeReceivedUseCase:
    """
    Use case: record that an income event was received

    Process:
    1. Check the event is scheduled and the actual amount still covers the
       allocations (effective amount switches to the actual amount)
    2. Set actual amount/date, recompute derived totals
    3. Recurring events: schedule the next occurrence unless it exists
    """

    def __init__(self, db: Session, locks: KeyedLockTable):
        self.db = db
        self.repo = LedgerRepository(db, lock_timeout=locks.timeout)
        self.locks = locks

    def execute(self, family_id: int, income_event_id: int, actual_amount=None,
                actual_date: date | None = None) -> IncomeEventView:
        with self.locks.hold([income_key(income_event_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, income_event_id, for_update=True)
                if row.status != INCOME_SCHEDULED:
                    raise ConflictError(
                        f"Income event #{income_event_id} is already {row.status}",
                        entity=f"IncomeEvent:{income_event_id}",
                    )
                actual = row.amount if actual_amount is None else parse_amount(actual_amount, field="actual_amount")
                if actual < row.allocated_amount:
                    raise InvariantViolation(
                        f"actual amount {actual} is below the allocated amount {row.allocated_amount}",
                        field="actual_amount",
                        entity=f"IncomeEvent:{income_event_id}",
                    )

                row.status = INCOME_RECEIVED
                row.actual_amount = actual
                row.actual_date = actual_date or date.today()
                recompute_income_totals(self.repo, row)

                spawned = self._schedule_next(row)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info("Income event #%d received: %s on %s", row.id, row.actual_amount, row.actual_date)
        if spawned is not None:
            logger.info("Next occurrence of income event #%d scheduled as #%d on %s",
                        row.id, spawned.id, spawned.scheduled_date)
        return IncomeEventView.from_model(row)

    def _schedule_next(self, row: IncomeEventModel) -> IncomeEventModel | None:
        next_date = next_occurrence(row.scheduled_date, row.frequency)
        if next_date is None or self.repo.income_event_exists_on(row.family_id, row.name, next_date):
            return None
        nxt = IncomeEventModel(
            family_id=row.family_id,
            name=row.name,
            amount=row.amount,
            scheduled_date=next_date,
            frequency=row.frequency,
            status=INCOME_SCHEDULED,
            source=row.source,
            notes=row.notes,
        )
        self.repo.add(nxt)
        recompute_income_totals(self.repo, nxt)
        return nxt


class RevertIncomeReceivedUseCase:
    """Use case: undo a receipt (received -> scheduled)"""

    def __init__(self, db: Session, locks: KeyedLockTable):
        self.db = db
        self.repo = LedgerRepository(db, lock_timeout=locks.timeout)
        self.locks = locks

    def execute(self, family_id: int, income_event_id: int) -> IncomeEventView:
        with self.locks.hold([income_key(income_event_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, income_event_id, for_update=True)
                if row.status != INCOME_RECEIVED:
                    raise ConflictError(
                        f"Income event #{income_event_id} is not received",
                        entity=f"IncomeEvent:{income_event_id}",
                    )
                if row.allocated_amount > row.amount:
                    raise InvariantViolation(
                        f"allocated amount {row.allocated_amount} exceeds the nominal amount {row.amount}",
                        field="amount",
                        entity=f"IncomeEvent:{income_event_id}",
                    )
                row.status = INCOME_SCHEDULED
                row.actual_amount = None
                row.actual_date = None
                recompute_income_totals(self.repo, row)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Income event #%d reverted to scheduled", income_event_id)
        return IncomeEventView.from_model(row)


class CancelIncomeEventUseCase:
    """Use case: cancel a scheduled income event that funds nothing"""

    def __init__(self, db: Session, locks: KeyedLockTable):
        self.db = db
        self.repo = LedgerRepository(db, lock_timeout=locks.timeout)
        self.locks = locks

    def execute(self, family_id: int, income_event_id: int) -> IncomeEventView:
        with self.locks.hold([income_key(income_event_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, income_event_id, for_update=True)
                if row.status != INCOME_SCHEDULED:
                    raise ConflictError(
                        f"Only scheduled income events can be cancelled (#{income_event_id} is {row.status})",
                        entity=f"IncomeEvent:{income_event_id}",
                    )
                if self.repo.count_attributions(income_event_id=income_event_id):
                    raise ConflictError(
                        f"Income event #{income_event_id} still funds payments, delete its attributions first",
                        entity=f"IncomeEvent:{income_event_id}",
                    )
                row.status = INCOME_CANCELLED
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Income event #%d cancelled", income_event_id)
        return IncomeEventView.from_model(row)


class DeleteIncomeEventUseCase:
    """Use case: delete an income event that no attribution references"""

    def __init__(self, db: Session, locks: KeyedLockTable):
        self.db = db
        self.repo = LedgerRepository(db, lock_timeout=locks.timeout)
        self.locks = locks

    def execute(self, family_id: int, income_event_id: int) -> None:
        with self.locks.hold([income_key(income_event_id)]):
            try:
                row = _get_or_raise(self.repo, family_id, income_event_id, for_update=True)
                if self.repo.count_attributions(income_event_id=income_event_id):
                    raise ConflictError(
                        f"Income event #{income_event_id} has attributions and cannot be deleted",
                        entity=f"IncomeEvent:{income_event_id}",
                    )
                self.repo.delete_income_allocations(income_event_id)
                self.repo.delete(row)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Income event #%d deleted", income_event_id)


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class IncomeSummary(Serializable):
    from_date: date
    to_date: date
    total_expected: Decimal
    total_received: Decimal
    total_allocated: Decimal
    total_unallocated: Decimal
    event_count: int
    received_count: int


class IncomeEventQueries:
    """Read-only income event projections (no locking)"""

    def __init__(self, db: Session):
        self.repo = LedgerRepository(db)

    def get(self, family_id: int, income_event_id: int) -> IncomeEventView:
        return IncomeEventView.from_model(_get_or_raise(self.repo, family_id, income_event_id))

    def list(self, family_id: int, status: str | None = None,
             from_date: date | None = None, to_date: date | None = None) -> List[IncomeEventView]:
        rows = self.repo.list_income_events(family_id, status=status, from_date=from_date, to_date=to_date)
        return [IncomeEventView.from_model(r) for r in rows]

    def upcoming(self, family_id: int, days: int = 30, today: date | None = None) -> List[IncomeEventView]:
        if days < 0:
            raise InvalidInputError("days must be >= 0", field="days")
        today = today or date.today()
        rows = self.repo.list_income_events(
            family_id, status=INCOME_SCHEDULED, from_date=today, to_date=today + timedelta(days=days),
        )
        return [IncomeEventView.from_model(r) for r in rows]

    def summary(self, family_id: int, from_date: date, to_date: date) -> IncomeSummary:
        rows = [
            r for r in self.repo.list_income_events(family_id, from_date=from_date, to_date=to_date)
            if r.status != INCOME_CANCELLED
        ]
        received = [r for r in rows if r.status == INCOME_RECEIVED]
        allocated = sum((r.allocated_amount for r in rows), ZERO)
        return IncomeSummary(
            from_date=from_date,
            to_date=to_date,
            total_expected=sum((r.amount for r in rows), ZERO),
            total_received=sum(
                (income_effective_amount(r.status, r.amount, r.actual_amount) for r in received), ZERO
            ),
            total_allocated=allocated,
            total_unallocated=sum((r.remaining_amount for r in rows), ZERO),
            event_count=len(rows),
            received_count=len(received),
        )
