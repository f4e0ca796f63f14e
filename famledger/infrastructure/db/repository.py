"""
Ledger repository - the persistence port used by every engine service.

All queries are family-scoped: a record belonging to another family is
indistinguishable from a missing one.

Row locks (`for_update=True`) are bounded on PostgreSQL by `lock_timeout`;
a lock that cannot be taken in time surfaces as `LockTimeout`.
"""
from contextlib import contextmanager
from datetime import date
from typing import Iterable, List, Optional

from psycopg.errors import LockNotAvailable
from sqlalchemy import func, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query, Session

from famledger.domain.errors import LockTimeout

from famledger.infrastructure.db.models import (
    IncomeEventModel, PaymentModel, PaymentAttributionModel,
    SpendingCategoryModel, BudgetCategoryModel, BudgetTemplateModel,
    BudgetAllocationModel, IncomeBudgetAllocationModel, AccountModel,
)


def lock_timeout_statement(seconds: float) -> str:
    """``SET LOCAL`` takes no bind parameters; the value is rendered as whole milliseconds."""
    return f"SET LOCAL lock_timeout = '{max(1, int(seconds * 1000))}ms'"


@contextmanager
def row_lock_errors(key, timeout: float | None):
    """
    Translate a PostgreSQL lock-not-available error into ``LockTimeout``.

    Any other database error propagates unchanged.
    """
    try:
        yield
    except OperationalError as exc:
        if isinstance(exc.orig, LockNotAvailable):
            raise LockTimeout(key, timeout or 0) from exc
        raise


class LedgerRepository:
    """
    Repository over a SQLAlchemy session

    The session's transaction is owned by the calling service: the repository
    only adds/flushes and never commits.
    """

    def __init__(self, db: Session, lock_timeout: float | None = None):
        self.db = db
        self.lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Generic
    # ------------------------------------------------------------------

    def add(self, obj) -> None:
        self.db.add(obj)
        self.db.flush()

    def delete(self, obj) -> None:
        self.db.delete(obj)
        self.db.flush()

    def _first_locked(self, query: Query, key):
        """First row of ``query`` locked FOR UPDATE within ``lock_timeout``."""
        if self.lock_timeout is not None and self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(text(lock_timeout_statement(self.lock_timeout)))
        with row_lock_errors(key, self.lock_timeout):
            return query.with_for_update().populate_existing().first()

    # ------------------------------------------------------------------
    # Income events
    # ------------------------------------------------------------------

    def get_income_event(self, family_id: int, income_event_id: int,
                         for_update: bool = False) -> Optional[IncomeEventModel]:
        query = self.db.query(IncomeEventModel).filter(
            IncomeEventModel.id == income_event_id,
            IncomeEventModel.family_id == family_id,
        )
        if for_update:
            return self._first_locked(query, ("income", income_event_id))
        return query.first()

    def list_income_events(
        self,
        family_id: int,
        status: str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> List[IncomeEventModel]:
        query = self.db.query(IncomeEventModel).filter(IncomeEventModel.family_id == family_id)
        if status:
            query = query.filter(IncomeEventModel.status == status)
        if from_date:
            query = query.filter(IncomeEventModel.scheduled_date >= from_date)
        if to_date:
            query = query.filter(IncomeEventModel.scheduled_date <= to_date)
        return query.order_by(IncomeEventModel.scheduled_date, IncomeEventModel.id).all()

    def received_income_between(self, family_id: int, from_date: date, to_date: date) -> List[IncomeEventModel]:
        """Received events dated (actual date, else scheduled date) inside [from_date, to_date]."""
        effective_date = func.coalesce(IncomeEventModel.actual_date, IncomeEventModel.scheduled_date)
        return (
            self.db.query(IncomeEventModel)
            .filter(
                IncomeEventModel.family_id == family_id,
                IncomeEventModel.status == "received",
                effective_date >= from_date,
                effective_date <= to_date,
            )
            .order_by(IncomeEventModel.id)
            .all()
        )

    def income_event_exists_on(self, family_id: int, name: str, scheduled_date: date) -> bool:
        return self.db.query(IncomeEventModel.id).filter(
            IncomeEventModel.family_id == family_id,
            IncomeEventModel.name == name,
            IncomeEventModel.scheduled_date == scheduled_date,
        ).first() is not None

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def get_payment(self, family_id: int, payment_id: int,
                    for_update: bool = False) -> Optional[PaymentModel]:
        query = self.db.query(PaymentModel).filter(
            PaymentModel.id == payment_id,
            PaymentModel.family_id == family_id,
        )
        if for_update:
            return self._first_locked(query, ("payment", payment_id))
        return query.first()

    def list_payments(
        self,
        family_id: int,
        status: str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        spending_category_id: int | None = None,
    ) -> List[PaymentModel]:
        query = self.db.query(PaymentModel).filter(PaymentModel.family_id == family_id)
        if status:
            query = query.filter(PaymentModel.status == status)
        if from_date:
            query = query.filter(PaymentModel.due_date >= from_date)
        if to_date:
            query = query.filter(PaymentModel.due_date <= to_date)
        if spending_category_id is not None:
            query = query.filter(PaymentModel.spending_category_id == spending_category_id)
        return query.order_by(PaymentModel.due_date, PaymentModel.id).all()

    def settled_payments_between(self, family_id: int, from_date: date, to_date: date) -> List[PaymentModel]:
        """Paid/partially paid payments dated (paid date, else due date) inside [from_date, to_date]."""
        effective_date = func.coalesce(PaymentModel.paid_date, PaymentModel.due_date)
        return (
            self.db.query(PaymentModel)
            .filter(
                PaymentModel.family_id == family_id,
                PaymentModel.paid_date.isnot(None),
                PaymentModel.status.in_(("paid", "partial")),
                effective_date >= from_date,
                effective_date <= to_date,
            )
            .order_by(PaymentModel.id)
            .all()
        )

    def unsettled_payments_due_before(self, today: date) -> List[PaymentModel]:
        """All families: payments still open whose due date has passed."""
        return (
            self.db.query(PaymentModel)
            .filter(
                PaymentModel.paid_date.is_(None),
                PaymentModel.status.in_(("scheduled", "overdue", "partial")),
                PaymentModel.due_date < today,
            )
            .all()
        )

    def payment_exists_on(self, family_id: int, payee: str, due_date: date) -> bool:
        return self.db.query(PaymentModel.id).filter(
            PaymentModel.family_id == family_id,
            PaymentModel.payee == payee,
            PaymentModel.due_date == due_date,
        ).first() is not None

    # ------------------------------------------------------------------
    # Attributions
    # ------------------------------------------------------------------

    def get_attribution(self, family_id: int, attribution_id: int) -> Optional[PaymentAttributionModel]:
        return (
            self.db.query(PaymentAttributionModel)
            .join(PaymentModel, PaymentModel.id == PaymentAttributionModel.payment_id)
            .filter(
                PaymentAttributionModel.id == attribution_id,
                PaymentModel.family_id == family_id,
            )
            .first()
        )

    def attributions_for_payment(self, payment_id: int) -> List[PaymentAttributionModel]:
        return (
            self.db.query(PaymentAttributionModel)
            .filter(PaymentAttributionModel.payment_id == payment_id)
            .order_by(PaymentAttributionModel.id)
            .all()
        )

    def attributions_for_income_event(self, income_event_id: int) -> List[PaymentAttributionModel]:
        return (
            self.db.query(PaymentAttributionModel)
            .filter(PaymentAttributionModel.income_event_id == income_event_id)
            .order_by(PaymentAttributionModel.id)
            .all()
        )

    def count_attributions(self, payment_id: int | None = None, income_event_id: int | None = None) -> int:
        query = self.db.query(func.count(PaymentAttributionModel.id))
        if payment_id is not None:
            query = query.filter(PaymentAttributionModel.payment_id == payment_id)
        if income_event_id is not None:
            query = query.filter(PaymentAttributionModel.income_event_id == income_event_id)
        return query.scalar() or 0

    def attributions_with_payments_between(self, family_id: int, from_date: date, to_date: date):
        """
        (attribution, payment) pairs for non-cancelled payments dated (paid
        date, else due date) inside [from_date, to_date].
        """
        effective_date = func.coalesce(PaymentModel.paid_date, PaymentModel.due_date)
        return (
            self.db.query(PaymentAttributionModel, PaymentModel)
            .join(PaymentModel, PaymentModel.id == PaymentAttributionModel.payment_id)
            .filter(
                PaymentModel.family_id == family_id,
                PaymentModel.status != "cancelled",
                effective_date >= from_date,
                effective_date <= to_date,
            )
            .order_by(PaymentAttributionModel.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def get_spending_category(self, family_id: int, category_id: int) -> Optional[SpendingCategoryModel]:
        return self.db.query(SpendingCategoryModel).filter(
            SpendingCategoryModel.id == category_id,
            SpendingCategoryModel.family_id == family_id,
        ).first()

    def spending_categories(self, family_id: int) -> List[SpendingCategoryModel]:
        return (
            self.db.query(SpendingCategoryModel)
            .filter(SpendingCategoryModel.family_id == family_id)
            .order_by(SpendingCategoryModel.name)
            .all()
        )

    def get_budget_category(self, family_id: int, category_id: int) -> Optional[BudgetCategoryModel]:
        return self.db.query(BudgetCategoryModel).filter(
            BudgetCategoryModel.id == category_id,
            BudgetCategoryModel.family_id == family_id,
        ).first()

    def budget_categories(self, family_id: int, include_inactive: bool = False) -> List[BudgetCategoryModel]:
        query = self.db.query(BudgetCategoryModel).filter(BudgetCategoryModel.family_id == family_id)
        if not include_inactive:
            query = query.filter(BudgetCategoryModel.is_active == True)
        return query.order_by(BudgetCategoryModel.sort_order, BudgetCategoryModel.id).all()

    def budget_categories_by_ids(self, family_id: int, ids: Iterable[int]) -> dict:
        ids = list(ids)
        if not ids:
            return {}
        rows = self.db.query(BudgetCategoryModel).filter(
            BudgetCategoryModel.family_id == family_id,
            BudgetCategoryModel.id.in_(ids),
        ).all()
        return {r.id: r for r in rows}

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def get_template(self, family_id: int, template_id: int) -> Optional[BudgetTemplateModel]:
        return self.db.query(BudgetTemplateModel).filter(
            BudgetTemplateModel.id == template_id,
            BudgetTemplateModel.family_id == family_id,
        ).first()

    def list_templates(self, family_id: int) -> List[BudgetTemplateModel]:
        return (
            self.db.query(BudgetTemplateModel)
            .filter(BudgetTemplateModel.family_id == family_id)
            .order_by(BudgetTemplateModel.id)
            .all()
        )

    def template_allocations(self, template_id: int) -> List[BudgetAllocationModel]:
        return (
            self.db.query(BudgetAllocationModel)
            .filter(BudgetAllocationModel.template_id == template_id)
            .order_by(BudgetAllocationModel.sort_order, BudgetAllocationModel.id)
            .all()
        )

    def income_allocations(self, income_event_id: int) -> List[IncomeBudgetAllocationModel]:
        return (
            self.db.query(IncomeBudgetAllocationModel)
            .filter(IncomeBudgetAllocationModel.income_event_id == income_event_id)
            .order_by(IncomeBudgetAllocationModel.id)
            .all()
        )

    def delete_income_allocations(self, income_event_id: int) -> int:
        n = self.db.query(IncomeBudgetAllocationModel).filter(
            IncomeBudgetAllocationModel.income_event_id == income_event_id
        ).delete(synchronize_session=False)
        self.db.flush()
        return n

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def active_accounts(self, family_id: int) -> List[AccountModel]:
        return (
            self.db.query(AccountModel)
            .filter(AccountModel.family_id == family_id, AccountModel.is_active == True)
            .order_by(AccountModel.id)
            .all()
        )
