"""
Tests for the attribution ledger
"""
import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from famledger.application.attributions import AttributionLedger
from famledger.application.income_events import CreateIncomeEventUseCase, MarkIncomeReceivedUseCase
from famledger.application.ledger_locks import KeyedLockTable, payment_key
from famledger.application.payments import (
    CreatePaymentUseCase, CancelPaymentUseCase, MarkPaymentPaidUseCase,
)
from famledger.domain.errors import (
    AttributionExceedsIncome, AttributionExceedsPayment, AttributionNotFound,
    ConflictError, IncomeEventNotFound, InvalidInputError, LockTimeout, PaymentNotFound,
)
from famledger.infrastructure.db.models import PaymentAttributionModel, PaymentModel, IncomeEventModel
from famledger.infrastructure.db.session import Base

TODAY = date(2024, 6, 15)


def _income(db, family_id, amount="3000.00", scheduled=date(2024, 6, 1), name="Salary"):
    return CreateIncomeEventUseCase(db).execute(family_id, name, amount, scheduled)


def _payment(db, family_id, amount="1500.00", due=date(2024, 7, 1), payee="Rent"):
    return CreatePaymentUseCase(db, today=TODAY).execute(family_id, payee, amount, due)


def _ledger(db, locks):
    return AttributionLedger(db, locks, today=TODAY)


def _attribution_sum(db, payment_id):
    rows = db.query(PaymentAttributionModel).filter(PaymentAttributionModel.payment_id == payment_id).all()
    return sum((r.amount for r in rows), Decimal("0"))


class TestCreateAttribution:
    def test_updates_both_parents(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id)

        view = _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "1200.00")

        assert view.amount == Decimal("1200.00")
        assert view.attribution_type == "manual"
        p = db_session.get(PaymentModel, payment.id)
        i = db_session.get(IncomeEventModel, income.id)
        assert p.attributed_amount == Decimal("1200.00")
        assert p.remaining_amount == Decimal("300.00")
        assert i.allocated_amount == Decimal("1200.00")
        assert i.remaining_amount == Decimal("1800.00")

    def test_over_allocation_of_income_rejected_without_state_change(self, db_session, family_id, locks):
        income = _income(db_session, family_id, "3000.00")
        payment_a = _payment(db_session, family_id, "5000.00")
        ledger = _ledger(db_session, locks)
        ledger.create_attribution(family_id, payment_a.id, income.id, "1200.00")

        with pytest.raises(AttributionExceedsIncome) as exc:
            ledger.create_attribution(family_id, payment_a.id, income.id, "2000.00")

        assert exc.value.available == Decimal("1800.00")
        i = db_session.get(IncomeEventModel, income.id)
        p = db_session.get(PaymentModel, payment_a.id)
        assert i.remaining_amount == Decimal("1800.00")
        assert p.attributed_amount == Decimal("1200.00")
        assert db_session.query(PaymentAttributionModel).count() == 1

    def test_income_checked_before_payment(self, db_session, family_id, locks):
        income = _income(db_session, family_id, "3000.00")
        payment = _payment(db_session, family_id, "1500.00")
        ledger = _ledger(db_session, locks)
        ledger.create_attribution(family_id, payment.id, income.id, "1200.00")

        # exceeds both the payment (300 left) and the income (1800 left)
        with pytest.raises(AttributionExceedsIncome):
            ledger.create_attribution(family_id, payment.id, income.id, "2000.00")

    def test_over_attribution_of_payment_rejected(self, db_session, family_id, locks):
        income = _income(db_session, family_id, "3000.00")
        payment = _payment(db_session, family_id, "500.00")

        with pytest.raises(AttributionExceedsPayment) as exc:
            _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "500.01")

        assert exc.value.payment_id == payment.id
        assert exc.value.retryable is False
        assert _attribution_sum(db_session, payment.id) == Decimal("0")

    def test_exact_fill_allowed(self, db_session, family_id, locks):
        income = _income(db_session, family_id, "500.00")
        payment = _payment(db_session, family_id, "500.00")

        _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "500.00")

        assert db_session.get(PaymentModel, payment.id).remaining_amount == Decimal("0.00")
        assert db_session.get(IncomeEventModel, income.id).remaining_amount == Decimal("0.00")

    @pytest.mark.parametrize("amount", ["0", "-10", "1.001", "abc"])
    def test_invalid_amount_rejected(self, db_session, family_id, locks, amount):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id)

        with pytest.raises(InvalidInputError) as exc:
            _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, amount)

        assert exc.value.field == "amount"
        assert db_session.query(PaymentAttributionModel).count() == 0

    def test_invalid_type_rejected(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id)

        with pytest.raises(InvalidInputError):
            _ledger(db_session, locks).create_attribution(
                family_id, payment.id, income.id, "10", attribution_type="guess",
            )

    def test_other_family_payment_is_not_found(self, db_session, family_id, other_family_id, locks):
        income = _income(db_session, family_id)
        foreign_payment = _payment(db_session, other_family_id)

        with pytest.raises(PaymentNotFound):
            _ledger(db_session, locks).create_attribution(family_id, foreign_payment.id, income.id, "10")

    def test_other_family_income_is_not_found(self, db_session, family_id, other_family_id, locks):
        foreign_income = _income(db_session, other_family_id)
        payment = _payment(db_session, family_id)

        with pytest.raises(IncomeEventNotFound):
            _ledger(db_session, locks).create_attribution(family_id, payment.id, foreign_income.id, "10")

    def test_cancelled_payment_rejected(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id)
        CancelPaymentUseCase(db_session, locks, today=TODAY).execute(family_id, payment.id)

        with pytest.raises(ConflictError):
            _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "10")

    def test_settled_payment_uses_paid_amount(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id, "100.00")
        MarkPaymentPaidUseCase(db_session, locks, today=TODAY).execute(
            family_id, payment.id, paid_amount="80.00", paid_date=TODAY,
        )

        with pytest.raises(AttributionExceedsPayment):
            _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "90.00")

        view = _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "80.00")
        assert view.amount == Decimal("80.00")
        # settlement status is not touched by attribution
        assert db_session.get(PaymentModel, payment.id).status == "partial"

    def test_received_income_uses_actual_amount(self, db_session, family_id, locks):
        income = _income(db_session, family_id, "3000.00")
        MarkIncomeReceivedUseCase(db_session, locks).execute(
            family_id, income.id, actual_amount="2500.00", actual_date=date(2024, 6, 1),
        )
        payment = _payment(db_session, family_id, "5000.00")

        with pytest.raises(AttributionExceedsIncome):
            _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "2600.00")


class TestStatusDerivation:
    def test_past_due_payment_moves_between_overdue_and_partial(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id, "100.00", due=date(2024, 6, 1))
        assert payment.status == "overdue"
        ledger = _ledger(db_session, locks)

        first = ledger.create_attribution(family_id, payment.id, income.id, "40.00")
        assert db_session.get(PaymentModel, payment.id).status == "partial"

        ledger.create_attribution(family_id, payment.id, income.id, "60.00")
        assert db_session.get(PaymentModel, payment.id).status == "overdue"

        ledger.delete_attribution(family_id, first.id)
        assert db_session.get(PaymentModel, payment.id).status == "partial"

    def test_future_payment_stays_scheduled(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id, "100.00", due=date(2024, 7, 1))

        _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "40.00")

        assert db_session.get(PaymentModel, payment.id).status == "scheduled"


class TestDeleteAttribution:
    def test_create_then_delete_restores_totals(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id)
        ledger = _ledger(db_session, locks)
        before_p = db_session.get(PaymentModel, payment.id)
        before = (before_p.attributed_amount, before_p.remaining_amount)

        view = ledger.create_attribution(family_id, payment.id, income.id, "700.00")
        ledger.delete_attribution(family_id, view.id)

        p = db_session.get(PaymentModel, payment.id)
        i = db_session.get(IncomeEventModel, income.id)
        assert (p.attributed_amount, p.remaining_amount) == before
        assert i.allocated_amount == Decimal("0.00")
        assert i.remaining_amount == Decimal("3000.00")

    def test_missing_attribution(self, db_session, family_id, locks):
        with pytest.raises(AttributionNotFound):
            _ledger(db_session, locks).delete_attribution(family_id, 999)

    def test_other_family_attribution_is_not_found(self, db_session, family_id, other_family_id, locks):
        income = _income(db_session, other_family_id)
        payment = _payment(db_session, other_family_id)
        view = _ledger(db_session, locks).create_attribution(other_family_id, payment.id, income.id, "10")

        with pytest.raises(AttributionNotFound):
            _ledger(db_session, locks).delete_attribution(family_id, view.id)
        assert db_session.query(PaymentAttributionModel).count() == 1


class TestListing:
    def test_list_for_payment_and_income(self, db_session, family_id, locks):
        income_a = _income(db_session, family_id, "1000.00", name="Salary A")
        income_b = _income(db_session, family_id, "1000.00", name="Salary B")
        payment = _payment(db_session, family_id, "900.00")
        ledger = _ledger(db_session, locks)
        ledger.create_attribution(family_id, payment.id, income_a.id, "400.00")
        ledger.create_attribution(family_id, payment.id, income_b.id, "500.00")

        by_payment = ledger.list_for_payment(family_id, payment.id)
        assert by_payment.total_attributed == Decimal("900.00")
        assert [a.income_event_id for a in by_payment.attributions] == [income_a.id, income_b.id]
        assert by_payment.payment.attributed_amount == _attribution_sum(db_session, payment.id)

        by_income = ledger.list_for_income_event(family_id, income_b.id)
        assert by_income.total_allocated == Decimal("500.00")
        assert by_income.to_dict()["attributions"][0]["amount"] == "500.00"

    def test_list_for_missing_payment(self, db_session, family_id, locks):
        with pytest.raises(PaymentNotFound):
            _ledger(db_session, locks).list_for_payment(family_id, 42)


class TestSplitPayment:
    def test_split_writes_all(self, db_session, family_id, locks):
        income_a = _income(db_session, family_id, "1000.00", name="A")
        income_b = _income(db_session, family_id, "1000.00", name="B")
        payment = _payment(db_session, family_id, "1500.00")

        views = _ledger(db_session, locks).split_payment(
            family_id, payment.id, [(income_a.id, "1000.00"), (income_b.id, "500.00")],
        )

        assert len(views) == 2
        assert db_session.get(PaymentModel, payment.id).remaining_amount == Decimal("0.00")
        assert db_session.get(IncomeEventModel, income_b.id).remaining_amount == Decimal("500.00")

    def test_split_must_cover_payment(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id, "1500.00")

        with pytest.raises(InvalidInputError):
            _ledger(db_session, locks).split_payment(family_id, payment.id, [(income.id, "1000.00")])

    def test_split_is_all_or_nothing(self, db_session, family_id, locks):
        income_a = _income(db_session, family_id, "1000.00", name="A")
        income_b = _income(db_session, family_id, "100.00", name="B")
        payment = _payment(db_session, family_id, "1500.00")

        with pytest.raises(AttributionExceedsIncome):
            _ledger(db_session, locks).split_payment(
                family_id, payment.id, [(income_a.id, "1000.00"), (income_b.id, "500.00")],
            )

        assert db_session.query(PaymentAttributionModel).count() == 0
        assert db_session.get(IncomeEventModel, income_a.id).allocated_amount == Decimal("0.00")

    def test_split_requires_unattributed_payment(self, db_session, family_id, locks):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id, "1500.00")
        ledger = _ledger(db_session, locks)
        ledger.create_attribution(family_id, payment.id, income.id, "100.00")

        with pytest.raises(ConflictError):
            ledger.split_payment(family_id, payment.id, [(income.id, "1500.00")])


class TestSuggestions:
    def test_ranked_by_confidence(self, db_session, family_id, locks):
        small = _income(db_session, family_id, "100.00", scheduled=date(2024, 6, 10), name="Side gig")
        big = _income(db_session, family_id, "3000.00", scheduled=date(2024, 6, 20), name="Salary")
        payment = _payment(db_session, family_id, "1000.00", due=date(2024, 7, 1))

        suggestions = _ledger(db_session, locks).suggest_attributions(family_id, payment.id)

        assert [s.income_event_id for s in suggestions] == [big.id, small.id]
        assert suggestions[0].confidence == "high"
        assert suggestions[0].suggested_amount == Decimal("1000.00")
        assert suggestions[1].confidence == "low"
        assert suggestions[1].suggested_amount == Decimal("100.00")

    def test_auto_attribute_uses_earliest_fitting_income(self, db_session, family_id, locks):
        _income(db_session, family_id, "100.00", scheduled=date(2024, 6, 1), name="Too small")
        fits = _income(db_session, family_id, "2000.00", scheduled=date(2024, 6, 5), name="Salary")
        _income(db_session, family_id, "5000.00", scheduled=date(2024, 7, 5), name="After due")
        payment = _payment(db_session, family_id, "1000.00", due=date(2024, 7, 1))

        view = _ledger(db_session, locks).auto_attribute_payment(family_id, payment.id)

        assert view.income_event_id == fits.id
        assert view.attribution_type == "automatic"
        assert view.amount == Decimal("1000.00")

    def test_auto_attribute_returns_none_when_nothing_fits(self, db_session, family_id, locks):
        _income(db_session, family_id, "100.00")
        payment = _payment(db_session, family_id, "1000.00")

        assert _ledger(db_session, locks).auto_attribute_payment(family_id, payment.id) is None
        assert db_session.query(PaymentAttributionModel).count() == 0


class TestValidateCapacity:
    def test_collects_all_errors(self, db_session, family_id, locks):
        income = _income(db_session, family_id, "100.00")
        payment = _payment(db_session, family_id, "150.00")

        check = _ledger(db_session, locks).validate_capacity(
            family_id, payment.id, [(income.id, "120.00"), (999, "50.00")],
        )

        assert check.is_valid is False
        assert check.total_proposed == Decimal("170.00")
        assert len(check.errors) == 3
        assert db_session.query(PaymentAttributionModel).count() == 0

    def test_valid_proposal(self, db_session, family_id, locks):
        income = _income(db_session, family_id, "100.00")
        payment = _payment(db_session, family_id, "150.00")

        check = _ledger(db_session, locks).validate_capacity(family_id, payment.id, [(income.id, "100.00")])

        assert check.is_valid is True
        assert check.errors == []


class TestConcurrency:
    def test_lock_timeout_is_retryable(self, db_session, family_id):
        income = _income(db_session, family_id)
        payment = _payment(db_session, family_id)
        locks = KeyedLockTable(timeout=0.05)

        with locks.hold([payment_key(payment.id)]):
            with pytest.raises(LockTimeout) as exc:
                _ledger(db_session, locks).create_attribution(family_id, payment.id, income.id, "10")

        assert exc.value.retryable is True
        assert db_session.query(PaymentAttributionModel).count() == 0

    def test_concurrent_creates_exactly_one_wins(self, tmp_path, family_id):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'ledger.db'}",
            connect_args={"check_same_thread": False, "timeout": 10},
        )
        Base.metadata.create_all(engine)
        SessionLocal = sessionmaker(bind=engine)

        setup = SessionLocal()
        income_a = _income(setup, family_id, "1000.00", name="A")
        income_b = _income(setup, family_id, "1000.00", name="B")
        payment = _payment(setup, family_id, "1000.00")
        setup.close()

        locks = KeyedLockTable(timeout=5.0)
        barrier = threading.Barrier(2)
        results = []

        def worker(income_id):
            db = SessionLocal()
            try:
                barrier.wait()
                AttributionLedger(db, locks, today=TODAY).create_attribution(
                    family_id, payment.id, income_id, "700.00",
                )
                results.append("ok")
            except AttributionExceedsPayment:
                results.append("exceeds")
            finally:
                db.close()

        threads = [threading.Thread(target=worker, args=(i,)) for i in (income_a.id, income_b.id)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(results) == ["exceeds", "ok"]
        check = SessionLocal()
        try:
            p = check.get(PaymentModel, payment.id)
            assert p.attributed_amount == Decimal("700.00")
            assert _attribution_sum(check, payment.id) == Decimal("700.00")
        finally:
            check.close()
            engine.dispose()
