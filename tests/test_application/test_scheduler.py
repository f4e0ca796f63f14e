"""
Tests for the background overdue sweep
"""
from datetime import date

from sqlalchemy.orm import sessionmaker

from famledger.application import scheduler
from famledger.application.payments import CreatePaymentUseCase
from famledger.config import Settings
from famledger.infrastructure.db.models import PaymentModel


def test_sweep_marks_past_due_payments(db_engine, family_id, monkeypatch):
    factory = sessionmaker(bind=db_engine)
    monkeypatch.setattr("famledger.infrastructure.db.session.get_session_factory", lambda: factory)

    setup = factory()
    payment = CreatePaymentUseCase(setup, today=date(2024, 5, 1)).execute(
        family_id, "Rent", "1500", date(2024, 6, 1),
    )
    assert payment.status == "scheduled"
    setup.close()

    scheduler._run_overdue_sweep()

    check = factory()
    try:
        assert check.get(PaymentModel, payment.id).status == "overdue"
    finally:
        check.close()


def test_sweep_failure_is_logged_not_raised(db_engine, monkeypatch, caplog):
    def broken_refresh(db, locks, today=None):
        raise RuntimeError("database down")

    monkeypatch.setattr("famledger.infrastructure.db.session.get_session_factory",
                        lambda: sessionmaker(bind=db_engine))
    monkeypatch.setattr("famledger.application.payments.refresh_overdue_statuses", broken_refresh)

    scheduler._run_overdue_sweep()

    assert "Overdue sweep job failed" in caplog.text


def test_negative_hour_disables_scheduler(monkeypatch):
    monkeypatch.setattr(scheduler, "get_settings", lambda: Settings(OVERDUE_SWEEP_HOUR=-1))

    scheduler.start_scheduler()

    assert not scheduler.scheduler.running
