"""
Lifecycle constants and derived-status rules for income events and payments.
"""
from datetime import date
from decimal import Decimal

# Frequencies shared by IncomeEvent and Payment
FREQ_ONCE = "once"
FREQ_WEEKLY = "weekly"
FREQ_BIWEEKLY = "biweekly"
FREQ_MONTHLY = "monthly"
FREQ_QUARTERLY = "quarterly"
FREQ_ANNUAL = "annual"
VALID_FREQUENCIES = (FREQ_ONCE, FREQ_WEEKLY, FREQ_BIWEEKLY, FREQ_MONTHLY, FREQ_QUARTERLY, FREQ_ANNUAL)

# IncomeEvent.status
INCOME_SCHEDULED = "scheduled"
INCOME_RECEIVED = "received"
INCOME_CANCELLED = "cancelled"
INCOME_STATUSES = (INCOME_SCHEDULED, INCOME_RECEIVED, INCOME_CANCELLED)

# Payment.status
PAYMENT_SCHEDULED = "scheduled"
PAYMENT_PAID = "paid"
PAYMENT_OVERDUE = "overdue"
PAYMENT_PARTIAL = "partial"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_STATUSES = (PAYMENT_SCHEDULED, PAYMENT_PAID, PAYMENT_OVERDUE, PAYMENT_PARTIAL, PAYMENT_CANCELLED)

# Payment.payment_type
PAYMENT_TYPE_ONCE = "once"
PAYMENT_TYPE_RECURRING = "recurring"
PAYMENT_TYPE_VARIABLE = "variable"
PAYMENT_TYPES = (PAYMENT_TYPE_ONCE, PAYMENT_TYPE_RECURRING, PAYMENT_TYPE_VARIABLE)

# PaymentAttribution.attribution_type
ATTRIBUTION_MANUAL = "manual"
ATTRIBUTION_AUTOMATIC = "automatic"
ATTRIBUTION_TYPES = (ATTRIBUTION_MANUAL, ATTRIBUTION_AUTOMATIC)

# Account.account_type
ASSET_ACCOUNT_TYPES = ("checking", "savings", "investment")
LIABILITY_ACCOUNT_TYPES = ("credit", "loan")
ACCOUNT_TYPES = ASSET_ACCOUNT_TYPES + LIABILITY_ACCOUNT_TYPES


def income_effective_amount(status: str, amount: Decimal, actual_amount: Decimal | None) -> Decimal:
    """Actual amount once received, nominal amount otherwise."""
    if status == INCOME_RECEIVED and actual_amount is not None:
        return actual_amount
    return amount


def payment_effective_amount(paid_date: date | None, amount: Decimal, paid_amount: Decimal | None) -> Decimal:
    """Paid amount once settled, nominal amount otherwise."""
    if paid_date is not None and paid_amount is not None:
        return paid_amount
    return amount


def settlement_status(nominal: Decimal, paid_amount: Decimal, attributed: Decimal) -> str:
    """
    Status assigned by mark-paid.

    Partial when less than the nominal amount was paid, or when the payment
    is only partly funded by attributions at settlement time.
    """
    if paid_amount < nominal:
        return PAYMENT_PARTIAL
    if 0 < attributed < paid_amount:
        return PAYMENT_PARTIAL
    return PAYMENT_PAID


def derive_payment_status(
    status: str,
    due_date: date,
    paid_date: date | None,
    attributed: Decimal,
    effective: Decimal,
    today: date,
) -> str:
    """
    Re-derive an unsettled payment's status from its due date and funding.

    Settled (paid_date set) and cancelled payments keep their status: only
    mark-paid / revert-paid / cancel move them.
    """
    if status == PAYMENT_CANCELLED or paid_date is not None:
        return status
    if due_date < today:
        if 0 < attributed < effective:
            return PAYMENT_PARTIAL
        return PAYMENT_OVERDUE
    return PAYMENT_SCHEDULED
