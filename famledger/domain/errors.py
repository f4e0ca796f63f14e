"""
Engine error taxonomy.

Every error carries a ``kind`` (not-found, invalid-input, invariant, conflict,
concurrency), a stable ``code`` for API consumers and, where it applies, the
offending ``field`` and ``entity`` so a UI can point at the exact input.
Only ``ConcurrencyError`` is retryable; everything else needs the caller to
change the request.
"""
from decimal import Decimal


KIND_NOT_FOUND = "not_found"
KIND_INVALID_INPUT = "invalid_input"
KIND_INVARIANT = "invariant_violation"
KIND_CONFLICT = "conflict"
KIND_CONCURRENCY = "concurrency"


class LedgerError(Exception):
    kind: str = "error"
    code: str = "ledger_error"
    retryable: bool = False

    def __init__(self, message: str, field: str | None = None, entity: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.entity = entity

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "kind": self.kind,
            "message": self.message,
            "field": self.field,
            "entity": self.entity,
        }


# --- NotFound ---------------------------------------------------------------

class NotFoundError(LedgerError):
    kind = KIND_NOT_FOUND
    code = "not_found"
    entity_name = "record"

    def __init__(self, entity_id, message: str | None = None):
        self.entity_id = entity_id
        super().__init__(
            message or f"{self.entity_name} #{entity_id} not found",
            entity=f"{self.entity_name}:{entity_id}",
        )


class PaymentNotFound(NotFoundError):
    code = "payment_not_found"
    entity_name = "Payment"


class IncomeEventNotFound(NotFoundError):
    code = "income_event_not_found"
    entity_name = "IncomeEvent"


class AttributionNotFound(NotFoundError):
    code = "attribution_not_found"
    entity_name = "PaymentAttribution"


class TemplateNotFound(NotFoundError):
    code = "template_not_found"
    entity_name = "BudgetTemplate"


class BudgetCategoryNotFound(NotFoundError):
    code = "budget_category_not_found"
    entity_name = "BudgetCategory"


class SpendingCategoryNotFound(NotFoundError):
    code = "spending_category_not_found"
    entity_name = "SpendingCategory"


class AccountNotFound(NotFoundError):
    code = "account_not_found"
    entity_name = "Account"


# --- InvalidInput -----------------------------------------------------------

class InvalidInputError(LedgerError, ValueError):
    kind = KIND_INVALID_INPUT
    code = "invalid_input"


class InvalidTemplate(InvalidInputError):
    code = "invalid_template"


# --- InvariantViolation -----------------------------------------------------

class InvariantViolation(LedgerError):
    kind = KIND_INVARIANT
    code = "invariant_violation"


class AttributionExceedsPayment(InvariantViolation):
    code = "attribution_exceeds_payment"

    def __init__(self, payment_id: int, requested: Decimal, available: Decimal):
        self.payment_id = payment_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Attribution of {requested} exceeds the unattributed amount "
            f"{available} of payment #{payment_id}",
            field="amount",
            entity=f"Payment:{payment_id}",
        )


class AttributionExceedsIncome(InvariantViolation):
    code = "attribution_exceeds_income"

    def __init__(self, income_event_id: int, requested: Decimal, available: Decimal):
        self.income_event_id = income_event_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Attribution of {requested} exceeds the remaining amount "
            f"{available} of income event #{income_event_id}",
            field="amount",
            entity=f"IncomeEvent:{income_event_id}",
        )


class InvalidDateRange(InvariantViolation):
    code = "invalid_date_range"

    def __init__(self, from_date, to_date):
        self.from_date = from_date
        self.to_date = to_date
        super().__init__(
            f"from_date {from_date.isoformat()} is after to_date {to_date.isoformat()}",
            field="from_date",
        )


# --- Conflict ---------------------------------------------------------------

class ConflictError(LedgerError):
    kind = KIND_CONFLICT
    code = "conflict"


# --- Concurrency ------------------------------------------------------------

class ConcurrencyError(LedgerError):
    kind = KIND_CONCURRENCY
    code = "concurrency"
    retryable = True


class LockTimeout(ConcurrencyError):
    code = "lock_timeout"

    def __init__(self, key, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Could not lock {key[0]} #{key[1]} within {timeout:g}s, try again")
