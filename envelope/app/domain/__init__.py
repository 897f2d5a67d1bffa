"""Budget engine domain types: money, balances, dates, errors and contracts."""

from envelope.app.domain.contracts import (  # noqa: F401
    AccountContract,
    AuditFinding,
    BudgetContract,
    CategoryBalanceContract,
    CategoryContract,
    CategoryGroupContract,
    CreditCardDebtContract,
    TransactionContract,
    TransactionResult,
)
from envelope.app.domain.errors import (  # noqa: F401
    BudgetEngineError,
    ConflictError,
    ForbiddenError,
    InvariantViolation,
    NotFoundError,
    TransientStoreError,
    UnauthorizedError,
    ValidationError,
)
