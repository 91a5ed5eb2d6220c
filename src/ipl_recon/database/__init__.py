"""Database module for reconciliation persistence."""

from .models import (
    Base,
    BankMutation,
    BankMutationVerification,
    ResidentBankAlias,
    Resident,
    Payment,
    TransactionType,
    TransactionCategory,
    MutationState,
    MatchingStrategy,
    VerificationAction,
)
from .session import (
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    create_tables,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import (
    MutationRepository,
    VerificationRepository,
    AliasRepository,
    ResidentDirectoryRepository,
)
from .unit_of_work import UnitOfWork

__all__ = [
    # Models
    "Base",
    "BankMutation",
    "BankMutationVerification",
    "ResidentBankAlias",
    "Resident",
    "Payment",
    "TransactionType",
    "TransactionCategory",
    "MutationState",
    "MatchingStrategy",
    "VerificationAction",
    # Session management
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "create_tables",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "MutationRepository",
    "VerificationRepository",
    "AliasRepository",
    "ResidentDirectoryRepository",
    "UnitOfWork",
]
