# ipl_recon package
__version__ = "0.1.0"

from .config import ReconSettings
from .database import (
    BankMutation,
    BankMutationVerification,
    ResidentBankAlias,
    MutationState,
    MatchingStrategy,
    VerificationAction,
    DatabaseManager,
    UnitOfWork,
    init_db,
    close_db,
)

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    MatchOrchestrator,
    StatementParser,
    UploadOptions,
    UploadSummary,
    ReconciliationError,
    StateTransitionError,
    ReportGenerator,
)
