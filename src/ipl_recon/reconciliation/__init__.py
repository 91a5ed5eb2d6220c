"""Bank statement reconciliation for residential IPL dues.

This module turns bank statement exports into reviewed, resident-attributed
transactions.

Features:
- Parse statement CSV exports, collecting row errors instead of aborting
- Categorize transactions and omit non-dues entries
- Match transactions to residents by payment index, learned alias, fuzzy
  name, house address, or an external scoring service
- Carry each transaction through review with a full audit trail
- Learn bank-statement aliases from confirmed matches
"""

from .models import (
    RowError,
    RowErrorKind,
    TransactionCandidate,
    HistoricalVerification,
    ParseResult,
    Categorization,
    ResidentSnapshot,
    PaymentSnapshot,
    MatchDecision,
    UploadOptions,
    UploadSummary,
    AutoVerifySummary,
    ExternalMatchSummary,
    MutationStats,
    MutationPage,
    PeriodCheck,
)
from .errors import (
    ReconciliationError,
    StatementValidationError,
    StateTransitionError,
    MutationNotFoundError,
    ResidentNotFoundError,
    PaymentNotFoundError,
    PersistenceError,
    ExternalMatchError,
)
from .parser import StatementParser, parse_statement
from .categorizer import categorize_transaction
from .payment_index import extract_payment_index, find_payment_index
from .name_matcher import NameMatcher
from .address_matcher import AddressMatcher
from .matcher import MatchOrchestrator, calculate_match_confidence
from .external import ExternalMatchClient
from .learning import AliasLearner
from .service import ReconciliationService
from .report import ReportGenerator

__all__ = [
    # Models
    "RowError",
    "RowErrorKind",
    "TransactionCandidate",
    "HistoricalVerification",
    "ParseResult",
    "Categorization",
    "ResidentSnapshot",
    "PaymentSnapshot",
    "MatchDecision",
    "UploadOptions",
    "UploadSummary",
    "AutoVerifySummary",
    "ExternalMatchSummary",
    "MutationStats",
    "MutationPage",
    "PeriodCheck",
    # Errors
    "ReconciliationError",
    "StatementValidationError",
    "StateTransitionError",
    "MutationNotFoundError",
    "ResidentNotFoundError",
    "PaymentNotFoundError",
    "PersistenceError",
    "ExternalMatchError",
    # Core Components
    "StatementParser",
    "parse_statement",
    "categorize_transaction",
    "extract_payment_index",
    "find_payment_index",
    "NameMatcher",
    "AddressMatcher",
    "MatchOrchestrator",
    "calculate_match_confidence",
    "ExternalMatchClient",
    "AliasLearner",
    "ReconciliationService",
    "ReportGenerator",
]
