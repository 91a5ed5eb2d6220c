"""Models for bank statement reconciliation."""

import enum
from datetime import date, datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from ..database.models import (
    MatchingStrategy,
    MutationState,
    TransactionCategory,
    TransactionType,
    VerificationAction,
    utcnow,
)


class RowErrorKind(str, enum.Enum):
    """Stage at which a statement row was rejected."""
    PARSE = "parse"
    VALIDATION = "validation"
    PROCESSING = "processing"


class RowError(BaseModel):
    """A non-fatal problem with one statement row."""
    line: Optional[int] = Field(None, description="1-based line number in the uploaded file")
    kind: RowErrorKind = Field(..., description="Stage that rejected the row")
    message: str = Field(..., description="Human readable reason")

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"Line {self.line}: {self.message}"


class TransactionCandidate(BaseModel):
    """A statement row that passed validation."""
    line: int = Field(..., description="1-based line number in the uploaded file")
    transaction_date: date = Field(..., description="Transaction date")
    description: str = Field(..., description="Free-text description")
    amount: float = Field(..., description="Transaction amount")
    balance: Optional[float] = Field(None, description="Running balance")
    reference: Optional[str] = Field(None, description="Branch or reference code")
    transaction_type: TransactionType = Field(..., description="Credit or debit")
    category: Optional[TransactionCategory] = Field(None, description="Assigned by the categorizer")

    def raw_payload(self) -> Dict[str, Any]:
        """Return the row as stored in the mutation's raw data column."""
        return self.model_dump(mode="json")


class HistoricalVerification(BaseModel):
    """A row carrying a manual house match recorded in the spreadsheet."""
    transaction: TransactionCandidate
    split_amount: float = Field(default=0)
    reference: str = Field(default="")
    house_index: str = Field(default="")
    entry_type: str = Field(default="")
    house_number: str = Field(..., description="House token, e.g. 'C11 / 10'")
    month: str = Field(default="")
    year: Optional[int] = Field(None)
    rt: str = Field(default="")
    confirmed: bool = Field(default=True)

    @property
    def line(self) -> int:
        return self.transaction.line


class ParseResult(BaseModel):
    """Accumulated output of parsing one statement file."""
    transactions: List[TransactionCandidate] = Field(default_factory=list)
    historical_verifications: List[HistoricalVerification] = Field(default_factory=list)
    errors: List[RowError] = Field(default_factory=list)


class Categorization(BaseModel):
    """Categorizer decision for one transaction."""
    category: TransactionCategory
    confidence: float
    should_omit: bool = False
    omit_reason: Optional[str] = None


class RtRw(BaseModel):
    rt: int
    rw: int = 1


class DescriptionHints(BaseModel):
    """Tokens extracted from a transaction description."""
    names: List[str] = Field(default_factory=list)
    numbers: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    rt_rw: Optional[RtRw] = None


class AliasSnapshot(BaseModel):
    """A learned bank name as seen by the matcher."""
    model_config = ConfigDict(from_attributes=True)

    bank_name: str
    frequency: int = 1
    is_verified: bool = False


class ResidentSnapshot(BaseModel):
    """Read-only view of a resident used for matching."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    payment_index: Optional[int] = None
    block: Optional[str] = None
    house_number: Optional[str] = None
    is_active: bool = True
    aliases: List[AliasSnapshot] = Field(default_factory=list)


class PaymentSnapshot(BaseModel):
    """Read-only view of a recorded payment."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    resident_id: str
    amount: float
    payment_date: date


class NameMatch(BaseModel):
    """Best resident for one extracted name candidate."""
    resident_id: str
    candidate: str = Field(..., description="Name text extracted from the description")
    matched_name: str = Field(..., description="Resident name or alias that scored best")
    similarity: float
    from_alias: bool = False
    weight: float = Field(0.6, description="Trust factor of the matched source")

    @property
    def weighted_score(self) -> float:
        return self.similarity * self.weight


class AddressToken(BaseModel):
    """Block and house number found in a description."""
    block: str
    house_number: str
    raw_match: str = ""

    @property
    def canonical(self) -> str:
        return f"{self.block} / {self.house_number}"


class AddressMatch(BaseModel):
    resident_id: str
    token: AddressToken
    similarity: float
    confidence: float


class MatchDecision(BaseModel):
    """Outcome of running the matching strategies for one transaction."""
    resident_id: Optional[str] = None
    payment_id: Optional[str] = None
    score: float = 0.0
    strategy: Optional[MatchingStrategy] = None
    state: MutationState = MutationState.UNMATCHED
    factors: List[str] = Field(default_factory=list)
    alias_names: List[str] = Field(
        default_factory=list,
        description="Name candidates that resolved to the matched resident",
    )

    @property
    def is_matched(self) -> bool:
        return self.resident_id is not None

    @property
    def action(self) -> VerificationAction:
        if self.is_matched:
            return VerificationAction.AUTO_MATCH
        return VerificationAction.SYSTEM_UNMATCH


class UploadOptions(BaseModel):
    """Hints accompanying a statement upload."""
    year: Optional[int] = Field(None, ge=1900, le=9999)
    month: Optional[int] = Field(None, ge=1, le=12)
    delete_existing: bool = False
    file_name: Optional[str] = None


class UploadSummary(BaseModel):
    """Result of importing one statement file."""
    batch_id: str
    file_name: Optional[str] = None
    total_transactions: int = 0
    processed: int = 0
    auto_matched: int = 0
    needs_review: int = 0
    unmatched: int = 0
    omitted: int = 0
    imported_history: int = 0
    duplicates_skipped: int = 0
    deleted_existing: int = 0
    errors: List[RowError] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return the summary with errors flattened to strings."""
        data = self.model_dump(mode="json")
        data["errors"] = [str(error) for error in self.errors]
        return data


class AutoVerifySummary(BaseModel):
    """Result of an auto-verification run over one period."""
    year: int
    month: int
    processed: int = 0
    matched: int = 0
    auto_verified: int = 0
    unchanged: int = 0


class ExternalMatchSummary(BaseModel):
    """Result of an external scoring run over one period."""
    year: int
    month: int
    processed: int = 0
    matched: int = 0
    auto_verified: int = 0
    failed: int = 0


class PeriodCheck(BaseModel):
    year: int
    month: int
    existing: int

    @property
    def has_data(self) -> bool:
        return self.existing > 0


class MutationStats(BaseModel):
    """Aggregate counters across all mutations."""
    total_uploaded: int = 0
    total_matched: int = 0
    total_verified: int = 0
    total_omitted: int = 0
    total_amount: float = 0
    last_upload: Optional[datetime] = None


class MutationPage(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    limit: int = 20
    offset: int = 0


# Request bodies for the review endpoints

class VerifyRequest(BaseModel):
    verified_by: str = Field("USER", min_length=1, description="Actor confirming the match")
    notes: Optional[str] = None


class OmitRequest(BaseModel):
    reason: str = Field(..., description="Why the transaction is excluded")
    omitted_by: str = Field("USER", min_length=1)


class RestoreRequest(BaseModel):
    restored_by: str = Field("USER", min_length=1)


class ManualMatchRequest(BaseModel):
    resident_id: str = Field(..., min_length=1)
    payment_id: Optional[str] = None
    verified: bool = False
    matched_by: str = Field("USER", min_length=1)


class UnverifyRequest(BaseModel):
    actor: str = Field("USER", min_length=1)


class PeriodRequest(BaseModel):
    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)

