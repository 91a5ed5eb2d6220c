"""SQLAlchemy models for reconciliation persistence."""

import uuid
import json
from datetime import date, datetime, timezone
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TransactionType(str, enum.Enum):
    """Direction of money on the statement."""
    CREDIT = "CR"
    DEBIT = "DB"


class TransactionCategory(str, enum.Enum):
    """Categories assigned by the transaction categorizer."""
    IPL = "IPL"
    THR = "THR"
    DONATION = "SUMBANGAN"
    ADMIN_FEE = "BIAYA_ADMIN"
    DEPOSIT = "DEPOSIT_RENOVASI"
    OTHER = "LAINNYA"


class MutationState(str, enum.Enum):
    """Lifecycle state of a bank mutation."""
    UNMATCHED = "unmatched"
    MATCHED_PENDING = "matched_pending"
    MATCHED_AUTO = "matched_auto"
    VERIFIED = "verified"
    OMITTED = "omitted"


class MatchingStrategy(str, enum.Enum):
    """Strategy that produced the current resident match."""
    PAYMENT_INDEX = "PAYMENT_INDEX"
    NAME_MATCH = "NAME_MATCH"
    BANK_ALIAS = "BANK_ALIAS"
    HOUSE_PATTERN = "HOUSE_PATTERN"
    EXTERNAL_API = "EXTERNAL_API"
    MANUAL = "MANUAL"
    HISTORICAL_IMPORT = "HISTORICAL_IMPORT"


class VerificationAction(str, enum.Enum):
    """Action tags recorded in the verification audit log."""
    AUTO_MATCH = "AUTO_MATCH"
    MANUAL_CONFIRM = "MANUAL_CONFIRM"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"
    MANUAL_OMIT = "MANUAL_OMIT"
    SYSTEM_UNMATCH = "SYSTEM_UNMATCH"


class Resident(Base):
    """Read-only mirror of the administrative resident directory."""
    __tablename__ = "residents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, unique=True)
    block: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    house_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    rt: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    bank_aliases: Mapped[List["ResidentBankAlias"]] = relationship(
        "ResidentBankAlias",
        back_populates="resident",
        cascade="all, delete-orphan",
    )


class Payment(Base):
    """Read-only mirror of expected/recorded resident payments."""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    resident_id: Mapped[str] = mapped_column(String(36), ForeignKey("residents.id"), nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("ix_payments_payment_date", "payment_date"),
    )


class BankMutation(Base):
    """One bank statement transaction once ingested."""
    __tablename__ = "bank_mutations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    balance: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reference_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transaction_type: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default=TransactionCategory.OTHER.value)

    # Lifecycle
    state: Mapped[str] = mapped_column(String(30), nullable=False, default=MutationState.UNMATCHED.value)
    omit_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    verified_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Match fields
    matched_resident_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("residents.id", ondelete="SET NULL"), nullable=True
    )
    matched_payment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )
    match_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    matching_strategy: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Source
    raw_data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    upload_batch: Mapped[str] = mapped_column(String(64), nullable=False)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    verifications: Mapped[List["BankMutationVerification"]] = relationship(
        "BankMutationVerification",
        back_populates="mutation",
        cascade="all, delete-orphan",
        order_by="BankMutationVerification.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_bank_mutations_upload_batch", "upload_batch"),
        Index("ix_bank_mutations_transaction_date", "transaction_date"),
        Index("ix_bank_mutations_state", "state"),
        Index("ix_bank_mutations_matched_resident_id", "matched_resident_id"),
    )

    @property
    def is_verified(self) -> bool:
        return self.state == MutationState.VERIFIED.value

    @property
    def is_omitted(self) -> bool:
        return self.state == MutationState.OMITTED.value

    @property
    def is_matched(self) -> bool:
        return self.matched_resident_id is not None

    @property
    def raw_data(self) -> Dict[str, Any]:
        """Get the raw statement row as dictionary."""
        if self.raw_data_json:
            return json.loads(self.raw_data_json)
        return {}

    @raw_data.setter
    def raw_data(self, value: Optional[Dict[str, Any]]) -> None:
        """Set the raw statement row from dictionary."""
        self.raw_data_json = json.dumps(value or {}, default=str)

    def to_dict(self) -> Dict[str, Any]:
        """Convert mutation to dictionary representation."""
        return {
            "id": self.id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "description": self.description,
            "amount": self.amount,
            "balance": self.balance,
            "reference_number": self.reference_number,
            "transaction_type": self.transaction_type,
            "category": self.category,
            "state": self.state,
            "is_verified": self.is_verified,
            "is_omitted": self.is_omitted,
            "omit_reason": self.omit_reason,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verified_by": self.verified_by,
            "matched_resident_id": self.matched_resident_id,
            "matched_payment_id": self.matched_payment_id,
            "match_score": self.match_score,
            "matching_strategy": self.matching_strategy,
            "upload_batch": self.upload_batch,
            "file_name": self.file_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class BankMutationVerification(Base):
    """Append-only audit entry for one state-changing operation on a mutation."""
    __tablename__ = "bank_mutation_verifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    mutation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bank_mutations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    previous_state: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    new_state: Mapped[str] = mapped_column(String(30), nullable=False)

    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    verified_by: Mapped[str] = mapped_column(String(255), nullable=False)

    previous_matched_payment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    new_matched_payment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    mutation: Mapped["BankMutation"] = relationship("BankMutation", back_populates="verifications")

    __table_args__ = (
        Index("ix_bank_mutation_verifications_action", "action"),
        Index("ix_bank_mutation_verifications_verified_by", "verified_by"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert audit entry to dictionary representation."""
        return {
            "id": self.id,
            "mutation_id": self.mutation_id,
            "action": self.action,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "confidence": self.confidence,
            "verified_by": self.verified_by,
            "previous_matched_payment_id": self.previous_matched_payment_id,
            "new_matched_payment_id": self.new_matched_payment_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ResidentBankAlias(Base):
    """Bank-statement name learned for a resident."""
    __tablename__ = "resident_bank_aliases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    resident_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("residents.id", ondelete="CASCADE"), nullable=False
    )
    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    frequency: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    resident: Mapped["Resident"] = relationship("Resident", back_populates="bank_aliases")

    __table_args__ = (
        UniqueConstraint("resident_id", "bank_name", name="uq_resident_bank_aliases_resident_bank_name"),
        Index("ix_resident_bank_aliases_bank_name", "bank_name"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert alias to dictionary representation."""
        return {
            "id": self.id,
            "resident_id": self.resident_id,
            "bank_name": self.bank_name,
            "frequency": self.frequency,
            "is_verified": self.is_verified,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }
