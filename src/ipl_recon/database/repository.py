"""Repository layer for reconciliation persistence operations."""

import logging
from datetime import date, datetime
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import select, delete, extract, func, and_, or_, true
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BankMutation,
    BankMutationVerification,
    MutationState,
    Payment,
    Resident,
    ResidentBankAlias,
    utcnow,
)

logger = logging.getLogger(__name__)


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """Return the [start, end) date range covering one calendar month."""
    start = date(year, month, 1)
    if month == 12:
        end = date(year + 1, 1, 1)
    else:
        end = date(year, month + 1, 1)
    return start, end


class MutationRepository:
    """Repository for BankMutation operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        transaction_date: date,
        description: str,
        amount: float,
        upload_batch: str,
        balance: Optional[float] = None,
        reference_number: Optional[str] = None,
        transaction_type: Optional[str] = None,
        category: Optional[str] = None,
        file_name: Optional[str] = None,
        raw_data: Optional[Dict[str, Any]] = None,
    ) -> BankMutation:
        """Create a new, unmatched bank mutation.

        Args:
            transaction_date: Statement date of the transaction.
            description: Free-text description from the statement.
            amount: Transaction amount.
            upload_batch: Batch identifier of the upload.
            balance: Running balance, if the statement has one.
            reference_number: Branch/reference code.
            transaction_type: "CR" or "DB".
            category: Category assigned by the categorizer.
            file_name: Source file name.
            raw_data: Raw row payload kept for auditing.

        Returns:
            Created BankMutation instance.
        """
        mutation = BankMutation(
            transaction_date=transaction_date,
            description=description,
            amount=amount,
            balance=balance,
            reference_number=reference_number,
            transaction_type=transaction_type,
            upload_batch=upload_batch,
            file_name=file_name,
            state=MutationState.UNMATCHED.value,
        )
        if category:
            mutation.category = category
        mutation.raw_data = raw_data

        self.session.add(mutation)
        await self.session.flush()

        logger.debug(f"Created mutation {mutation.id} in batch {upload_batch}")
        return mutation

    async def get_by_id(self, mutation_id: str) -> Optional[BankMutation]:
        """Get a mutation by its ID."""
        result = await self.session.execute(
            select(BankMutation).where(BankMutation.id == mutation_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, mutation_id: str) -> Optional[BankMutation]:
        """Get a mutation by ID, locking the row for the rest of the transaction.

        Args:
            mutation_id: Mutation ID.

        Returns:
            Locked BankMutation instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(BankMutation)
            .where(BankMutation.id == mutation_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def save(self, mutation: BankMutation) -> BankMutation:
        """Flush pending changes on a mutation."""
        mutation.updated_at = utcnow()
        await self.session.flush()
        return mutation

    async def list_ids_pending_for_period(self, year: int, month: int) -> List[str]:
        """List IDs of credit mutations in a month that are neither verified nor omitted.

        Args:
            year: Calendar year.
            month: Calendar month (1-12).

        Returns:
            Mutation IDs ordered by transaction date, newest first.
        """
        start, end = month_bounds(year, month)
        result = await self.session.execute(
            select(BankMutation.id)
            .where(
                and_(
                    BankMutation.transaction_date >= start,
                    BankMutation.transaction_date < end,
                    BankMutation.amount > 0,
                    BankMutation.state.notin_([
                        MutationState.VERIFIED.value,
                        MutationState.OMITTED.value,
                    ]),
                )
            )
            .order_by(BankMutation.transaction_date.desc(), BankMutation.created_at.desc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        verified: Optional[bool] = None,
        matched: Optional[bool] = None,
        omitted: Optional[bool] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[BankMutation], int]:
        """List mutations matching the given filters.

        Args:
            year: Restrict to a calendar year.
            month: Restrict to a calendar month (requires year to narrow a single month).
            verified: Filter on verified state.
            matched: Filter on presence of a matched resident.
            omitted: Filter on omitted state.
            search: Substring searched in description, reference and batch id.
            limit: Maximum number of results.
            offset: Offset for pagination.

        Returns:
            Tuple of (mutations, total count ignoring pagination).
        """
        conditions = []

        if year is not None and month is not None:
            start, end = month_bounds(year, month)
            conditions.append(BankMutation.transaction_date >= start)
            conditions.append(BankMutation.transaction_date < end)
        elif year is not None:
            conditions.append(BankMutation.transaction_date >= date(year, 1, 1))
            conditions.append(BankMutation.transaction_date < date(year + 1, 1, 1))
        elif month is not None:
            conditions.append(extract("month", BankMutation.transaction_date) == month)

        if verified is True:
            conditions.append(BankMutation.state == MutationState.VERIFIED.value)
        elif verified is False:
            conditions.append(BankMutation.state != MutationState.VERIFIED.value)

        if matched is True:
            conditions.append(BankMutation.matched_resident_id.isnot(None))
        elif matched is False:
            conditions.append(BankMutation.matched_resident_id.is_(None))

        if omitted is True:
            conditions.append(BankMutation.state == MutationState.OMITTED.value)
        elif omitted is False:
            conditions.append(BankMutation.state != MutationState.OMITTED.value)

        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    BankMutation.description.ilike(pattern),
                    BankMutation.reference_number.ilike(pattern),
                    BankMutation.upload_batch.ilike(pattern),
                )
            )

        where = and_(*conditions) if conditions else true()

        total = await self.session.scalar(
            select(func.count()).select_from(BankMutation).where(where)
        )
        result = await self.session.execute(
            select(BankMutation)
            .where(where)
            .order_by(BankMutation.transaction_date.desc(), BankMutation.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def count_for_period(self, year: int, month: int) -> int:
        """Count mutations dated within a month."""
        start, end = month_bounds(year, month)
        count = await self.session.scalar(
            select(func.count())
            .select_from(BankMutation)
            .where(
                and_(
                    BankMutation.transaction_date >= start,
                    BankMutation.transaction_date < end,
                )
            )
        )
        return int(count or 0)

    async def delete_unverified_for_period(self, year: int, month: int) -> int:
        """Delete the non-verified mutations of a month together with their audit entries.

        Returns:
            Number of deleted mutations.
        """
        start, end = month_bounds(year, month)
        ids_subquery = (
            select(BankMutation.id)
            .where(
                and_(
                    BankMutation.transaction_date >= start,
                    BankMutation.transaction_date < end,
                    BankMutation.state != MutationState.VERIFIED.value,
                )
            )
        )
        await self.session.execute(
            delete(BankMutationVerification).where(
                BankMutationVerification.mutation_id.in_(ids_subquery)
            )
        )
        result = await self.session.execute(
            delete(BankMutation).where(BankMutation.id.in_(ids_subquery))
        )
        await self.session.flush()
        logger.info(f"Deleted {result.rowcount} unverified mutations for {month:02d}/{year}")
        return result.rowcount

    async def find_verified_duplicate(
        self,
        transaction_date: date,
        amount: float,
        description: str,
    ) -> Optional[BankMutation]:
        """Find a verified mutation with the same date, amount and description."""
        result = await self.session.execute(
            select(BankMutation)
            .where(
                and_(
                    BankMutation.transaction_date == transaction_date,
                    BankMutation.amount == amount,
                    BankMutation.description == description,
                    BankMutation.state == MutationState.VERIFIED.value,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_stats(self) -> Dict[str, Any]:
        """Aggregate counts and totals across all mutations."""
        total = await self.session.scalar(select(func.count()).select_from(BankMutation))
        matched = await self.session.scalar(
            select(func.count()).select_from(BankMutation).where(
                BankMutation.matched_resident_id.isnot(None)
            )
        )
        verified = await self.session.scalar(
            select(func.count()).select_from(BankMutation).where(
                BankMutation.state == MutationState.VERIFIED.value
            )
        )
        omitted = await self.session.scalar(
            select(func.count()).select_from(BankMutation).where(
                BankMutation.state == MutationState.OMITTED.value
            )
        )
        total_amount = await self.session.scalar(select(func.sum(BankMutation.amount)))
        last_upload: Optional[datetime] = await self.session.scalar(
            select(func.max(BankMutation.created_at))
        )
        return {
            "total_uploaded": int(total or 0),
            "total_matched": int(matched or 0),
            "total_verified": int(verified or 0),
            "total_omitted": int(omitted or 0),
            "total_amount": float(total_amount or 0),
            "last_upload": last_upload,
        }


class VerificationRepository:
    """Repository for the append-only verification audit log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        mutation_id: str,
        action: str,
        new_state: str,
        verified_by: str,
        previous_state: Optional[str] = None,
        confidence: Optional[float] = None,
        previous_matched_payment_id: Optional[str] = None,
        new_matched_payment_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BankMutationVerification:
        """Append an audit entry.

        Args:
            mutation_id: Audited mutation ID.
            action: VerificationAction value.
            new_state: State after the operation.
            verified_by: Actor that performed the operation.
            previous_state: State before the operation.
            confidence: Match confidence at the time of the operation.
            previous_matched_payment_id: Matched payment before the operation.
            new_matched_payment_id: Matched payment after the operation.
            notes: Free-text notes.

        Returns:
            Created BankMutationVerification instance.
        """
        entry = BankMutationVerification(
            mutation_id=mutation_id,
            action=action,
            previous_state=previous_state,
            new_state=new_state,
            confidence=confidence,
            verified_by=verified_by,
            previous_matched_payment_id=previous_matched_payment_id,
            new_matched_payment_id=new_matched_payment_id,
            notes=notes,
        )
        self.session.add(entry)
        await self.session.flush()

        logger.debug(
            f"Audit for mutation {mutation_id}: {action} "
            f"{previous_state} -> {new_state} by {verified_by}"
        )
        return entry

    async def list_by_mutation(
        self,
        mutation_id: str,
        limit: int = 100,
    ) -> List[BankMutationVerification]:
        """Get audit entries for a mutation, newest first."""
        result = await self.session.execute(
            select(BankMutationVerification)
            .where(BankMutationVerification.mutation_id == mutation_id)
            .order_by(BankMutationVerification.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class AliasRepository:
    """Repository for learned resident bank aliases."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, resident_id: str, bank_name: str) -> Optional[ResidentBankAlias]:
        """Get the alias row for a (resident, bank name) pair."""
        result = await self.session.execute(
            select(ResidentBankAlias).where(
                and_(
                    ResidentBankAlias.resident_id == resident_id,
                    ResidentBankAlias.bank_name == bank_name,
                )
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        resident_id: str,
        bank_name: str,
        verified: bool,
        seen_at: Optional[datetime] = None,
    ) -> ResidentBankAlias:
        """Create an alias or reinforce an existing one.

        A repeat observation increments the frequency and refreshes the
        last-seen timestamp. The verified flag is never cleared once set.

        Args:
            resident_id: Resident the alias belongs to.
            bank_name: Name string as observed on the statement.
            verified: Whether this observation comes from a confirmed match.
            seen_at: Observation time, defaults to now.

        Returns:
            The created or updated ResidentBankAlias.
        """
        seen_at = seen_at or utcnow()
        alias = await self.get(resident_id, bank_name)

        if alias is None:
            alias = ResidentBankAlias(
                resident_id=resident_id,
                bank_name=bank_name,
                frequency=1,
                is_verified=verified,
                last_seen=seen_at,
            )
            self.session.add(alias)
        else:
            alias.frequency = alias.frequency + 1
            alias.last_seen = seen_at
            alias.is_verified = alias.is_verified or verified
            alias.updated_at = seen_at

        await self.session.flush()
        return alias

    async def list_all(self) -> List[ResidentBankAlias]:
        """List all aliases, most frequent first."""
        result = await self.session.execute(
            select(ResidentBankAlias).order_by(ResidentBankAlias.frequency.desc())
        )
        return list(result.scalars().all())


class ResidentDirectoryRepository:
    """Read-only access to the resident and payment mirrors."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active_residents(self) -> List[Resident]:
        result = await self.session.execute(
            select(Resident).where(Resident.is_active.is_(True)).order_by(Resident.name)
        )
        return list(result.scalars().all())

    async def get_resident(self, resident_id: str) -> Optional[Resident]:
        result = await self.session.execute(
            select(Resident).where(Resident.id == resident_id)
        )
        return result.scalar_one_or_none()

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment).where(Payment.id == payment_id)
        )
        return result.scalar_one_or_none()

    async def list_payments_between(self, start: date, end: date) -> List[Payment]:
        """List payments dated within [start, end], newest first."""
        result = await self.session.execute(
            select(Payment)
            .where(and_(Payment.payment_date >= start, Payment.payment_date <= end))
            .order_by(Payment.payment_date.desc())
        )
        return list(result.scalars().all())
