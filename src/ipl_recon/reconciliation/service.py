"""Service layer for bank mutation reconciliation."""

import logging
import math
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from typing import AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..config import ReconSettings
from ..database.models import BankMutation
from ..database.repository import month_bounds
from ..database.unit_of_work import UnitOfWork
from .address_matcher import AddressMatcher, parse_house_token
from .categorizer import categorize_transaction
from .errors import (
    ExternalMatchError,
    MutationNotFoundError,
    PaymentNotFoundError,
    PersistenceError,
    ReconciliationError,
    ResidentNotFoundError,
    StatementValidationError,
)
from .external import ExternalMatchClient, build_payload
from .learning import AliasLearner
from .matcher import MatchOrchestrator
from .models import (
    AliasSnapshot,
    AutoVerifySummary,
    ExternalMatchSummary,
    HistoricalVerification,
    MatchDecision,
    MatchingStrategy,
    MutationPage,
    MutationState,
    MutationStats,
    PaymentSnapshot,
    PeriodCheck,
    ResidentSnapshot,
    RowError,
    RowErrorKind,
    TransactionCandidate,
    UploadOptions,
    UploadSummary,
    VerificationAction,
)
from .parser import parse_statement
from . import state_machine
from .state_machine import Transition

logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[], UnitOfWork]

SYSTEM_ACTOR = state_machine.SYSTEM_ACTOR
AUTO_ACTOR = state_machine.AUTO_ACTOR
EXTERNAL_ACTOR = "API"


def generate_batch_id() -> str:
    """Generate an upload batch id such as ``batch_1718000000000_3f9a1c2b7``."""
    return f"batch_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class HistoricalOutcome:
    """Resolution of one historical verification record."""
    record: HistoricalVerification
    resident_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.resident_id is not None


def resolve_historical(
    records: Iterable[HistoricalVerification],
    residents: Sequence[ResidentSnapshot],
) -> Iterator[HistoricalOutcome]:
    """Resolve historical records to residents by house token, one at a time."""
    addresses = AddressMatcher(residents)
    for record in records:
        token = parse_house_token(record.house_number)
        if token is None:
            yield HistoricalOutcome(record, error=f"Unrecognized house number '{record.house_number}'")
            continue
        resident = addresses.find_exact(token)
        if resident is None:
            yield HistoricalOutcome(record, error=f"House {token.canonical} matches no active resident")
            continue
        yield HistoricalOutcome(record, resident_id=resident.id)


def _same_match(mutation: BankMutation, decision: MatchDecision) -> bool:
    strategy = decision.strategy.value if decision.strategy else None
    return (
        mutation.matched_resident_id == decision.resident_id
        and mutation.matched_payment_id == decision.payment_id
        and mutation.matching_strategy == strategy
        and mutation.state == decision.state.value
        and math.isclose(mutation.match_score or 0.0, decision.score or 0.0, abs_tol=1e-9)
    )


class ReconciliationService:
    """Service for importing statements and moving mutations through review."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        settings: Optional[ReconSettings] = None,
        external: Optional[ExternalMatchClient] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            uow_factory: Callable returning a fresh UnitOfWork per operation.
            settings: Matching configuration. Read from the environment if omitted.
            external: External scoring client. Built from settings when a URL is configured.
        """
        self._uow_factory = uow_factory
        self.settings = settings or ReconSettings.from_env()
        if external is None and self.settings.external_match_url:
            external = ExternalMatchClient(
                self.settings.external_match_url,
                timeout=self.settings.external_match_timeout,
            )
        self.external = external

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[UnitOfWork]:
        try:
            async with self._uow_factory() as uow:
                yield uow
        except SQLAlchemyError as exc:
            logger.error(f"Persistence failure, transaction rolled back: {exc}")
            raise PersistenceError(str(exc)) from exc

    async def _record(self, uow: UnitOfWork, mutation: BankMutation, transition: Transition) -> None:
        await uow.mutations.save(mutation)
        await uow.verifications.create(mutation_id=mutation.id, **transition.audit_fields())

    async def _load_snapshot(
        self,
        uow: UnitOfWork,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Tuple[List[ResidentSnapshot], List[PaymentSnapshot]]:
        aliases: Dict[str, List[AliasSnapshot]] = {}
        for alias in await uow.aliases.list_all():
            aliases.setdefault(alias.resident_id, []).append(AliasSnapshot.model_validate(alias))

        residents = [
            ResidentSnapshot(
                id=resident.id,
                name=resident.name,
                payment_index=resident.payment_index,
                block=resident.block,
                house_number=resident.house_number,
                is_active=resident.is_active,
                aliases=aliases.get(resident.id, []),
            )
            for resident in await uow.directory.list_active_residents()
        ]

        payments: List[PaymentSnapshot] = []
        if start is not None and end is not None:
            window = timedelta(days=self.settings.payment_window_days)
            payments = [
                PaymentSnapshot.model_validate(payment)
                for payment in await uow.directory.list_payments_between(start - window, end + window)
            ]
        return residents, payments

    async def _orchestrator(self, start: date, end: date) -> MatchOrchestrator:
        async with self._unit_of_work() as uow:
            residents, payments = await self._load_snapshot(uow, start, end)
        return MatchOrchestrator(residents, payments, settings=self.settings, external=self.external)

    async def _get_locked(self, uow: UnitOfWork, mutation_id: str) -> BankMutation:
        mutation = await uow.mutations.get_for_update(mutation_id)
        if mutation is None:
            raise MutationNotFoundError(mutation_id)
        return mutation

    async def _house_number(self, uow: UnitOfWork, resident_id: Optional[str]) -> Optional[str]:
        if not resident_id:
            return None
        resident = await uow.directory.get_resident(resident_id)
        return resident.house_number if resident is not None else None

    # Upload

    async def upload_statement(self, content: str, options: Optional[UploadOptions] = None) -> UploadSummary:
        """Import one statement file.

        Each transaction is categorized, matched and persisted in its own
        atomic unit of work. Failures are collected as row errors.

        Args:
            content: Decoded statement text.
            options: Year/month hints, delete-existing flag and file name.

        Returns:
            UploadSummary with counters and row errors.

        Raises:
            StatementValidationError: The file holds no valid transaction.
        """
        options = options or UploadOptions()
        parsed = parse_statement(content, year=options.year, month=options.month)
        if not parsed.transactions:
            raise StatementValidationError("No valid transactions found in file", parsed.errors)

        summary = UploadSummary(
            batch_id=generate_batch_id(),
            file_name=options.file_name,
            total_transactions=len(parsed.transactions),
            errors=list(parsed.errors),
        )
        logger.info(
            f"Starting upload {summary.batch_id}: {summary.total_transactions} transactions "
            f"from {options.file_name or 'statement'}"
        )

        if options.delete_existing and options.year and options.month:
            async with self._unit_of_work() as uow:
                summary.deleted_existing = await uow.mutations.delete_unverified_for_period(
                    options.year, options.month
                )

        dates = [transaction.transaction_date for transaction in parsed.transactions]
        orchestrator = await self._orchestrator(min(dates), max(dates))

        # Rows are imported in file order; earlier rows win payment associations.
        historical = {
            outcome.record.line: outcome
            for outcome in resolve_historical(parsed.historical_verifications, orchestrator.residents)
        }
        for transaction in parsed.transactions:
            outcome = historical.get(transaction.line)
            if outcome is None:
                await self._import_transaction(transaction, orchestrator, summary, options)
            elif outcome.resolved:
                await self._import_historical(outcome, summary, options)
            else:
                summary.errors.append(RowError(
                    line=outcome.record.line,
                    kind=RowErrorKind.VALIDATION,
                    message=f"{outcome.error}; matched automatically instead",
                ))
                await self._import_transaction(outcome.record.transaction, orchestrator, summary, options)

        logger.info(
            f"Upload {summary.batch_id} finished: {summary.processed} stored, "
            f"{summary.auto_matched} auto-matched, {summary.needs_review} need review, "
            f"{summary.unmatched} unmatched, {summary.omitted} omitted, "
            f"{summary.imported_history} historical, {len(summary.errors)} errors"
        )
        return summary

    async def _is_verified_duplicate(self, transaction: TransactionCandidate) -> bool:
        async with self._unit_of_work() as uow:
            duplicate = await uow.mutations.find_verified_duplicate(
                transaction.transaction_date, transaction.amount, transaction.description
            )
        return duplicate is not None

    async def _create_mutation(
        self,
        uow: UnitOfWork,
        transaction: TransactionCandidate,
        summary: UploadSummary,
    ) -> BankMutation:
        return await uow.mutations.create(
            transaction_date=transaction.transaction_date,
            description=transaction.description,
            amount=transaction.amount,
            balance=transaction.balance,
            reference_number=transaction.reference,
            transaction_type=transaction.transaction_type.value,
            category=transaction.category.value if transaction.category else None,
            upload_batch=summary.batch_id,
            file_name=summary.file_name,
            raw_data=transaction.raw_payload(),
        )

    async def _import_transaction(
        self,
        transaction: TransactionCandidate,
        orchestrator: MatchOrchestrator,
        summary: UploadSummary,
        options: UploadOptions,
    ) -> None:
        try:
            if options.delete_existing and await self._is_verified_duplicate(transaction):
                summary.duplicates_skipped += 1
                logger.debug(f"Line {transaction.line}: already verified, skipped")
                return

            categorization = categorize_transaction(transaction.description, transaction.transaction_type)
            transaction.category = categorization.category

            decision: Optional[MatchDecision] = None
            if not categorization.should_omit:
                decision = await orchestrator.match(
                    transaction.description, transaction.amount, transaction.transaction_date
                )

            async with self._unit_of_work() as uow:
                mutation = await self._create_mutation(uow, transaction, summary)
                if decision is None:
                    transition = state_machine.omit(
                        mutation,
                        categorization.omit_reason,
                        SYSTEM_ACTOR,
                        action=VerificationAction.SYSTEM_UNMATCH,
                    )
                else:
                    transition = state_machine.apply_match(mutation, decision)
                    await AliasLearner(uow.aliases).learn_from_decision(decision)
                await self._record(uow, mutation, transition)
        except PersistenceError as exc:
            summary.errors.append(RowError(
                line=transaction.line,
                kind=RowErrorKind.PROCESSING,
                message=f"Failed to store transaction: {exc}",
            ))
            return

        summary.processed += 1
        if decision is None:
            summary.omitted += 1
        elif decision.state == MutationState.MATCHED_AUTO:
            summary.auto_matched += 1
        elif decision.state == MutationState.MATCHED_PENDING:
            summary.needs_review += 1
        else:
            summary.unmatched += 1

    async def _import_historical(
        self,
        outcome: HistoricalOutcome,
        summary: UploadSummary,
        options: UploadOptions,
    ) -> None:
        record = outcome.record
        transaction = record.transaction
        try:
            if options.delete_existing and await self._is_verified_duplicate(transaction):
                summary.duplicates_skipped += 1
                return

            transaction.category = categorize_transaction(
                transaction.description, transaction.transaction_type
            ).category

            async with self._unit_of_work() as uow:
                mutation = await self._create_mutation(uow, transaction, summary)
                mutation.raw_data = record.model_dump(mode="json")
                transition = state_machine.import_verified(
                    mutation,
                    outcome.resident_id,
                    house_token=record.house_number,
                    period=f"{record.month}/{record.year}",
                )
                await self._record(uow, mutation, transition)
                await AliasLearner(uow.aliases).learn_from_confirmation(
                    outcome.resident_id, transaction.description
                )
        except PersistenceError as exc:
            summary.errors.append(RowError(
                line=record.line,
                kind=RowErrorKind.PROCESSING,
                message=f"Failed to store historical verification: {exc}",
            ))
            return

        summary.processed += 1
        summary.imported_history += 1

    # Batch operations

    async def auto_verify_period(self, year: int, month: int) -> AutoVerifySummary:
        """Re-match and auto-verify the open credit mutations of one month.

        Verified and omitted mutations are never touched, and a mutation whose
        match does not change gets no new audit entry, so the run can be
        repeated safely. Manual matches are left for their reviewer.

        Args:
            year: Calendar year.
            month: Calendar month.

        Returns:
            AutoVerifySummary with counters.
        """
        summary = AutoVerifySummary(year=year, month=month)
        start, end = month_bounds(year, month)

        async with self._unit_of_work() as uow:
            mutation_ids = await uow.mutations.list_ids_pending_for_period(year, month)
        orchestrator = await self._orchestrator(start, end - timedelta(days=1))

        logger.info(f"Auto-verifying {len(mutation_ids)} mutations for {month:02d}/{year}")

        for mutation_id in mutation_ids:
            async with self._unit_of_work() as uow:
                mutation = await uow.mutations.get_for_update(mutation_id)
                if mutation is None or mutation.is_verified or mutation.is_omitted:
                    continue
                summary.processed += 1

                if mutation.matching_strategy == MatchingStrategy.MANUAL.value:
                    summary.unchanged += 1
                    continue

                decision = orchestrator.decide(mutation.description, mutation.amount, mutation.transaction_date)
                changed = not _same_match(mutation, decision)
                if changed:
                    transition = state_machine.apply_match(mutation, decision, actor=AUTO_ACTOR)
                    await self._record(uow, mutation, transition)
                    await AliasLearner(uow.aliases).learn_from_decision(decision)
                if decision.is_matched:
                    summary.matched += 1

                verified = False
                if mutation.state == MutationState.MATCHED_AUTO.value:
                    house_number = await self._house_number(uow, mutation.matched_resident_id)
                    if (house_number or "").strip():
                        transition = state_machine.verify(
                            mutation,
                            house_number,
                            AUTO_ACTOR,
                            action=VerificationAction.AUTO_MATCH,
                            notes=f"Auto-verified at confidence {mutation.match_score:.2f}",
                        )
                        await self._record(uow, mutation, transition)
                        summary.auto_verified += 1
                        verified = True

                if not changed and not verified:
                    summary.unchanged += 1

        logger.info(
            f"Auto-verify {month:02d}/{year}: {summary.matched} matched, "
            f"{summary.auto_verified} verified, {summary.unchanged} unchanged"
        )
        return summary

    async def external_match_period(self, year: int, month: int) -> ExternalMatchSummary:
        """Ask the external scoring service about the open mutations of one month.

        Args:
            year: Calendar year.
            month: Calendar month.

        Returns:
            ExternalMatchSummary with counters. Failed calls are counted, not raised.

        Raises:
            ReconciliationError: No service URL is configured.
        """
        client = self.external
        if client is None:
            raise ReconciliationError("External match API not configured")

        summary = ExternalMatchSummary(year=year, month=month)
        start, end = month_bounds(year, month)
        async with self._unit_of_work() as uow:
            mutation_ids = await uow.mutations.list_ids_pending_for_period(year, month)
            mutations = {mutation_id: await uow.mutations.get_by_id(mutation_id) for mutation_id in mutation_ids}
        orchestrator = await self._orchestrator(start, end - timedelta(days=1))

        for mutation_id, snapshot in mutations.items():
            summary.processed += 1
            payload = build_payload(
                mutation_id,
                snapshot.amount,
                snapshot.description,
                snapshot.transaction_date,
                orchestrator.residents,
            )
            try:
                score = await client.score(payload)
            except ExternalMatchError as exc:
                logger.warning(f"External scoring failed for {mutation_id}: {exc}")
                summary.failed += 1
                continue

            decision = orchestrator.external_decision(score.resident_id, score.confidence, score.payment_id)
            if not decision.is_matched:
                continue

            async with self._unit_of_work() as uow:
                mutation = await uow.mutations.get_for_update(mutation_id)
                if mutation is None or mutation.is_verified or mutation.is_omitted:
                    continue

                decision.payment_id = decision.payment_id or mutation.matched_payment_id
                decision.score = max(decision.score, mutation.match_score or 0.0)
                orchestrator.classify(decision)
                await self._record(uow, mutation, state_machine.apply_match(mutation, decision, actor=EXTERNAL_ACTOR))
                summary.matched += 1

                if score.confidence >= self.settings.external_auto_verify_threshold:
                    house_number = await self._house_number(uow, mutation.matched_resident_id)
                    if (house_number or "").strip():
                        transition = state_machine.verify(
                            mutation,
                            house_number,
                            EXTERNAL_ACTOR,
                            action=VerificationAction.AUTO_MATCH,
                            notes=f"Verified by external service at confidence {score.confidence:.2f}",
                        )
                        await self._record(uow, mutation, transition)
                        summary.auto_verified += 1

        logger.info(
            f"External match {month:02d}/{year}: {summary.processed} sent, "
            f"{summary.matched} matched, {summary.auto_verified} verified, {summary.failed} failed"
        )
        return summary

    # Review operations

    async def verify_mutation(self, mutation_id: str, verified_by: str, notes: Optional[str] = None) -> Dict:
        """Confirm the current match of a mutation."""
        async with self._unit_of_work() as uow:
            mutation = await self._get_locked(uow, mutation_id)
            house_number = await self._house_number(uow, mutation.matched_resident_id)
            transition = state_machine.verify(
                mutation, house_number, verified_by, notes=notes or f"Verified by {verified_by}"
            )
            await self._record(uow, mutation, transition)
            await AliasLearner(uow.aliases).learn_from_confirmation(
                mutation.matched_resident_id, mutation.description
            )
            logger.info(f"Mutation {mutation_id} verified by {verified_by}")
            return mutation.to_dict()

    async def omit_mutation(self, mutation_id: str, reason: str, omitted_by: str) -> Dict:
        """Exclude a mutation from reconciliation with a reason."""
        async with self._unit_of_work() as uow:
            mutation = await self._get_locked(uow, mutation_id)
            transition = state_machine.omit(mutation, reason, omitted_by)
            await self._record(uow, mutation, transition)
            logger.info(f"Mutation {mutation_id} omitted by {omitted_by}")
            return mutation.to_dict()

    async def restore_mutation(self, mutation_id: str, restored_by: str) -> Dict:
        """Return an omitted mutation to the unmatched state."""
        async with self._unit_of_work() as uow:
            mutation = await self._get_locked(uow, mutation_id)
            transition = state_machine.restore(mutation, restored_by)
            await self._record(uow, mutation, transition)
            logger.info(f"Mutation {mutation_id} restored by {restored_by}")
            return mutation.to_dict()

    async def manual_match(
        self,
        mutation_id: str,
        resident_id: str,
        payment_id: Optional[str] = None,
        verified: bool = False,
        matched_by: str = "USER",
    ) -> Dict:
        """Match a mutation to a resident (and optionally a payment) by hand.

        Raises:
            MutationNotFoundError, ResidentNotFoundError, PaymentNotFoundError:
                When a referenced record does not exist.
            StateTransitionError: When the mutation is omitted, the payment
                belongs to another resident, or verification lacks a house number.
        """
        async with self._unit_of_work() as uow:
            mutation = await self._get_locked(uow, mutation_id)
            resident = await uow.directory.get_resident(resident_id)
            if resident is None:
                raise ResidentNotFoundError(resident_id)

            payment_resident_id = None
            if payment_id is not None:
                payment = await uow.directory.get_payment(payment_id)
                if payment is None:
                    raise PaymentNotFoundError(payment_id)
                payment_resident_id = payment.resident_id

            transition = state_machine.manual_match(
                mutation,
                resident_id=resident.id,
                house_number=resident.house_number,
                payment_id=payment_id,
                payment_resident_id=payment_resident_id,
                verified=verified,
                actor=matched_by,
                resident_name=resident.name,
            )
            await self._record(uow, mutation, transition)
            if verified:
                await AliasLearner(uow.aliases).learn_from_confirmation(resident.id, mutation.description)
            logger.info(f"Mutation {mutation_id} manually matched to {resident_id} by {matched_by}")
            return mutation.to_dict()

    async def unverify_mutation(self, mutation_id: str, actor: str) -> Dict:
        """Reopen a verified mutation for editing."""
        async with self._unit_of_work() as uow:
            mutation = await self._get_locked(uow, mutation_id)
            transition = state_machine.unverify(mutation, actor)
            await self._record(uow, mutation, transition)
            logger.info(f"Mutation {mutation_id} unverified by {actor}")
            return mutation.to_dict()

    # Queries

    async def get_mutation(self, mutation_id: str) -> Dict:
        async with self._unit_of_work() as uow:
            mutation = await uow.mutations.get_by_id(mutation_id)
            if mutation is None:
                raise MutationNotFoundError(mutation_id)
            return mutation.to_dict()

    async def list_mutations(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        verified: Optional[bool] = None,
        matched: Optional[bool] = None,
        omitted: Optional[bool] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> MutationPage:
        """List mutations with filters and pagination, newest first."""
        async with self._unit_of_work() as uow:
            items, total = await uow.mutations.search(
                year=year,
                month=month,
                verified=verified,
                matched=matched,
                omitted=omitted,
                search=search,
                limit=limit,
                offset=offset,
            )
            return MutationPage(
                items=[item.to_dict() for item in items],
                total=total,
                limit=limit,
                offset=offset,
            )

    async def get_history(self, mutation_id: str, limit: int = 100) -> List[Dict]:
        """Audit entries of one mutation, newest first."""
        async with self._unit_of_work() as uow:
            if await uow.mutations.get_by_id(mutation_id) is None:
                raise MutationNotFoundError(mutation_id)
            entries = await uow.verifications.list_by_mutation(mutation_id, limit=limit)
            return [entry.to_dict() for entry in entries]

    async def get_stats(self) -> MutationStats:
        async with self._unit_of_work() as uow:
            return MutationStats(**await uow.mutations.get_stats())

    async def check_period(self, year: int, month: int) -> PeriodCheck:
        """Count the mutations already imported for a month."""
        async with self._unit_of_work() as uow:
            existing = await uow.mutations.count_for_period(year, month)
        return PeriodCheck(year=year, month=month, existing=existing)
