"""API endpoints for bank mutation reconciliation."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from ..auth import UPLOAD_RATE_LIMIT, limiter, verify_api_key
from ..config import ReconSettings
from ..database import UnitOfWork, get_async_session_factory
from .errors import (
    ExternalMatchError,
    MutationNotFoundError,
    PaymentNotFoundError,
    PersistenceError,
    ReconciliationError,
    ResidentNotFoundError,
    StatementValidationError,
)
from .models import (
    AutoVerifySummary,
    ExternalMatchSummary,
    ManualMatchRequest,
    MutationPage,
    MutationStats,
    OmitRequest,
    PeriodCheck,
    PeriodRequest,
    RestoreRequest,
    UnverifyRequest,
    UploadOptions,
    VerifyRequest,
)
from .parser import decode_statement
from .report import mutations_to_csv
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bank-mutations", tags=["bank-mutations"])

EXPORT_LIMIT = 10000


def get_reconciliation_service() -> ReconciliationService:
    """Build a service bound to the application's session factory."""
    session_factory = get_async_session_factory()
    return ReconciliationService(lambda: UnitOfWork(session_factory), ReconSettings.from_env())


def _http_error(exc: ReconciliationError) -> HTTPException:
    """Translate an engine error into the HTTP status the caller should see."""
    if isinstance(exc, (MutationNotFoundError, ResidentNotFoundError, PaymentNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, StatementValidationError):
        return HTTPException(
            status_code=400,
            detail={"message": str(exc), "errors": [str(error) for error in exc.errors]},
        )
    if isinstance(exc, ExternalMatchError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=500, detail="Database error, no changes were applied")
    return HTTPException(status_code=400, detail=str(exc))


@router.post("/upload")
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_statement(
    request: Request,
    file: UploadFile = File(..., description="Bank statement CSV export"),
    year: Optional[int] = Form(default=None),
    month: Optional[int] = Form(default=None),
    delete_existing: bool = Form(default=False),
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """
    Import a bank statement.

    Every row is parsed, categorized and matched. Rows that fail are
    reported in `errors` while the rest of the file is still imported.
    """
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        options = UploadOptions(
            year=year,
            month=month,
            delete_existing=delete_existing,
            file_name=file.filename,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False)) from exc

    logger.info(f"Received statement upload {file.filename} ({len(raw)} bytes)")
    try:
        summary = await service.upload_statement(decode_statement(raw), options)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return summary.to_summary_dict()


@router.get("", response_model=MutationPage)
async def list_mutations(
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    verified: Optional[bool] = Query(default=None),
    matched: Optional[bool] = Query(default=None),
    omitted: Optional[bool] = Query(default=None),
    search: Optional[str] = Query(default=None, description="Case-insensitive description search"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """List mutations with filters, newest first."""
    try:
        return await service.list_mutations(
            year=year,
            month=month,
            verified=verified,
            matched=matched,
            omitted=omitted,
            search=search,
            limit=limit,
            offset=offset,
        )
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.get("/export")
async def export_mutations(
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    verified: Optional[bool] = Query(default=None),
    matched: Optional[bool] = Query(default=None),
    omitted: Optional[bool] = Query(default=None),
    search: Optional[str] = Query(default=None),
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """Export the filtered mutation listing as CSV."""
    try:
        page = await service.list_mutations(
            year=year,
            month=month,
            verified=verified,
            matched=matched,
            omitted=omitted,
            search=search,
            limit=EXPORT_LIMIT,
        )
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
    return PlainTextResponse(content=mutations_to_csv(page.items), media_type="text/csv")


@router.get("/stats", response_model=MutationStats)
async def get_stats(
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """Aggregate counters across all mutations."""
    try:
        return await service.get_stats()
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.get("/check-period", response_model=PeriodCheck)
async def check_period(
    year: int = Query(..., ge=1900, le=9999),
    month: int = Query(..., ge=1, le=12),
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """Tell whether mutations were already imported for a month."""
    try:
        return await service.check_period(year, month)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.post("/auto-verify", response_model=AutoVerifySummary)
async def auto_verify(
    body: PeriodRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """Re-match the open mutations of a month and verify the confident ones."""
    try:
        return await service.auto_verify_period(body.year, body.month)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.post("/match-api", response_model=ExternalMatchSummary)
async def external_match(
    body: PeriodRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
):
    """Score the open mutations of a month with the external matching service."""
    try:
        return await service.external_match_period(body.year, body.month)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.get("/health")
async def reconciliation_health():
    """Health check endpoint for the reconciliation service."""
    return {"status": "healthy", "service": "bank-mutations"}


@router.get("/{mutation_id}")
async def get_mutation(
    mutation_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    try:
        return await service.get_mutation(mutation_id)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.get("/{mutation_id}/history")
async def get_history(
    mutation_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> List[Dict[str, Any]]:
    """Audit trail of one mutation, newest first."""
    try:
        return await service.get_history(mutation_id, limit=limit)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.post("/{mutation_id}/verify")
async def verify_mutation(
    mutation_id: str,
    body: VerifyRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Confirm the current match of a mutation."""
    try:
        return await service.verify_mutation(mutation_id, body.verified_by, body.notes)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.post("/{mutation_id}/omit")
async def omit_mutation(
    mutation_id: str,
    body: OmitRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Exclude a mutation from reconciliation. A reason is required."""
    try:
        return await service.omit_mutation(mutation_id, body.reason, body.omitted_by)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.post("/{mutation_id}/restore")
async def restore_mutation(
    mutation_id: str,
    body: RestoreRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    try:
        return await service.restore_mutation(mutation_id, body.restored_by)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.post("/{mutation_id}/match-manual")
async def manual_match(
    mutation_id: str,
    body: ManualMatchRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Match a mutation to a resident and, optionally, one of their payments."""
    try:
        return await service.manual_match(
            mutation_id,
            resident_id=body.resident_id,
            payment_id=body.payment_id,
            verified=body.verified,
            matched_by=body.matched_by,
        )
    except ReconciliationError as exc:
        raise _http_error(exc) from exc


@router.post("/{mutation_id}/unverify")
async def unverify_mutation(
    mutation_id: str,
    body: UnverifyRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Reopen a verified mutation for editing."""
    try:
        return await service.unverify_mutation(mutation_id, body.actor)
    except ReconciliationError as exc:
        raise _http_error(exc) from exc
