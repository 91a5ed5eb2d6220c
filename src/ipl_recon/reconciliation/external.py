"""Client for the optional external match scoring service."""

import logging
from datetime import date
from typing import Any, Dict, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from .errors import ExternalMatchError
from .models import ResidentSnapshot
from .name_matcher import parse_description

logger = logging.getLogger(__name__)


class ExternalScore(BaseModel):
    """Answer of the scoring service for one transaction."""
    resident_id: Optional[str] = None
    confidence: float = Field(default=0.0)
    payment_id: Optional[str] = None


def build_payload(
    mutation_id: Optional[str],
    amount: float,
    description: str,
    transaction_date: date,
    candidates: Sequence[ResidentSnapshot],
) -> Dict[str, Any]:
    """Build the request body sent to the scoring service."""
    return {
        "id": mutation_id,
        "amount": float(amount),
        "description": description or "",
        "date": transaction_date.isoformat(),
        "candidates": [{"id": resident.id, "name": resident.name} for resident in candidates],
        "hints": parse_description(description).model_dump(),
    }


def _parse_score(data: Any) -> ExternalScore:
    if not isinstance(data, dict):
        return ExternalScore()
    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.0
    return ExternalScore(
        resident_id=data.get("resident_id") or None,
        confidence=max(0.0, min(1.0, float(confidence))),
        payment_id=data.get("payment_id") or None,
    )


class ExternalMatchClient:
    """
    Posts transactions to an external scoring service.

    The service receives the transaction, the active residents and the
    description hints, and answers ``{resident_id, confidence, payment_id}``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            url: Endpoint receiving one transaction per POST.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used to stub the service.
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def score(self, payload: Dict[str, Any]) -> ExternalScore:
        """Score one transaction.

        Raises:
            ExternalMatchError: On an invalid URL, network failure, timeout
                or a non-2xx answer.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url=self.url, json=payload)
        except httpx.TimeoutException as exc:
            raise ExternalMatchError(f"External match service timed out: {self.url}") from exc
        except httpx.InvalidURL as exc:
            raise ExternalMatchError(f"External match service URL is invalid: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ExternalMatchError(f"External match service unreachable: {exc}") from exc

        if response.is_error:
            raise ExternalMatchError(
                f"External match service returned {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"External match service returned a non-JSON body for {payload.get('id')}")
            return ExternalScore()

        return _parse_score(data)

