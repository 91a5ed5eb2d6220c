"""Alias learning: reinforces resident bank names seen in confirmed matches."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from ..database.models import ResidentBankAlias
from ..database.repository import AliasRepository
from .models import MatchDecision, MatchingStrategy, MutationState
from .name_matcher import extract_name_candidates

logger = logging.getLogger(__name__)

MIN_ALIAS_LENGTH = 3

NAME_STRATEGIES = (MatchingStrategy.NAME_MATCH, MatchingStrategy.BANK_ALIAS)


def alias_candidates(description: str) -> List[str]:
    """Names in a description that are long enough to be stored as aliases."""
    return [name for name in extract_name_candidates(description) if len(name) >= MIN_ALIAS_LENGTH]


class AliasLearner:
    """Feeds confirmed matches back into the alias table used by name matching."""

    def __init__(self, aliases: AliasRepository):
        self.aliases = aliases

    async def reinforce(
        self,
        resident_id: str,
        names: Iterable[str],
        verified: bool,
        seen_at: Optional[datetime] = None,
    ) -> List[ResidentBankAlias]:
        """Upsert each name as an alias of the resident.

        Args:
            resident_id: Resident the names belong to.
            names: Bank-statement name strings.
            verified: Whether the match behind the observation was confirmed.
            seen_at: Observation time.

        Returns:
            The created or updated aliases.
        """
        learned: List[ResidentBankAlias] = []
        for name in dict.fromkeys(name.strip() for name in names):
            if len(name) < MIN_ALIAS_LENGTH:
                continue
            learned.append(await self.aliases.upsert(resident_id, name, verified, seen_at))

        if learned:
            logger.debug(f"Reinforced {len(learned)} aliases for resident {resident_id}")
        return learned

    async def learn_from_decision(self, decision: MatchDecision) -> List[ResidentBankAlias]:
        """Learn from an automated name-based match.

        Only names that resolved to the matched resident are stored; they are
        marked verified when the match was strong enough to auto-match.
        """
        if not decision.is_matched or decision.strategy not in NAME_STRATEGIES:
            return []
        return await self.reinforce(
            decision.resident_id,
            decision.alias_names,
            verified=decision.state == MutationState.MATCHED_AUTO,
        )

    async def learn_from_confirmation(self, resident_id: str, description: str) -> List[ResidentBankAlias]:
        """Learn every name in a description whose match a person confirmed."""
        return await self.reinforce(resident_id, alias_candidates(description), verified=True)
