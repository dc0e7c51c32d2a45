"""
Quorum and outcome evaluation.

Reads a proposal's accumulated tallies once, at finalization, and decides the
terminal status. Abstentions count toward quorum but never toward the
for/against comparison, and a tie fails.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .core import OutcomeReason, Proposal, ProposalStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProposalOutcome:
    """The decision recorded when a proposal is finalized."""

    proposal_id: int
    status: ProposalStatus
    reason: OutcomeReason
    participation: int
    quorum_requirement: int
    votes_for: int
    votes_against: int
    votes_abstain: int

    @property
    def quorum_met(self) -> bool:
        return self.participation >= self.quorum_requirement

    @property
    def passed(self) -> bool:
        return self.status == ProposalStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "status": self.status.value,
            "reason": self.reason.value,
            "participation": self.participation,
            "quorum_requirement": self.quorum_requirement,
            "quorum_met": self.quorum_met,
            "votes_for": self.votes_for,
            "votes_against": self.votes_against,
            "votes_abstain": self.votes_abstain,
        }


class OutcomeEvaluator:
    """Decides PASSED, FAILED or EXPIRED from a proposal's tallies."""

    def __init__(self, expire_on_quorum_failure: bool = False):
        self.expire_on_quorum_failure = expire_on_quorum_failure

    def evaluate(self, proposal: Proposal) -> ProposalOutcome:
        """Evaluate without mutating ``proposal``."""
        participation = proposal.participation()
        quorum = proposal.quorum_requirement or 0

        if participation < quorum:
            status = (
                ProposalStatus.EXPIRED
                if self.expire_on_quorum_failure
                else ProposalStatus.FAILED
            )
            reason = OutcomeReason.QUORUM_NOT_MET
        elif proposal.votes_for > proposal.votes_against:
            status = ProposalStatus.PASSED
            reason = OutcomeReason.MAJORITY_FOR
        elif proposal.votes_for == proposal.votes_against:
            status = ProposalStatus.FAILED
            reason = OutcomeReason.TIE
        else:
            status = ProposalStatus.FAILED
            reason = OutcomeReason.MAJORITY_AGAINST

        logger.debug(
            f"Proposal {proposal.proposal_id} evaluates to {status.value} "
            f"({reason.value}, participation {participation}/{quorum})"
        )
        return ProposalOutcome(
            proposal_id=proposal.proposal_id,
            status=status,
            reason=reason,
            participation=participation,
            quorum_requirement=quorum,
            votes_for=proposal.votes_for,
            votes_against=proposal.votes_against,
            votes_abstain=proposal.votes_abstain,
        )
