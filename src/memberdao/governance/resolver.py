"""
Voting power resolution.

Computes the power a ballot carries at cast time: the caster's own base power
under the proposal's mechanism plus the base power of every principal that
delegated directly to the caster. Nothing is pre-aggregated; each resolution
re-reads membership, credits, weights and delegation edges.
"""

import logging
from typing import Optional

from ..clock import BlockClock
from ..errors.exceptions import NotAMemberError, NotFoundError
from ..membership.directory import MembershipProvider
from .core import GovernanceState, Proposal, VotingMechanism, VotingPower
from .delegation import DelegationGraph
from .strategies import StrategyFactory, VotingStrategy

logger = logging.getLogger(__name__)


class VotingPowerResolver:
    """Resolves effective voting power for a principal on a proposal."""

    def __init__(
        self,
        state: GovernanceState,
        membership: MembershipProvider,
        delegations: DelegationGraph,
        clock: BlockClock,
    ):
        self.state = state
        self.membership = membership
        self.delegations = delegations
        self.clock = clock

    def resolve_power(self, principal: str, proposal_id: int) -> VotingPower:
        """Resolve ``principal``'s power on ``proposal_id`` at the current block.

        Raises:
            NotFoundError: the proposal does not exist.
            InvalidMechanismError: the proposal's mechanism is not recognised.
            NotAMemberError: ``principal`` is unknown or not active.
        """
        proposal = self.state.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError(f"Proposal {proposal_id} not found", proposal_id=proposal_id)

        strategy = StrategyFactory.create_strategy(proposal.mechanism)
        at_block = self.clock.current_block()
        self.require_active_member(principal, at_block)

        own_power = strategy.base_power(principal, proposal, self.membership)

        delegated_power = 0
        delegators = []
        for delegator in self.delegations.get_delegators(principal):
            power = self._delegator_power(delegator, proposal, strategy, at_block)
            if power:
                delegated_power += power
                delegators.append(delegator)

        logger.debug(
            f"Resolved power for {principal} on proposal {proposal_id}: "
            f"own={own_power} delegated={delegated_power} from {delegators}"
        )
        return VotingPower(
            voter=principal,
            mechanism=VotingMechanism.parse(proposal.mechanism),
            own_power=own_power,
            delegated_power=delegated_power,
            delegators=tuple(delegators),
        )

    def require_active_member(self, principal: str, at_block: Optional[int] = None) -> None:
        """Raise ``NotAMemberError`` unless ``principal`` is active at ``at_block``."""
        if at_block is None:
            at_block = self.clock.current_block()
        if self.membership.is_active_member(principal, at_block):
            return

        record = self.membership.get_record(principal)
        if record is None:
            raise NotAMemberError(f"{principal} is not a member", principal=principal)
        raise NotAMemberError(
            f"{principal} is not an active member (status {record.status.value})",
            principal=principal,
        )

    def _delegator_power(
        self,
        delegator: str,
        proposal: Proposal,
        strategy: VotingStrategy,
        at_block: int,
    ) -> int:
        # Lapsed members lend nothing, and power already inside a ballot is not counted twice.
        if not self.membership.is_active_member(delegator, at_block):
            return 0
        if self.state.is_counted(proposal.proposal_id, delegator):
            return 0
        return strategy.base_power(delegator, proposal, self.membership)
