"""
Voting strategies for governance proposals.

Each strategy computes the base power one principal contributes to a ballot
under one voting mechanism: simple majority, quadratic, or role-weighted.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Type

from ..membership.directory import MembershipProvider
from .core import Proposal, VotingMechanism

logger = logging.getLogger(__name__)


class VotingStrategy(ABC):
    """Abstract base class for voting strategies."""

    mechanism: VotingMechanism

    @abstractmethod
    def base_power(
        self,
        principal: str,
        proposal: Proposal,
        membership: MembershipProvider,
    ) -> int:
        """Power ``principal`` contributes on ``proposal``, before delegation."""
        pass


class SimpleMajorityStrategy(VotingStrategy):
    """One active member, one vote."""

    mechanism = VotingMechanism.SIMPLE_MAJORITY

    def base_power(self, principal, proposal, membership) -> int:
        return 1


class QuadraticVotingStrategy(VotingStrategy):
    """Quadratic voting strategy (voting power = floor(sqrt(credits)))."""

    mechanism = VotingMechanism.QUADRATIC

    def base_power(self, principal, proposal, membership) -> int:
        credits = membership.get_voting_credits(principal)
        if credits <= 0:
            return 0
        # Integer square root, exact for arbitrarily large balances
        return math.isqrt(credits)


class RoleWeightedStrategy(VotingStrategy):
    """Power is the weight configured for the member's role.

    The proposal's own table wins when present; otherwise the global table
    in the membership directory applies. A role missing from the table in
    use weighs 0.
    """

    mechanism = VotingMechanism.ROLE_WEIGHTED

    def base_power(self, principal, proposal, membership) -> int:
        role = membership.get_role(principal)
        if role is None:
            return 0

        override = proposal.override_weight(role)
        if override is not None:
            return override
        return membership.get_role_weight(role)


class StrategyFactory:
    """Factory for creating voting strategies."""

    _strategies: Dict[VotingMechanism, Type[VotingStrategy]] = {
        VotingMechanism.SIMPLE_MAJORITY: SimpleMajorityStrategy,
        VotingMechanism.QUADRATIC: QuadraticVotingStrategy,
        VotingMechanism.ROLE_WEIGHTED: RoleWeightedStrategy,
    }

    @classmethod
    def create_strategy(cls, mechanism: Any) -> VotingStrategy:
        """Create a voting strategy for a mechanism selector."""
        mechanism = VotingMechanism.parse(mechanism)
        return cls._strategies[mechanism]()
