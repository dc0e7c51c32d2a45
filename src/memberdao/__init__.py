"""
memberdao: governance for membership organizations.

Applicants become verified members with roles, members create and sponsor
proposals, proposals are voted on under simple-majority, quadratic or
role-weighted rules, and passed proposals hand treasury actions to an outbox.
"""

__version__ = "0.1.0"

from .access import AccessPolicy
from .clock import BlockClock, ManualBlockClock
from .governance import (
    ExecutionParameters,
    GovernanceConfig,
    GovernanceEngine,
    ProposalCategory,
    ProposalStatus,
    VoteChoice,
    VotingMechanism,
)
from .membership import MemberRole, MembershipDirectory, MembershipStatus

__all__ = [
    "AccessPolicy",
    "BlockClock",
    "ManualBlockClock",
    "ExecutionParameters",
    "GovernanceConfig",
    "GovernanceEngine",
    "ProposalCategory",
    "ProposalStatus",
    "VoteChoice",
    "VotingMechanism",
    "MemberRole",
    "MembershipDirectory",
    "MembershipStatus",
]
