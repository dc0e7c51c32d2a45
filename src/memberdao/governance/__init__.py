"""
Governance for memberdao.

This package provides the proposal lifecycle and voting engine:
- Proposal state machine (draft, pending, active, terminal outcomes)
- Simple-majority, quadratic and role-weighted voting
- One-hop vote delegation with bounded cycle detection
- Quorum and outcome evaluation
- Hash-chained audit trail
- Treasury hand-off for passed proposals
"""

from .core import (
    ALLOWED_TRANSITIONS,
    MAX_ROLE_WEIGHT_ENTRIES,
    MAX_SPONSORS,
    TERMINAL_STATUSES,
    ExecutionParameters,
    GovernanceConfig,
    GovernanceState,
    OutcomeReason,
    Proposal,
    ProposalCategory,
    ProposalSequence,
    ProposalStatus,
    Vote,
    VoteChoice,
    VotingMechanism,
    VotingPower,
    is_allowed_transition,
)
from .delegation import (
    CircularDelegationDetector,
    Delegation,
    DelegationGraph,
)
from .engine import GovernanceEngine
from .observability import (
    AuditTrail,
    EventType,
    GovernanceEvent,
    GovernanceEvents,
)
from .quorum import OutcomeEvaluator, ProposalOutcome
from .resolver import VotingPowerResolver
from .strategies import (
    QuadraticVotingStrategy,
    RoleWeightedStrategy,
    SimpleMajorityStrategy,
    StrategyFactory,
    VotingStrategy,
)
from .treasury import TreasuryAction, TreasuryOutbox

__all__ = [
    # Core
    "ALLOWED_TRANSITIONS",
    "MAX_ROLE_WEIGHT_ENTRIES",
    "MAX_SPONSORS",
    "TERMINAL_STATUSES",
    "ExecutionParameters",
    "GovernanceConfig",
    "GovernanceState",
    "OutcomeReason",
    "Proposal",
    "ProposalCategory",
    "ProposalSequence",
    "ProposalStatus",
    "Vote",
    "VoteChoice",
    "VotingMechanism",
    "VotingPower",
    "is_allowed_transition",

    # Engine
    "GovernanceEngine",

    # Delegation
    "CircularDelegationDetector",
    "Delegation",
    "DelegationGraph",

    # Voting power
    "VotingStrategy",
    "SimpleMajorityStrategy",
    "QuadraticVotingStrategy",
    "RoleWeightedStrategy",
    "StrategyFactory",
    "VotingPowerResolver",

    # Outcome
    "OutcomeEvaluator",
    "ProposalOutcome",

    # Observability
    "AuditTrail",
    "EventType",
    "GovernanceEvent",
    "GovernanceEvents",

    # Treasury
    "TreasuryAction",
    "TreasuryOutbox",
]
