"""memberdao error handling.

Exception hierarchy shared by the membership directory and the governance
engine.
"""

from .exceptions import (
    AlreadyExistsError,
    AlreadySponsoredError,
    AlreadyVotedError,
    ConfigurationError,
    DelegationCycleError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    GovernanceError,
    InvalidMechanismError,
    InvalidParameterError,
    InvalidStateTransitionError,
    MemberDaoError,
    NotAMemberError,
    NotAuthorizedError,
    NotFoundError,
    ProposalNotActiveError,
    ValidationError,
    VotingClosedError,
)

__all__ = [
    "MemberDaoError",
    "ValidationError",
    "ConfigurationError",
    "GovernanceError",
    "NotAuthorizedError",
    "NotFoundError",
    "InvalidStateTransitionError",
    "ProposalNotActiveError",
    "VotingClosedError",
    "AlreadyExistsError",
    "AlreadyVotedError",
    "AlreadySponsoredError",
    "InvalidParameterError",
    "InvalidMechanismError",
    "DelegationCycleError",
    "NotAMemberError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
]
