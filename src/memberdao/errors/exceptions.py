"""Exception hierarchy for memberdao.

This module defines the error taxonomy used by the governance engine and the
membership directory. Every guard raises one of these before any state is
touched, so a caught error always means the call had no effect.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    STATE = "state"
    MEMBERSHIP = "membership"
    DELEGATION = "delegation"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


@dataclass
class ErrorContext:
    """Context information for an error."""

    timestamp: float = field(default_factory=time.time)
    component: Optional[str] = None
    operation: Optional[str] = None
    principal: Optional[str] = None
    proposal_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "timestamp": self.timestamp,
            "component": self.component,
            "operation": self.operation,
            "principal": self.principal,
            "proposal_id": self.proposal_id,
            "metadata": self.metadata,
        }


class MemberDaoError(Exception):
    """Base exception for all memberdao errors."""

    default_code = "MEMBERDAO_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.severity = severity
        self.category = category
        self.context = context or ErrorContext()
        self.cause = cause
        self.metadata = metadata or {}
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [f"{self.__class__.__name__}: {self.message}"]

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.severity != ErrorSeverity.MEDIUM:
            parts.append(f"Severity: {self.severity.value}")

        if self.category != ErrorCategory.SYSTEM:
            parts.append(f"Category: {self.category.value}")

        return " | ".join(parts)


class ValidationError(MemberDaoError):
    """Validation error."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        expected: Optional[Any] = None,
        **kwargs,
    ):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.expected = expected

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation error to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "field": self.field,
                "value": str(self.value) if self.value is not None else None,
                "expected": str(self.expected) if self.expected is not None else None,
            }
        )
        return data


class ConfigurationError(MemberDaoError):
    """Configuration error."""

    default_code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)
        self.config_key = config_key
        self.config_value = config_value

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration error to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "config_key": self.config_key,
                "config_value": str(self.config_value)
                if self.config_value is not None
                else None,
            }
        )
        return data


class GovernanceError(MemberDaoError):
    """Governance operation rejected."""

    default_code = "GOVERNANCE_ERROR"

    def __init__(self, message: str, proposal_id: Optional[int] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.STATE)
        super().__init__(message, **kwargs)
        self.proposal_id = proposal_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert governance error to dictionary."""
        data = super().to_dict()
        data.update({"proposal_id": self.proposal_id})
        return data


class NotAuthorizedError(GovernanceError):
    """Caller lacks the required role or ownership."""

    default_code = "NOT_AUTHORIZED"

    def __init__(self, message: str, principal: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.AUTHORIZATION)
        super().__init__(message, **kwargs)
        self.principal = principal


class NotFoundError(GovernanceError):
    """Proposal, vote or record absent."""

    default_code = "NOT_FOUND"


class InvalidStateTransitionError(GovernanceError):
    """Operation not legal from the current status."""

    default_code = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.current_status = current_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert state error to dictionary."""
        data = super().to_dict()
        data.update({"current_status": self.current_status})
        return data


class ProposalNotActiveError(InvalidStateTransitionError):
    """Proposal is not in the active voting phase."""

    default_code = "PROPOSAL_NOT_ACTIVE"


class VotingClosedError(InvalidStateTransitionError):
    """Current block is outside the voting window."""

    default_code = "VOTING_CLOSED"


class AlreadyExistsError(GovernanceError):
    """Duplicate action."""

    default_code = "ALREADY_EXISTS"


class AlreadyVotedError(AlreadyExistsError):
    """Voter already has a ballot on this proposal."""

    default_code = "ALREADY_VOTED"


class AlreadySponsoredError(AlreadyExistsError):
    """Principal already sponsors this proposal."""

    default_code = "ALREADY_SPONSORED"


class InvalidParameterError(ValidationError):
    """Out-of-range category, mechanism, amount or similar."""

    default_code = "INVALID_PARAMETER"


class InvalidMechanismError(InvalidParameterError):
    """Voting mechanism selector is not one of the defined values."""

    default_code = "INVALID_MECHANISM"


class DelegationCycleError(GovernanceError):
    """Delegation would create a cycle or exceeds the hop bound."""

    default_code = "DELEGATION_CYCLE"

    def __init__(self, message: str, path: Optional[list] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.DELEGATION)
        super().__init__(message, **kwargs)
        self.path = list(path or [])

    def to_dict(self) -> Dict[str, Any]:
        """Convert delegation error to dictionary."""
        data = super().to_dict()
        data.update({"path": self.path})
        return data


class NotAMemberError(GovernanceError):
    """Principal is unknown or not an active member."""

    default_code = "NOT_A_MEMBER"

    def __init__(self, message: str, principal: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.MEMBERSHIP)
        super().__init__(message, **kwargs)
        self.principal = principal
