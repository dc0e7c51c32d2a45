"""
Membership directory.

Authoritative source of role, status and voting credits per principal. The
governance engine consumes it read-only through ``MembershipProvider``; the
in-memory ``MembershipDirectory`` is the reference implementation, with the
admin operations that verify applicants and maintain the global role-weight
table.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..access import AccessPolicy
from ..clock import BlockClock
from ..errors.exceptions import (
    AlreadyExistsError,
    InvalidParameterError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class MemberRole(Enum):
    """Role held by a member."""

    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"


class MembershipStatus(Enum):
    """Status of a membership record."""

    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    REJECTED = "rejected"


DEFAULT_ROLE_WEIGHTS: Dict[MemberRole, int] = {
    MemberRole.PATIENT: 1,
    MemberRole.PROVIDER: 2,
    MemberRole.ADMIN: 3,
}


@dataclass
class MembershipRecord:
    """A principal's membership."""

    principal: str
    role: MemberRole
    status: MembershipStatus = MembershipStatus.PENDING
    applied_at: int = 0
    joined_at: Optional[int] = None
    expires_at: Optional[int] = None
    voting_credits: int = 0
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self):
        """Validate record after initialization."""
        if not self.principal:
            raise ValidationError("Membership record must name a principal", field="principal")

        if self.voting_credits < 0:
            raise ValidationError("Voting credits cannot be negative", field="voting_credits")

    def is_active(self, at_block: int) -> bool:
        """Active iff status is ACTIVE and ``at_block`` is before expiry."""
        if self.status != MembershipStatus.ACTIVE:
            return False
        return self.expires_at is None or at_block < self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary."""
        return {
            "principal": self.principal,
            "role": self.role.value,
            "status": self.status.value,
            "applied_at": self.applied_at,
            "joined_at": self.joined_at,
            "expires_at": self.expires_at,
            "voting_credits": self.voting_credits,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MembershipRecord":
        """Create record from dictionary."""
        return cls(
            principal=data["principal"],
            role=MemberRole(data["role"]),
            status=MembershipStatus(data["status"]),
            applied_at=data.get("applied_at", 0),
            joined_at=data.get("joined_at"),
            expires_at=data.get("expires_at"),
            voting_credits=data.get("voting_credits", 0),
            updated_at=data.get("updated_at", time.time()),
        )


class MembershipProvider(ABC):
    """Read-only membership queries consumed by the voting engine."""

    @abstractmethod
    def get_record(self, principal: str) -> Optional[MembershipRecord]:
        """Return the record, or ``None`` when the principal never applied."""
        pass

    @abstractmethod
    def is_active_member(self, principal: str, at_block: int) -> bool:
        """Check whether ``principal`` is an active member at ``at_block``."""
        pass

    @abstractmethod
    def get_role(self, principal: str) -> Optional[MemberRole]:
        """Return the principal's current role, or ``None`` if unknown."""
        pass

    @abstractmethod
    def get_role_weight(self, role: MemberRole) -> int:
        """Return the global weight for ``role``; 0 when unconfigured."""
        pass

    @abstractmethod
    def get_voting_credits(self, principal: str) -> int:
        """Return the quadratic-voting credit balance of ``principal``."""
        pass


@dataclass
class MembershipConfig:
    """Configuration for the membership directory."""

    default_term_blocks: int = 525600
    initial_voting_credits: int = 0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.default_term_blocks <= 0:
            raise ValidationError("Default membership term must be positive")

        if self.initial_voting_credits < 0:
            raise ValidationError("Initial voting credits cannot be negative")


class MembershipDirectory(MembershipProvider):
    """In-memory membership registry administered through an access policy."""

    def __init__(
        self,
        access_policy: AccessPolicy,
        clock: BlockClock,
        config: Optional[MembershipConfig] = None,
        role_weights: Optional[Dict[MemberRole, int]] = None,
    ):
        self.access_policy = access_policy
        self.clock = clock
        self.config = config or MembershipConfig()
        self._records: Dict[str, MembershipRecord] = {}
        self._role_weights: Dict[MemberRole, int] = dict(
            DEFAULT_ROLE_WEIGHTS if role_weights is None else role_weights
        )
        for role, weight in self._role_weights.items():
            self._validate_weight(role, weight)

    # Queries

    def get_record(self, principal: str) -> Optional[MembershipRecord]:
        return self._records.get(principal)

    def is_active_member(self, principal: str, at_block: int) -> bool:
        record = self._records.get(principal)
        if record is None:
            return False
        return record.is_active(at_block)

    def get_role(self, principal: str) -> Optional[MemberRole]:
        record = self._records.get(principal)
        return record.role if record else None

    def get_role_weight(self, role: MemberRole) -> int:
        return self._role_weights.get(role, 0)

    def get_voting_credits(self, principal: str) -> int:
        record = self._records.get(principal)
        return record.voting_credits if record else 0

    @property
    def role_weights(self) -> Dict[MemberRole, int]:
        return dict(self._role_weights)

    def member_count(self, active_only: bool = False) -> int:
        """Count records, optionally only those active at the current block."""
        if not active_only:
            return len(self._records)
        now = self.clock.current_block()
        return sum(1 for record in self._records.values() if record.is_active(now))

    def list_members(self, status: Optional[MembershipStatus] = None) -> List[MembershipRecord]:
        """List records, optionally filtered by status, in application order."""
        return [
            record for record in self._records.values()
            if status is None or record.status == status
        ]

    # Applicant lifecycle

    def apply(self, principal: str, role: MemberRole = MemberRole.PATIENT) -> MembershipRecord:
        """Register an applicant in PENDING status. Rejected applicants may reapply."""
        existing = self._records.get(principal)
        if existing is not None and existing.status != MembershipStatus.REJECTED:
            raise AlreadyExistsError(f"{principal} already has a membership record")

        record = MembershipRecord(
            principal=principal,
            role=role,
            status=MembershipStatus.PENDING,
            applied_at=self.clock.current_block(),
            voting_credits=self.config.initial_voting_credits,
        )
        self._records[principal] = record
        logger.info(f"Membership application from {principal} as {role.value}")
        return record

    def approve(
        self,
        caller: str,
        principal: str,
        role: Optional[MemberRole] = None,
        term_blocks: Optional[int] = None,
    ) -> MembershipRecord:
        """Verify a pending applicant and activate the membership."""
        self.access_policy.require_admin(caller, "approve members")
        record = self._require_record(principal)
        if record.status != MembershipStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Cannot approve membership in status {record.status.value}",
                current_status=record.status.value,
            )
        term = self._validate_term(term_blocks)

        now = self.clock.current_block()
        if role is not None:
            record.role = role
        record.status = MembershipStatus.ACTIVE
        record.joined_at = now
        record.expires_at = now + term
        record.updated_at = time.time()
        logger.info(f"Membership of {principal} approved by {caller} until block {record.expires_at}")
        return record

    def reject(self, caller: str, principal: str) -> MembershipRecord:
        """Reject a pending applicant."""
        self.access_policy.require_admin(caller, "reject members")
        record = self._require_record(principal)
        if record.status != MembershipStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Cannot reject membership in status {record.status.value}",
                current_status=record.status.value,
            )
        record.status = MembershipStatus.REJECTED
        record.updated_at = time.time()
        logger.info(f"Membership of {principal} rejected by {caller}")
        return record

    def assign_role(self, caller: str, principal: str, role: MemberRole) -> MembershipRecord:
        """Change a member's role."""
        self.access_policy.require_admin(caller, "assign roles")
        record = self._require_record(principal)
        record.role = role
        record.updated_at = time.time()
        logger.info(f"Role of {principal} set to {role.value} by {caller}")
        return record

    def deactivate(self, caller: str, principal: str) -> MembershipRecord:
        """Suspend an active membership."""
        self.access_policy.require_admin(caller, "deactivate members")
        record = self._require_record(principal)
        if record.status != MembershipStatus.ACTIVE:
            raise InvalidStateTransitionError(
                f"Cannot deactivate membership in status {record.status.value}",
                current_status=record.status.value,
            )
        record.status = MembershipStatus.INACTIVE
        record.updated_at = time.time()
        logger.info(f"Membership of {principal} deactivated by {caller}")
        return record

    def renew(
        self,
        caller: str,
        principal: str,
        term_blocks: Optional[int] = None,
    ) -> MembershipRecord:
        """Reactivate an active or inactive membership for a fresh term."""
        self.access_policy.require_admin(caller, "renew members")
        record = self._require_record(principal)
        if record.status not in (MembershipStatus.ACTIVE, MembershipStatus.INACTIVE):
            raise InvalidStateTransitionError(
                f"Cannot renew membership in status {record.status.value}",
                current_status=record.status.value,
            )
        term = self._validate_term(term_blocks)

        record.status = MembershipStatus.ACTIVE
        record.expires_at = self.clock.current_block() + term
        record.updated_at = time.time()
        logger.info(f"Membership of {principal} renewed until block {record.expires_at}")
        return record

    def set_voting_credits(self, caller: str, principal: str, credits: int) -> MembershipRecord:
        """Assign the quadratic-voting credit balance, administered out of band."""
        self.access_policy.require_admin(caller, "assign voting credits")
        if credits < 0:
            raise InvalidParameterError(
                "Voting credits cannot be negative", field="credits", value=credits, expected=">= 0"
            )
        record = self._require_record(principal)
        record.voting_credits = credits
        record.updated_at = time.time()
        return record

    def set_role_weight(self, caller: str, role: MemberRole, weight: int) -> None:
        """Set the global weight for ``role``."""
        self.access_policy.require_admin(caller, "set role weights")
        self._validate_weight(role, weight)
        self._role_weights[role] = weight
        logger.info(f"Global weight for {role.value} set to {weight} by {caller}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert directory contents to dictionary."""
        return {
            "members": {p: r.to_dict() for p, r in self._records.items()},
            "role_weights": {role.value: w for role, w in self._role_weights.items()},
        }

    def _require_record(self, principal: str) -> MembershipRecord:
        record = self._records.get(principal)
        if record is None:
            raise NotFoundError(f"No membership record for {principal}")
        return record

    def _validate_term(self, term_blocks: Optional[int]) -> int:
        term = self.config.default_term_blocks if term_blocks is None else term_blocks
        if term <= 0:
            raise InvalidParameterError(
                "Membership term must be positive", field="term_blocks", value=term, expected="> 0"
            )
        return term

    @staticmethod
    def _validate_weight(role: MemberRole, weight: int) -> None:
        if not isinstance(role, MemberRole):
            raise InvalidParameterError("Unknown role", field="role", value=role)
        if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
            raise InvalidParameterError(
                "Role weight must be a non-negative integer",
                field="weight",
                value=weight,
                expected=">= 0",
            )
