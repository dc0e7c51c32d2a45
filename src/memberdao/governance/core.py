"""
Core governance types and data structures.

This module defines the proposal lifecycle, votes, execution parameters,
configuration and the in-memory governance state the engine mutates.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

from ..errors.exceptions import (
    ConfigurationError,
    InvalidMechanismError,
    InvalidParameterError,
    ValidationError,
)
from ..membership.directory import MemberRole

logger = logging.getLogger(__name__)

MAX_SPONSORS = 10
MAX_ROLE_WEIGHT_ENTRIES = 10


class ProposalStatus(Enum):
    """Status of a governance proposal."""

    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    PASSED = "passed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    EXECUTED = "executed"

    def is_terminal(self) -> bool:
        """Terminal statuses accept no votes and no edits."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[ProposalStatus] = frozenset(
    {
        ProposalStatus.PASSED,
        ProposalStatus.FAILED,
        ProposalStatus.EXPIRED,
        ProposalStatus.CANCELLED,
        ProposalStatus.EXECUTED,
    }
)

# Every edge the lifecycle allows. PASSED -> EXECUTED is the only edge out of
# a terminal status.
ALLOWED_TRANSITIONS: Dict[ProposalStatus, FrozenSet[ProposalStatus]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.PENDING, ProposalStatus.CANCELLED}),
    ProposalStatus.PENDING: frozenset({ProposalStatus.ACTIVE, ProposalStatus.CANCELLED}),
    ProposalStatus.ACTIVE: frozenset(
        {
            ProposalStatus.PASSED,
            ProposalStatus.FAILED,
            ProposalStatus.EXPIRED,
            ProposalStatus.CANCELLED,
        }
    ),
    ProposalStatus.PASSED: frozenset({ProposalStatus.EXECUTED}),
    ProposalStatus.FAILED: frozenset(),
    ProposalStatus.EXPIRED: frozenset(),
    ProposalStatus.CANCELLED: frozenset(),
    ProposalStatus.EXECUTED: frozenset(),
}


def is_allowed_transition(from_status: ProposalStatus, to_status: ProposalStatus) -> bool:
    """Check whether the lifecycle has an edge ``from_status -> to_status``."""
    return to_status in ALLOWED_TRANSITIONS[from_status]


class ProposalCategory(Enum):
    """Closed set of proposal categories."""

    GENERAL = "general"
    POLICY = "policy"
    FUNDING = "funding"
    RESEARCH = "research"
    MEMBERSHIP = "membership"
    TECHNICAL = "technical"

    @classmethod
    def parse(cls, value: Any) -> "ProposalCategory":
        """Coerce ``value`` to a category or raise ``InvalidParameterError``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidParameterError(
                f"Unknown proposal category: {value!r}",
                field="category",
                value=value,
                expected=[c.value for c in cls],
            )


class VoteChoice(Enum):
    """Vote choices for governance proposals."""

    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


class VotingMechanism(Enum):
    """How a ballot's base power is computed."""

    SIMPLE_MAJORITY = "simple_majority"
    QUADRATIC = "quadratic"
    ROLE_WEIGHTED = "role_weighted"

    @classmethod
    def parse(cls, value: Any) -> "VotingMechanism":
        """Coerce ``value`` to a mechanism or raise ``InvalidMechanismError``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidMechanismError(
                f"Unknown voting mechanism: {value!r}",
                field="mechanism",
                value=value,
                expected=[m.value for m in cls],
            )


class OutcomeReason(Enum):
    """Why finalization produced the terminal status it did."""

    MAJORITY_FOR = "majority_for"
    MAJORITY_AGAINST = "majority_against"
    TIE = "tie"
    QUORUM_NOT_MET = "quorum_not_met"


@dataclass(frozen=True)
class VotingPower:
    """Power applied to one ballot, split into own and delegated parts."""

    voter: str
    mechanism: VotingMechanism
    own_power: int
    delegated_power: int = 0
    delegators: Tuple[str, ...] = ()

    def __post_init__(self):
        """Validate voting power after initialization."""
        if self.own_power < 0 or self.delegated_power < 0:
            raise ValidationError("Voting power cannot be negative")

    def total_power(self) -> int:
        """Get total voting power including delegations."""
        return self.own_power + self.delegated_power

    def is_delegated(self) -> bool:
        """Check if this voting power includes delegations."""
        return bool(self.delegators)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voter": self.voter,
            "mechanism": self.mechanism.value,
            "own_power": self.own_power,
            "delegated_power": self.delegated_power,
            "delegators": list(self.delegators),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VotingPower":
        return cls(
            voter=data["voter"],
            mechanism=VotingMechanism(data["mechanism"]),
            own_power=data["own_power"],
            delegated_power=data.get("delegated_power", 0),
            delegators=tuple(data.get("delegators", ())),
        )


@dataclass(frozen=True)
class Vote:
    """A cast ballot. Immutable once recorded."""

    proposal_id: int
    voter: str
    choice: VoteChoice
    voting_power: VotingPower
    cast_at: int
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        """Validate vote after initialization."""
        if self.voting_power.total_power() <= 0:
            raise ValidationError("Voting power must be positive")

        if self.voting_power.voter != self.voter:
            raise ValidationError("Voting power belongs to a different voter")

    @property
    def power(self) -> int:
        return self.voting_power.total_power()

    def to_dict(self) -> Dict[str, Any]:
        """Convert vote to dictionary."""
        return {
            "proposal_id": self.proposal_id,
            "voter": self.voter,
            "choice": self.choice.value,
            "voting_power": self.voting_power.to_dict(),
            "cast_at": self.cast_at,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vote":
        """Create vote from dictionary."""
        return cls(
            proposal_id=data["proposal_id"],
            voter=data["voter"],
            choice=VoteChoice(data["choice"]),
            voting_power=VotingPower.from_dict(data["voting_power"]),
            cast_at=data["cast_at"],
            timestamp=data["timestamp"],
        )


@dataclass(frozen=True)
class ExecutionParameters:
    """Payload handed to the treasury when a proposal passes."""

    recipient: str
    amount: int
    memo: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.recipient or not isinstance(self.recipient, str):
            raise InvalidParameterError("Execution parameters need a recipient", field="recipient")

        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise InvalidParameterError(
                "Execution amount must be a positive integer",
                field="amount",
                value=self.amount,
                expected="> 0",
            )

        if not isinstance(self.memo, str):
            raise InvalidParameterError("Execution memo must be a string", field="memo", value=self.memo)

        if not isinstance(self.payload, dict):
            raise InvalidParameterError(
                "Execution payload must be a mapping",
                field="payload",
                value=type(self.payload).__name__,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": self.recipient,
            "amount": self.amount,
            "memo": self.memo,
            "payload": dict(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionParameters":
        payload = data.get("payload", {})
        return cls(
            recipient=data["recipient"],
            amount=data["amount"],
            memo=data.get("memo", ""),
            payload=dict(payload) if isinstance(payload, dict) else payload,
        )


RoleWeightOverrides = Tuple[Tuple[MemberRole, int], ...]


def normalize_role_weights(entries: Any) -> Optional[RoleWeightOverrides]:
    """Validate a per-proposal role-weight table given as a mapping or pairs."""
    if entries is None:
        return None

    pairs = list(entries.items()) if isinstance(entries, dict) else list(entries)
    if len(pairs) > MAX_ROLE_WEIGHT_ENTRIES:
        raise InvalidParameterError(
            f"Role-weight table has at most {MAX_ROLE_WEIGHT_ENTRIES} entries",
            field="role_weights",
            value=len(pairs),
        )

    seen: Set[MemberRole] = set()
    normalized = []
    for role, weight in pairs:
        if not isinstance(role, MemberRole):
            try:
                role = MemberRole(role)
            except ValueError:
                raise InvalidParameterError(f"Unknown role: {role!r}", field="role_weights", value=role)
        if role in seen:
            raise InvalidParameterError(f"Duplicate role {role.value}", field="role_weights", value=role.value)
        if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
            raise InvalidParameterError(
                "Role weight must be a non-negative integer",
                field="role_weights",
                value=weight,
                expected=">= 0",
            )
        seen.add(role)
        normalized.append((role, weight))
    return tuple(normalized)


@dataclass
class Proposal:
    """A governance proposal and its running tallies."""

    proposal_id: int
    proposer: str
    title: str
    description: str = ""
    category: ProposalCategory = ProposalCategory.GENERAL
    status: ProposalStatus = ProposalStatus.DRAFT
    external_link: Optional[str] = None

    # Voting parameters
    mechanism: VotingMechanism = VotingMechanism.SIMPLE_MAJORITY
    start_block: int = 0
    end_block: int = 1
    quorum_requirement: Optional[int] = None
    role_weights: Optional[RoleWeightOverrides] = None

    # Visibility
    is_sensitive: bool = False
    authorized_viewers: List[str] = field(default_factory=list)

    # Execution parameters
    execution_params: Optional[ExecutionParameters] = None

    # Sponsorship, insertion ordered
    sponsors: List[str] = field(default_factory=list)

    # Tallies
    votes_for: int = 0
    votes_against: int = 0
    votes_abstain: int = 0
    total_voting_power_used: int = 0

    # Metadata, in blocks
    created_at: int = 0
    updated_at: int = 0
    activated_at: Optional[int] = None
    finalized_at: Optional[int] = None
    executed_at: Optional[int] = None
    executed_by: Optional[str] = None
    outcome_reason: Optional[OutcomeReason] = None

    def __post_init__(self):
        """Validate proposal after initialization."""
        if not self.proposer:
            raise ValidationError("Proposal must have a proposer", field="proposer")

        if not self.title:
            raise ValidationError("Proposal must have a title", field="title")

        if self.start_block < 0:
            raise InvalidParameterError("Start block cannot be negative", field="start_block")

        if self.end_block <= self.start_block:
            raise InvalidParameterError(
                "Voting window must end after it starts",
                field="end_block",
                value=self.end_block,
                expected=f"> {self.start_block}",
            )

        if self.quorum_requirement is not None and self.quorum_requirement < 0:
            raise InvalidParameterError("Quorum requirement cannot be negative", field="quorum_requirement")

        if len(self.sponsors) > MAX_SPONSORS:
            raise InvalidParameterError(f"At most {MAX_SPONSORS} sponsors", field="sponsors")

        self.role_weights = normalize_role_weights(self.role_weights)

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def participation(self) -> int:
        """Total power cast across all three buckets."""
        return self.votes_for + self.votes_against + self.votes_abstain

    def is_voting_open(self, block_height: int) -> bool:
        """Check whether ``block_height`` lies in ``[start_block, end_block)``."""
        return self.start_block <= block_height < self.end_block

    def override_weight(self, role: MemberRole) -> Optional[int]:
        """Weight for ``role`` from this proposal's table; ``None`` when there is no table."""
        if self.role_weights is None:
            return None
        for entry_role, weight in self.role_weights:
            if entry_role == role:
                return weight
        return 0

    def add_to_tally(self, choice: VoteChoice, power: int) -> None:
        """Add ``power`` to one bucket. Tallies only ever grow."""
        if power <= 0:
            raise ValidationError("Tallied power must be positive")

        if choice == VoteChoice.FOR:
            self.votes_for += power
        elif choice == VoteChoice.AGAINST:
            self.votes_against += power
        else:
            self.votes_abstain += power
        self.total_voting_power_used += power

    def get_vote_summary(self) -> Dict[str, Any]:
        """Get summary of the tallies for this proposal."""
        participation = self.participation()
        return {
            "votes_for": self.votes_for,
            "votes_against": self.votes_against,
            "votes_abstain": self.votes_abstain,
            "participation": participation,
            "total_voting_power_used": self.total_voting_power_used,
            "quorum_requirement": self.quorum_requirement,
            "quorum_met": (
                self.quorum_requirement is not None
                and participation >= self.quorum_requirement
            ),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert proposal to dictionary."""
        return {
            "proposal_id": self.proposal_id,
            "proposer": self.proposer,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "external_link": self.external_link,
            "mechanism": self.mechanism.value,
            "start_block": self.start_block,
            "end_block": self.end_block,
            "quorum_requirement": self.quorum_requirement,
            "role_weights": (
                [[role.value, weight] for role, weight in self.role_weights]
                if self.role_weights is not None
                else None
            ),
            "is_sensitive": self.is_sensitive,
            "authorized_viewers": list(self.authorized_viewers),
            "execution_params": (
                self.execution_params.to_dict() if self.execution_params else None
            ),
            "sponsors": list(self.sponsors),
            "votes_for": self.votes_for,
            "votes_against": self.votes_against,
            "votes_abstain": self.votes_abstain,
            "total_voting_power_used": self.total_voting_power_used,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "activated_at": self.activated_at,
            "finalized_at": self.finalized_at,
            "executed_at": self.executed_at,
            "executed_by": self.executed_by,
            "outcome_reason": self.outcome_reason.value if self.outcome_reason else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proposal":
        """Create proposal from dictionary."""
        execution_params = data.get("execution_params")
        outcome_reason = data.get("outcome_reason")
        return cls(
            proposal_id=data["proposal_id"],
            proposer=data["proposer"],
            title=data["title"],
            description=data.get("description", ""),
            category=ProposalCategory(data["category"]),
            status=ProposalStatus(data["status"]),
            external_link=data.get("external_link"),
            mechanism=VotingMechanism(data["mechanism"]),
            start_block=data["start_block"],
            end_block=data["end_block"],
            quorum_requirement=data.get("quorum_requirement"),
            role_weights=data.get("role_weights"),
            is_sensitive=data.get("is_sensitive", False),
            authorized_viewers=list(data.get("authorized_viewers", [])),
            execution_params=(
                ExecutionParameters.from_dict(execution_params) if execution_params else None
            ),
            sponsors=list(data.get("sponsors", [])),
            votes_for=data.get("votes_for", 0),
            votes_against=data.get("votes_against", 0),
            votes_abstain=data.get("votes_abstain", 0),
            total_voting_power_used=data.get("total_voting_power_used", 0),
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
            activated_at=data.get("activated_at"),
            finalized_at=data.get("finalized_at"),
            executed_at=data.get("executed_at"),
            executed_by=data.get("executed_by"),
            outcome_reason=OutcomeReason(outcome_reason) if outcome_reason else None,
        )


@dataclass
class GovernanceConfig:
    """Configuration for the governance system."""

    # Voting parameters
    default_quorum_requirement: int = 1
    default_voting_period: int = 100  # blocks
    expire_on_quorum_failure: bool = False

    # Sponsorship
    min_sponsors: int = 1

    # Proposal content limits
    min_title_length: int = 3
    max_title_length: int = 200
    max_description_length: int = 10000

    # Delegation parameters
    max_delegation_hops: int = 10

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.validate()

    def validate(self) -> None:
        """Validate configuration."""
        if self.default_quorum_requirement < 0:
            raise ConfigurationError(
                "Default quorum requirement cannot be negative",
                config_key="default_quorum_requirement",
                config_value=self.default_quorum_requirement,
            )

        if self.default_voting_period <= 0:
            raise ConfigurationError(
                "Default voting period must be positive",
                config_key="default_voting_period",
                config_value=self.default_voting_period,
            )

        if not 1 <= self.min_sponsors <= MAX_SPONSORS:
            raise ConfigurationError(
                f"Minimum sponsors must be between 1 and {MAX_SPONSORS}",
                config_key="min_sponsors",
                config_value=self.min_sponsors,
            )

        if self.min_title_length < 1 or self.max_title_length < self.min_title_length:
            raise ConfigurationError(
                "Title length bounds are inconsistent",
                config_key="max_title_length",
                config_value=self.max_title_length,
            )

        if self.max_description_length < 0:
            raise ConfigurationError(
                "Maximum description length cannot be negative",
                config_key="max_description_length",
                config_value=self.max_description_length,
            )

        if self.max_delegation_hops <= 0:
            raise ConfigurationError(
                "Max delegation hops must be positive",
                config_key="max_delegation_hops",
                config_value=self.max_delegation_hops,
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernanceConfig":
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown governance config keys: {', '.join(unknown)}",
                config_key=unknown[0],
            )
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


class ProposalSequence:
    """Allocates proposal IDs. IDs start at 1 and are never reused."""

    def __init__(self, last_id: int = 0):
        if last_id < 0:
            raise ValidationError("Sequence cannot start below zero")
        self._last_id = last_id

    @property
    def last_id(self) -> int:
        return self._last_id

    def peek(self) -> int:
        """The ID the next call to ``next_id`` will return."""
        return self._last_id + 1

    def next_id(self) -> int:
        self._last_id += 1
        return self._last_id


@dataclass
class GovernanceState:
    """Current state of the governance system."""

    proposals: Dict[int, Proposal] = field(default_factory=dict)
    votes: Dict[Tuple[int, str], Vote] = field(default_factory=dict)
    sequence: ProposalSequence = field(default_factory=ProposalSequence)

    # proposal_id -> principals whose power is already inside some ballot
    counted_principals: Dict[int, Set[str]] = field(default_factory=dict)

    def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        """Get a proposal by ID."""
        return self.proposals.get(proposal_id)

    def add_proposal(self, proposal: Proposal) -> None:
        """Add a proposal to the state."""
        if proposal.proposal_id in self.proposals:
            raise ValidationError(f"Proposal {proposal.proposal_id} already exists")
        self.proposals[proposal.proposal_id] = proposal

    def get_vote(self, proposal_id: int, voter: str) -> Optional[Vote]:
        return self.votes.get((proposal_id, voter))

    def get_votes(self, proposal_id: int) -> List[Vote]:
        """Votes for a proposal in cast order."""
        return [vote for (pid, _), vote in self.votes.items() if pid == proposal_id]

    def is_counted(self, proposal_id: int, principal: str) -> bool:
        """Whether ``principal``'s power already sits inside a ballot on this proposal."""
        return principal in self.counted_principals.get(proposal_id, set())

    def record_vote(self, vote: Vote) -> None:
        """Insert a vote and mark the voter and its folded-in delegators as counted."""
        key = (vote.proposal_id, vote.voter)
        if key in self.votes:
            raise ValidationError("Vote already recorded")
        self.votes[key] = vote
        counted = self.counted_principals.setdefault(vote.proposal_id, set())
        counted.add(vote.voter)
        counted.update(vote.voting_power.delegators)
