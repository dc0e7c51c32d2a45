"""
Governance engine.

Owns the proposal lifecycle and the tally accumulators. Every public
operation runs all of its guards before touching state, so a raised error
always leaves proposals, votes and delegations exactly as they were.
"""

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Union

from ..access import AccessPolicy
from ..clock import BlockClock
from ..errors.exceptions import (
    AlreadyExistsError,
    AlreadySponsoredError,
    AlreadyVotedError,
    InvalidParameterError,
    InvalidStateTransitionError,
    NotAuthorizedError,
    NotFoundError,
    ProposalNotActiveError,
    VotingClosedError,
)
from ..membership.directory import MemberRole, MembershipProvider
from .core import (
    MAX_SPONSORS,
    ExecutionParameters,
    GovernanceConfig,
    GovernanceState,
    Proposal,
    ProposalCategory,
    ProposalStatus,
    Vote,
    VoteChoice,
    VotingMechanism,
    VotingPower,
    is_allowed_transition,
)
from .delegation import Delegation, DelegationGraph
from .observability import EventType, GovernanceEvents
from .quorum import OutcomeEvaluator, ProposalOutcome
from .resolver import VotingPowerResolver
from .treasury import TreasuryAction, TreasuryOutbox

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "external_link",
        "mechanism",
        "start_block",
        "end_block",
        "quorum_requirement",
        "role_weights",
        "is_sensitive",
        "execution_params",
    }
)


class GovernanceEngine:
    """Proposal state machine and voting engine."""

    def __init__(
        self,
        membership: MembershipProvider,
        access_policy: AccessPolicy,
        clock: BlockClock,
        config: Optional[GovernanceConfig] = None,
        events: Optional[GovernanceEvents] = None,
        treasury: Optional[TreasuryOutbox] = None,
    ):
        """Initialize governance engine."""
        self.config = config or GovernanceConfig()
        self.config.validate()
        self.membership = membership
        self.access_policy = access_policy
        self.clock = clock
        self.state = GovernanceState()
        self.delegations = DelegationGraph(self.config)
        self.resolver = VotingPowerResolver(self.state, membership, self.delegations, clock)
        self.evaluator = OutcomeEvaluator(self.config.expire_on_quorum_failure)
        self.events = events or GovernanceEvents()
        self.treasury = treasury or TreasuryOutbox()
        self.outcomes: Dict[int, ProposalOutcome] = {}

    # Proposal authoring

    def create_proposal(
        self,
        proposer: str,
        title: str,
        description: str = "",
        category: Union[ProposalCategory, str] = ProposalCategory.GENERAL,
        mechanism: Union[VotingMechanism, str] = VotingMechanism.SIMPLE_MAJORITY,
        start_block: Optional[int] = None,
        end_block: Optional[int] = None,
        quorum_requirement: Optional[int] = None,
        role_weights: Any = None,
        external_link: Optional[str] = None,
        is_sensitive: bool = False,
        execution_params: Union[ExecutionParameters, Dict[str, Any], None] = None,
    ) -> Proposal:
        """Create a new proposal in DRAFT status."""
        now = self.clock.current_block()
        self.resolver.require_active_member(proposer, now)
        self._validate_text(title, description)

        start = now if start_block is None else start_block
        end = start + self.config.default_voting_period if end_block is None else end_block
        self._validate_window_not_closed(end, now)

        proposal = Proposal(
            proposal_id=self.state.sequence.peek(),
            proposer=proposer,
            title=title,
            description=description,
            category=ProposalCategory.parse(category),
            mechanism=VotingMechanism.parse(mechanism),
            start_block=start,
            end_block=end,
            quorum_requirement=quorum_requirement,
            role_weights=role_weights,
            external_link=external_link,
            is_sensitive=is_sensitive,
            execution_params=self._coerce_execution_params(execution_params),
            created_at=now,
            updated_at=now,
        )
        self.state.sequence.next_id()
        self.state.add_proposal(proposal)

        logger.info(f"Proposal {proposal.proposal_id} created by {proposer}: {title}")
        self.events.emit_event(
            EventType.PROPOSAL_CREATED,
            now,
            proposal_id=proposal.proposal_id,
            principal=proposer,
            metadata={
                "category": proposal.category.value,
                "mechanism": proposal.mechanism.value,
                "start_block": proposal.start_block,
                "end_block": proposal.end_block,
            },
        )
        return proposal

    def update_proposal(self, proposal_id: int, caller: str, **changes: Any) -> Proposal:
        """Edit a DRAFT proposal. Only the proposer may edit."""
        proposal = self._require_draft_owner(proposal_id, caller, "edit")

        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise InvalidParameterError(
                f"Fields cannot be edited: {', '.join(unknown)}",
                field=unknown[0],
            )
        if not changes:
            return proposal

        now = self.clock.current_block()
        normalized = dict(changes)
        if "category" in normalized:
            normalized["category"] = ProposalCategory.parse(normalized["category"])
        if "mechanism" in normalized:
            normalized["mechanism"] = VotingMechanism.parse(normalized["mechanism"])
        if "execution_params" in normalized:
            normalized["execution_params"] = self._coerce_execution_params(normalized["execution_params"])
        self._validate_text(
            normalized.get("title", proposal.title),
            normalized.get("description", proposal.description),
        )

        # Validate the edited proposal as a whole before touching the stored one
        candidate = dataclasses.replace(proposal, **normalized)
        self._validate_window_not_closed(candidate.end_block, now)

        for name in normalized:
            setattr(proposal, name, getattr(candidate, name))
        proposal.updated_at = now

        logger.info(f"Proposal {proposal_id} updated by {caller}: {sorted(normalized)}")
        self.events.emit_event(
            EventType.PROPOSAL_UPDATED,
            now,
            proposal_id=proposal_id,
            principal=caller,
            metadata={"fields": sorted(normalized)},
        )
        return proposal

    def authorize_viewer(self, proposal_id: int, caller: str, viewer: str) -> Proposal:
        """Grant ``viewer`` access to a sensitive DRAFT proposal."""
        proposal = self._require_draft_owner(proposal_id, caller, "authorize viewers")
        if viewer in proposal.authorized_viewers:
            raise AlreadyExistsError(
                f"{viewer} is already authorized on proposal {proposal_id}",
                proposal_id=proposal_id,
            )

        now = self.clock.current_block()
        proposal.authorized_viewers.append(viewer)
        proposal.updated_at = now
        self.events.emit_event(
            EventType.VIEWER_AUTHORIZED,
            now,
            proposal_id=proposal_id,
            principal=caller,
            metadata={"viewer": viewer},
        )
        return proposal

    def revoke_viewer(self, proposal_id: int, caller: str, viewer: str) -> Proposal:
        """Withdraw a viewer's access to a DRAFT proposal."""
        proposal = self._require_draft_owner(proposal_id, caller, "revoke viewers")
        if viewer not in proposal.authorized_viewers:
            raise NotFoundError(
                f"{viewer} is not authorized on proposal {proposal_id}",
                proposal_id=proposal_id,
            )

        now = self.clock.current_block()
        proposal.authorized_viewers.remove(viewer)
        proposal.updated_at = now
        self.events.emit_event(
            EventType.VIEWER_REVOKED,
            now,
            proposal_id=proposal_id,
            principal=caller,
            metadata={"viewer": viewer},
        )
        return proposal

    def can_view(self, proposal_id: int, principal: str) -> bool:
        """Sensitive proposals are visible to the proposer, authorized viewers and admins."""
        proposal = self._require_proposal(proposal_id)
        if not proposal.is_sensitive:
            return True
        return (
            principal == proposal.proposer
            or principal in proposal.authorized_viewers
            or self.access_policy.is_admin(principal)
        )

    # Lifecycle

    def submit_proposal(self, proposal_id: int, caller: str) -> Proposal:
        """DRAFT -> PENDING."""
        proposal = self._require_draft_owner(proposal_id, caller, "submit")
        ProposalCategory.parse(proposal.category)

        now = self.clock.current_block()
        self._transition(proposal, ProposalStatus.PENDING, now)
        self.events.emit_event(
            EventType.PROPOSAL_SUBMITTED,
            now,
            proposal_id=proposal_id,
            principal=caller,
        )
        return proposal

    def sponsor_proposal(self, proposal_id: int, sponsor: str) -> Proposal:
        """Endorse a PENDING or ACTIVE proposal.

        Reaching ``min_sponsors`` moves a PENDING proposal to ACTIVE and fixes
        its quorum requirement.
        """
        proposal = self._require_proposal(proposal_id)
        if proposal.status not in (ProposalStatus.PENDING, ProposalStatus.ACTIVE):
            raise InvalidStateTransitionError(
                f"Cannot sponsor proposal {proposal_id} in status {proposal.status.value}",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )
        if sponsor == proposal.proposer:
            raise NotAuthorizedError(
                "Proposer cannot sponsor their own proposal",
                principal=sponsor,
                proposal_id=proposal_id,
            )

        now = self.clock.current_block()
        self.resolver.require_active_member(sponsor, now)
        if sponsor in proposal.sponsors:
            raise AlreadySponsoredError(
                f"{sponsor} already sponsors proposal {proposal_id}",
                proposal_id=proposal_id,
            )
        if len(proposal.sponsors) >= MAX_SPONSORS:
            raise InvalidParameterError(
                f"Proposal {proposal_id} already has {MAX_SPONSORS} sponsors",
                field="sponsors",
                value=len(proposal.sponsors),
            )
        if now >= proposal.end_block:
            raise VotingClosedError(
                f"Voting window of proposal {proposal_id} has ended",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )

        proposal.sponsors.append(sponsor)
        proposal.updated_at = now
        self.events.emit_event(
            EventType.PROPOSAL_SPONSORED,
            now,
            proposal_id=proposal_id,
            principal=sponsor,
            metadata={"sponsor_count": len(proposal.sponsors)},
        )

        if (
            proposal.status == ProposalStatus.PENDING
            and len(proposal.sponsors) >= self.config.min_sponsors
        ):
            self._activate(proposal, now)
        return proposal

    def cancel_proposal(self, proposal_id: int, caller: str) -> Proposal:
        """Withdraw a non-terminal proposal. Only the proposer may cancel."""
        proposal = self._require_proposal(proposal_id)
        if proposal.is_terminal():
            raise InvalidStateTransitionError(
                f"Proposal {proposal_id} is already {proposal.status.value}",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )
        if caller != proposal.proposer:
            raise NotAuthorizedError(
                f"Only the proposer can cancel proposal {proposal_id}",
                principal=caller,
                proposal_id=proposal_id,
            )

        now = self.clock.current_block()
        self._transition(proposal, ProposalStatus.CANCELLED, now)
        self.events.emit_event(
            EventType.PROPOSAL_CANCELLED,
            now,
            proposal_id=proposal_id,
            principal=caller,
        )
        return proposal

    def cast_vote(
        self,
        proposal_id: int,
        voter: str,
        choice: Union[VoteChoice, str],
    ) -> Vote:
        """Record ``voter``'s ballot and add its power to one tally bucket."""
        proposal = self._require_proposal(proposal_id)
        choice = self._parse_choice(choice)
        if proposal.status != ProposalStatus.ACTIVE:
            raise ProposalNotActiveError(
                f"Proposal {proposal_id} is not active",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )

        now = self.clock.current_block()
        if not proposal.is_voting_open(now):
            raise VotingClosedError(
                f"Block {now} is outside the voting window "
                f"[{proposal.start_block}, {proposal.end_block}) of proposal {proposal_id}",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )
        if self.state.get_vote(proposal_id, voter) is not None:
            raise AlreadyVotedError(
                f"{voter} already voted on proposal {proposal_id}",
                proposal_id=proposal_id,
            )
        if self.state.is_counted(proposal_id, voter):
            raise AlreadyVotedError(
                f"Power of {voter} was already cast by its delegate on proposal {proposal_id}",
                proposal_id=proposal_id,
            )
        if self.delegations.has_delegated(voter):
            raise NotAuthorizedError(
                f"{voter} has delegated to {self.delegations.get_delegate(voter)} and cannot vote directly",
                error_code="VOTE_DELEGATED",
                principal=voter,
                proposal_id=proposal_id,
            )

        voting_power = self.resolver.resolve_power(voter, proposal_id)
        if voting_power.total_power() <= 0:
            raise InvalidParameterError(
                f"{voter} has no voting power on proposal {proposal_id}",
                field="voting_power",
                value=0,
                expected="> 0",
            )

        vote = Vote(
            proposal_id=proposal_id,
            voter=voter,
            choice=choice,
            voting_power=voting_power,
            cast_at=now,
        )
        self.state.record_vote(vote)
        proposal.add_to_tally(choice, vote.power)
        proposal.updated_at = now

        logger.debug(f"Vote on proposal {proposal_id} by {voter}: {choice.value} x{vote.power}")
        self.events.emit_event(
            EventType.VOTE_CAST,
            now,
            proposal_id=proposal_id,
            principal=voter,
            metadata={
                "choice": choice.value,
                "power": vote.power,
                "delegators": list(voting_power.delegators),
            },
        )
        return vote

    def finalize_proposal(self, proposal_id: int, caller: Optional[str] = None) -> ProposalOutcome:
        """Decide an ACTIVE proposal whose voting window has ended. Anyone may call."""
        proposal = self._require_proposal(proposal_id)
        if proposal.status != ProposalStatus.ACTIVE:
            raise ProposalNotActiveError(
                f"Proposal {proposal_id} is not active",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )

        now = self.clock.current_block()
        if now < proposal.end_block:
            raise InvalidStateTransitionError(
                f"Voting on proposal {proposal_id} is open until block {proposal.end_block}",
                error_code="VOTING_STILL_OPEN",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )

        outcome = self.evaluator.evaluate(proposal)
        action = (
            TreasuryAction.from_proposal(proposal, now)
            if outcome.status == ProposalStatus.PASSED
            else None
        )

        self._transition(proposal, outcome.status, now)
        proposal.finalized_at = now
        proposal.outcome_reason = outcome.reason
        self.outcomes[proposal_id] = outcome

        self.events.emit_event(
            EventType.PROPOSAL_FINALIZED,
            now,
            proposal_id=proposal_id,
            principal=caller,
            metadata=outcome.to_dict(),
        )
        if action is not None:
            self.treasury.publish(action)
        return outcome

    def execute_proposal(self, proposal_id: int, caller: str) -> Proposal:
        """PASSED -> EXECUTED, by the proposer or an authorized executor."""
        proposal = self._require_proposal(proposal_id)
        if proposal.status != ProposalStatus.PASSED:
            raise InvalidStateTransitionError(
                f"Cannot execute proposal {proposal_id} in status {proposal.status.value}",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )
        if caller != proposal.proposer and not self.access_policy.is_executor(caller):
            raise NotAuthorizedError(
                f"{caller} is not authorized to execute proposal {proposal_id}",
                principal=caller,
                proposal_id=proposal_id,
            )

        now = self.clock.current_block()
        self._transition(proposal, ProposalStatus.EXECUTED, now)
        proposal.executed_at = now
        proposal.executed_by = caller
        self.events.emit_event(
            EventType.PROPOSAL_EXECUTED,
            now,
            proposal_id=proposal_id,
            principal=caller,
        )
        return proposal

    # Delegation

    def set_delegation(self, delegator: str, delegate: str) -> Delegation:
        """Delegate ``delegator``'s voting power to ``delegate`` (one hop)."""
        now = self.clock.current_block()
        self.resolver.require_active_member(delegator, now)
        self.resolver.require_active_member(delegate, now)

        delegation = self.delegations.set_delegation(delegator, delegate, now)
        self.events.emit_event(
            EventType.DELEGATION_SET,
            now,
            principal=delegator,
            metadata={"delegate": delegate},
        )
        return delegation

    def remove_delegation(self, delegator: str) -> bool:
        """Remove ``delegator``'s delegation. Always succeeds."""
        previous = self.delegations.get_delegate(delegator)
        removed = self.delegations.remove_delegation(delegator)
        if removed:
            self.events.emit_event(
                EventType.DELEGATION_REMOVED,
                self.clock.current_block(),
                principal=delegator,
                metadata={"delegate": previous},
            )
        return removed

    # Queries

    def resolve_power(self, principal: str, proposal_id: int) -> VotingPower:
        """Power ``principal`` would apply to ``proposal_id`` right now."""
        return self.resolver.resolve_power(principal, proposal_id)

    def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        """Get a proposal by ID."""
        return self.state.get_proposal(proposal_id)

    def list_proposals(self, status: Optional[ProposalStatus] = None) -> List[Proposal]:
        """Proposals in ID order, optionally filtered by status."""
        return [
            self.state.proposals[pid]
            for pid in sorted(self.state.proposals)
            if status is None or self.state.proposals[pid].status == status
        ]

    def get_vote(self, proposal_id: int, voter: str) -> Optional[Vote]:
        return self.state.get_vote(proposal_id, voter)

    def get_votes(self, proposal_id: int) -> List[Vote]:
        self._require_proposal(proposal_id)
        return self.state.get_votes(proposal_id)

    def get_outcome(self, proposal_id: int) -> Optional[ProposalOutcome]:
        return self.outcomes.get(proposal_id)

    def snapshot(self) -> Dict[str, Any]:
        """Plain-data view of the persisted state, keyed as a storage backend would store it."""
        votes: Dict[int, Dict[str, Dict[str, Any]]] = {}
        for (pid, voter), vote in self.state.votes.items():
            votes.setdefault(pid, {})[voter] = vote.to_dict()

        return {
            "proposals": {
                pid: proposal.to_dict() for pid, proposal in self.state.proposals.items()
            },
            "votes": votes,
            "delegations": self.delegations.to_dict(),
            "role_weights": {
                role.value: self.membership.get_role_weight(role) for role in MemberRole
            },
            "last_proposal_id": self.state.sequence.last_id,
        }

    # Internals

    def _require_proposal(self, proposal_id: int) -> Proposal:
        proposal = self.state.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError(f"Proposal {proposal_id} not found", proposal_id=proposal_id)
        return proposal

    def _require_draft_owner(self, proposal_id: int, caller: str, operation: str) -> Proposal:
        proposal = self._require_proposal(proposal_id)
        if proposal.status != ProposalStatus.DRAFT:
            raise InvalidStateTransitionError(
                f"Cannot {operation} proposal {proposal_id} in status {proposal.status.value}",
                current_status=proposal.status.value,
                proposal_id=proposal_id,
            )
        if caller != proposal.proposer:
            raise NotAuthorizedError(
                f"Only the proposer can {operation} proposal {proposal_id}",
                principal=caller,
                proposal_id=proposal_id,
            )
        return proposal

    def _activate(self, proposal: Proposal, now: int) -> None:
        if proposal.quorum_requirement is None:
            proposal.quorum_requirement = self.config.default_quorum_requirement
        self._transition(proposal, ProposalStatus.ACTIVE, now)
        proposal.activated_at = now
        self.events.emit_event(
            EventType.PROPOSAL_ACTIVATED,
            now,
            proposal_id=proposal.proposal_id,
            metadata={
                "quorum_requirement": proposal.quorum_requirement,
                "sponsors": list(proposal.sponsors),
            },
        )

    def _transition(self, proposal: Proposal, to_status: ProposalStatus, now: int) -> None:
        if not is_allowed_transition(proposal.status, to_status):
            raise InvalidStateTransitionError(
                f"Illegal transition {proposal.status.value} -> {to_status.value}",
                current_status=proposal.status.value,
                proposal_id=proposal.proposal_id,
            )
        logger.info(
            f"Proposal {proposal.proposal_id}: {proposal.status.value} -> {to_status.value}"
        )
        proposal.status = to_status
        proposal.updated_at = now

    def _validate_text(self, title: str, description: str) -> None:
        if not isinstance(title, str):
            raise InvalidParameterError("Title must be a string", field="title", value=title)
        if not isinstance(description, str):
            raise InvalidParameterError("Description must be a string", field="description", value=description)
        if not title or len(title) < self.config.min_title_length:
            raise InvalidParameterError(
                f"Title must be at least {self.config.min_title_length} characters",
                field="title",
            )
        if len(title) > self.config.max_title_length:
            raise InvalidParameterError(
                f"Title must be at most {self.config.max_title_length} characters",
                field="title",
            )
        if len(description) > self.config.max_description_length:
            raise InvalidParameterError(
                f"Description must be at most {self.config.max_description_length} characters",
                field="description",
            )

    @staticmethod
    def _validate_window_not_closed(end_block: int, now: int) -> None:
        if end_block <= now:
            raise InvalidParameterError(
                f"Voting window must end after the current block {now}",
                field="end_block",
                value=end_block,
                expected=f"> {now}",
            )

    @staticmethod
    def _coerce_execution_params(
        value: Union[ExecutionParameters, Dict[str, Any], None]
    ) -> Optional[ExecutionParameters]:
        if value is None or isinstance(value, ExecutionParameters):
            return value
        if isinstance(value, dict):
            try:
                return ExecutionParameters.from_dict(value)
            except KeyError as e:
                raise InvalidParameterError(
                    f"Execution parameters missing {e}",
                    field="execution_params",
                )
        raise InvalidParameterError(
            "Execution parameters must be a mapping or ExecutionParameters",
            field="execution_params",
            value=type(value).__name__,
        )

    @staticmethod
    def _parse_choice(choice: Union[VoteChoice, str]) -> VoteChoice:
        if isinstance(choice, VoteChoice):
            return choice
        try:
            return VoteChoice(choice)
        except ValueError:
            raise InvalidParameterError(
                f"Unknown vote choice: {choice!r}",
                field="choice",
                value=choice,
                expected=[c.value for c in VoteChoice],
            )
