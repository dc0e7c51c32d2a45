"""
Unit tests for the governance engine.

This module tests the proposal lifecycle, sponsorship, voting, finalization,
execution and delegation as driven through ``GovernanceEngine``.
"""

import logging

logger = logging.getLogger(__name__)
import pytest

from memberdao.errors.exceptions import (
    AlreadyExistsError,
    AlreadySponsoredError,
    AlreadyVotedError,
    DelegationCycleError,
    InvalidMechanismError,
    InvalidParameterError,
    InvalidStateTransitionError,
    MemberDaoError,
    NotAMemberError,
    NotAuthorizedError,
    NotFoundError,
    ProposalNotActiveError,
    VotingClosedError,
)
from memberdao.governance.core import (
    MAX_SPONSORS,
    ExecutionParameters,
    GovernanceConfig,
    OutcomeReason,
    ProposalCategory,
    ProposalStatus,
    VoteChoice,
    VotingMechanism,
)
from memberdao.governance.engine import GovernanceEngine
from memberdao.governance.observability import EventType
from memberdao.membership.directory import MemberRole


class TestProposalCreation:
    """Test creating proposals."""

    def test_create_proposal(self, engine):
        """Test creating a proposal in DRAFT."""
        proposal = engine.create_proposal(
            proposer="alice",
            title="Extend clinic hours",
            description="Open until 9pm on weekdays",
            category="policy",
        )

        assert proposal.proposal_id == 1
        assert proposal.status == ProposalStatus.DRAFT
        assert proposal.category == ProposalCategory.POLICY
        assert proposal.mechanism == VotingMechanism.SIMPLE_MAJORITY
        assert (proposal.start_block, proposal.end_block) == (100, 150)
        assert proposal.created_at == 100
        assert proposal.quorum_requirement is None
        assert engine.get_proposal(1) is proposal

    def test_ids_are_sequential(self, engine):
        ids = [engine.create_proposal("alice", f"Proposal {i}").proposal_id for i in range(3)]
        assert ids == [1, 2, 3]

    def test_failed_create_does_not_consume_id(self, engine):
        with pytest.raises(InvalidParameterError):
            engine.create_proposal("alice", "ab")

        assert engine.create_proposal("alice", "Valid title").proposal_id == 1

    def test_non_member_cannot_create(self, engine):
        with pytest.raises(NotAMemberError):
            engine.create_proposal("ghost", "Free lunches")

    def test_inactive_member_cannot_create(self, engine, directory):
        directory.deactivate("admin", "alice")
        with pytest.raises(NotAMemberError):
            engine.create_proposal("alice", "Free lunches")

    def test_window_must_not_be_closed(self, engine):
        with pytest.raises(InvalidParameterError):
            engine.create_proposal("alice", "Retroactive vote", start_block=10, end_block=100)

    def test_invalid_category(self, engine):
        with pytest.raises(InvalidParameterError):
            engine.create_proposal("alice", "Odd one", category="lottery")

    def test_invalid_mechanism(self, engine):
        with pytest.raises(InvalidMechanismError):
            engine.create_proposal("alice", "Odd one", mechanism="conviction")
        assert engine.list_proposals() == []

    def test_execution_params_from_mapping(self, engine):
        proposal = engine.create_proposal(
            "alice",
            "Buy an ultrasound",
            category=ProposalCategory.FUNDING,
            execution_params={"recipient": "imaging-vendor", "amount": 12000},
        )
        assert proposal.execution_params == ExecutionParameters(recipient="imaging-vendor", amount=12000)

    def test_execution_params_missing_field(self, engine):
        with pytest.raises(InvalidParameterError):
            engine.create_proposal("alice", "Buy an ultrasound", execution_params={"amount": 5})

    @pytest.mark.parametrize(
        "params",
        [
            {"recipient": "imaging-vendor", "amount": 5, "payload": 7},
            {"recipient": "imaging-vendor", "amount": 5, "payload": ["units", 2]},
            {"recipient": "imaging-vendor", "amount": True},
            {"recipient": 42, "amount": 5},
        ],
    )
    def test_malformed_execution_params(self, engine, params):
        with pytest.raises(InvalidParameterError):
            engine.create_proposal("alice", "Buy an ultrasound", execution_params=params)
        assert engine.list_proposals() == []

    @pytest.mark.parametrize("title", [None, 12345])
    def test_non_string_title(self, engine, title):
        with pytest.raises(InvalidParameterError):
            engine.create_proposal("alice", title)
        assert engine.list_proposals() == []

    def test_creation_is_audited(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")

        events = engine.events.audit_trail.get_proposal_events(proposal.proposal_id)

        assert [e.event_type for e in events] == [EventType.PROPOSAL_CREATED]
        assert events[0].principal == "alice"


class TestProposalEditing:
    """Test editing and visibility of DRAFT proposals."""

    def test_update_draft(self, engine, clock):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        clock.advance(5)

        engine.update_proposal(
            proposal.proposal_id,
            "alice",
            title="Extend weekend hours",
            mechanism="quadratic",
            quorum_requirement=3,
        )

        assert proposal.title == "Extend weekend hours"
        assert proposal.mechanism == VotingMechanism.QUADRATIC
        assert proposal.quorum_requirement == 3
        assert proposal.updated_at == 105

    def test_only_proposer_edits(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        with pytest.raises(NotAuthorizedError):
            engine.update_proposal(proposal.proposal_id, "bob", title="Hijacked")
        assert proposal.title == "Extend clinic hours"

    def test_cannot_edit_after_submission(self, engine, open_proposal):
        proposal = open_proposal()
        with pytest.raises(InvalidStateTransitionError):
            engine.update_proposal(proposal.proposal_id, "alice", title="Too late")

    def test_cannot_edit_terminal(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.cancel_proposal(proposal.proposal_id, "alice")
        with pytest.raises(InvalidStateTransitionError):
            engine.update_proposal(proposal.proposal_id, "alice", title="Too late")

    def test_unknown_field(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        with pytest.raises(InvalidParameterError):
            engine.update_proposal(proposal.proposal_id, "alice", status="active")
        assert proposal.status == ProposalStatus.DRAFT

    def test_invalid_edit_leaves_proposal_unchanged(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        before = proposal.to_dict()

        with pytest.raises(InvalidParameterError):
            engine.update_proposal(proposal.proposal_id, "alice", title="New title", end_block=50)

        assert proposal.to_dict() == before

    @pytest.mark.parametrize(
        "changes",
        [
            {"description": None},
            {"title": None},
            {"execution_params": {"recipient": "lab", "amount": 5, "payload": 7}},
        ],
    )
    def test_malformed_edit_is_rejected(self, engine, changes):
        proposal = engine.create_proposal("alice", "Extend clinic hours", description="Weekdays")
        before = proposal.to_dict()

        with pytest.raises(InvalidParameterError):
            engine.update_proposal(proposal.proposal_id, "alice", **changes)

        assert proposal.to_dict() == before

    def test_sensitive_visibility(self, engine):
        proposal = engine.create_proposal("alice", "Staff complaint", is_sensitive=True)
        pid = proposal.proposal_id

        assert engine.can_view(pid, "alice")
        assert engine.can_view(pid, "admin")
        assert not engine.can_view(pid, "bob")

        engine.authorize_viewer(pid, "alice", "bob")
        assert engine.can_view(pid, "bob")
        with pytest.raises(AlreadyExistsError):
            engine.authorize_viewer(pid, "alice", "bob")

        engine.revoke_viewer(pid, "alice", "bob")
        assert not engine.can_view(pid, "bob")
        with pytest.raises(NotFoundError):
            engine.revoke_viewer(pid, "alice", "bob")

    def test_public_proposal_visible_to_all(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        assert engine.can_view(proposal.proposal_id, "anyone")


class TestSubmissionAndSponsorship:
    """Test DRAFT -> PENDING -> ACTIVE."""

    def test_submit(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")
        assert proposal.status == ProposalStatus.PENDING

    def test_only_proposer_submits(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        with pytest.raises(NotAuthorizedError):
            engine.submit_proposal(proposal.proposal_id, "bob")
        assert proposal.status == ProposalStatus.DRAFT

    def test_submit_twice(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")
        with pytest.raises(InvalidStateTransitionError):
            engine.submit_proposal(proposal.proposal_id, "alice")

    def test_submit_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.submit_proposal(42, "alice")

    def test_sponsor_activates_and_fixes_quorum(self, engine, governance_config):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")

        engine.sponsor_proposal(proposal.proposal_id, "bob")

        assert proposal.status == ProposalStatus.ACTIVE
        assert proposal.sponsors == ["bob"]
        assert proposal.activated_at == 100
        assert proposal.quorum_requirement == governance_config.default_quorum_requirement

    def test_explicit_quorum_is_kept(self, open_proposal):
        proposal = open_proposal(quorum_requirement=4)
        assert proposal.quorum_requirement == 4

    def test_cannot_sponsor_draft(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        with pytest.raises(InvalidStateTransitionError):
            engine.sponsor_proposal(proposal.proposal_id, "bob")

    def test_proposer_cannot_sponsor(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")
        with pytest.raises(NotAuthorizedError):
            engine.sponsor_proposal(proposal.proposal_id, "alice")

    def test_non_member_cannot_sponsor(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")
        with pytest.raises(NotAMemberError):
            engine.sponsor_proposal(proposal.proposal_id, "ghost")
        assert proposal.sponsors == []

    def test_min_sponsors(self, directory, access_policy, clock):
        engine = GovernanceEngine(directory, access_policy, clock, GovernanceConfig(min_sponsors=2))
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")

        engine.sponsor_proposal(proposal.proposal_id, "bob")
        assert proposal.status == ProposalStatus.PENDING
        with pytest.raises(AlreadySponsoredError):
            engine.sponsor_proposal(proposal.proposal_id, "bob")

        engine.sponsor_proposal(proposal.proposal_id, "carol")
        assert proposal.status == ProposalStatus.ACTIVE
        assert proposal.sponsors == ["bob", "carol"]

    def test_cosponsor_active_proposal(self, engine, open_proposal):
        proposal = open_proposal()
        engine.sponsor_proposal(proposal.proposal_id, "carol")

        assert proposal.status == ProposalStatus.ACTIVE
        assert proposal.sponsors == ["bob", "carol"]

    def test_sponsor_after_window(self, engine, clock):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")
        clock.advance(50)

        with pytest.raises(VotingClosedError):
            engine.sponsor_proposal(proposal.proposal_id, "bob")
        assert proposal.status == ProposalStatus.PENDING

    def test_sponsor_cap(self, engine, directory, open_proposal):
        for i in range(MAX_SPONSORS):
            directory.apply(f"member{i}", MemberRole.PATIENT)
            directory.approve("admin", f"member{i}")
        proposal = open_proposal()
        for i in range(MAX_SPONSORS - 1):
            engine.sponsor_proposal(proposal.proposal_id, f"member{i}")
        assert len(proposal.sponsors) == MAX_SPONSORS

        with pytest.raises(InvalidParameterError):
            engine.sponsor_proposal(proposal.proposal_id, f"member{MAX_SPONSORS - 1}")
        assert len(proposal.sponsors) == MAX_SPONSORS


class TestCancellation:
    """Test cancelling proposals."""

    @pytest.mark.parametrize("stage", ["draft", "pending", "active"])
    def test_cancel_non_terminal(self, engine, stage):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        if stage in ("pending", "active"):
            engine.submit_proposal(proposal.proposal_id, "alice")
        if stage == "active":
            engine.sponsor_proposal(proposal.proposal_id, "bob")

        engine.cancel_proposal(proposal.proposal_id, "alice")

        assert proposal.status == ProposalStatus.CANCELLED

    def test_only_proposer_cancels(self, engine, open_proposal):
        proposal = open_proposal()
        with pytest.raises(NotAuthorizedError):
            engine.cancel_proposal(proposal.proposal_id, "admin")
        assert proposal.status == ProposalStatus.ACTIVE

    def test_cannot_cancel_terminal(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.cancel_proposal(proposal.proposal_id, "alice")
        with pytest.raises(InvalidStateTransitionError):
            engine.cancel_proposal(proposal.proposal_id, "alice")

    def test_no_votes_after_cancel(self, engine, open_proposal):
        proposal = open_proposal()
        engine.cancel_proposal(proposal.proposal_id, "alice")
        with pytest.raises(ProposalNotActiveError):
            engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)


class TestVoting:
    """Test casting votes."""

    def test_cast_vote(self, engine, open_proposal):
        proposal = open_proposal()

        vote = engine.cast_vote(proposal.proposal_id, "bob", "for")
        engine.cast_vote(proposal.proposal_id, "carol", VoteChoice.AGAINST)
        engine.cast_vote(proposal.proposal_id, "dave", VoteChoice.ABSTAIN)

        assert vote.power == 1
        assert vote.cast_at == 100
        assert (proposal.votes_for, proposal.votes_against, proposal.votes_abstain) == (1, 1, 1)
        assert proposal.participation() == 3
        assert engine.get_vote(proposal.proposal_id, "bob") == vote
        assert [v.voter for v in engine.get_votes(proposal.proposal_id)] == ["bob", "carol", "dave"]

    def test_double_vote_rejected(self, engine, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)

        with pytest.raises(AlreadyVotedError):
            engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.AGAINST)
        assert (proposal.votes_for, proposal.votes_against) == (1, 0)

    def test_vote_on_unknown_proposal(self, engine):
        with pytest.raises(NotFoundError):
            engine.cast_vote(7, "bob", VoteChoice.FOR)

    def test_vote_on_draft(self, engine):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        with pytest.raises(ProposalNotActiveError) as exc_info:
            engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        assert exc_info.value.current_status == "draft"

    def test_vote_before_window(self, engine, clock, open_proposal):
        proposal = open_proposal(start_block=120, end_block=170)
        with pytest.raises(VotingClosedError):
            engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)

        clock.set_block(120)
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        assert proposal.votes_for == 1

    def test_vote_at_end_block(self, engine, clock, open_proposal):
        proposal = open_proposal()
        clock.set_block(149)
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)

        clock.set_block(150)
        with pytest.raises(VotingClosedError):
            engine.cast_vote(proposal.proposal_id, "carol", VoteChoice.FOR)

    def test_invalid_choice(self, engine, open_proposal):
        proposal = open_proposal()
        with pytest.raises(InvalidParameterError):
            engine.cast_vote(proposal.proposal_id, "bob", "maybe")

    def test_non_member_vote(self, engine, open_proposal):
        proposal = open_proposal()
        with pytest.raises(NotAMemberError):
            engine.cast_vote(proposal.proposal_id, "ghost", VoteChoice.FOR)
        assert proposal.participation() == 0

    def test_zero_power_vote_rejected(self, engine, open_proposal):
        proposal = open_proposal(mechanism=VotingMechanism.QUADRATIC)

        with pytest.raises(InvalidParameterError):
            engine.cast_vote(proposal.proposal_id, "carol", VoteChoice.FOR)
        assert engine.get_vote(proposal.proposal_id, "carol") is None

    def test_quadratic_vote(self, engine, directory, open_proposal):
        proposal = open_proposal(mechanism=VotingMechanism.QUADRATIC)
        directory.set_voting_credits("admin", "carol", 10)

        vote = engine.cast_vote(proposal.proposal_id, "carol", VoteChoice.FOR)

        assert vote.power == 3
        assert proposal.votes_for == 3

    def test_role_weighted_vote(self, engine, open_proposal):
        proposal = open_proposal(mechanism=VotingMechanism.ROLE_WEIGHTED)

        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        engine.cast_vote(proposal.proposal_id, "alice", VoteChoice.AGAINST)

        assert (proposal.votes_for, proposal.votes_against) == (2, 1)

    def test_delegate_carries_delegated_power(self, engine, open_proposal):
        proposal = open_proposal()
        engine.set_delegation("alice", "dave")
        engine.set_delegation("carol", "dave")

        vote = engine.cast_vote(proposal.proposal_id, "dave", VoteChoice.FOR)

        assert vote.power == 3
        assert vote.voting_power.delegators == ("alice", "carol")
        assert proposal.votes_for == 3

    def test_delegator_cannot_vote_directly(self, engine, open_proposal):
        proposal = open_proposal()
        engine.set_delegation("alice", "dave")

        with pytest.raises(NotAuthorizedError) as exc_info:
            engine.cast_vote(proposal.proposal_id, "alice", VoteChoice.FOR)
        assert exc_info.value.error_code == "VOTE_DELEGATED"

    def test_delegated_power_is_not_counted_twice(self, engine, open_proposal):
        proposal = open_proposal()
        engine.set_delegation("alice", "dave")
        engine.cast_vote(proposal.proposal_id, "dave", VoteChoice.FOR)
        engine.remove_delegation("alice")

        with pytest.raises(AlreadyVotedError):
            engine.cast_vote(proposal.proposal_id, "alice", VoteChoice.AGAINST)
        assert proposal.participation() == 2

    def test_delegation_after_direct_vote_adds_nothing(self, engine, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "alice", VoteChoice.AGAINST)
        engine.set_delegation("alice", "dave")

        vote = engine.cast_vote(proposal.proposal_id, "dave", VoteChoice.FOR)

        assert vote.power == 1
        assert proposal.participation() == 2


class TestFinalization:
    """Test finalizing proposals."""

    def test_finalize_before_end(self, engine, open_proposal):
        proposal = open_proposal()
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            engine.finalize_proposal(proposal.proposal_id)
        assert exc_info.value.error_code == "VOTING_STILL_OPEN"
        assert proposal.status == ProposalStatus.ACTIVE

    def test_finalize_passed(self, engine, clock, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        clock.advance(50)

        outcome = engine.finalize_proposal(proposal.proposal_id, "erin")

        assert outcome.passed
        assert outcome.reason == OutcomeReason.MAJORITY_FOR
        assert proposal.status == ProposalStatus.PASSED
        assert proposal.finalized_at == 150
        assert proposal.outcome_reason == OutcomeReason.MAJORITY_FOR
        assert engine.get_outcome(proposal.proposal_id) == outcome

    def test_finalize_against(self, engine, clock, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.AGAINST)
        clock.advance(50)

        outcome = engine.finalize_proposal(proposal.proposal_id)

        assert proposal.status == ProposalStatus.FAILED
        assert outcome.reason == OutcomeReason.MAJORITY_AGAINST

    def test_tie_fails(self, engine, clock, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        engine.cast_vote(proposal.proposal_id, "carol", VoteChoice.AGAINST)
        clock.advance(50)

        outcome = engine.finalize_proposal(proposal.proposal_id)

        assert proposal.status == ProposalStatus.FAILED
        assert outcome.reason == OutcomeReason.TIE

    def test_quorum_not_met(self, engine, clock, open_proposal):
        proposal = open_proposal(quorum_requirement=3)
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        engine.cast_vote(proposal.proposal_id, "carol", VoteChoice.FOR)
        clock.advance(50)

        outcome = engine.finalize_proposal(proposal.proposal_id)

        assert proposal.status == ProposalStatus.FAILED
        assert outcome.reason == OutcomeReason.QUORUM_NOT_MET
        assert not outcome.quorum_met

    def test_abstain_counts_toward_quorum(self, engine, clock, open_proposal):
        proposal = open_proposal(quorum_requirement=3)
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        engine.cast_vote(proposal.proposal_id, "carol", VoteChoice.ABSTAIN)
        engine.cast_vote(proposal.proposal_id, "dave", VoteChoice.ABSTAIN)
        clock.advance(50)

        outcome = engine.finalize_proposal(proposal.proposal_id)

        assert outcome.quorum_met
        assert proposal.status == ProposalStatus.PASSED

    def test_weighted_six_to_four_meets_quorum_of_ten(self, engine, clock, open_proposal):
        proposal = open_proposal(
            mechanism=VotingMechanism.ROLE_WEIGHTED,
            quorum_requirement=10,
            role_weights={MemberRole.PATIENT: 2, MemberRole.PROVIDER: 2},
        )
        for voter in ("alice", "carol", "erin"):
            engine.cast_vote(proposal.proposal_id, voter, VoteChoice.FOR)
        for voter in ("bob", "dave"):
            engine.cast_vote(proposal.proposal_id, voter, VoteChoice.AGAINST)
        clock.advance(50)

        outcome = engine.finalize_proposal(proposal.proposal_id)

        assert (outcome.votes_for, outcome.votes_against, outcome.participation) == (6, 4, 10)
        assert proposal.status == ProposalStatus.PASSED

    def test_expire_on_quorum_failure(self, directory, access_policy, clock):
        engine = GovernanceEngine(
            directory,
            access_policy,
            clock,
            GovernanceConfig(default_quorum_requirement=5, expire_on_quorum_failure=True),
        )
        proposal = engine.create_proposal("alice", "Extend clinic hours", end_block=110)
        engine.submit_proposal(proposal.proposal_id, "alice")
        engine.sponsor_proposal(proposal.proposal_id, "bob")
        clock.advance(10)

        outcome = engine.finalize_proposal(proposal.proposal_id)

        assert proposal.status == ProposalStatus.EXPIRED
        assert outcome.reason == OutcomeReason.QUORUM_NOT_MET

    def test_finalize_twice(self, engine, clock, open_proposal):
        proposal = open_proposal()
        clock.advance(50)
        engine.finalize_proposal(proposal.proposal_id)
        status = proposal.status

        with pytest.raises(ProposalNotActiveError):
            engine.finalize_proposal(proposal.proposal_id)
        assert proposal.status == status

    def test_finalize_pending(self, engine, clock):
        proposal = engine.create_proposal("alice", "Extend clinic hours")
        engine.submit_proposal(proposal.proposal_id, "alice")
        clock.advance(60)
        with pytest.raises(ProposalNotActiveError):
            engine.finalize_proposal(proposal.proposal_id)

    def test_treasury_action_on_pass(self, engine, clock, open_proposal):
        proposal = open_proposal(
            category=ProposalCategory.FUNDING,
            execution_params=ExecutionParameters(recipient="clinic-fund", amount=2500, memo="New beds"),
        )
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        clock.advance(50)

        engine.finalize_proposal(proposal.proposal_id)

        actions = engine.treasury.poll()
        assert len(actions) == 1
        assert actions[0].proposal_id == proposal.proposal_id
        assert actions[0].recipient == "clinic-fund"
        assert actions[0].amount == 2500
        assert actions[0].description == "New beds"
        assert actions[0].block_height == 150

    def test_no_treasury_action_on_fail(self, engine, clock, open_proposal):
        proposal = open_proposal(execution_params={"recipient": "clinic-fund", "amount": 2500})
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.AGAINST)
        clock.advance(50)

        engine.finalize_proposal(proposal.proposal_id)

        assert engine.treasury.pending() == []

    def test_no_treasury_action_without_params(self, engine, clock, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        clock.advance(50)

        engine.finalize_proposal(proposal.proposal_id)

        assert proposal.status == ProposalStatus.PASSED
        assert engine.treasury.pending() == []


class TestExecution:
    """Test PASSED -> EXECUTED."""

    @pytest.fixture
    def passed_proposal(self, engine, clock, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        clock.advance(50)
        engine.finalize_proposal(proposal.proposal_id)
        return proposal

    def test_proposer_executes(self, engine, clock, passed_proposal):
        clock.advance(3)
        engine.execute_proposal(passed_proposal.proposal_id, "alice")

        assert passed_proposal.status == ProposalStatus.EXECUTED
        assert passed_proposal.executed_at == 153
        assert passed_proposal.executed_by == "alice"

    @pytest.mark.parametrize("executor", ["treasurer", "admin"])
    def test_authorized_executor(self, engine, passed_proposal, executor):
        engine.execute_proposal(passed_proposal.proposal_id, executor)
        assert passed_proposal.executed_by == executor

    def test_unauthorized_executor(self, engine, passed_proposal):
        with pytest.raises(NotAuthorizedError):
            engine.execute_proposal(passed_proposal.proposal_id, "bob")
        assert passed_proposal.status == ProposalStatus.PASSED

    def test_execute_twice(self, engine, passed_proposal):
        engine.execute_proposal(passed_proposal.proposal_id, "alice")
        with pytest.raises(InvalidStateTransitionError):
            engine.execute_proposal(passed_proposal.proposal_id, "alice")

    def test_cannot_execute_failed(self, engine, clock, open_proposal):
        proposal = open_proposal()
        clock.advance(50)
        engine.finalize_proposal(proposal.proposal_id)
        assert proposal.status == ProposalStatus.FAILED

        with pytest.raises(InvalidStateTransitionError):
            engine.execute_proposal(proposal.proposal_id, "alice")

    def test_cannot_cancel_passed(self, engine, passed_proposal):
        with pytest.raises(InvalidStateTransitionError):
            engine.cancel_proposal(passed_proposal.proposal_id, "alice")


class TestEngineDelegation:
    """Test delegation management through the engine."""

    def test_cycle_rejected(self, engine):
        engine.set_delegation("alice", "bob")
        engine.set_delegation("bob", "carol")

        with pytest.raises(DelegationCycleError):
            engine.set_delegation("carol", "alice")
        assert engine.delegations.get_delegate("carol") is None

    def test_both_parties_must_be_members(self, engine, directory):
        with pytest.raises(NotAMemberError):
            engine.set_delegation("alice", "ghost")
        directory.deactivate("admin", "carol")
        with pytest.raises(NotAMemberError):
            engine.set_delegation("carol", "alice")
        assert engine.delegations.all_delegations() == []

    def test_delegation_events(self, engine):
        engine.set_delegation("alice", "bob")
        assert engine.remove_delegation("alice") is True
        assert engine.remove_delegation("alice") is False

        types = [e.event_type for e in engine.events.audit_trail.get_principal_events("alice")]
        assert types == [EventType.DELEGATION_SET, EventType.DELEGATION_REMOVED]


class TestQueriesAndAtomicity:
    """Test read operations and all-or-nothing failures."""

    def test_list_proposals(self, engine, open_proposal):
        open_proposal()
        engine.create_proposal("carol", "Second proposal")

        assert [p.proposal_id for p in engine.list_proposals()] == [1, 2]
        assert [p.proposal_id for p in engine.list_proposals(ProposalStatus.DRAFT)] == [2]
        assert engine.get_proposal(3) is None

    def test_snapshot(self, engine, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        engine.set_delegation("carol", "dave")

        snapshot = engine.snapshot()

        assert snapshot["last_proposal_id"] == 1
        assert snapshot["proposals"][1]["status"] == "active"
        assert list(snapshot["votes"]) == [1]
        assert snapshot["votes"][1]["bob"]["choice"] == "for"
        assert snapshot["delegations"]["carol"]["delegate"] == "dave"
        assert snapshot["role_weights"] == {"patient": 1, "provider": 2, "admin": 3}

    def test_failed_operations_leave_state_unchanged(self, engine, clock, open_proposal):
        proposal = open_proposal()
        engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.FOR)
        engine.set_delegation("alice", "bob")
        before = engine.snapshot()
        events_before = len(engine.events.audit_trail)

        failures = [
            lambda: engine.cast_vote(proposal.proposal_id, "bob", VoteChoice.AGAINST),
            lambda: engine.cast_vote(proposal.proposal_id, "alice", VoteChoice.FOR),
            lambda: engine.cast_vote(proposal.proposal_id, "ghost", VoteChoice.FOR),
            lambda: engine.sponsor_proposal(proposal.proposal_id, "alice"),
            lambda: engine.set_delegation("bob", "alice"),
            lambda: engine.finalize_proposal(proposal.proposal_id),
            lambda: engine.execute_proposal(proposal.proposal_id, "alice"),
            lambda: engine.update_proposal(proposal.proposal_id, "alice", title="Nope"),
            lambda: engine.cancel_proposal(proposal.proposal_id, "bob"),
        ]
        for failure in failures:
            with pytest.raises(MemberDaoError):
                failure()

        assert engine.snapshot() == before
        assert len(engine.events.audit_trail) == events_before
