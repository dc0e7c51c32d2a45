"""Shared fixtures for memberdao tests."""

import logging

logger = logging.getLogger(__name__)
import pytest

from memberdao.access import AccessPolicy
from memberdao.clock import ManualBlockClock
from memberdao.governance.core import GovernanceConfig, ProposalStatus
from memberdao.governance.engine import GovernanceEngine
from memberdao.membership.directory import MemberRole, MembershipDirectory

MEMBERS = {
    "admin": MemberRole.ADMIN,
    "alice": MemberRole.PATIENT,
    "bob": MemberRole.PROVIDER,
    "carol": MemberRole.PATIENT,
    "dave": MemberRole.PROVIDER,
    "erin": MemberRole.PATIENT,
    "frank": MemberRole.PATIENT,
}


@pytest.fixture
def clock():
    """Block clock starting at height 100."""
    return ManualBlockClock(start_block=100)


@pytest.fixture
def access_policy():
    """Policy with one admin and one treasury executor."""
    return AccessPolicy(admins=["admin"], executors=["treasurer"])


@pytest.fixture
def directory(access_policy, clock):
    """Directory where every principal in MEMBERS is an approved member."""
    directory = MembershipDirectory(access_policy, clock)
    for principal, role in MEMBERS.items():
        directory.apply(principal, role)
        directory.approve("admin", principal)
    return directory


@pytest.fixture
def governance_config():
    """Governance configuration for tests."""
    return GovernanceConfig(
        default_quorum_requirement=1,
        default_voting_period=50,
        min_sponsors=1,
    )


@pytest.fixture
def engine(directory, access_policy, clock, governance_config):
    """Governance engine wired to the test directory."""
    return GovernanceEngine(directory, access_policy, clock, governance_config)


@pytest.fixture
def open_proposal(engine):
    """Factory creating a proposal and driving it to ACTIVE."""

    def _open(proposer="alice", sponsor="bob", title="Extend clinic hours", **kwargs):
        proposal = engine.create_proposal(proposer=proposer, title=title, **kwargs)
        engine.submit_proposal(proposal.proposal_id, proposer)
        engine.sponsor_proposal(proposal.proposal_id, sponsor)
        assert proposal.status == ProposalStatus.ACTIVE
        return proposal

    return _open
