from types import SimpleNamespace

import pytest

from votee9ja.authentication.rbac import AccessPolicyEngine, Entity, Identity, Operation, UserRole
from votee9ja.errors import AuthorizationError, UnauthenticatedError

VOTER = Identity(id='v1', role=UserRole.VOTER, is_verified=True)
OTHER_VOTER = Identity(id='v2', role=UserRole.VOTER, is_verified=True)
ADMIN = Identity(id='a1', role=UserRole.ADMIN, is_verified=True)
OTHER_ADMIN = Identity(id='a2', role=UserRole.ADMIN, is_verified=True)
SUPER = Identity(id='s1', role=UserRole.SUPER_ADMIN, is_verified=True)


@pytest.fixture
def engine():
    return AccessPolicyEngine()


def election(status='active', created_by='a1', results_published=False):
    return SimpleNamespace(id='e1', status=status, created_by=created_by, results_published=results_published)


def profile(id='v1', role='voter', is_verified=False):
    return SimpleNamespace(id=id, role=role, is_verified=is_verified)


# --- profiles ------------------------------------------------------------

def test_voters_read_only_their_own_profile(engine):
    assert engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.READ, profile('v1'))
    assert not engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.READ, profile('v2'))
    assert engine.is_allowed(ADMIN, Entity.VOTER_PROFILE, Operation.READ, profile('v2'))


def test_registration_insert_is_self_unverified_voter(engine):
    assert engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.INSERT, profile('v1'))
    assert not engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.INSERT, profile('v1', role='admin'))
    assert not engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.INSERT, profile('v1', is_verified=True))
    assert not engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.INSERT, profile('v2'))
    assert engine.is_allowed(SUPER, Entity.VOTER_PROFILE, Operation.INSERT, profile('x', role='admin'))


def test_self_update_is_limited_to_contact_fields(engine):
    row = profile('v1')
    assert engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.UPDATE, row, {'address': 'x'})
    assert not engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.UPDATE, row, {'role': 'admin'})
    assert not engine.is_allowed(VOTER, Entity.VOTER_PROFILE, Operation.UPDATE, row, {'is_verified': True})
    assert not engine.is_allowed(ADMIN, Entity.VOTER_PROFILE, Operation.UPDATE, row, {'is_verified': True})
    assert engine.is_allowed(SUPER, Entity.VOTER_PROFILE, Operation.UPDATE, row, {'role': 'admin'})


# --- elections -----------------------------------------------------------

@pytest.mark.parametrize("status, visible", [
    ('draft', False),
    ('active', True),
    ('completed', True),
    ('cancelled', False),
    ('archived', False),
])
def test_voters_see_public_elections(engine, status, visible):
    assert engine.is_allowed(VOTER, Entity.ELECTION, Operation.READ, election(status)) is visible


def test_admins_see_their_own_drafts(engine):
    draft = election('draft', created_by='a1')
    assert engine.is_allowed(ADMIN, Entity.ELECTION, Operation.READ, draft)
    assert not engine.is_allowed(OTHER_ADMIN, Entity.ELECTION, Operation.READ, draft)
    assert engine.is_allowed(SUPER, Entity.ELECTION, Operation.READ, draft)


def test_election_writes(engine):
    own = election(created_by='a1')
    assert engine.is_allowed(ADMIN, Entity.ELECTION, Operation.INSERT, own)
    assert not engine.is_allowed(VOTER, Entity.ELECTION, Operation.INSERT, election(created_by='v1'))
    assert engine.is_allowed(ADMIN, Entity.ELECTION, Operation.UPDATE, own)
    assert not engine.is_allowed(OTHER_ADMIN, Entity.ELECTION, Operation.UPDATE, own)
    assert engine.is_allowed(SUPER, Entity.ELECTION, Operation.UPDATE, own)


def test_admins_delete_only_their_own_drafts(engine):
    assert engine.is_allowed(ADMIN, Entity.ELECTION, Operation.DELETE, election('draft'))
    assert not engine.is_allowed(ADMIN, Entity.ELECTION, Operation.DELETE, election('active'))
    assert engine.is_allowed(SUPER, Entity.ELECTION, Operation.DELETE, election('active'))


def test_ballot_rows_follow_their_election(engine):
    draft = election('draft')
    position = SimpleNamespace(election=draft)
    candidate = SimpleNamespace(position=position)
    assert not engine.is_allowed(VOTER, Entity.POSITION, Operation.READ, position)
    assert not engine.is_allowed(VOTER, Entity.CANDIDATE, Operation.READ, candidate)
    assert engine.is_allowed(ADMIN, Entity.CANDIDATE, Operation.READ, candidate)
    assert not engine.is_allowed(VOTER, Entity.CANDIDATE, Operation.INSERT, candidate)


# --- votes and audit -----------------------------------------------------

def test_votes_are_own_rows_only_and_never_change(engine):
    vote = SimpleNamespace(voter_id='v1')
    assert engine.is_allowed(VOTER, Entity.VOTE, Operation.INSERT, vote)
    assert not engine.is_allowed(OTHER_VOTER, Entity.VOTE, Operation.INSERT, vote)
    assert engine.is_allowed(VOTER, Entity.VOTE, Operation.READ, vote)
    # Privileged roles get no read access to other people's ballots.
    assert not engine.is_allowed(ADMIN, Entity.VOTE, Operation.READ, vote)
    assert not engine.is_allowed(SUPER, Entity.VOTE, Operation.READ, vote)
    for role_identity in (VOTER, ADMIN, SUPER):
        assert not engine.is_allowed(role_identity, Entity.VOTE, Operation.UPDATE, vote)
        assert not engine.is_allowed(role_identity, Entity.VOTE, Operation.DELETE, vote)


def test_audit_records(engine):
    mine = SimpleNamespace(actor_id='v1')
    assert engine.is_allowed(VOTER, Entity.AUDIT_RECORD, Operation.READ, mine)
    assert not engine.is_allowed(OTHER_VOTER, Entity.AUDIT_RECORD, Operation.READ, mine)
    assert engine.is_allowed(ADMIN, Entity.AUDIT_RECORD, Operation.READ, mine)
    assert not engine.is_allowed(SUPER, Entity.AUDIT_RECORD, Operation.UPDATE, mine)
    assert not engine.is_allowed(VOTER, Entity.AUDIT_RECORD, Operation.INSERT, SimpleNamespace(actor_id=None))


# --- engine --------------------------------------------------------------

def test_string_names_are_accepted(engine):
    assert engine.is_allowed(VOTER, 'vote', 'insert', SimpleNamespace(voter_id='v1'))


def test_authorize_raises(engine):
    with pytest.raises(UnauthenticatedError):
        engine.authorize(None, Entity.VOTE, Operation.INSERT, SimpleNamespace(voter_id='v1'))
    with pytest.raises(AuthorizationError) as excinfo:
        engine.authorize(VOTER, Entity.ELECTION, Operation.INSERT, election(created_by='v1'))
    assert excinfo.value.reason == 'forbidden'


def test_filter_readable(engine):
    rows = [election('active'), election('draft'), election('completed')]
    assert [row.status for row in engine.filter_readable(VOTER, Entity.ELECTION, rows)] == ['active', 'completed']


def test_custom_table_denies_missing_entries():
    engine = AccessPolicyEngine(policies={})
    assert not engine.is_allowed(SUPER, Entity.ELECTION, Operation.READ, election())
