# votee9ja/authentication/rbac.py

import logging
from dataclasses import dataclass
from enum import Enum
from functools import wraps

from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from votee9ja import db
from votee9ja.database.models import Voter
from votee9ja.errors import AuthorizationError, UnauthenticatedError

# Row-level access control: a predicate table keyed by (entity, operation),
# holding one predicate per role. A missing entry denies. Predicates are
# evaluated by the services inside the transaction that performs the
# operation, against rows loaded in that transaction.

logger = logging.getLogger(__name__)


class UserRole(Enum):
    VOTER = "voter"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Entity(Enum):
    VOTER_PROFILE = "voter_profile"
    ELECTION = "election"
    POSITION = "position"
    CANDIDATE = "candidate"
    VOTE = "vote"
    AUDIT_RECORD = "audit_record"


class Operation(Enum):
    READ = "read"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)
PUBLIC_ELECTION_STATUSES = ('active', 'completed')
SELF_EDITABLE_PROFILE_FIELDS = frozenset(['phone_number', 'address', 'occupation', 'surname'])


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, as far as authorization is concerned."""
    id: str
    role: UserRole
    is_verified: bool = False

    @property
    def is_privileged(self):
        return self.role in PRIVILEGED_ROLES

    @classmethod
    def from_profile(cls, profile):
        return cls(id=profile.id, role=UserRole(profile.role), is_verified=bool(profile.is_verified))


# ------------------------------ predicates ------------------------------ #

def _always(identity, row, changes):
    return True


def _is_self_profile(identity, row, changes):
    return row.id == identity.id


def _is_registration_insert(identity, row, changes):
    return row.id == identity.id and row.role == UserRole.VOTER.value and not row.is_verified


def _is_limited_self_update(identity, row, changes):
    if row.id != identity.id:
        return False
    return set(changes or {}) <= SELF_EDITABLE_PROFILE_FIELDS


def _election_is_public(identity, row, changes):
    return row.status in PUBLIC_ELECTION_STATUSES or bool(row.results_published)


def _election_visible_to_admin(identity, row, changes):
    return _election_is_public(identity, row, changes) or row.created_by == identity.id


def _created_by_self(identity, row, changes):
    return row.created_by == identity.id


def _own_draft_election(identity, row, changes):
    return row.created_by == identity.id and row.status == 'draft'


def _position_parent_readable(identity, row, changes):
    return _can_read_election(identity, row.election)


def _candidate_parent_readable(identity, row, changes):
    return row.position is not None and _can_read_election(identity, row.position.election)


def _own_vote(identity, row, changes):
    return row.voter_id == identity.id


def _own_audit_record(identity, row, changes):
    return row.actor_id == identity.id


def _audit_has_actor(identity, row, changes):
    return row.actor_id is not None


def _can_read_election(identity, election):
    if election is None:
        return False
    predicate = POLICIES[(Entity.ELECTION, Operation.READ)].get(identity.role)
    return bool(predicate and predicate(identity, election, None))


def _roles(predicate, *roles):
    return {role: predicate for role in roles}


ALL_ROLES = tuple(UserRole)

POLICIES = {
    # Voter profile
    (Entity.VOTER_PROFILE, Operation.READ): {
        UserRole.VOTER: _is_self_profile,
        UserRole.ADMIN: _always,
        UserRole.SUPER_ADMIN: _always,
    },
    (Entity.VOTER_PROFILE, Operation.INSERT): {
        UserRole.VOTER: _is_registration_insert,
        UserRole.ADMIN: _is_registration_insert,
        UserRole.SUPER_ADMIN: _always,
    },
    (Entity.VOTER_PROFILE, Operation.UPDATE): {
        UserRole.VOTER: _is_limited_self_update,
        UserRole.ADMIN: _is_limited_self_update,
        UserRole.SUPER_ADMIN: _always,
    },

    # Election
    (Entity.ELECTION, Operation.READ): {
        UserRole.VOTER: _election_is_public,
        UserRole.ADMIN: _election_visible_to_admin,
        UserRole.SUPER_ADMIN: _always,
    },
    (Entity.ELECTION, Operation.INSERT): {
        UserRole.ADMIN: _created_by_self,
        UserRole.SUPER_ADMIN: _always,
    },
    (Entity.ELECTION, Operation.UPDATE): {
        UserRole.ADMIN: _created_by_self,
        UserRole.SUPER_ADMIN: _always,
    },
    (Entity.ELECTION, Operation.DELETE): {
        UserRole.ADMIN: _own_draft_election,
        UserRole.SUPER_ADMIN: _always,
    },

    # Position / Candidate
    (Entity.POSITION, Operation.READ): _roles(_position_parent_readable, *ALL_ROLES),
    (Entity.POSITION, Operation.INSERT): _roles(_always, *PRIVILEGED_ROLES),
    (Entity.POSITION, Operation.UPDATE): _roles(_always, *PRIVILEGED_ROLES),
    (Entity.POSITION, Operation.DELETE): _roles(_always, *PRIVILEGED_ROLES),
    (Entity.CANDIDATE, Operation.READ): _roles(_candidate_parent_readable, *ALL_ROLES),
    (Entity.CANDIDATE, Operation.INSERT): _roles(_always, *PRIVILEGED_ROLES),
    (Entity.CANDIDATE, Operation.UPDATE): _roles(_always, *PRIVILEGED_ROLES),
    (Entity.CANDIDATE, Operation.DELETE): _roles(_always, *PRIVILEGED_ROLES),

    # Vote: own rows only, for every role. No update/delete entry exists.
    (Entity.VOTE, Operation.READ): _roles(_own_vote, *ALL_ROLES),
    (Entity.VOTE, Operation.INSERT): _roles(_own_vote, *ALL_ROLES),

    # Audit trail: append-only.
    (Entity.AUDIT_RECORD, Operation.READ): {
        UserRole.VOTER: _own_audit_record,
        UserRole.ADMIN: _always,
        UserRole.SUPER_ADMIN: _always,
    },
    (Entity.AUDIT_RECORD, Operation.INSERT): _roles(_audit_has_actor, *ALL_ROLES),
}


class AccessPolicyEngine:
    def __init__(self, policies=None):
        self.policies = POLICIES if policies is None else policies

    def is_allowed(self, identity, entity, operation, row=None, changes=None) -> bool:
        if identity is None:
            return False
        if isinstance(entity, str):
            entity = Entity(entity)
        if isinstance(operation, str):
            operation = Operation(operation)
        predicate = self.policies.get((entity, operation), {}).get(identity.role)
        if predicate is None:
            return False
        return bool(predicate(identity, row, changes))

    def authorize(self, identity, entity, operation, row=None, changes=None):
        if identity is None:
            raise UnauthenticatedError()
        if not self.is_allowed(identity, entity, operation, row, changes):
            logger.warning(
                "Denied %s on %s for %s (%s)",
                _value(operation), _value(entity), identity.id, identity.role.value,
            )
            raise AuthorizationError()

    def filter_readable(self, identity, entity, rows):
        return [row for row in rows if self.is_allowed(identity, entity, Operation.READ, row)]


def _value(member):
    return member.value if isinstance(member, Enum) else str(member)


# ---------------------------- request identity ---------------------------- #

def current_identity(optional=False):
    """Load the caller's Identity from the JWT and the stored profile.

    Role and verification come from the database on every request, so a
    role change takes effect without re-issuing tokens.
    """
    verify_jwt_in_request(optional=optional)
    account_id = get_jwt_identity()
    if account_id is None:
        if optional:
            return None
        raise UnauthenticatedError()
    profile = db.session.get(Voter, account_id)
    if profile is None:
        raise UnauthenticatedError()
    return Identity.from_profile(profile)


# Decorator for required role
def require_role(*roles):
    allowed = {role if isinstance(role, UserRole) else UserRole(role) for role in roles}

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            identity = current_identity()
            if identity.role not in allowed:
                logger.warning("Role %s refused for %s", identity.role.value, func.__name__)
                raise AuthorizationError()
            return func(*args, **kwargs)
        return wrapper
    return decorator
