# votee9ja/voting/ledger.py

import logging

from sqlalchemy.exc import IntegrityError, OperationalError

from votee9ja.audit.audit_logger import AuditLogger
from votee9ja.authentication.rbac import AccessPolicyEngine, Entity, Operation, UserRole
from votee9ja.database.models import Candidate, Election, Position, Vote, Voter
from votee9ja.errors import (
    AuthorizationError,
    DuplicateVoteError,
    InvalidReferenceError,
    NotEligibleError,
    NotFoundError,
    TransientError,
    UnauthenticatedError,
    VoteE9jaError,
)
from votee9ja.operations.clock import utcnow
from votee9ja.realtime import ResultsEvent
from votee9ja.voting.eligibility import is_eligible_to_vote

logger = logging.getLogger(__name__)

VOTE_UNIQUE_CONSTRAINT = 'uq_vote_voter_election_position'


class VoteLedger:
    """Append-only store of cast votes.

    Every write runs as one transaction: rows are loaded (and locked where
    the database supports it), references, eligibility and policy are
    checked against those rows, the integrity hash is stamped and the row
    inserted. Uniqueness of (voter, election, position) is left to the
    database constraint, so concurrent duplicates cannot both commit.
    """

    def __init__(self, session, hasher, policy=None, channel=None, clock=utcnow):
        self.session = session
        self.hasher = hasher
        self.policy = policy or AccessPolicyEngine()
        self.channel = channel
        self.clock = clock

    # ------------------------------ write ------------------------------ #

    def cast_vote(self, identity, election_id, position_id, candidate_id, client_metadata=None):
        if identity is None:
            raise UnauthenticatedError()
        client_metadata = client_metadata or {}

        try:
            vote = self._insert(identity, election_id, position_id, candidate_id, client_metadata)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if _is_duplicate_vote(exc):
                logger.warning(
                    "Duplicate vote refused for voter %s election %s position %s",
                    identity.id, election_id, position_id,
                )
                raise DuplicateVoteError()
            logger.warning("Vote refused on referential check: %s", exc.orig)
            raise InvalidReferenceError()
        except OperationalError:
            self.session.rollback()
            logger.exception("Storage unavailable while casting vote")
            raise TransientError()
        except VoteE9jaError:
            self.session.rollback()
            raise

        logger.info("Vote %s recorded for election %s", vote.id, vote.election_id)
        if self.channel is not None:
            self.channel.publish(ResultsEvent(election_id=vote.election_id, position_id=vote.position_id))
        return vote

    def _insert(self, identity, election_id, position_id, candidate_id, client_metadata):
        voter = (
            self.session.query(Voter)
            .filter(Voter.id == identity.id)
            .with_for_update()
            .one_or_none()
        )
        if voter is None:
            raise UnauthenticatedError()

        election = (
            self.session.query(Election)
            .filter(Election.id == election_id)
            .with_for_update(read=True)
            .one_or_none()
        )
        position = self.session.get(Position, position_id) if position_id else None
        candidate = self.session.get(Candidate, candidate_id) if candidate_id else None

        if (
            election is None
            or position is None
            or candidate is None
            or position.election_id != election.id
            or candidate.position_id != position.id
            or candidate.status != 'active'
        ):
            logger.warning(
                "Vote refused for voter %s: election/position/candidate mismatch", identity.id
            )
            raise InvalidReferenceError()

        now = self.clock()
        if not is_eligible_to_vote(voter, election, now):
            raise NotEligibleError()

        vote = Vote(
            voter_id=voter.id,
            election_id=election.id,
            position_id=position.id,
            candidate_id=candidate.id,
            cast_at=now,
            ip_address=client_metadata.get('ip_address'),
            user_agent=client_metadata.get('user_agent'),
        )
        self.hasher.stamp(vote)

        self.policy.authorize(identity, Entity.VOTE, Operation.INSERT, vote)

        self.session.add(vote)
        self.session.flush()

        AuditLogger(self.session).log(
            actor_id=voter.id,
            action='vote_cast',
            affected_table='votes',
            affected_id=vote.id,
            after={
                'election_id': vote.election_id,
                'position_id': vote.position_id,
                'integrity_hash': vote.integrity_hash,
            },
            ip_address=vote.ip_address,
            user_agent=vote.user_agent,
        )
        return vote

    # ------------------------------ read ------------------------------- #

    def votes_for(self, identity, election_id=None):
        if identity is None:
            raise UnauthenticatedError()
        query = self.session.query(Vote).filter(Vote.voter_id == identity.id)
        if election_id:
            query = query.filter(Vote.election_id == election_id)
        rows = query.order_by(Vote.cast_at.desc()).all()
        return self.policy.filter_readable(identity, Entity.VOTE, rows)

    def get_vote(self, identity, vote_id):
        vote = self.session.get(Vote, vote_id)
        # Someone else's vote is reported as missing, not forbidden.
        if vote is None or not self.policy.is_allowed(identity, Entity.VOTE, Operation.READ, vote):
            raise NotFoundError()
        return vote

    def verify_vote(self, identity, vote_id):
        vote = self.get_vote(identity, vote_id)
        return self.hasher.verify(vote)

    def audit_integrity(self, identity, election_id):
        """Recompute every stored hash for an election; counts only."""
        if identity is None:
            raise UnauthenticatedError()
        if identity.role not in (UserRole.ADMIN, UserRole.SUPER_ADMIN):
            raise AuthorizationError()
        if self.session.get(Election, election_id) is None:
            raise NotFoundError()
        checked = 0
        mismatched = 0
        for vote in self.session.query(Vote).filter(Vote.election_id == election_id).yield_per(500):
            checked += 1
            if not self.hasher.verify(vote):
                mismatched += 1
        if mismatched:
            logger.warning("Election %s: %d of %d votes fail integrity check", election_id, mismatched, checked)
        return {'election_id': election_id, 'checked': checked, 'mismatched': mismatched}


def _is_duplicate_vote(exc):
    orig = getattr(exc, 'orig', None)
    message = str(orig)
    if VOTE_UNIQUE_CONSTRAINT in message:
        return True
    # SQLite reports the columns rather than the constraint name.
    if 'UNIQUE constraint failed' in message and 'votes.voter_id' in message:
        return True
    return getattr(orig, 'pgcode', None) == '23505' and 'votes' in message
