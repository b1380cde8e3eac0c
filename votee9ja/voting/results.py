# votee9ja/voting/results.py

from sqlalchemy import func

from votee9ja.authentication.rbac import PUBLIC_ELECTION_STATUSES, AccessPolicyEngine, Entity, Operation
from votee9ja.database.models import Election, Vote, Voter
from votee9ja.errors import NotFoundError, ResultsNotPublishedError
from votee9ja.operations.clock import utcnow
from votee9ja.security.validators import VOTING_AGE, years_before

# Aggregate views over the ledger. These are the only place vote-derived
# data reaches anyone other than the voter who cast it, and they expose
# counts only.


def _percentage(part, whole):
    if not whole:
        return 0.0
    return round(part * 100.0 / whole, 2)


def _load_visible_election(session, identity, election_id, policy):
    election = session.get(Election, election_id)
    if election is None:
        raise NotFoundError()
    if identity is None:
        # Anonymous callers see what a voter would see.
        if election.status not in PUBLIC_ELECTION_STATUSES and not election.results_published:
            raise NotFoundError()
    elif not policy.is_allowed(identity, Entity.ELECTION, Operation.READ, election):
        raise NotFoundError()
    return election


def election_results(session, identity, election_id, policy=None):
    """Per-position, per-candidate tallies for a published election.

    Candidates are ordered by vote count (descending) then ballot number;
    candidates without votes are listed with zero.
    """
    policy = policy or AccessPolicyEngine()
    election = _load_visible_election(session, identity, election_id, policy)
    if not election.results_published:
        raise ResultsNotPublishedError()

    counts = dict(
        session.query(Vote.candidate_id, func.count(Vote.id))
        .filter(Vote.election_id == election.id)
        .group_by(Vote.candidate_id)
        .all()
    )

    positions = []
    total_votes = 0
    for position in election.positions:
        rows = []
        position_total = 0
        for candidate in position.candidates:
            count = counts.get(candidate.id, 0)
            position_total += count
            rows.append((candidate, count))
        rows.sort(key=lambda row: (-row[1], row[0].ballot_number if row[0].ballot_number is not None else 0))
        total_votes += position_total
        positions.append({
            'position_id': position.id,
            'position_title': position.title,
            'total_votes': position_total,
            'candidates': [
                {
                    'candidate_id': candidate.id,
                    'full_name': candidate.full_name,
                    'party_affiliation': candidate.party_affiliation,
                    'ballot_number': candidate.ballot_number,
                    'votes': count,
                    'percentage': _percentage(count, position_total),
                }
                for candidate, count in rows
            ],
        })

    return {
        'election_id': election.id,
        'title': election.title,
        'status': election.status,
        'results_published_at': election.to_dict()['results_published_at'],
        'total_votes': total_votes,
        'positions': positions,
    }


def eligible_voter_count(session, on=None):
    """Verified voters who are of voting age on ``on`` (a date)."""
    on = on or utcnow().date()
    latest_birth_date = years_before(on, VOTING_AGE)
    return (
        session.query(func.count(Voter.id))
        .filter(Voter.is_verified.is_(True))
        .filter(Voter.date_of_birth <= latest_birth_date)
        .scalar()
    ) or 0


def turnout(session, identity, election_id, policy=None, now=None):
    """Eligible voters, distinct voters who voted, and the turnout percentage.

    Visible once results are published, or at any time to admins.
    """
    policy = policy or AccessPolicyEngine()
    election = _load_visible_election(session, identity, election_id, policy)
    if not election.results_published and not (identity is not None and identity.is_privileged):
        raise ResultsNotPublishedError()

    now = now or utcnow()
    eligible = eligible_voter_count(session, now.date())
    voted = (
        session.query(func.count(func.distinct(Vote.voter_id)))
        .filter(Vote.election_id == election.id)
        .scalar()
    ) or 0
    return {
        'election_id': election.id,
        'eligible_voters': eligible,
        'voters_participated': voted,
        'turnout_percentage': _percentage(voted, eligible),
    }
