# votee9ja/voting/eligibility.py

import logging

from votee9ja.database.models import Election, Voter
from votee9ja.operations.clock import as_utc, utcnow
from votee9ja.security.validators import VOTING_AGE, calculate_age

logger = logging.getLogger(__name__)


def election_is_open(election, now=None) -> bool:
    """Active status and ``now`` inside [start_date, end_date]."""
    if election is None:
        return False
    now = as_utc(now or utcnow())
    return (
        election.status == 'active'
        and as_utc(election.start_date) <= now <= as_utc(election.end_date)
    )


def is_eligible_to_vote(voter, election, now=None) -> bool:
    """Whether ``voter`` may cast a ballot in ``election`` at ``now``.

    Must be evaluated against rows read inside the transaction that
    performs the insert; see VoteLedger.cast_vote.
    """
    if voter is None or election is None:
        return False
    now = as_utc(now or utcnow())

    age = calculate_age(voter.date_of_birth, now.date())
    if age < VOTING_AGE:
        logger.info("Voter %s not eligible: under voting age", voter.id)
        return False
    if not voter.is_verified:
        logger.info("Voter %s not eligible: profile not verified", voter.id)
        return False
    if not election_is_open(election, now):
        logger.info("Voter %s not eligible: election %s not open", voter.id, election.id)
        return False
    return True


def check_eligibility(session, voter_id, election_id, now=None) -> bool:
    voter = session.get(Voter, voter_id)
    election = session.get(Election, election_id)
    return is_eligible_to_vote(voter, election, now)
