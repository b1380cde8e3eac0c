from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

from votee9ja.voting.eligibility import check_eligibility, election_is_open, is_eligible_to_vote

NOW = datetime(2027, 2, 25, 12, 0, tzinfo=timezone.utc)


def make_voter(**overrides):
    fields = dict(id='v1', date_of_birth=date(1990, 5, 17), is_verified=True)
    fields.update(overrides)
    return SimpleNamespace(**fields)


def make_election(**overrides):
    fields = dict(
        id='e1',
        status='active',
        start_date=NOW - timedelta(hours=2),
        end_date=NOW + timedelta(hours=6),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_verified_adult_in_open_election_is_eligible():
    assert is_eligible_to_vote(make_voter(), make_election(), NOW) is True


def test_eighteenth_birthday_boundary():
    turns_18_today = make_voter(date_of_birth=date(2009, 2, 25))
    turns_18_tomorrow = make_voter(date_of_birth=date(2009, 2, 26))
    assert is_eligible_to_vote(turns_18_today, make_election(), NOW) is True
    assert is_eligible_to_vote(turns_18_tomorrow, make_election(), NOW) is False


def test_unverified_voter_is_not_eligible():
    assert is_eligible_to_vote(make_voter(is_verified=False), make_election(), NOW) is False


def test_election_must_be_active():
    for status in ('draft', 'completed', 'cancelled', 'archived'):
        assert is_eligible_to_vote(make_voter(), make_election(status=status), NOW) is False


def test_voting_window_is_inclusive():
    election = make_election(start_date=NOW, end_date=NOW + timedelta(hours=1))
    assert election_is_open(election, NOW)
    assert election_is_open(election, NOW + timedelta(hours=1))
    assert not election_is_open(election, NOW - timedelta(microseconds=1))
    assert not election_is_open(election, NOW + timedelta(hours=1, microseconds=1))


def test_naive_timestamps_are_read_as_utc():
    election = make_election(
        start_date=(NOW - timedelta(hours=1)).replace(tzinfo=None),
        end_date=(NOW + timedelta(hours=1)).replace(tzinfo=None),
    )
    assert election_is_open(election, NOW)


def test_missing_rows_are_not_eligible():
    assert is_eligible_to_vote(None, make_election(), NOW) is False
    assert is_eligible_to_vote(make_voter(), None, NOW) is False


def test_check_eligibility_loads_rows(session, factory, admin):
    voter = factory.voter()
    election = factory.election(admin)
    assert check_eligibility(session, voter.id, election.id) is True
    assert check_eligibility(session, voter.id, 'no-such-election') is False
