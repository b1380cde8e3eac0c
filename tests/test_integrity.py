import hashlib
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from votee9ja.voting.integrity import VoteIntegrityHasher

CAST_AT = datetime(2027, 2, 25, 9, 30, 15, 123456, tzinfo=timezone.utc)


@pytest.fixture
def vote():
    return SimpleNamespace(
        voter_id='voter-1',
        election_id='election-1',
        position_id='position-1',
        candidate_id='candidate-1',
        cast_at=CAST_AT,
        integrity_hash=None,
    )


def test_hash_is_sha256_of_concatenated_fields():
    hasher = VoteIntegrityHasher(salt='vote-salt-2024')
    material = 'voter-1election-1position-1candidate-1' + '2027-02-25T09:30:15.123456+00:00' + 'vote-salt-2024'
    expected = hashlib.sha256(material.encode()).hexdigest()
    assert hasher.compute('voter-1', 'election-1', 'position-1', 'candidate-1', CAST_AT) == expected


def test_stamp_then_verify(vote):
    hasher = VoteIntegrityHasher()
    stamped = hasher.stamp(vote)
    assert len(stamped) == 64
    assert hasher.verify(vote) is True


@pytest.mark.parametrize("field, value", [
    ('voter_id', 'voter-2'),
    ('election_id', 'election-2'),
    ('position_id', 'position-2'),
    ('candidate_id', 'candidate-2'),
    ('cast_at', CAST_AT.replace(microsecond=0)),
])
def test_any_changed_field_breaks_the_hash(vote, field, value):
    hasher = VoteIntegrityHasher()
    hasher.stamp(vote)
    setattr(vote, field, value)
    assert hasher.verify(vote) is False


def test_naive_timestamp_from_storage_verifies(vote):
    hasher = VoteIntegrityHasher()
    hasher.stamp(vote)
    # SQLite returns DateTime columns without tzinfo.
    vote.cast_at = CAST_AT.replace(tzinfo=None)
    assert hasher.verify(vote) is True


def test_salt_changes_the_hash(vote):
    assert VoteIntegrityHasher('a').compute_for(vote) != VoteIntegrityHasher('b').compute_for(vote)


def test_missing_hash_does_not_verify(vote):
    assert VoteIntegrityHasher().verify(vote) is False
