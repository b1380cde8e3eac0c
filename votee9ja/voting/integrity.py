# votee9ja/voting/integrity.py

import hashlib
import hmac

from votee9ja.config import DEFAULT_VOTE_HASH_SALT
from votee9ja.operations.clock import canonical_timestamp

# Tamper evidence for ledger rows: a SHA-256 fingerprint over the vote's
# fields and a fixed salt. An auditor who can read a row can recompute the
# fingerprint and detect any field changed after insertion. The fingerprint
# sits next to the plaintext fields, so it proves nothing about secrecy or
# ordering.


class VoteIntegrityHasher:
    def __init__(self, salt: str = DEFAULT_VOTE_HASH_SALT):
        self.salt = salt

    def compute(self, voter_id, election_id, position_id, candidate_id, cast_at) -> str:
        material = (
            str(voter_id)
            + str(election_id)
            + str(position_id)
            + str(candidate_id)
            + canonical_timestamp(cast_at)
            + self.salt
        )
        return hashlib.sha256(material.encode()).hexdigest()

    def compute_for(self, vote) -> str:
        return self.compute(
            vote.voter_id, vote.election_id, vote.position_id, vote.candidate_id, vote.cast_at
        )

    def stamp(self, vote) -> str:
        vote.integrity_hash = self.compute_for(vote)
        return vote.integrity_hash

    def verify(self, vote) -> bool:
        if not vote.integrity_hash:
            return False
        return hmac.compare_digest(self.compute_for(vote), vote.integrity_hash)
