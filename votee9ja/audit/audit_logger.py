# votee9ja/audit/audit_logger.py

import hashlib
import json
import logging

from votee9ja.database.models import AuditRecord
from votee9ja.operations.clock import canonical_timestamp, utcnow

# Append-only audit trail with hash chaining. Entries are added to the
# caller's session so they commit or roll back with the change they
# describe; the caller owns the transaction.

logger = logging.getLogger(__name__)


class AuditLogger:
    def __init__(self, session):
        self.session = session

    def _previous_hash(self):
        last = (
            self.session.query(AuditRecord.entry_hash)
            .order_by(AuditRecord.id.desc())
            .limit(1)
            .scalar()
        )
        return last

    @staticmethod
    def compute_hash(record):
        entry = {
            "actor_id": record.actor_id,
            "action": record.action,
            "affected_table": record.affected_table,
            "affected_id": record.affected_id,
            "before": record.before,
            "after": record.after,
            "created_at": canonical_timestamp(record.created_at),
            "previous_hash": record.previous_hash,
        }
        entry_json = json.dumps(entry, sort_keys=True, default=str)
        return hashlib.sha256(entry_json.encode()).hexdigest()

    def log(self, actor_id, action, affected_table=None, affected_id=None,
            before=None, after=None, ip_address=None, user_agent=None):
        if actor_id is None:
            raise ValueError("Audit entries need an actor")
        # TODO: serialize chain appends (advisory lock) so concurrent writers
        # on Postgres cannot fork the chain.
        record = AuditRecord(
            actor_id=actor_id,
            action=action,
            affected_table=affected_table,
            affected_id=affected_id,
            before=before,
            after=after,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=utcnow(),
            previous_hash=self._previous_hash(),
        )
        record.entry_hash = self.compute_hash(record)
        self.session.add(record)
        self.session.flush()
        logger.info("audit %s on %s/%s by %s", action, affected_table, affected_id, actor_id)
        return record

    def verify_chain(self):
        previous_hash = None
        for record in self.session.query(AuditRecord).order_by(AuditRecord.id.asc()):
            if record.previous_hash != previous_hash:
                logger.warning("Audit chain broken at entry %s", record.id)
                return False
            if self.compute_hash(record) != record.entry_hash:
                logger.warning("Audit entry %s does not match its hash", record.id)
                return False
            previous_hash = record.entry_hash
        return True
