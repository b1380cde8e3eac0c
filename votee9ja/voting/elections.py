# votee9ja/voting/elections.py

import logging

from sqlalchemy.exc import IntegrityError, OperationalError

from votee9ja.audit.audit_logger import AuditLogger
from votee9ja.authentication.rbac import AccessPolicyEngine, Entity, Operation, UserRole
from votee9ja.database.models import (
    CANDIDATE_STATUSES,
    ELECTION_TYPES,
    Candidate,
    Election,
    Position,
    Vote,
)
from votee9ja.errors import (
    AuthorizationError,
    ImmutableRecordError,
    InvalidTransitionError,
    NotFoundError,
    TransientError,
    UnauthenticatedError,
    ValidationError,
    VoteE9jaError,
)
from votee9ja.operations.clock import as_utc, parse_datetime, utcnow
from votee9ja.security.validators import InputValidator

logger = logging.getLogger(__name__)

# Election lifecycle. Anything not listed is refused.
STATUS_TRANSITIONS = {
    'draft': ('active', 'cancelled'),
    'active': ('completed', 'cancelled'),
    'completed': ('archived',),
    'cancelled': ('archived',),
    'archived': (),
}

# Fields that define what voters are voting on; frozen once voting can start.
CRITICAL_ELECTION_FIELDS = ('title', 'election_type', 'start_date', 'end_date')
EDITABLE_ELECTION_FIELDS = CRITICAL_ELECTION_FIELDS + (
    'description', 'constituency', 'state', 'local_government',
)
EDITABLE_CANDIDATE_FIELDS = (
    'full_name', 'party_affiliation', 'biography', 'campaign_slogan',
    'manifesto', 'photo_url', 'ballot_number', 'ballot_symbol', 'status',
)

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 200


class ElectionService:
    """Administration of elections and their ballots.

    Every mutating call is one transaction: the policy engine is consulted
    against rows loaded in that transaction, the change and its audit
    entry are flushed together, then committed.
    """

    def __init__(self, session, policy=None, validator=None, clock=utcnow):
        self.session = session
        self.policy = policy or AccessPolicyEngine()
        self.validator = validator or InputValidator()
        self.clock = clock
        self.audit = AuditLogger(session)

    # ------------------------------ reads ------------------------------ #

    def list_visible(self, identity):
        elections = self.session.query(Election).order_by(Election.start_date.desc()).all()
        if identity is None:
            return [election for election in elections if election.status in ('active', 'completed')]
        return self.policy.filter_readable(identity, Entity.ELECTION, elections)

    def get(self, identity, election_id):
        election = self.session.get(Election, election_id)
        if election is None:
            raise NotFoundError()
        if identity is None:
            if election.status not in ('active', 'completed'):
                raise NotFoundError()
            return election
        if not self.policy.is_allowed(identity, Entity.ELECTION, Operation.READ, election):
            raise NotFoundError()
        return election

    def active_elections(self, now=None):
        """Active elections whose voting window contains ``now``, ballots attached."""
        now = as_utc(now or self.clock())
        elections = (
            self.session.query(Election)
            .filter(Election.status == 'active')
            .order_by(Election.start_date.asc())
            .all()
        )
        return [
            election for election in elections
            if as_utc(election.start_date) <= now <= as_utc(election.end_date)
        ]

    # ------------------------------ writes ----------------------------- #

    def create(self, identity, data, client_metadata=None):
        _require_identity(identity)
        fields = self._clean_election_fields(data, partial=False)
        election = Election(status='draft', results_published=False, created_by=identity.id, **fields)
        self.policy.authorize(identity, Entity.ELECTION, Operation.INSERT, election)

        def write():
            self.session.add(election)
            self.session.flush()
            self._audit(identity, 'election_created', 'elections', election.id,
                        after=election.to_dict(), client_metadata=client_metadata)
            return election

        election = self._transaction(write)
        logger.info("Election %s created by %s", election.id, identity.id)
        return election

    def update(self, identity, election_id, changes, client_metadata=None):
        _require_identity(identity)
        election = self._load_election(identity, election_id)
        changes = changes or {}
        unknown = set(changes) - set(EDITABLE_ELECTION_FIELDS)
        if unknown:
            raise ValidationError(errors={field: 'This field cannot be changed' for field in sorted(unknown)})
        if election.status != 'draft':
            frozen = [field for field in CRITICAL_ELECTION_FIELDS if field in changes]
            if frozen:
                raise InvalidTransitionError(
                    'Title, type and voting window are fixed once an election leaves draft.'
                )

        fields = self._clean_election_fields(changes, partial=True, current=election)
        self.policy.authorize(identity, Entity.ELECTION, Operation.UPDATE, election, fields)

        def write():
            before = election.to_dict()
            for key, value in fields.items():
                setattr(election, key, value)
            self.session.flush()
            self._audit(identity, 'election_updated', 'elections', election.id,
                        before=before, after=election.to_dict(), client_metadata=client_metadata)
            return election

        return self._transaction(write)

    def transition_status(self, identity, election_id, new_status, client_metadata=None):
        _require_identity(identity)
        election = self._load_election(identity, election_id)
        if new_status not in STATUS_TRANSITIONS:
            raise ValidationError(errors={'status': 'Unknown election status'})
        if new_status not in STATUS_TRANSITIONS[election.status]:
            raise InvalidTransitionError(
                f'An election cannot move from {election.status} to {new_status}.'
            )
        if new_status == 'active' and not election.positions:
            raise ValidationError('An election needs at least one position before it can open.')
        self.policy.authorize(identity, Entity.ELECTION, Operation.UPDATE, election, {'status': new_status})

        def write():
            before = {'status': election.status}
            election.status = new_status
            self.session.flush()
            self._audit(identity, 'election_status_changed', 'elections', election.id,
                        before=before, after={'status': new_status}, client_metadata=client_metadata)
            return election

        election = self._transaction(write)
        logger.info("Election %s moved to %s by %s", election.id, new_status, identity.id)
        return election

    def publish_results(self, identity, election_id, client_metadata=None):
        _require_identity(identity)
        election = self._load_election(identity, election_id)
        if election.status != 'completed':
            raise InvalidTransitionError('Results can only be published for completed elections.')
        if election.results_published:
            raise InvalidTransitionError('Results are already published.')
        self.policy.authorize(identity, Entity.ELECTION, Operation.UPDATE, election, {'results_published': True})

        def write():
            election.results_published = True
            election.results_published_at = self.clock()
            self.session.flush()
            self._audit(identity, 'results_published', 'elections', election.id,
                        after={'results_published_at': election.to_dict()['results_published_at']},
                        client_metadata=client_metadata)
            return election

        return self._transaction(write)

    def emergency_suspend(self, identity, election_id, reason=None, client_metadata=None):
        """Cancel an election outside the normal lifecycle. Super admins only."""
        _require_identity(identity)
        if identity.role != UserRole.SUPER_ADMIN:
            logger.warning("Emergency suspend refused for %s", identity.id)
            raise AuthorizationError()
        election = self.session.get(Election, election_id)
        if election is None:
            raise NotFoundError()
        if election.status in ('cancelled', 'archived'):
            raise InvalidTransitionError(f'Election is already {election.status}.')

        def write():
            before = {'status': election.status}
            election.status = 'cancelled'
            self.session.flush()
            self._audit(identity, 'emergency_suspend_election', 'elections', election.id,
                        before=before, after={'status': 'cancelled', 'reason': reason},
                        client_metadata=client_metadata)
            return election

        election = self._transaction(write)
        logger.warning("Election %s suspended by %s: %s", election.id, identity.id, reason)
        return election

    def delete(self, identity, election_id, client_metadata=None):
        _require_identity(identity)
        election = self._load_election(identity, election_id)
        self.policy.authorize(identity, Entity.ELECTION, Operation.DELETE, election)
        if self.session.query(Vote.id).filter(Vote.election_id == election.id).first() is not None:
            raise ImmutableRecordError('Elections with recorded votes cannot be deleted.')

        def write():
            before = election.to_dict()
            self.session.delete(election)
            self.session.flush()
            self._audit(identity, 'election_deleted', 'elections', before['id'],
                        before=before, client_metadata=client_metadata)

        try:
            self._transaction(write)
        except ValidationError:
            # A vote landed between the check and the delete.
            raise ImmutableRecordError('Elections with recorded votes cannot be deleted.')
        logger.info("Election %s deleted by %s", election_id, identity.id)

    # ------------------------------ ballot ----------------------------- #

    def add_position(self, identity, election_id, data, client_metadata=None):
        _require_identity(identity)
        election = self._load_election(identity, election_id)
        _require_draft(election)

        data = data or {}
        errors = {}
        title = self._clean_text(data.get('title'), 'Title', errors, 'title', max_length=100)
        max_selections = _as_int(data.get('max_selections', 1), 'max_selections', errors, minimum=1)
        display_order = _as_int(data.get('display_order', len(election.positions)), 'display_order', errors)
        if errors:
            raise ValidationError(errors=errors)

        position = Position(
            election_id=election.id,
            title=title,
            description=self._clean_optional(data.get('description'), 2000),
            max_selections=max_selections,
            display_order=display_order,
        )
        self.policy.authorize(identity, Entity.POSITION, Operation.INSERT, position)

        def write():
            self.session.add(position)
            self.session.flush()
            self._audit(identity, 'position_created', 'positions', position.id,
                        after=position.to_dict(), client_metadata=client_metadata)
            return position

        return self._transaction(write)

    def add_candidate(self, identity, position_id, data, client_metadata=None):
        _require_identity(identity)
        position = self.session.get(Position, position_id)
        if position is None or not self.policy.is_allowed(identity, Entity.POSITION, Operation.READ, position):
            raise NotFoundError()
        _require_draft(position.election)

        fields = self._clean_candidate_fields(data or {}, partial=False)
        candidate = Candidate(position_id=position.id, created_by=identity.id, **fields)
        self.policy.authorize(identity, Entity.CANDIDATE, Operation.INSERT, candidate)

        def write():
            self.session.add(candidate)
            self.session.flush()
            self._audit(identity, 'candidate_created', 'candidates', candidate.id,
                        after=candidate.to_dict(), client_metadata=client_metadata)
            return candidate

        return self._transaction(write)

    def update_candidate(self, identity, candidate_id, changes, client_metadata=None):
        """Edit a candidate. Once the election leaves draft only ``status`` may change."""
        _require_identity(identity)
        candidate = self.session.get(Candidate, candidate_id)
        if candidate is None or not self.policy.is_allowed(identity, Entity.CANDIDATE, Operation.READ, candidate):
            raise NotFoundError()
        changes = changes or {}
        unknown = set(changes) - set(EDITABLE_CANDIDATE_FIELDS)
        if unknown:
            raise ValidationError(errors={field: 'This field cannot be changed' for field in sorted(unknown)})
        if candidate.position.election.status != 'draft' and set(changes) - {'status'}:
            raise InvalidTransitionError('Only the candidate status can change once voting is scheduled.')

        fields = self._clean_candidate_fields(changes, partial=True)
        self.policy.authorize(identity, Entity.CANDIDATE, Operation.UPDATE, candidate, fields)

        def write():
            before = candidate.to_dict()
            for key, value in fields.items():
                setattr(candidate, key, value)
            self.session.flush()
            self._audit(identity, 'candidate_updated', 'candidates', candidate.id,
                        before=before, after=candidate.to_dict(), client_metadata=client_metadata)
            return candidate

        return self._transaction(write)

    # ----------------------------- helpers ----------------------------- #

    def _load_election(self, identity, election_id):
        election = self.session.get(Election, election_id)
        if election is None or not self.policy.is_allowed(identity, Entity.ELECTION, Operation.READ, election):
            raise NotFoundError()
        return election

    def _transaction(self, write):
        try:
            result = write()
            self.session.commit()
            return result
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Constraint violation: %s", exc.orig)
            raise ValidationError('The change conflicts with existing records.')
        except OperationalError:
            self.session.rollback()
            logger.exception("Storage unavailable")
            raise TransientError()
        except VoteE9jaError:
            self.session.rollback()
            raise

    def _audit(self, identity, action, table, row_id, before=None, after=None, client_metadata=None):
        client_metadata = client_metadata or {}
        self.audit.log(
            actor_id=identity.id,
            action=action,
            affected_table=table,
            affected_id=row_id,
            before=before,
            after=after,
            ip_address=client_metadata.get('ip_address'),
            user_agent=client_metadata.get('user_agent'),
        )

    def _clean_text(self, value, label, errors, key, max_length=TITLE_MAX_LENGTH, min_length=TITLE_MIN_LENGTH):
        if not isinstance(value, str) or not value.strip():
            errors[key] = f'{label} is required'
            return None
        cleaned = self.validator.sanitize_string(value, max_length=max_length)
        if len(cleaned) < min_length:
            errors[key] = f'{label} must be at least {min_length} characters long'
            return None
        return cleaned

    def _clean_optional(self, value, max_length):
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError(errors={'description': 'Must be text'})
        return self.validator.sanitize_string(value, max_length=max_length) or None

    def _clean_election_fields(self, data, partial, current=None):
        data = data or {}
        errors = {}
        fields = {}

        if not partial or 'title' in data:
            fields['title'] = self._clean_text(data.get('title'), 'Title', errors, 'title')
        if not partial or 'election_type' in data:
            if data.get('election_type') not in ELECTION_TYPES:
                errors['election_type'] = 'Election type must be one of: ' + ', '.join(ELECTION_TYPES)
            else:
                fields['election_type'] = data['election_type']
        for key in ('start_date', 'end_date'):
            if not partial or key in data:
                parsed = parse_datetime(data.get(key))
                if parsed is None:
                    errors[key] = 'Please enter a valid date and time'
                else:
                    fields[key] = parsed
        for key, limit in (('description', 5000), ('constituency', 100), ('state', 50), ('local_government', 100)):
            if key in data:
                value = data[key]
                if value is not None and not isinstance(value, str):
                    errors[key] = 'Must be text'
                else:
                    fields[key] = self.validator.sanitize_string(value, max_length=limit) if value else None

        start = fields.get('start_date', current.start_date if current is not None else None)
        end = fields.get('end_date', current.end_date if current is not None else None)
        if 'start_date' not in errors and 'end_date' not in errors and start and end:
            if as_utc(end) <= as_utc(start):
                errors['end_date'] = 'End date must be after the start date'

        if errors:
            raise ValidationError(errors=errors)
        return fields

    def _clean_candidate_fields(self, data, partial):
        errors = {}
        fields = {}
        if not partial or 'full_name' in data:
            result = self.validator.validate_required_text(data.get('full_name'), 'Full name', 2, 200)
            if result:
                fields['full_name'] = result.cleaned_value
            else:
                errors['full_name'] = result.message
        if 'status' in data:
            if data['status'] not in CANDIDATE_STATUSES:
                errors['status'] = 'Status must be one of: ' + ', '.join(CANDIDATE_STATUSES)
            else:
                fields['status'] = data['status']
        if 'ballot_number' in data and data['ballot_number'] is not None:
            fields['ballot_number'] = _as_int(data['ballot_number'], 'ballot_number', errors, minimum=1)
        for key, limit in (
            ('party_affiliation', 100), ('biography', 5000), ('campaign_slogan', 500),
            ('manifesto', 20000), ('photo_url', 500), ('ballot_symbol', 100),
        ):
            if key in data:
                value = data[key]
                if value is not None and not isinstance(value, str):
                    errors[key] = 'Must be text'
                else:
                    fields[key] = self.validator.sanitize_string(value, max_length=limit) if value else None
        if errors:
            raise ValidationError(errors=errors)
        return fields


def _require_identity(identity):
    if identity is None:
        raise UnauthenticatedError()


def _require_draft(election):
    if election.status != 'draft':
        raise InvalidTransitionError('The ballot can only be changed while the election is a draft.')


def _as_int(value, key, errors, minimum=0):
    if isinstance(value, bool):
        errors[key] = 'Must be a whole number'
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors[key] = 'Must be a whole number'
        return None
    if number < minimum:
        errors[key] = f'Must be at least {minimum}'
        return None
    return number
