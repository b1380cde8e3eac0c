# votee9ja/database/models.py

import uuid
from datetime import date

from sqlalchemy import CheckConstraint, UniqueConstraint, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from votee9ja import db
from votee9ja.errors import ImmutableRecordError
from votee9ja.operations.clock import as_utc, utcnow

# Schema for accounts, voter profiles, elections, ballots, votes and the
# audit trail.

ROLES = ('voter', 'admin', 'super_admin')
GENDERS = ('male', 'female', 'other')
ELECTION_TYPES = (
    'presidential', 'gubernatorial', 'senatorial',
    'house_of_reps', 'state_assembly', 'local_government',
)
ELECTION_STATUSES = ('draft', 'active', 'completed', 'cancelled', 'archived')
CANDIDATE_STATUSES = ('active', 'withdrawn', 'disqualified')


def _uuid():
    return str(uuid.uuid4())


def _in(column, values):
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


def _iso(value):
    if value is None:
        return None
    if isinstance(value, date) and not hasattr(value, 'hour'):
        return value.isoformat()
    return as_utc(value).isoformat()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FOREIGN KEY clauses unless asked per connection.
    if type(dbapi_connection).__module__.startswith('sqlite3'):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class Account(db.Model):
    """Identity-provider record: credentials only, profile lives on Voter."""
    __tablename__ = 'accounts'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(254), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)  # Argon2id
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    last_sign_in_at = db.Column(db.DateTime(timezone=True))

    profile = db.relationship(
        'Voter', back_populates='account', uselist=False,
        cascade='all, delete-orphan', passive_deletes=True,
    )

    def __repr__(self):
        return f'<Account {self.id}>'


class Voter(db.Model):
    __tablename__ = 'voters'
    __table_args__ = (
        CheckConstraint(_in('gender', GENDERS), name='ck_voter_gender'),
        CheckConstraint(_in('role', ROLES), name='ck_voter_role'),
    )

    id = db.Column(db.String(36), db.ForeignKey('accounts.id', ondelete='CASCADE'), primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    surname = db.Column(db.String(100))
    phone_number = db.Column(db.String(15), unique=True, nullable=False)
    nin = db.Column(db.String(11), unique=True)
    date_of_birth = db.Column(db.Date, nullable=False)
    gender = db.Column(db.String(10), nullable=False)
    address = db.Column(db.Text, nullable=False)
    occupation = db.Column(db.String(100))
    role = db.Column(db.String(20), nullable=False, default='voter')
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    verification_method = db.Column(db.String(50))  # email, phone, nin, manual
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_login = db.Column(db.DateTime(timezone=True))
    login_count = db.Column(db.Integer, nullable=False, default=0)

    account = db.relationship('Account', back_populates='profile')

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.account.email if self.account else None,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'surname': self.surname,
            'phone_number': self.phone_number,
            'nin': self.nin,
            'date_of_birth': _iso(self.date_of_birth),
            'gender': self.gender,
            'address': self.address,
            'occupation': self.occupation,
            'role': self.role,
            'is_verified': self.is_verified,
            'verification_method': self.verification_method,
            'created_at': _iso(self.created_at),
            'last_login': _iso(self.last_login),
            'login_count': self.login_count,
        }

    def __repr__(self):
        return f'<Voter {self.id} role={self.role}>'


class Election(db.Model):
    __tablename__ = 'elections'
    __table_args__ = (
        CheckConstraint('end_date > start_date', name='valid_election_dates'),
        CheckConstraint(_in('status', ELECTION_STATUSES), name='ck_election_status'),
        CheckConstraint(_in('election_type', ELECTION_TYPES), name='ck_election_type'),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    election_type = db.Column(db.String(50), nullable=False)
    constituency = db.Column(db.String(100))
    state = db.Column(db.String(50))
    local_government = db.Column(db.String(100))
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='draft')
    results_published = db.Column(db.Boolean, nullable=False, default=False)
    results_published_at = db.Column(db.DateTime(timezone=True))
    created_by = db.Column(db.String(36), db.ForeignKey('voters.id'))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    positions = db.relationship(
        'Position', back_populates='election', cascade='all, delete-orphan',
        order_by='Position.display_order',
    )

    def to_dict(self, include_ballot=False):
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'election_type': self.election_type,
            'constituency': self.constituency,
            'state': self.state,
            'local_government': self.local_government,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'status': self.status,
            'results_published': self.results_published,
            'results_published_at': _iso(self.results_published_at),
            'created_by': self.created_by,
        }
        if include_ballot:
            data['positions'] = [position.to_dict(include_candidates=True) for position in self.positions]
        return data

    def __repr__(self):
        return f'<Election {self.id} {self.status}>'


class Position(db.Model):
    __tablename__ = 'positions'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    election_id = db.Column(db.String(36), db.ForeignKey('elections.id', ondelete='CASCADE'), nullable=False)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    max_selections = db.Column(db.Integer, nullable=False, default=1)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    election = db.relationship('Election', back_populates='positions')
    candidates = db.relationship(
        'Candidate', back_populates='position', cascade='all, delete-orphan',
        order_by='Candidate.ballot_number',
    )

    def to_dict(self, include_candidates=False):
        data = {
            'id': self.id,
            'election_id': self.election_id,
            'title': self.title,
            'description': self.description,
            'max_selections': self.max_selections,
            'display_order': self.display_order,
        }
        if include_candidates:
            data['candidates'] = [candidate.to_dict() for candidate in self.candidates]
        return data


class Candidate(db.Model):
    __tablename__ = 'candidates'
    __table_args__ = (
        UniqueConstraint('position_id', 'ballot_number', name='uq_candidate_ballot_number'),
        CheckConstraint(_in('status', CANDIDATE_STATUSES), name='ck_candidate_status'),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    position_id = db.Column(db.String(36), db.ForeignKey('positions.id', ondelete='CASCADE'), nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    party_affiliation = db.Column(db.String(100))
    biography = db.Column(db.Text)
    campaign_slogan = db.Column(db.String(500))
    manifesto = db.Column(db.Text)
    photo_url = db.Column(db.String(500))
    ballot_number = db.Column(db.Integer)
    ballot_symbol = db.Column(db.String(100))
    status = db.Column(db.String(20), nullable=False, default='active')
    created_by = db.Column(db.String(36), db.ForeignKey('voters.id'))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    position = db.relationship('Position', back_populates='candidates')

    def to_dict(self):
        return {
            'id': self.id,
            'position_id': self.position_id,
            'full_name': self.full_name,
            'party_affiliation': self.party_affiliation,
            'biography': self.biography,
            'campaign_slogan': self.campaign_slogan,
            'manifesto': self.manifesto,
            'photo_url': self.photo_url,
            'ballot_number': self.ballot_number,
            'ballot_symbol': self.ballot_symbol,
            'status': self.status,
        }


class Vote(db.Model):
    """Append-only ledger row. One per (voter, election, position)."""
    __tablename__ = 'votes'
    __table_args__ = (
        UniqueConstraint('voter_id', 'election_id', 'position_id', name='uq_vote_voter_election_position'),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    voter_id = db.Column(db.String(36), db.ForeignKey('voters.id'), nullable=False)
    election_id = db.Column(db.String(36), db.ForeignKey('elections.id'), nullable=False)
    position_id = db.Column(db.String(36), db.ForeignKey('positions.id'), nullable=False)
    candidate_id = db.Column(db.String(36), db.ForeignKey('candidates.id'), nullable=False)
    integrity_hash = db.Column(db.String(64), nullable=False)  # SHA-256 hex
    cast_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.Text)

    voter = db.relationship('Voter')
    election = db.relationship('Election')
    position = db.relationship('Position')
    candidate = db.relationship('Candidate')

    def to_dict(self):
        return {
            'id': self.id,
            'voter_id': self.voter_id,
            'election_id': self.election_id,
            'position_id': self.position_id,
            'candidate_id': self.candidate_id,
            'integrity_hash': self.integrity_hash,
            'cast_at': _iso(self.cast_at),
            'election_title': self.election.title if self.election else None,
            'position_title': self.position.title if self.position else None,
            'candidate_name': self.candidate.full_name if self.candidate else None,
            'party_affiliation': self.candidate.party_affiliation if self.candidate else None,
        }

    def __repr__(self):
        return f'<Vote {self.id} by Voter {self.voter_id}>'


class AuditRecord(db.Model):
    __tablename__ = 'audit_logs'
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    actor_id = db.Column(db.String(36), db.ForeignKey('voters.id'))
    action = db.Column(db.String(100), nullable=False)
    affected_table = db.Column(db.String(50))
    affected_id = db.Column(db.String(36))
    before = db.Column(db.JSON)
    after = db.Column(db.JSON)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    previous_hash = db.Column(db.String(64))
    entry_hash = db.Column(db.String(64), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'actor_id': self.actor_id,
            'action': self.action,
            'affected_table': self.affected_table,
            'affected_id': self.affected_id,
            'before': self.before,
            'after': self.after,
            'created_at': _iso(self.created_at),
            'previous_hash': self.previous_hash,
            'entry_hash': self.entry_hash,
        }


class RevokedToken(db.Model):
    __tablename__ = 'revoked_tokens'
    jti = db.Column(db.String(64), primary_key=True)
    account_id = db.Column(db.String(36), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), default=utcnow)


# Votes and audit entries are append-only: refuse ORM updates and deletes,
# including bulk query.update()/delete() statements.
APPEND_ONLY_MODELS = (Vote, AuditRecord)


def _refuse_mutation(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only")


for _model in APPEND_ONLY_MODELS:
    event.listen(_model, 'before_update', _refuse_mutation)
    event.listen(_model, 'before_delete', _refuse_mutation)


@event.listens_for(Session, 'do_orm_execute')
def _refuse_bulk_mutation(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    for mapper in orm_execute_state.all_mappers:
        if mapper.class_ in APPEND_ONLY_MODELS:
            raise ImmutableRecordError(f"{mapper.class_.__name__} rows are append-only")
