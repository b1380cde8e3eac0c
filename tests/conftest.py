import itertools
from datetime import date, timedelta

import pytest
from flask_jwt_extended import create_access_token

from votee9ja import create_app, db
from votee9ja.authentication.rbac import Identity
from votee9ja.database.models import Account, Candidate, Election, Position, Voter
from votee9ja.encryption.password_hashing import PasswordHashingService
from votee9ja.operations.clock import utcnow
from votee9ja.voting.integrity import VoteIntegrityHasher

API_KEY = 'test-api-key'
TEST_SALT = 'test-salt'


def make_config(**extra):
    config = {
        'DATABASE_URL': 'sqlite://',
        'VOTE_E9JA_API_KEY': API_KEY,
        'JWT_SECRET_KEY': 'test-jwt-secret-key-with-enough-length',
        'VOTE_HASH_SALT': TEST_SALT,
        'RATELIMIT_ENABLED': False,
        'TESTING': True,
    }
    config.update(extra)
    return config


@pytest.fixture
def app():
    app = create_app(make_config())
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def hasher():
    return VoteIntegrityHasher(salt=TEST_SALT)


class Factory:
    """Builds rows directly, bypassing services, for test setup."""

    def __init__(self, session):
        self.session = session
        self._seq = itertools.count(1)

    def voter(self, role='voter', is_verified=True, date_of_birth=date(1990, 5, 17), password=None,
              email=None, first_name='Ada', last_name='Okafor'):
        n = next(self._seq)
        password_hash = PasswordHashingService().hash_password(password) if password else 'unusable-hash'
        account = Account(email=email or f'voter{n}@example.com', password_hash=password_hash)
        self.session.add(account)
        self.session.flush()
        voter = Voter(
            id=account.id,
            first_name=first_name,
            last_name=last_name,
            phone_number=f'0803{n:07d}',
            date_of_birth=date_of_birth,
            gender='female',
            address='12 Marina Road, Lagos Island',
            role=role,
            is_verified=is_verified,
        )
        self.session.add(voter)
        self.session.commit()
        return voter

    def identity(self, voter):
        return Identity.from_profile(voter)

    def election(self, creator, status='active', start=None, end=None, positions=1, candidates=2,
                 results_published=False, title='Lagos Governorship Election'):
        now = utcnow()
        election = Election(
            title=title,
            election_type='gubernatorial',
            state='Lagos',
            start_date=start or now - timedelta(hours=1),
            end_date=end or now + timedelta(hours=8),
            status=status,
            results_published=results_published,
            created_by=creator.id,
        )
        for p in range(positions):
            position = Position(title=f'Position {p + 1}', display_order=p)
            for c in range(candidates):
                position.candidates.append(Candidate(
                    full_name=f'Candidate {p + 1}-{c + 1}',
                    party_affiliation=('APC', 'PDP', 'LP')[c % 3],
                    ballot_number=c + 1,
                    created_by=creator.id,
                ))
            election.positions.append(position)
        self.session.add(election)
        self.session.commit()
        return election


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest.fixture
def admin(factory):
    return factory.voter(role='admin', first_name='Bola', last_name='Adeyemi')


@pytest.fixture
def super_admin(factory):
    return factory.voter(role='super_admin', first_name='Chidi', last_name='Nwosu')


@pytest.fixture
def voter(factory):
    return factory.voter()


@pytest.fixture
def headers_for(app):
    """Request headers carrying the API key and an access token for ``profile``."""
    def build(profile=None):
        headers = {'apikey': API_KEY}
        if profile is not None:
            headers['Authorization'] = f'Bearer {create_access_token(identity=profile.id)}'
        return headers
    return build
