# tests/test_token_manager.py
from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token, decode_token

from votee9ja.database.models import RevokedToken

from conftest import API_KEY


@pytest.fixture
def token_manager(app):
    return app.extensions['token_manager']


def profile_status(client, token):
    rv = client.get('/profile', headers={'apikey': API_KEY, 'Authorization': f'Bearer {token}'})
    return rv.status_code


def refresh_status(client, token):
    rv = client.post('/auth/refresh', headers={'apikey': API_KEY, 'Authorization': f'Bearer {token}'})
    return rv.status_code


def test_issue_session(token_manager, client, voter):
    session = token_manager.issue_session(voter.id)
    assert session['token_type'] == 'bearer'
    assert session['expires_in'] == 15 * 60
    assert decode_token(session['access_token'])['sub'] == voter.id
    assert decode_token(session['refresh_token'])['type'] == 'refresh'
    assert profile_status(client, session['access_token']) == 200


def test_expired_token_is_refused(client, voter):
    token = create_access_token(identity=voter.id, expires_delta=timedelta(seconds=-1))
    rv = client.get('/profile', headers={'apikey': API_KEY, 'Authorization': f'Bearer {token}'})
    assert rv.status_code == 401
    assert 'expired' in rv.get_json()['error']['message']


def test_garbage_token_is_refused(client):
    assert profile_status(client, "not.a.jwt") == 401


def test_revoking_twice_keeps_one_entry(token_manager, session, voter):
    payload = decode_token(token_manager.issue_session(voter.id)['access_token'])
    token_manager.revoke(payload)
    session.commit()
    token_manager.revoke(payload)
    session.commit()
    assert session.query(RevokedToken).count() == 1


def test_rotate_revokes_the_presented_refresh_token(token_manager, client, voter):
    first = token_manager.issue_session(voter.id)
    second = token_manager.rotate(decode_token(first['refresh_token']))

    assert refresh_status(client, first['refresh_token']) == 401
    assert profile_status(client, second['access_token']) == 200
    assert refresh_status(client, second['refresh_token']) == 200


def test_revoke_encoded_accepts_expired_tokens(token_manager, session, voter):
    token = create_access_token(identity=voter.id, expires_delta=timedelta(seconds=-1))
    assert token_manager.revoke_encoded(token) is True
    assert token_manager.revoke_encoded("garbage") is False
    session.commit()
    assert session.query(RevokedToken).count() == 1


def test_revoked_token_is_refused_by_the_api(token_manager, client, session, voter):
    token = token_manager.issue_session(voter.id)['access_token']
    token_manager.revoke(decode_token(token))
    session.commit()

    rv = client.get('/profile', headers={'apikey': API_KEY, 'Authorization': f'Bearer {token}'})
    assert rv.status_code == 401
    assert rv.get_json()['error']['reason'] == 'unauthenticated'
    assert session.query(RevokedToken).count() == 1


def test_missing_token_is_reported_as_unauthenticated(client):
    rv = client.get('/profile', headers={'apikey': API_KEY})
    assert rv.status_code == 401
    assert rv.get_json()['error']['reason'] == 'unauthenticated'
