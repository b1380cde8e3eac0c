# votee9ja/routes.py

# JSON API. Views are thin: they parse the request, resolve the caller's
# identity and hand off to the services, which own validation, policy
# checks, transactions and auditing.

import hmac
import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt, jwt_required
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from votee9ja import db, limiter
from votee9ja.authentication.accounts import AccountService
from votee9ja.authentication.rbac import AccessPolicyEngine, Entity, UserRole, current_identity, require_role
from votee9ja.database.models import AuditRecord
from votee9ja.errors import TransientError, UnauthenticatedError, ValidationError, VoteE9jaError
from votee9ja.voting.elections import ElectionService
from votee9ja.voting.ledger import VoteLedger
from votee9ja.voting.results import election_results, turnout

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

VOTE_FIELDS = ('election_id', 'position_id', 'candidate_id')
AUDIT_PAGE_DEFAULT = 100
AUDIT_PAGE_MAX = 500


# ------------------------------- plumbing ------------------------------- #

def _client_metadata():
    return {
        'ip_address': request.remote_addr,
        'user_agent': request.headers.get('User-Agent'),
    }


def _json_body():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object.')
    return payload


def _error_response(error):
    return jsonify({'error': error.to_dict()}), error.status_code


def _ledger():
    return VoteLedger(
        db.session,
        current_app.extensions['vote_hasher'],
        channel=current_app.extensions['results_channel'],
    )


def _token_manager():
    return current_app.extensions['token_manager']


@api.before_request
def require_api_key():
    if request.endpoint == 'api.health':
        return None
    presented = request.headers.get('apikey', '')
    expected = current_app.config['API_KEY']
    if not presented or not hmac.compare_digest(presented.encode(), expected.encode()):
        logger.warning("Request without valid API key from %s", request.remote_addr)
        return _error_response(UnauthenticatedError('A valid API key is required.'))
    return None


@api.app_errorhandler(VoteE9jaError)
def handle_service_error(error):
    return _error_response(error)


@api.app_errorhandler(OperationalError)
def handle_storage_error(error):
    db.session.rollback()
    logger.exception("Storage unavailable")
    return _error_response(TransientError())


@api.app_errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return jsonify({'error': {'reason': 'unknown', 'message': error.description}}), error.code
    db.session.rollback()
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return _error_response(VoteE9jaError())


# ------------------------------- accounts ------------------------------- #

@api.route('/auth/register', methods=['POST'])
@limiter.limit("10/hour")
def register():
    profile = AccountService(db.session).register(_json_body(), _client_metadata())
    return jsonify({'profile': profile.to_dict()}), 201


@api.route('/auth/login', methods=['POST'])
@limiter.limit("5/minute")
def login():
    payload = _json_body()
    profile = AccountService(db.session).authenticate(
        payload.get('email'), payload.get('password'), _client_metadata()
    )
    session = _token_manager().issue_session(profile.id)
    session['profile'] = profile.to_dict()
    return jsonify(session)


@api.route('/auth/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    # Rotate refresh token and issue new access token
    return jsonify(_token_manager().rotate(get_jwt()))


@api.route('/auth/logout', methods=['POST'])
@jwt_required(verify_type=False)
def logout():
    manager = _token_manager()
    manager.revoke(get_jwt())
    refresh_token = _json_body().get('refresh_token')
    if refresh_token:
        manager.revoke_encoded(refresh_token)
    db.session.commit()
    return jsonify({'signed_out': True})


@api.route('/profile', methods=['GET'])
def get_profile():
    profile = AccountService(db.session).get_profile(current_identity())
    return jsonify({'profile': profile.to_dict()})


@api.route('/profile', methods=['PATCH'])
def update_profile():
    profile = AccountService(db.session).update_profile(current_identity(), _json_body(), _client_metadata())
    return jsonify({'profile': profile.to_dict()})


@api.route('/users', methods=['GET'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def list_users():
    profiles = AccountService(db.session).list_users(current_identity())
    return jsonify({'users': [profile.to_dict() for profile in profiles]})


@api.route('/users/<voter_id>', methods=['PATCH'])
@require_role(UserRole.SUPER_ADMIN)
def update_user(voter_id):
    profile = AccountService(db.session).update_user(
        current_identity(), voter_id, _json_body(), _client_metadata()
    )
    return jsonify({'profile': profile.to_dict()})


# ------------------------------- elections ------------------------------ #

@api.route('/elections', methods=['GET'])
def list_elections():
    elections = ElectionService(db.session).list_visible(current_identity(optional=True))
    return jsonify({'elections': [election.to_dict() for election in elections]})


@api.route('/elections/active', methods=['GET'])
def active_elections():
    elections = ElectionService(db.session).active_elections()
    return jsonify({'elections': [election.to_dict(include_ballot=True) for election in elections]})


@api.route('/elections/<election_id>', methods=['GET'])
def get_election(election_id):
    election = ElectionService(db.session).get(current_identity(optional=True), election_id)
    return jsonify({'election': election.to_dict(include_ballot=True)})


@api.route('/elections', methods=['POST'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def create_election():
    election = ElectionService(db.session).create(current_identity(), _json_body(), _client_metadata())
    return jsonify({'election': election.to_dict()}), 201


@api.route('/elections/<election_id>', methods=['PATCH'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def update_election(election_id):
    election = ElectionService(db.session).update(
        current_identity(), election_id, _json_body(), _client_metadata()
    )
    return jsonify({'election': election.to_dict()})


@api.route('/elections/<election_id>/status', methods=['POST'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def change_election_status(election_id):
    election = ElectionService(db.session).transition_status(
        current_identity(), election_id, _json_body().get('status'), _client_metadata()
    )
    return jsonify({'election': election.to_dict()})


@api.route('/elections/<election_id>/publish', methods=['POST'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def publish_results(election_id):
    election = ElectionService(db.session).publish_results(current_identity(), election_id, _client_metadata())
    return jsonify({'election': election.to_dict()})


@api.route('/elections/<election_id>/suspend', methods=['POST'])
@require_role(UserRole.SUPER_ADMIN)
def suspend_election(election_id):
    election = ElectionService(db.session).emergency_suspend(
        current_identity(), election_id, _json_body().get('reason'), _client_metadata()
    )
    return jsonify({'election': election.to_dict()})


@api.route('/elections/<election_id>', methods=['DELETE'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def delete_election(election_id):
    ElectionService(db.session).delete(current_identity(), election_id, _client_metadata())
    return '', 204


@api.route('/elections/<election_id>/positions', methods=['POST'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def add_position(election_id):
    position = ElectionService(db.session).add_position(
        current_identity(), election_id, _json_body(), _client_metadata()
    )
    return jsonify({'position': position.to_dict()}), 201


@api.route('/positions/<position_id>/candidates', methods=['POST'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def add_candidate(position_id):
    candidate = ElectionService(db.session).add_candidate(
        current_identity(), position_id, _json_body(), _client_metadata()
    )
    return jsonify({'candidate': candidate.to_dict()}), 201


@api.route('/candidates/<candidate_id>', methods=['PATCH'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def update_candidate(candidate_id):
    candidate = ElectionService(db.session).update_candidate(
        current_identity(), candidate_id, _json_body(), _client_metadata()
    )
    return jsonify({'candidate': candidate.to_dict()})


# --------------------------------- votes -------------------------------- #

@api.route('/votes', methods=['POST'])
@limiter.limit("30/minute")
def cast_vote():
    identity = current_identity()
    payload = _json_body()
    if 'voter_id' in payload:
        # The voter is always the authenticated caller.
        raise ValidationError(errors={'voter_id': 'This field cannot be set'})
    errors = {}
    for field in VOTE_FIELDS:
        if not payload.get(field):
            errors[field] = 'This field is required'
        elif not isinstance(payload[field], str):
            errors[field] = 'Must be an id string'
    if errors:
        raise ValidationError(errors=errors)

    vote = _ledger().cast_vote(
        identity,
        payload['election_id'],
        payload['position_id'],
        payload['candidate_id'],
        _client_metadata(),
    )
    return jsonify({'vote': vote.to_dict()}), 201


@api.route('/votes/mine', methods=['GET'])
def my_votes():
    votes = _ledger().votes_for(current_identity(), request.args.get('election_id'))
    return jsonify({'votes': [vote.to_dict() for vote in votes]})


@api.route('/votes/<vote_id>/verify', methods=['GET'])
def verify_vote(vote_id):
    valid = _ledger().verify_vote(current_identity(), vote_id)
    return jsonify({'vote_id': vote_id, 'valid': valid})


# -------------------------------- results ------------------------------- #

@api.route('/elections/<election_id>/results', methods=['GET'])
def get_results(election_id):
    return jsonify(election_results(db.session, current_identity(optional=True), election_id))


@api.route('/elections/<election_id>/turnout', methods=['GET'])
def get_turnout(election_id):
    return jsonify(turnout(db.session, current_identity(optional=True), election_id))


@api.route('/elections/<election_id>/integrity', methods=['GET'])
@require_role(UserRole.ADMIN, UserRole.SUPER_ADMIN)
def election_integrity(election_id):
    return jsonify(_ledger().audit_integrity(current_identity(), election_id))


# ------------------------------ audit trail ----------------------------- #

@api.route('/audit-logs', methods=['GET'])
def audit_logs():
    identity = current_identity()
    try:
        limit = min(max(int(request.args.get('limit', AUDIT_PAGE_DEFAULT)), 1), AUDIT_PAGE_MAX)
        offset = max(int(request.args.get('offset', 0)), 0)
    except ValueError:
        raise ValidationError(errors={'limit': 'limit and offset must be whole numbers'})

    query = db.session.query(AuditRecord)
    if not identity.is_privileged:
        query = query.filter(AuditRecord.actor_id == identity.id)
    records = query.order_by(AuditRecord.id.desc()).offset(offset).limit(limit).all()
    records = AccessPolicyEngine().filter_readable(identity, Entity.AUDIT_RECORD, records)
    return jsonify({'entries': [record.to_dict() for record in records]})


@api.route('/health', methods=['GET'])
def health():
    try:
        db.session.execute(text('SELECT 1'))
    except OperationalError:
        db.session.rollback()
        logger.exception("Health check failed")
        return jsonify({'status': 'unhealthy', 'database': 'unreachable'}), 503
    return jsonify({'status': 'healthy', 'database': 'connected'})
