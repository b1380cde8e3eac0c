# votee9ja/security/token_manager.py
import logging

from flask import Flask, current_app, jsonify
from flask_jwt_extended import create_access_token, create_refresh_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError

from votee9ja import db, jwt
from votee9ja.database.models import RevokedToken
from votee9ja.errors import UnauthenticatedError

logger = logging.getLogger(__name__)


def _unauthenticated_response(message=None):
    error = UnauthenticatedError(message)
    return jsonify({'error': error.to_dict()}), error.status_code


# Access/refresh JWT pairs with a revocation list stored in the database.
class TokenManager:
    def __init__(self, app: Flask = None):
        if app:
            self.init_app(app)

    def init_app(self, app: Flask):
        jwt.token_in_blocklist_loader(self._is_revoked)
        jwt.unauthorized_loader(lambda reason: _unauthenticated_response())
        jwt.invalid_token_loader(lambda reason: _unauthenticated_response())
        jwt.expired_token_loader(
            lambda header, payload: _unauthenticated_response('Your session has expired. Please sign in again.')
        )
        jwt.revoked_token_loader(
            lambda header, payload: _unauthenticated_response('Your session has ended. Please sign in again.')
        )

    @staticmethod
    def _is_revoked(jwt_header, jwt_payload) -> bool:
        return db.session.get(RevokedToken, jwt_payload['jti']) is not None

    def issue_session(self, account_id: str) -> dict:
        """Create an access/refresh pair for ``account_id``."""
        access_token = create_access_token(identity=account_id)
        refresh_token = create_refresh_token(identity=account_id)
        expires = current_app.config['JWT_ACCESS_TOKEN_EXPIRES']
        return {
            'access_token': access_token,
            'refresh_token': refresh_token,
            'expires_in': int(expires.total_seconds()),
            'token_type': 'bearer',
        }

    def revoke(self, jwt_payload: dict):
        """Record a token's JTI as revoked. The caller commits."""
        if db.session.get(RevokedToken, jwt_payload['jti']) is None:
            db.session.add(RevokedToken(jti=jwt_payload['jti'], account_id=jwt_payload['sub']))

    def rotate(self, refresh_payload: dict) -> dict:
        """Revoke the presented refresh token and issue a fresh pair."""
        self.revoke(refresh_payload)
        session = self.issue_session(refresh_payload['sub'])
        db.session.commit()
        logger.info("Session rotated for %s", refresh_payload['sub'])
        return session

    def revoke_encoded(self, token: str) -> bool:
        """Revoke an encoded token (expired ones included). The caller commits."""
        try:
            decoded = decode_token(token, allow_expired=True)
        except (PyJWTError, JWTExtendedException) as e:
            logger.warning("Ignoring undecodable token on revoke: %s", e)
            return False
        self.revoke(decoded)
        return True
