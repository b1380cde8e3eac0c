# votee9ja/client/api.py

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from votee9ja.errors import ConfigurationError

# HTTP client for the Vote-E-9ja API. Every call returns an ApiResult
# rather than raising, so callers (CLIs, kiosks, tests) branch on
# ``success`` and show ``message`` to the user as-is.

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10  # seconds
NETWORK_ERROR_MESSAGE = 'An unexpected error occurred. Please try again.'


@dataclass
class ApiResult:
    success: bool
    data: Any = None
    message: str = ''
    reason: Optional[str] = None


class VoteE9jaClient:
    def __init__(self, base_url: str, api_key: str, token_provider: Callable[[], Optional[str]] = None,
                 timeout: float = DEFAULT_TIMEOUT, session: requests.Session = None):
        if not base_url or not api_key:
            raise ConfigurationError('Missing Vote-E-9ja URL or API key')
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.token_provider = token_provider
        self.timeout = timeout
        self.http = session or requests.Session()

    @classmethod
    def from_env(cls, environ=None, **kwargs):
        environ = os.environ if environ is None else environ
        base_url = environ.get('VOTE_E9JA_URL')
        api_key = environ.get('VOTE_E9JA_API_KEY')
        missing = [name for name, value in (('VOTE_E9JA_URL', base_url), ('VOTE_E9JA_API_KEY', api_key)) if not value]
        if missing:
            raise ConfigurationError('Missing client configuration: ' + ', '.join(missing))
        return cls(base_url, api_key, **kwargs)

    # ------------------------------------------------------------------ #

    def _headers(self, token=None):
        headers = {'apikey': self.api_key, 'Accept': 'application/json'}
        token = token or (self.token_provider() if self.token_provider else None)
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    def _request(self, method, path, success_message, failure_message, token=None, **kwargs) -> ApiResult:
        url = f'{self.base_url}{path}'
        try:
            response = self.http.request(
                method, url, headers=self._headers(token), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error("Request to %s failed: %s", path, e)
            return ApiResult(False, message=NETWORK_ERROR_MESSAGE, reason='unknown')

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        if response.ok:
            return ApiResult(True, data=body, message=success_message)

        error = body.get('error', {}) if isinstance(body, dict) else {}
        reason = error.get('reason', 'unknown')
        message = error.get('message') or failure_message
        logger.warning("%s %s -> %s (%s)", method, path, response.status_code, reason)
        return ApiResult(False, data=error.get('errors'), message=message, reason=reason)

    # ------------------------------ auth ------------------------------- #

    def sign_up(self, user_data: dict) -> ApiResult:
        result = self._request('POST', '/auth/register', 'Account created successfully!',
                               'Failed to create account', json=user_data)
        if result.success:
            result.data = result.data.get('profile')
        return result

    def sign_in(self, email: str, password: str) -> ApiResult:
        return self._request('POST', '/auth/login', 'Login successful', 'Invalid email or password',
                             json={'email': email, 'password': password})

    def refresh(self, refresh_token: str) -> ApiResult:
        return self._request('POST', '/auth/refresh', 'Session refreshed', 'Your session has expired',
                             token=refresh_token)

    def sign_out(self, access_token: str, refresh_token: str = None) -> ApiResult:
        payload = {'refresh_token': refresh_token} if refresh_token else {}
        return self._request('POST', '/auth/logout', 'Logged out successfully', 'Failed to logout',
                             token=access_token, json=payload)

    def get_profile(self) -> ApiResult:
        result = self._request('GET', '/profile', 'Profile loaded', 'Failed to load profile')
        if result.success:
            result.data = result.data.get('profile')
        return result

    # ---------------------------- elections ---------------------------- #

    def get_active_elections(self) -> ApiResult:
        result = self._request('GET', '/elections/active', 'Elections loaded successfully',
                               'Failed to load elections')
        result.data = result.data.get('elections', []) if result.success else []
        return result

    def cast_vote(self, election_id: str, position_id: str, candidate_id: str) -> ApiResult:
        payload = {'election_id': election_id, 'position_id': position_id, 'candidate_id': candidate_id}
        result = self._request('POST', '/votes', 'Vote cast successfully', 'Failed to cast vote', json=payload)
        if result.success:
            result.data = result.data.get('vote')
        return result

    def get_user_votes(self, election_id: str = None) -> ApiResult:
        params = {'election_id': election_id} if election_id else None
        result = self._request('GET', '/votes/mine', 'Votes loaded successfully', 'Failed to load votes',
                               params=params)
        result.data = result.data.get('votes', []) if result.success else []
        return result

    def get_results(self, election_id: str) -> ApiResult:
        return self._request('GET', f'/elections/{election_id}/results', 'Results loaded',
                             'Failed to load results')

    def test_connection(self) -> ApiResult:
        result = self._request('GET', '/health', 'Connection successful', 'Connection failed')
        if not result.success:
            logger.error("Connection test failed: %s", result.message)
        return result
