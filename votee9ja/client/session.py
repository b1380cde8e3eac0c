# votee9ja/client/session.py

import json
import logging
import os
import threading
import time

from votee9ja.client.auth_state import INITIAL_STATE, Action, ActionType, reduce

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = 60  # seconds before expiry to refresh


class SessionManager:
    """Owns the signed-in session of one client.

    Tokens are persisted to ``store_path`` (a JSON file readable only by
    the owner) so a restarted client resumes its session. The access token
    is refreshed when it is within ``refresh_margin`` seconds of expiry;
    a failed refresh signs the client out locally.
    """

    def __init__(self, client, store_path, refresh_margin=DEFAULT_REFRESH_MARGIN, clock=time.time):
        self.client = client
        self.store_path = store_path
        self.refresh_margin = refresh_margin
        self.clock = clock
        self._tokens = None
        self._state = INITIAL_STATE
        self._listeners = []
        self._lock = threading.RLock()

    # ------------------------------ state ------------------------------ #

    @property
    def state(self):
        return self._state

    @property
    def is_signed_in(self):
        return self._tokens is not None

    def subscribe(self, listener):
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action_type, payload=None):
        self._state = reduce(self._state, Action(action_type, payload))
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Auth state listener failed")
        return self._state

    # ---------------------------- lifecycle ---------------------------- #

    def initialize(self):
        """Restore a persisted session, if any, and publish the resulting state."""
        with self._lock:
            stored = self._load()
            if stored is None:
                self.dispatch(ActionType.SET_USER, {'user': None, 'profile': None})
                return self._state
            self._tokens = stored
            if not self.ensure_fresh():
                return self._state
            self.dispatch(ActionType.SET_USER, {'user': stored.get('user'), 'profile': stored.get('profile')})
            return self._state

    def sign_up(self, user_data):
        self.dispatch(ActionType.SIGN_UP_START)
        result = self.client.sign_up(user_data)
        if result.success:
            self.dispatch(ActionType.SIGN_UP_SUCCESS)
        else:
            self.dispatch(ActionType.SIGN_UP_ERROR, result.message)
        return result

    def sign_in(self, email, password):
        self.dispatch(ActionType.SIGN_IN_START)
        result = self.client.sign_in(email, password)
        if not result.success:
            self.dispatch(ActionType.SIGN_IN_ERROR, result.message)
            return result

        profile = result.data.get('profile') or {}
        user = {'id': profile.get('id'), 'email': profile.get('email')}
        with self._lock:
            self._tokens = self._tokens_from(result.data, user=user, profile=profile)
            self._save()
        self.dispatch(ActionType.SIGN_IN_SUCCESS, {'user': user, 'profile': profile})
        return result

    def sign_out(self):
        self.dispatch(ActionType.SIGN_OUT_START)
        with self._lock:
            tokens = self._tokens
            if tokens is not None:
                result = self.client.sign_out(tokens['access_token'], tokens.get('refresh_token'))
                if not result.success:
                    # Local credentials are dropped regardless; the server
                    # tokens expire on their own.
                    logger.warning("Server sign-out failed: %s", result.message)
            self._clear()
        self.dispatch(ActionType.SIGN_OUT_SUCCESS)

    def refresh_profile(self):
        result = self.client.get_profile()
        if result.success:
            with self._lock:
                if self._tokens is not None:
                    self._tokens['profile'] = result.data
                    self._save()
            self.dispatch(ActionType.UPDATE_PROFILE, result.data)
        return result

    # ----------------------------- tokens ------------------------------ #

    def access_token(self):
        """Current access token, refreshed first if close to expiry. Suitable as a client token_provider."""
        with self._lock:
            if not self.ensure_fresh():
                return None
            return self._tokens['access_token']

    def ensure_fresh(self):
        with self._lock:
            if self._tokens is None:
                return False
            if self.clock() < self._tokens.get('expires_at', 0) - self.refresh_margin:
                return True

            result = self.client.refresh(self._tokens.get('refresh_token'))
            if not result.success:
                logger.info("Session refresh failed (%s); signing out locally", result.reason)
                self._clear()
                self.dispatch(ActionType.SIGN_OUT_SUCCESS)
                return False
            self._tokens = self._tokens_from(
                result.data, user=self._tokens.get('user'), profile=self._tokens.get('profile')
            )
            self._save()
            return True

    def _tokens_from(self, data, user, profile):
        return {
            'access_token': data['access_token'],
            'refresh_token': data.get('refresh_token'),
            'expires_at': self.clock() + int(data.get('expires_in', 0)),
            'user': user,
            'profile': profile,
        }

    # ---------------------------- persistence -------------------------- #

    def _load(self):
        try:
            with open(self.store_path, 'r') as f:
                stored = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.store_path, e)
            return None
        if not isinstance(stored, dict) or not stored.get('access_token'):
            return None
        return stored

    def _save(self):
        directory = os.path.dirname(os.path.abspath(self.store_path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f'{self.store_path}.tmp'
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            json.dump(self._tokens, f)
        os.replace(tmp_path, self.store_path)

    def _clear(self):
        self._tokens = None
        try:
            os.remove(self.store_path)
        except FileNotFoundError:
            pass
