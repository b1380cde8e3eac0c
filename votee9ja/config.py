# votee9ja/config.py

# Environment-driven configuration. Missing required settings are fatal.

import os
from datetime import timedelta

from votee9ja.errors import ConfigurationError

REQUIRED_SETTINGS = ("DATABASE_URL", "VOTE_E9JA_API_KEY", "JWT_SECRET_KEY")

DEFAULT_VOTE_HASH_SALT = "vote-salt-2024"


def load_config(environ=None, overrides=None):
    """Build the Flask config mapping from ``environ`` (defaults to os.environ).

    ``overrides`` wins over the environment, which lets tests supply a full
    configuration without touching the process environment.
    """
    environ = os.environ if environ is None else environ
    overrides = dict(overrides or {})

    def setting(name, default=None):
        if name in overrides:
            return overrides[name]
        return environ.get(name, default)

    missing = [name for name in REQUIRED_SETTINGS if not setting(name)]
    if missing:
        raise ConfigurationError(
            "Missing required configuration: " + ", ".join(missing)
        )

    config = {
        "SQLALCHEMY_DATABASE_URI": setting("DATABASE_URL"),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "API_KEY": setting("VOTE_E9JA_API_KEY"),
        "SECRET_KEY": setting("SECRET_KEY") or setting("JWT_SECRET_KEY"),
        "JWT_SECRET_KEY": setting("JWT_SECRET_KEY"),
        "JWT_TOKEN_LOCATION": ["headers"],
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(
            minutes=int(setting("JWT_ACCESS_TOKEN_MINUTES", 15))
        ),
        "JWT_REFRESH_TOKEN_EXPIRES": timedelta(
            days=int(setting("JWT_REFRESH_TOKEN_DAYS", 30))
        ),
        "VOTE_HASH_SALT": setting("VOTE_HASH_SALT", DEFAULT_VOTE_HASH_SALT),
        "RATELIMIT_STORAGE_URI": setting("RATELIMIT_STORAGE_URI", "memory://"),
        "RATELIMIT_ENABLED": _as_bool(setting("RATELIMIT_ENABLED", True)),
        "LOG_LEVEL": setting("LOG_LEVEL", "INFO"),
    }
    # Anything else the caller passed (e.g. TESTING) is carried through.
    for key, value in overrides.items():
        if key not in REQUIRED_SETTINGS and key not in config:
            config[key] = value
    return config


def _as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("0", "false", "no", "off", "")
