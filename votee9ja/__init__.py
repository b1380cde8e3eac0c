# votee9ja/__init__.py

import logging

from flask import Flask
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from werkzeug.middleware.proxy_fix import ProxyFix

from votee9ja.config import load_config

# Extensions are created unbound and attached in create_app() so the package
# can be imported (by the client, by tests) without a configured environment.
db = SQLAlchemy()  # Database ORM
migrate = Migrate()  # DB migrations
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address, default_limits=["1000/hour"])


def create_app(overrides=None):
    """Application factory.

    Raises ConfigurationError when DATABASE_URL, VOTE_E9JA_API_KEY or
    JWT_SECRET_KEY is missing: the service refuses to start half-configured.
    """
    config = load_config(overrides=overrides)

    app = Flask(__name__)
    app.config.update(config)

    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    # Fix proxy headers for HTTPS
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Ensure model modules are imported so SQLAlchemy metadata is populated;
    # this also makes them discoverable by `flask db migrate`.
    from votee9ja.database import models  # noqa: F401
    from votee9ja.realtime import ResultsChannel
    from votee9ja.security.token_manager import TokenManager
    from votee9ja.voting.integrity import VoteIntegrityHasher

    app.extensions['results_channel'] = ResultsChannel()
    app.extensions['vote_hasher'] = VoteIntegrityHasher(salt=app.config['VOTE_HASH_SALT'])
    app.extensions['token_manager'] = TokenManager(app)

    from votee9ja.routes import api
    app.register_blueprint(api)

    from votee9ja.create_user import create_user_command
    app.cli.add_command(create_user_command)

    return app
