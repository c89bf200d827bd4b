from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()

GATEWAY_ENV_KEYS = (
    'MPESA_ENVIRONMENT', 'MPESA_CONSUMER_KEY', 'MPESA_CONSUMER_SECRET', 'MPESA_BUSINESS_SHORT_CODE',
    'MPESA_PASSKEY', 'MPESA_CALLBACK_URL', 'MPESA_TIMEOUT_SECONDS', 'MPESA_TRANSACTION_TYPE',
    'MPESA_C2B_RESPONSE_TYPE',
)


def configure_logging(level: str = 'INFO'):
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logging.getLogger('payrecon').setLevel(level.upper())


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    for key in GATEWAY_ENV_KEYS:
        if os.getenv(key) is not None:
            app.config[key] = os.getenv(key)

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    configure_logging(app.config['LOG_LEVEL'])

    # Fails fast on missing gateway credentials (ConfigurationError)
    from .config.gateway import load_gateway_config
    from .engine import Engine, EXTENSION_KEY
    gateway_config = load_gateway_config(app.config)
    app.extensions[EXTENSION_KEY] = Engine(gateway_config)

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.payments import payments_bp  # push, callbacks, C2B, verification
    from .routes.transactions import transactions_bp  # history & stats
    app.register_blueprint(payments_bp, url_prefix='/payments')
    app.register_blueprint(transactions_bp, url_prefix='/payments')

    @app.teardown_appcontext
    def remove_session(exc=None):
        # one session per app context; nothing cached survives the request
        SessionLocal.remove()

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    from .errors import PaymentError

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if SessionLocal is not None and not isinstance(e, HTTPException):
            # leave no half-applied state on the thread's session
            SessionLocal().rollback()
        if isinstance(e, PaymentError):
            if e.status >= 500:
                app.logger.error('%s: %s', e.code, e.message)
            return e.to_dict(), e.status
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


def get_db():
    return SessionLocal()
