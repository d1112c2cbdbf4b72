from flask import Flask, send_from_directory
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['ORDER_MODERATION_ENABLED'] = _env_flag('ORDER_MODERATION_ENABLED')
    app.config['ORDER_POLL_INTERVAL_SECONDS'] = int(os.getenv('ORDER_POLL_INTERVAL_SECONDS', '30'))
    app.config['UPLOAD_DIR'] = os.getenv('UPLOAD_DIR', os.path.abspath('uploads'))
    app.config['BLOB_BASE_URL'] = os.getenv('BLOB_BASE_URL', '/blobs')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    # upload bodies: several 10 MB attachments per request
    app.config['MAX_CONTENT_LENGTH'] = int(os.getenv('MAX_CONTENT_LENGTH', str(64 * 1024 * 1024)))

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    app.logger.setLevel(app.config['LOG_LEVEL'])

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

    # Mapper registry needs every model class before the first query
    from .models import authz, audit, order, quote, history, payment, address  # noqa: F401

    from .services.events import EventBus
    from .services.blobs import LocalBlobStore
    app.extensions['order_events'] = EventBus(app.logger)
    app.extensions['blob_store'] = LocalBlobStore(app.config['UPLOAD_DIR'], app.config['BLOB_BASE_URL'])

    from .routes.iam import iam_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.addresses import addresses_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(orders_bp, url_prefix='/orders')
    app.register_blueprint(payments_bp, url_prefix='/payments')
    app.register_blueprint(addresses_bp, url_prefix='/addresses')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.route('/blobs/<path:key>')
    def blob(key: str):
        return send_from_directory(app.config['UPLOAD_DIR'], key)

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, SQLAlchemyError):
            # storage failures that escaped a service boundary
            SessionLocal().rollback()
            app.logger.exception('Storage failure')
            return {
                'error': {
                    'status': 503,
                    'title': 'Service Unavailable',
                    'detail': 'Storage temporarily unavailable',
                    'code': 'INFRASTRUCTURE_ERROR',
                }
            }, 503
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            code = getattr(e, 'error_code', None)
            if code:
                payload['error']['code'] = code
            if e.code >= 500:
                app.logger.error('%s %s', e.code, e.description)
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

    from .openapi_builder import build_openapi_spec

    @app.route('/openapi.json')
    def openapi_spec():
        return build_openapi_spec()

    @app.route('/docs')
    def docs_index():
        # Lightweight HTML referencing Redoc CDN (no local install) for quick browsing
        return (
            "<!DOCTYPE html><html><head><title>Order Desk API</title>"
            "<link rel=\"stylesheet\" href=\"https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.css\" />"
            "</head><body><redoc spec-url='/openapi.json'></redoc>"
            "<script src='https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.js'></script>"
            "</body></html>"
        )

    return app


def get_db():
    return SessionLocal()
