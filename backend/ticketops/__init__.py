from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['ASSET_ENCRYPTION_KEY'] = os.getenv('ASSET_ENCRYPTION_KEY')
    app.config['SLA_AT_RISK_MINUTES'] = int(os.getenv('SLA_AT_RISK_MINUTES', '30'))
    app.config['AUTHZ_ENFORCE_SITE_SCOPE'] = _env_flag('AUTHZ_ENFORCE_SITE_SCOPE', True)
    app.config['ASSET_UPDATE_WINDOW_MINUTES'] = int(os.getenv('ASSET_UPDATE_WINDOW_MINUTES', '30'))
    app.config['NOTIFIER'] = None

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # one shared in-memory SQLite database across all sessions
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

    from .routes.iam import iam_bp
    from .routes.sites import sites_bp
    from .routes.assets import assets_bp
    from .routes.tickets import tickets_bp
    from .routes.rma import rma_bp
    from .routes.clients import clients_bp
    from .routes.reports import rpt_bp
    from .routes.stock import stock_bp
    from .routes.worklogs import worklogs_bp
    from .routes.asset_updates import asset_updates_bp
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(sites_bp, url_prefix='/sites')
    app.register_blueprint(assets_bp, url_prefix='/assets')
    app.register_blueprint(tickets_bp, url_prefix='/tickets')
    app.register_blueprint(rma_bp, url_prefix='/rma')
    app.register_blueprint(clients_bp, url_prefix='/clients')
    app.register_blueprint(rpt_bp, url_prefix='/reports')
    app.register_blueprint(stock_bp, url_prefix='/stock')
    app.register_blueprint(worklogs_bp, url_prefix='/worklogs')
    app.register_blueprint(asset_updates_bp, url_prefix='/asset-update-requests')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        # Nothing from a failed request may leak into the next unit of work
        get_db().rollback()
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    from .openapi import build_openapi_spec

    @app.route('/openapi.json')
    def openapi_spec():
        return build_openapi_spec()

    @app.route('/docs')
    def docs_index():
        return (
            "<!DOCTYPE html><html><head><title>TicketOps API Docs</title>"
            "<link rel=\"stylesheet\" href=\"https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.css\" />"
            "</head><body><redoc spec-url='/openapi.json'></redoc>"
            "<script src='https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.js'></script>"
            "</body></html>"
        )

    return app


def get_db():
    return SessionLocal()
