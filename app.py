from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
from dotenv import load_dotenv; load_dotenv()
from flask import Flask, g, has_request_context, jsonify, request
from flask_compress import Compress
from flask_talisman import Talisman
from sqlalchemy import event, func
from sqlalchemy.engine import Engine

from config import Config, INSTANCE_DIR as CONFIG_INSTANCE_DIR
from extensions import cache, csrf, db, limiter, login_manager, migrate
from shared.error_handlers import register_error_handlers


class RequestIdFilter(logging.Filter):
    """Inject request-scoped metadata into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            record.request_id = getattr(g, "request_id", "n/a")
            record.path = request.path
            record.method = request.method
        else:
            record.request_id = getattr(record, "request_id", "startup")
            record.path = getattr(record, "path", "")
            record.method = getattr(record, "method", "")
        return True


class JsonRequestFormatter(logging.Formatter):
    """Simple JSON formatter for logfmt-friendly ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        base = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "n/a"),
            "path": getattr(record, "path", ""),
            "method": getattr(record, "method", ""),
        }
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def _configure_login_manager(app: Flask) -> None:
    """Bind Flask-Login: cookie sessions for the web client, Bearer tokens for scripts."""
    login_manager.init_app(app)
    login_manager.session_protection = "strong"

    def _extract_token(req):
        auth_header = req.headers.get("Authorization", "")
        if auth_header.lower().startswith("bearer "):
            return auth_header.split(" ", 1)[1].strip()
        return None

    @login_manager.user_loader
    def _load_user(user_id: str):
        from models import User

        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.request_loader
    def _load_user_from_request(req):
        from models import User

        token = _extract_token(req)
        if not token:
            return None
        return User.verify_api_token(token)

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"error": "authentication_required", "detail": "Authentication required"}), 401


def _configure_logging(app: Flask) -> None:
    """Configure structured logging with request IDs."""
    stream_handler = logging.StreamHandler()
    stream_handler.addFilter(RequestIdFilter())
    stream_handler.setFormatter(JsonRequestFormatter())
    stream_handler.setLevel(logging.INFO)

    handlers = [stream_handler]

    try:
        logs_dir = Path(app.instance_path) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            logs_dir / "app.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.addFilter(RequestIdFilter())
        file_handler.setFormatter(JsonRequestFormatter())
        file_handler.setLevel(logging.INFO)
        handlers.append(file_handler)
    except OSError as exc:
        app.logger.warning("Falling back to stream-only logging (file handler unavailable): %s", exc)

    app.logger.handlers = handlers
    app.logger.setLevel(logging.INFO)
    logging.getLogger("werkzeug").handlers = handlers
    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Modules outside an app context log through the package loggers
    for name in ("services", "routes"):
        logging.getLogger(name).handlers = handlers
        logging.getLogger(name).setLevel(logging.INFO)


def _register_cli(app: Flask) -> None:
    from models import Transaction, User
    from services.audit import record_audit_event
    from services.tokens import add_tokens, record_transaction

    @app.cli.command("init-db")
    def init_db_cmd():
        """Create all tables (use `flask db upgrade` for migrated deployments)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("grant-tokens")
    @click.argument("email")
    @click.argument("amount", type=int)
    @click.option("--reason", default="Manual grant", help="Ledger description")
    def grant_tokens_cmd(email, amount, reason):
        """Credit AMOUNT tokens to the user with EMAIL."""
        if amount <= 0:
            raise click.ClickException("Amount must be positive.")
        normalized = email.strip().lower()
        user = User.query.filter(func.lower(User.email) == normalized).first()
        if not user:
            raise click.ClickException(f"User {normalized} not found.")
        add_tokens(user.id, amount)
        record_audit_event("tokens_granted", {"amount": amount, "reason": reason}, user_id=user.id)
        db.session.commit()
        record_transaction(user.id, amount, reason, type=Transaction.TYPE_GRANT)
        db.session.refresh(user)
        click.echo(f"Granted {amount} tokens to {normalized}; balance is now {user.credits}.")

    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("username")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--admin", is_flag=True, help="Grant admin rights")
    def create_user_cmd(email, username, password, admin):
        normalized = email.strip().lower()
        if User.query.filter(func.lower(User.email) == normalized).first():
            raise click.ClickException(f"User {normalized} already exists.")
        user = User(email=normalized, username=username.strip().lower(), is_admin=admin)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created user {normalized} (admin={admin}).")


def create_app():
    """Create, configure, and return a fully-initialised Flask app."""
    app = Flask(
        __name__,
        instance_path=str(CONFIG_INSTANCE_DIR),
        instance_relative_config=False,
    )
    app.config.from_object(Config)
    os.makedirs(app.instance_path, exist_ok=True)
    _configure_logging(app)

    # --- Core extensions ---
    db.init_app(app)
    migrate.init_app(app, db, render_as_batch=True)
    cache.init_app(app)
    _configure_login_manager(app)
    csrf.init_app(app)
    Compress(app)

    # RATELIMIT_DEFAULT, RATELIMIT_STORAGE_URI and RATELIMIT_ENABLED come from config
    limiter.init_app(app)

    if app.config.get("ENABLE_TALISMAN", True):
        Talisman(
            app,
            content_security_policy=app.config.get("CONTENT_SECURITY_POLICY"),
            force_https=app.config.get("TALISMAN_FORCE_HTTPS", not app.debug),
            session_cookie_secure=app.config.get("SESSION_COOKIE_SECURE", True),
            session_cookie_samesite=app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        )

    @app.before_request
    def _reject_querystring_api_token():
        if "api_token" not in request.args:
            return None
        detail = "API tokens must be sent using the Authorization: Bearer header; query parameters are not accepted."
        return jsonify({"error": "api_token_query_not_supported", "detail": detail}), 400

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def attach_request_id(resp):
        rid = getattr(g, "request_id", None)
        if rid:
            resp.headers.setdefault("X-Request-ID", rid)
        return resp

    # Blueprints
    from routes import api

    csrf.exempt(api)
    app.register_blueprint(api)
    register_error_handlers(app)
    _register_cli(app)

    @app.get("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    return app


# Single SQLite PRAGMA hook (avoid duplicate listeners)
_SQLITE_PRAGMA_STATEMENTS = (
    "PRAGMA foreign_keys=ON;",
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
)


@event.listens_for(Engine, "connect")
def _sqlite_pragmas(dbapi_connection, _) -> None:
    """Apply pragmatic performance/safety PRAGMAs each time SQLite opens a connection."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cur = dbapi_connection.cursor()
    for statement in _SQLITE_PRAGMA_STATEMENTS:
        cur.execute(statement)
    cur.close()


if __name__ == "__main__":
    _app = create_app()
    _app.run(host="127.0.0.1", port=5000, debug=True)
