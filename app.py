import logging
from datetime import timedelta

import click
from flask import Flask, request, g
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from models import db
from models.user import User, Role
from routes import health_bp, auth_bp, admin_bp
from security.attempt_store import build_attempt_store
from security.csrf import require_csrf
from security.password import hash_password
from security.status_service import get_status_service, init_security_status
from utils.auth_context import load_current_user
from utils.identity import is_valid_email, normalize_email
from utils.seed import seed_roles
from utils.timeutil import utcnow

CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/security-status",
    "/health",
}


def create_app(config_object=Config, **overrides):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.config.update(overrides)

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger("security").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Lockout engine; raises ValueError on inconsistent thresholds
    init_security_status(app, build_attempt_store(app.config.get("ATTEMPT_STORE", "sql")))

    # Seed default roles at startup (safe & idempotent)
    with app.app_context():
        try:
            seed_roles()
        except SQLAlchemyError:
            db.session.rollback()
            app.logger.warning("Roles not seeded, database schema missing (run `flask db upgrade`)")

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.path in CSRF_EXEMPT_PATHS:
                return None

            # Only enforce CSRF if user is already authenticated (cookie session)
            if getattr(g, "user", None) is not None:
                failure = require_csrf()
                if failure:
                    return failure

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def _get_or_create_role(name: str) -> Role:
    role = Role.query.filter_by(name=name).first()
    if not role:
        role = Role(name=name)
        db.session.add(role)
        db.session.commit()
    return role


def register_cli(app):
    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("password")
    @click.option("--role", default="DATA_ENTRY", show_default=True, help="Role to grant.")
    @click.option("--name", "full_name", default=None, help="Display name.")
    def create_user(email, password, role, full_name):
        """Create a user account."""
        email = normalize_email(email)
        if not is_valid_email(email):
            raise click.BadParameter("invalid email", param_hint="EMAIL")
        if User.query.filter_by(email=email).first():
            raise click.ClickException(f"{email} already exists")

        user = User(email=email, password_hash=hash_password(password), full_name=full_name)
        user.roles.append(_get_or_create_role(role.upper()))
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created {email} with role {role.upper()}")

    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=normalize_email(email)).first()
        if not user:
            raise click.ClickException("User not found")

        admin_role = _get_or_create_role("ADMIN")
        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("prune-login-attempts")
    @click.option("--days", type=int, default=None, help="Keep this many days of attempts.")
    def prune_login_attempts(days):
        """Delete login attempts too old to affect any lockout decision."""
        service = get_status_service()
        days = days if days is not None else app.config.get("LOGIN_ATTEMPT_RETENTION_DAYS", 30)
        cutoff = utcnow() - max(timedelta(days=days), service.config.lookback)
        deleted = service.store.prune_before(cutoff)
        click.echo(f"Deleted {deleted} login attempts older than {cutoff.isoformat()}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
