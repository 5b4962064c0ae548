import os
import subprocess
import click
from pathlib import Path
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from mealsection.errors import ServiceError
from mealsection.extensions import db, migrate, cors
from mealsection.integrations.messaging.factory import messaging_health
from mealsection.integrations.payments.factory import payment_health
from mealsection.integrations.realtime.factory import build_broadcaster
from mealsection.models import Account, ROLE_MANAGER
from mealsection.segments.segment_accounts import accounts_bp
from mealsection.segments.segment_admin import admin_bp
from mealsection.segments.segment_orders import orders_bp
from mealsection.segments.segment_partners import riders_bp, vendors_bp
from mealsection.segments.segment_payments import payments_bp, public_webhooks_bp, webhooks_bp
from mealsection.services.order_service import OrderService
from mealsection.utils.deferred import install_deferred_dispatch
from mealsection.utils.jwt_utils import bearer_token, decode_access_token
from mealsection.utils.observability import init_sentry, install_request_observers, sentry_enabled


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        repo_root = Path(__file__).resolve().parents[1]
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except Exception:
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _load_integration_config(app) -> None:
    for key, default in (
        ("PAYSTACK_SECRET_KEY", ""),
        ("PAYSTACK_VERIFY_URL", "https://api.paystack.co/transaction/verify/"),
        ("PAYMENTS_PROVIDER", "paystack"),
        ("NOTIFICATIONS_MODE", "disabled"),
        ("SMTP_HOST", ""),
        ("SMTP_USER", ""),
        ("SMTP_PASS", ""),
        ("SMTP_FROM", ""),
        ("FIREBASE_SERVICE_ACCOUNT", ""),
        ("ADMIN_EMAIL", ""),
        ("REALTIME_MODE", "disabled"),
        ("SOCKETIO_MESSAGE_QUEUE", ""),
        ("VENDOR_SETTLEMENT_MODE", "order_subtotal"),
        ("WEBHOOK_LOG_DIR", "logs"),
    ):
        app.config[key] = (os.getenv(key) or default).strip()
    app.config["SMTP_PORT"] = _env_int("SMTP_PORT", 587, minimum=1, maximum=65535)
    app.config["RIDER_DELIVERY_SHARE_PERCENT"] = _env_int("RIDER_DELIVERY_SHARE_PERCENT", 50, minimum=0, maximum=100)
    try:
        app.config["PAYSTACK_RETRY_DELAY_SECONDS"] = max(0.0, float(os.getenv("PAYSTACK_RETRY_DELAY_SECONDS") or 1.0))
    except ValueError:
        app.config["PAYSTACK_RETRY_DELAY_SECONDS"] = 1.0


def _error_payload(payload: dict) -> dict:
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def _check_production_env() -> None:
    secret = (os.getenv("SECRET_KEY") or "").strip()
    if len(secret) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
    if not (os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
        raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")


def _database_url(instance_dir: str) -> str:
    url = (os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or "").strip()
    if not url:
        return "sqlite:///" + os.path.join(instance_dir, "mealsection.db").replace(os.sep, "/")
    # Heroku-style URLs still use the scheme SQLAlchemy dropped.
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def _engine_options(database_url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite"):
        options["pool_size"] = _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200)
        options["max_overflow"] = _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500)
        options["pool_timeout"] = _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300)
    return options


def _cors_origins(env: str) -> list[str]:
    origins = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "").split(",") if o.strip()]
    if not origins and env not in ("prod", "production"):
        return ["*"]
    return origins


def create_app(test_config=None, *, broadcaster=None):
    """Build the MealSection API.

    ``test_config`` overrides any env-derived setting. ``broadcaster`` replaces
    the realtime fan-out built from ``REALTIME_MODE`` (tests pass a recorder).
    """
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("MEALSECTION_ENV", "dev") or "dev").strip().lower()
    if env in ("prod", "production"):
        _check_production_env()
        if not (os.getenv("PAYSTACK_SECRET_KEY") or "").strip():
            app.logger.warning("paystack_secret_missing webhooks will fail until PAYSTACK_SECRET_KEY is set")

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MEALSECTION_ENV"] = env
    app.config["SQLALCHEMY_DATABASE_URI"] = _database_url(instance_dir)
    _load_integration_config(app)
    if test_config:
        app.config.update(test_config)

    engine_options = _engine_options(app.config["SQLALCHEMY_DATABASE_URI"])
    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", engine_options)
    if "pool_size" in engine_options:
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
        )

    origins = _cors_origins(env)
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    if broadcaster is None:
        broadcaster = build_broadcaster(app.config, cors_origins="*" if origins == ["*"] else origins)
    wrap = getattr(broadcaster, "wrap", None)
    if callable(wrap):
        app.wsgi_app = wrap(app.wsgi_app)
    app.extensions["mealsection"] = {
        "broadcaster": broadcaster,
        "orders": OrderService(
            broadcaster,
            settlement_mode=app.config["VENDOR_SETTLEMENT_MODE"],
            rider_share_percent=app.config["RIDER_DELIVERY_SHARE_PERCENT"],
        ),
    }

    @app.errorhandler(ServiceError)
    def _api_service_error(error: ServiceError):
        db.session.rollback()
        if error.status >= 500:
            app.logger.warning("service_error path=%s code=%s message=%s", request.path, error.code, error.message)
        return jsonify(_error_payload(error.to_dict())), int(error.status)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not (request.path.startswith("/api/") or request.path.startswith("/webhook/")):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        return jsonify(_error_payload(payload)), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        db.session.rollback()
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        return jsonify(_error_payload(payload)), 500

    # Register API routes
    app.register_blueprint(accounts_bp)
    app.register_blueprint(vendors_bp)
    app.register_blueprint(riders_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(public_webhooks_bp)
    app.register_blueprint(admin_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "mealsection-backend",
            "env": env,
            "db": db_state,
            "payments": payment_health(app.config),
            "notifications": messaging_health(app.config),
            "realtime": getattr(broadcaster, "name", "unknown"),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({
            "ok": True,
            "service": "mealsection-backend",
            "env": env,
        })

    @app.get("/api/version")
    def version():
        return jsonify({
            "ok": True,
            "alembic_head": _resolve_alembic_head(),
            "git_sha": _resolve_git_sha(),
        })

    @app.before_request
    def _capture_auth_context():
        g.auth_user_id = None
        g.auth_role = None
        token = bearer_token(request.headers.get("Authorization"))
        uid = decode_access_token(token) if token else None
        if uid is None:
            return
        account = db.session.get(Account, uid)
        if account is None:
            return
        g.auth_user_id = uid
        g.auth_role = account.role
        if sentry_enabled():
            import sentry_sdk

            sentry_sdk.set_user({"id": str(uid)})
            sentry_sdk.set_tag("auth_role", account.role)

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    # Registered after the session cleanup so queued side effects run first.
    install_deferred_dispatch(app)

    @app.cli.command("bootstrap-manager")
    def bootstrap_manager():
        allow = (os.getenv("ALLOW_MANAGER_BOOTSTRAP") or "").strip() == "1"
        if env not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Manager bootstrap disabled. Set ALLOW_MANAGER_BOOTSTRAP=1 or MEALSECTION_ENV=dev.")

        email = (os.getenv("MANAGER_EMAIL") or "").strip().lower()
        password = (os.getenv("MANAGER_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("MANAGER_EMAIL and MANAGER_PASSWORD must be set.")

        account = Account.query.filter_by(email=email).first()
        if account is not None and account.role != ROLE_MANAGER:
            raise click.ClickException("Email belongs to a non-manager account.")
        if account is None:
            account = Account(name=email.split("@")[0], email=email, role=ROLE_MANAGER)
            db.session.add(account)
        account.set_password(password)
        db.session.commit()
        click.echo(f"manager_bootstrap_ok {account.email}")

    return app
