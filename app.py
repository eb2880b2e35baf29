import os
import logging
from flask import Flask, jsonify
from flask_cors import CORS
from flask_login import LoginManager
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

# Import database instance
from database import db

load_dotenv()

logger = logging.getLogger(__name__)

login_manager = LoginManager()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() == 'true'


def _env_int(name, default):
    return int(os.environ.get(name, default))


def load_config():
    """Settings from the environment; ``create_app(config)`` may override any of them"""
    return {
        "SQLALCHEMY_DATABASE_URI": os.environ.get("DATABASE_URL", "sqlite:///introductions.db"),
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "pool_recycle": 300,
            "pool_pre_ping": True,
        },
        "SECRET_KEY": os.environ.get("SESSION_SECRET", "dev-secret-key-change-in-production"),
        "ALLOWED_ORIGINS": os.environ.get("ALLOWED_ORIGINS", "*"),
        "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO"),
        "APP_BASE_URL": os.environ.get("APP_BASE_URL", "http://localhost:3000"),

        # Introduction lifecycle
        "RESPONSE_TOKEN_TTL_DAYS": _env_int("RESPONSE_TOKEN_TTL_DAYS", 7),
        "PROTECTION_WINDOW_DAYS": _env_int("PROTECTION_WINDOW_DAYS", 365),
        "PROFILE_VIEW_WINDOW_DAYS": _env_int("PROFILE_VIEW_WINDOW_DAYS", 30),
        "INTRO_REQUEST_GRACE_DAYS": _env_int("INTRO_REQUEST_GRACE_DAYS", 7),
        "EXPIRING_SOON_DAYS": 30,
        "CLAIM_DEFAULT_CANDIDATES_NEEDED": 10,

        # Email
        "SMTP_ENABLED": _env_flag("SMTP_ENABLED"),
        "SMTP_SERVER": os.environ.get("SMTP_SERVER", "smtp.gmail.com"),
        "SMTP_PORT": _env_int("SMTP_PORT", 587),
        "SMTP_USER": os.environ.get("SMTP_USER", ""),
        "SMTP_PASSWORD": os.environ.get("SMTP_PASSWORD", ""),
        "MAIL_FROM": os.environ.get("MAIL_FROM", ""),
        "ADMIN_EMAILS": os.environ.get("ADMIN_EMAILS", ""),

        # Background services
        "REAPER_INTERVAL_MINUTES": _env_int("REAPER_INTERVAL_MINUTES", 15),
    }


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({
        "success": False,
        "code": "AUTH_REQUIRED",
        "error": "Authentication required",
    }), 401


@login_manager.request_loader
def load_user_from_request(request):
    """Identity forwarded by the front-end proxy as X-User-* headers"""
    from models import User

    user_id = request.headers.get('X-User-Id')
    if not user_id or not user_id.isdigit():
        return None
    user = db.session.get(User, int(user_id))
    if user is None:
        return None
    role = request.headers.get('X-User-Role')
    if role and role != user.role.value:
        logger.warning("Role header %s does not match user %s (%s)", role, user.id, user.role.value)
        return None
    return user


def create_app(config=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)

    logging.basicConfig(level=app.config["LOG_LEVEL"])

    # Enable CORS for API endpoints so the web front-end can call them
    # without running into cross-origin issues.
    CORS(app, resources={r"/api/*": {"origins": app.config["ALLOWED_ORIGINS"]}})
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    from introductions import IntroductionEngine
    from claims import JobClaimEngine
    from interviews import InterviewScheduler

    app.extensions["introductions"] = IntroductionEngine(
        protection_days=app.config["PROTECTION_WINDOW_DAYS"],
        view_window_days=app.config["PROFILE_VIEW_WINDOW_DAYS"],
        token_ttl_days=app.config["RESPONSE_TOKEN_TTL_DAYS"],
        request_grace_days=app.config["INTRO_REQUEST_GRACE_DAYS"],
        expiring_soon_days=app.config["EXPIRING_SOON_DAYS"],
    )
    app.extensions["claims"] = JobClaimEngine(
        default_candidates_needed=app.config["CLAIM_DEFAULT_CANDIDATES_NEEDED"],
    )
    app.extensions["interviews"] = InterviewScheduler()

    from notifications import register_notifications
    register_notifications(app)

    # Import routes and register them with the app
    from routes import register_routes
    register_routes(app)

    with app.app_context():
        # Import models to create tables
        import models  # noqa: F401

        db.create_all()

    logger.info("Application initialised (database: %s)", app.config["SQLALCHEMY_DATABASE_URI"].split('://')[0])
    return app
