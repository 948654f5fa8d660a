"""
Initialize Flask extensions for the application.

These extensions are instantiated here and initialized in the application factory.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# SQLAlchemy for database ORM
db = SQLAlchemy()

# Flask-Migrate for database migrations
migrate = Migrate()

# Flask-Login resolves identities per request from the session cookie or bearer header
login_manager = LoginManager()
login_manager.session_protection = None

# Rate limiting for the ceremony endpoints
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[]
)


def init_extensions(app):
    """Initialize all Flask extensions."""
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Registers the request loader and the unauthorized handler
    from brewlog.auth.middleware import init_auth
    init_auth(app, login_manager)
