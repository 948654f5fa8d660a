import os
import logging

from flask import Flask

from brewlog.extensions import db, init_extensions
from brewlog.errors import register_error_handlers
from brewlog.utils.logging_config import setup_logging

log = logging.getLogger(__name__)


def create_app(test_config=None):
    """Application factory function."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration; a mapping passed in by tests overrides the testing defaults
    from brewlog.config import get_config
    if test_config is None:
        app.config.from_object(get_config(os.environ.get('FLASK_ENV', 'default')))
    else:
        app.config.from_object(get_config('testing'))
        app.config.from_mapping(test_config)

    if not app.config.get('SECRET_KEY'):
        raise RuntimeError("SECRET_KEY must be set")

    # Ensure the instance folder exists
    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass

    setup_logging(app)

    init_extensions(app)

    register_error_handlers(app)

    register_blueprints(app)

    from brewlog.cli import register_commands
    register_commands(app)

    @app.context_processor
    def utility_processor():
        return {
            'app_name': app.config.get('WEBAUTHN_RP_NAME', 'Brewlog'),
            'version': app.config.get('VERSION'),
        }

    @app.teardown_appcontext
    def teardown_db(exception=None):
        """Clean up at the end of the request."""
        db.session.remove()

    # Importing the models registers their tables with the metadata
    from brewlog import models  # noqa: F401
    with app.app_context():
        db.create_all()

    if app.config.get('BOOTSTRAP_ON_STARTUP'):
        from brewlog.services.bootstrap import bootstrap_registration
        bootstrap_registration(app)

    return app


def register_blueprints(app):
    """Register all blueprints with the application."""
    from brewlog.web.auth import auth_bp
    from brewlog.web.webauthn import webauthn_bp
    from brewlog.web.account import account_bp
    from brewlog.web.coffee import coffee_bp

    for blueprint in (auth_bp, webauthn_bp, account_bp, coffee_bp):
        app.register_blueprint(blueprint)
        app.logger.debug(f"Registered blueprint: {blueprint.name}")
