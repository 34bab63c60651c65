# File: audiobook_sources/__init__.py
"""Main application package for the audiobook source engine."""

import logging

from flask import Flask

from .config import Config
from .extensions import csrf, executor, limiter, page_fetcher, source_store, talisman
from .routes import main_bp


def create_app(config_class: type[Config] = Config) -> Flask:
    """Create and configure a Flask application instance."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Validate critical configuration
    config_class.validate(app.logger)

    # Log level priority:
    # 1. Configured LOG_LEVEL (if set in env)
    # 2. Gunicorn Logger Level (if running in Gunicorn)
    # 3. Default (INFO)
    configured_level = app.config.get("LOG_LEVEL")

    # Gunicorn creates its own logger ('gunicorn.error'). Without its handlers,
    # application logs might not appear in the container stdout/stderr.
    gunicorn_logger = logging.getLogger("gunicorn.error")
    if gunicorn_logger.handlers:
        app.logger.handlers = gunicorn_logger.handlers
        if configured_level is not None:
            app.logger.setLevel(configured_level)
        else:
            app.logger.setLevel(gunicorn_logger.level)
    else:
        app.logger.setLevel(configured_level if configured_level is not None else logging.INFO)

    # Engine modules log under the package logger.
    logging.getLogger(__name__).setLevel(app.logger.level)

    # Initialize Extensions
    limiter.init_app(app)
    csrf.init_app(app)

    # JSON API only: no inline scripts or styles are served.
    csp = {
        "default-src": ["'self'"],
        "img-src": ["'self'", "*", "data:"],
    }
    talisman.init_app(
        app,
        content_security_policy=csp,
        # Allow HTTP in dev/test, force HTTPS in prod if needed (usually handled by proxy)
        force_https=not (app.config["TESTING"] or app.config["FLASK_DEBUG"]),
    )

    # Shared services
    executor.init_app(app)
    page_fetcher.init_app(app)
    source_store.init_app(app)

    # Source ids default to the source URL ("https://host"), so "//" must survive routing.
    app.url_map.merge_slashes = False

    # Register Blueprints
    app.register_blueprint(main_bp)

    return app
