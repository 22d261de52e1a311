"""Flask application factory for the offline sync backend."""
from flask import Flask
import logging
from pathlib import Path
from .config import SyncSettings
from .models import db
from .blueprints import auth, sync
from .cli import (
    init_db_command, create_user_command, create_project_command, issue_token_command,
    purge_sync_receipts_command
)
from .logging_config import setup_logging, init_request_logging

logger = logging.getLogger(__name__)


def create_app(test_config=None, blob_store=None):
    """Flask application factory for the offline sync backend.

    Creates and configures a Flask application instance with:
    - Settings from FCA_* environment variables
    - SQLAlchemy database integration
    - Request id tagging and per-request log lines
    - Bearer token authentication
    - Sync blueprint and CLI command registration

    Args:
        test_config (dict, optional): Configuration overrides for testing. An
            ``FCA_SETTINGS`` entry replaces the environment-loaded settings.
        blob_store (optional): Replaces the libcloud-backed photo store

    Returns:
        Flask: Configured Flask application instance
    """
    test_config = dict(test_config or {})
    settings = test_config.pop('FCA_SETTINGS', None) or SyncSettings()

    # Setup logging first
    setup_logging(settings.log_level, settings.log_dir)
    logger.info("Starting Flask application initialization")

    app = Flask(__name__, instance_relative_config=True)
    app.config['FCA_SETTINGS'] = settings
    app.config['SQLALCHEMY_DATABASE_URI'] = settings.database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    if test_config:
        app.config.from_mapping(test_config)
        logger.info("Loaded test configuration")

    # Ensure the instance folder exists
    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    logger.info(f"Using database URI: {app.config['SQLALCHEMY_DATABASE_URI']}")
    db.init_app(app)

    app.extensions['fca_settings'] = settings
    if blob_store is not None:
        app.extensions['fca_blob_store'] = blob_store

    init_request_logging(app)
    app.register_blueprint(sync.bp)
    auth.init_auth(app)
    logger.info(f"Sync API registered (conflict policy: {settings.conflict_policy.value})")

    app.cli.add_command(init_db_command)
    app.cli.add_command(create_user_command)
    app.cli.add_command(create_project_command)
    app.cli.add_command(issue_token_command)
    app.cli.add_command(purge_sync_receipts_command)

    logger.info("Flask application initialization completed successfully")
    return app
