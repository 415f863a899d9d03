"""
Main entry point for Shelf Sync.

Starts the Flask web server that triggers syncs and streams their progress.
"""

import atexit
from datetime import datetime
from typing import Optional

from flask import Flask

from shelfsync.config import SyncConfig, get_config_from_env, is_configured
from shelfsync.db.database import init_db, close_db
from shelfsync.db.datastore import Datastore, SqlAlchemyDatastore
from shelfsync.utils.logging import get_logger, setup_logging, init_db_logging

logger = get_logger(__name__)


def create_app(config: Optional[SyncConfig] = None, datastore: Optional[Datastore] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Sync configuration (read from the environment if omitted)
        datastore: Row store (SQLAlchemy-backed if omitted)

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)

    app.config['SYNC_CONFIG'] = config or get_config_from_env()
    app.config['DATASTORE'] = datastore or SqlAlchemyDatastore()

    # Register blueprints
    from shelfsync.web.routes.api import api_bp

    app.register_blueprint(api_bp)

    # Health check
    @app.route('/health')
    def health():
        return {
            'status': 'ok',
            'configured': is_configured(app.config['SYNC_CONFIG']),
            'timestamp': datetime.utcnow().isoformat(),
        }

    return app


def main():
    """Main entry point."""
    config = get_config_from_env()

    # Setup logging
    setup_logging(config.log_level)

    # Initialize database
    init_db(config.database_url)

    # Initialize database logging (must be after init_db)
    init_db_logging()

    if not is_configured(config):
        logger.warning("CRAWLBASE_TOKEN is not set, syncs will fail until it is configured")

    logger.info(
        "Starting Shelf Sync Service",
        version="0.1.0",
        port=config.port,
    )

    # Create Flask app
    app = create_app(config)

    # Register shutdown handler
    atexit.register(close_db)

    # Run Flask app with waitress
    from waitress import serve
    serve(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
