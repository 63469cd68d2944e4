"""
Visitor Service - Main Entry Point

Pulls visitor and operator snapshots from Firebase and serves the derived
dashboard views over HTTP.
"""

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from .app import create_app
from .config import load_config
from .dashboard import DashboardState, Policy, SnapshotPoller
from .firebase import FirebaseClient
from .logging_config import get_logger, setup_logging

logger = get_logger(__name__)


ENV_FILE = Path(__file__).resolve().parent / '.env'


def _load_local_env(env_path: Path = ENV_FILE) -> bool:
    """
    Seed the environment from a .env file next to the package.

    Variables already set in the environment take precedence.

    Returns:
        True if a file was found and loaded
    """
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Visitor Service - Visitor Management Dashboard API'
    )

    parser.add_argument(
        '--project-id',
        type=str,
        help='Firebase project id (or set FIREBASE_PROJECT_ID)'
    )

    parser.add_argument(
        '--database-url',
        type=str,
        help='Realtime Database URL (or set FIREBASE_DATABASE_URL)'
    )

    parser.add_argument(
        '--refresh-interval',
        type=int,
        help='Seconds between snapshot refreshes (or set REFRESH_INTERVAL)'
    )

    parser.add_argument(
        '--port',
        type=int,
        help='HTTP port (or set HTTP_PORT)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    if not args.project_id:
        args.project_id = os.getenv('FIREBASE_PROJECT_ID')
    if not args.project_id:
        parser.error('Missing Firebase project. Provide --project-id or set FIREBASE_PROJECT_ID in .env/environment.')

    if not args.database_url:
        args.database_url = os.getenv('FIREBASE_DATABASE_URL')
    if not args.database_url:
        parser.error('Missing Realtime Database URL. Provide --database-url or set FIREBASE_DATABASE_URL in .env/environment.')

    return args


def main() -> None:
    """Main entry point."""
    _load_local_env()
    args = parse_args()

    config = load_config()
    overrides = {
        'firebase_project_id': args.project_id,
        'firebase_database_url': args.database_url.rstrip('/'),
        'debug_mode': args.debug or config.debug_mode,
    }
    if args.refresh_interval is not None:
        overrides['refresh_interval'] = args.refresh_interval
    if args.port is not None:
        overrides['http_port'] = args.port
    config = replace(config, **overrides)

    setup_logging(config.service_name, config.debug_mode)
    logger = get_logger(__name__)

    logger.info('=' * 60)
    logger.info('Visitor Service')
    logger.info('=' * 60)
    logger.info(f'Project: {config.firebase_project_id}')
    logger.info(f'Realtime DB: {config.firebase_database_url}')
    logger.info(f'Refresh interval: {config.refresh_interval}s')
    logger.info(f'Overdue after: {config.overdue_threshold_hours}h, online TTL: {config.online_ttl_seconds}s')
    logger.info('=' * 60)

    if not config.firebase_credentials:
        logger.warning('FIREBASE_CREDENTIALS is not set, using Application Default Credentials')

    state = DashboardState(Policy.from_config(config))
    poller = None

    try:
        client = FirebaseClient(config)
        poller = SnapshotPoller(client, state, config.refresh_interval)
        poller.start()
        app = create_app(config, client=client, state=state, poller=poller)
        logger.info(f'Dashboard API: http://localhost:{config.http_port}/api/visitors')
        app.run(
            host='0.0.0.0',
            port=config.http_port,
            threaded=True,
            debug=False,
            use_reloader=False
        )
    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)
    finally:
        if poller is not None:
            poller.stop()


if __name__ == '__main__':
    main()
