"""
Flask web server for the document translation API
"""
import logging
import os
import sys
from datetime import datetime

from flask import Flask
from flask_cors import CORS

from doctranslate.config import DEBUG_MODE, HOST, PORT, TranslationSettings

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if DEBUG_MODE else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Reduce verbosity of werkzeug (Flask HTTP server logs)
logging.getLogger('werkzeug').setLevel(logging.WARNING)

from doctranslate.api import SessionStore, TaskStore, TranslationOrchestrator, configure_routes
from doctranslate.core.translation_cache import TranslationCache


def _prepare_directories(settings: TranslationSettings):
    for directory in (settings.upload_dir, settings.output_dir, settings.cache_dir):
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            logger.error(f"Critical error: Unable to create folder '{directory}': {e}")
            raise


def create_app(config_overrides=None, orchestrator=None, session_store=None):
    """
    Build a fully wired application.

    Args:
        config_overrides: Upper-case settings (UPLOAD_DIR, CACHE_DIR,
            MAX_UPLOAD_MB, ...) layered over the environment defaults
        orchestrator: Pre-built TranslationOrchestrator (tests inject one
            with a mock transport)
        session_store: Pre-built SessionStore (tests inject a fake clock)

    Returns:
        Flask application; the stores are reachable through
        ``app.extensions['doctranslate']``
    """
    app = Flask(__name__)
    app.config.update(config_overrides or {})
    settings = TranslationSettings.from_app_config(app.config)
    app.config['MAX_CONTENT_LENGTH'] = int(settings.max_upload_mb) * 1024 * 1024
    CORS(app, supports_credentials=True)

    _prepare_directories(settings)

    if session_store is None:
        session_store = SessionStore(
            timeout_seconds=settings.session_timeout_seconds,
            sweep_interval=settings.session_sweep_interval,
        )
    if orchestrator is None:
        cache = TranslationCache(settings.cache_dir, enabled=settings.cache_enabled)
        orchestrator = TranslationOrchestrator(TaskStore(), cache, settings)

    session_store.add_listener(orchestrator.forget_session)
    configure_routes(app, orchestrator.task_store, orchestrator, session_store, settings)

    app.extensions['doctranslate'] = {
        'settings': settings,
        'session_store': session_store,
        'task_store': orchestrator.task_store,
        'orchestrator': orchestrator,
    }
    return app


if __name__ == '__main__':
    try:
        app = create_app()
    except OSError:
        sys.exit(1)

    session_store = app.extensions['doctranslate']['session_store']
    session_store.start_sweeper()

    logger.info("=" * 60)
    logger.info(f"DOCUMENT TRANSLATION SERVER (Version {datetime.now().strftime('%Y%m%d-%H%M')})")
    logger.info("=" * 60)
    logger.info(f"   - API: http://{HOST}:{PORT}/api/")
    logger.info(f"   - Health Check: http://{HOST}:{PORT}/api/health")
    logger.info("   - Supported formats: .epub and .pdf")
    logger.info("")

    if HOST == '0.0.0.0':
        logger.warning("Server is binding to 0.0.0.0 (all network interfaces)")
        logger.warning("   For production, use a proper WSGI server, e.g.:")
        logger.warning("   gunicorn -w 1 --threads 8 --bind 0.0.0.0:5000 'translation_api:create_app()'")

    try:
        app.run(debug=False, host=HOST, port=PORT, threaded=True)
    finally:
        session_store.stop_sweeper(timeout=5)
