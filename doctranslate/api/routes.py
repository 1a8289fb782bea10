"""
Flask routes orchestrator for the translation API

Registers the session cookie hooks, the translation blueprint
(blueprints/translation_routes.py) and the JSON error handlers.
"""
import logging

from flask import jsonify

from doctranslate.config import TranslationSettings
from .blueprints import create_translation_blueprint
from .session_middleware import configure_session_middleware

logger = logging.getLogger(__name__)


def configure_routes(app, task_store, orchestrator, session_store, settings: TranslationSettings):
    """
    Configure Flask routes by registering all blueprints

    Args:
        app: Flask application instance
        task_store: Shared task state
        orchestrator: Starts and drives translation tasks
        session_store: Visitor sessions
        settings: Runtime settings
    """
    configure_session_middleware(app, session_store)

    translation_bp = create_translation_blueprint(task_store, orchestrator, session_store, settings)
    app.register_blueprint(translation_bp)

    _register_error_handlers(app, settings)


def _register_error_handlers(app, settings: TranslationSettings):
    """Register global error handlers"""

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({"error": "Bad request", "details": getattr(error, 'description', str(error))}), 400

    @app.errorhandler(404)
    def route_not_found(error):
        return jsonify({"error": "API Endpoint not found"}), 404

    @app.errorhandler(413)
    def payload_too_large(error):
        return jsonify({"error": f"File too large (limit {settings.max_upload_mb} MB)"}), 413

    @app.errorhandler(500)
    def internal_server_error(error):
        logger.error(f"Internal server error: {error}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500
