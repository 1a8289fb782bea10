"""Flask blueprints mounted by routes.configure_routes."""
from .translation_routes import create_translation_blueprint

__all__ = ['create_translation_blueprint']
