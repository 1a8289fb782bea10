"""
HTTP layer: session cookie, task orchestration and translation routes
"""
from .handlers import TranslationJob, TranslationOrchestrator, run_translation_async_wrapper
from .routes import configure_routes
from .session_store import Session, SessionStore, session_digest
from .task_store import Task, TaskStore

__all__ = [
    'TranslationJob',
    'TranslationOrchestrator',
    'run_translation_async_wrapper',
    'configure_routes',
    'Session',
    'SessionStore',
    'session_digest',
    'Task',
    'TaskStore',
]
