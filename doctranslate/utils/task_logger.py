"""
Mirrors log records emitted while a task runs into that task's log list
"""
import logging
import threading


class TaskLogHandler(logging.Handler):
    """
    Logging handler bound to one task.

    Only records emitted from the worker thread that created the handler
    are stored, so concurrent tasks never see each other's messages.
    """

    def __init__(self, task_store, task_id: str, level=logging.INFO):
        super().__init__(level)
        self.task_store = task_store
        self.task_id = task_id
        self.thread_id = threading.get_ident()

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread == self.thread_id and super().filter(record)

    def emit(self, record: logging.LogRecord):
        try:
            self.task_store.append_log(self.task_id, record.getMessage(), record.levelname)
        except Exception:
            self.handleError(record)


class attached_task_logger:
    """Context manager attaching a TaskLogHandler to ``logger_name`` for the task's duration"""

    def __init__(self, task_store, task_id: str, logger_name: str = 'doctranslate'):
        self.handler = TaskLogHandler(task_store, task_id)
        self.logger = logging.getLogger(logger_name)

    def __enter__(self):
        # INFO records must reach the handler even when the root logger is quieter
        if self.logger.level == logging.NOTSET or self.logger.level > logging.INFO:
            self.logger.setLevel(logging.INFO)
        self.logger.addHandler(self.handler)
        return self.handler

    def __exit__(self, exc_type, exc, tb):
        self.logger.removeHandler(self.handler)
        return False
