"""
Thread-safe translation task state
"""
import copy
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

PENDING = 'pending'
PROCESSING = 'processing'
COMPLETED = 'completed'
FAILED = 'failed'

TERMINAL_STATUSES = (COMPLETED, FAILED)

STATUS_LOG_LIMIT = 100


@dataclass
class Task:
    """One translation job, owned by exactly one session"""
    task_id: str
    session_id: str
    source_file: str
    target_language: str
    generate_mode: str = 'bilingual'
    status: str = PENDING
    progress: float = 0.0
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    output_path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=STATUS_LOG_LIMIT))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_logs: bool = False) -> Dict[str, Any]:
        """Client-facing snapshot; the owner token and server paths are never exposed"""
        data = {
            'taskId': self.task_id,
            'sourceFile': self.source_file,
            'targetLanguage': self.target_language,
            'generateMode': self.generate_mode,
            'status': self.status,
            'progress': round(self.progress, 4),
            'error': self.error,
            'createdAt': self.created_at,
            'completedAt': self.completed_at,
            'hasOutput': self.output_path is not None,
            'metadata': copy.deepcopy(self.metadata),
        }
        if include_logs:
            data['logs'] = copy.deepcopy(list(self.logs))
        return data


class TaskStore:
    """Thread-safe manager for task state"""

    def __init__(self):
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.RLock()

    def create(self, session_id: str, source_file: str, target_language: str,
               generate_mode: str = 'bilingual', task_id: Optional[str] = None) -> Task:
        with self._lock:
            task = Task(
                task_id=task_id or str(uuid.uuid4()),
                session_id=session_id,
                source_file=source_file,
                target_language=target_language,
                generate_mode=generate_mode,
            )
            self._tasks[task.task_id] = task
            return copy.deepcopy(task)

    def get(self, task_id: str, session_id: str) -> Optional[Task]:
        """Return a copy of the task, or None if it is missing or owned by another session"""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.session_id != session_id:
                return None
            return copy.deepcopy(task)

    def list_for_session(self, session_id: str) -> List[Task]:
        """Tasks owned by ``session_id``, newest first"""
        with self._lock:
            owned = [copy.deepcopy(t) for t in reversed(list(self._tasks.values()))
                     if t.session_id == session_id]
        return sorted(owned, key=lambda t: t.created_at, reverse=True)

    def output_path_for(self, task_id: str, session_id: str) -> Optional[str]:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.session_id != session_id:
                return None
            return task.output_path

    def _active(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None or task.is_terminal:
            return None
        return task

    def mark_processing(self, task_id: str) -> bool:
        with self._lock:
            task = self._active(task_id)
            if task is None:
                return False
            task.status = PROCESSING
            return True

    def update_progress(self, task_id: str, progress: float) -> bool:
        """Progress is clamped to [0, 1] and never decreases"""
        with self._lock:
            task = self._active(task_id)
            if task is None:
                return False
            task.progress = max(task.progress, min(1.0, max(0.0, progress)))
            return True

    def mark_completed(self, task_id: str, output_path: str,
                       metadata: Optional[Dict[str, Any]] = None) -> bool:
        with self._lock:
            task = self._active(task_id)
            if task is None:
                return False
            task.status = COMPLETED
            task.progress = 1.0
            task.output_path = output_path
            task.completed_at = time.time()
            if metadata:
                task.metadata.update(copy.deepcopy(metadata))
            return True

    def mark_failed(self, task_id: str, error: str) -> bool:
        with self._lock:
            task = self._active(task_id)
            if task is None:
                return False
            task.status = FAILED
            task.error = error
            task.completed_at = time.time()
            return True

    def append_log(self, task_id: str, message: str, level: str = 'INFO') -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return False
            task.logs.append({
                'timestamp': datetime.now().strftime('%H:%M:%S'),
                'level': level,
                'message': message,
            })
            return True

    def purge_session(self, session_id: str) -> int:
        """Forget every task owned by ``session_id``; returns how many were dropped"""
        with self._lock:
            owned = [task_id for task_id, task in self._tasks.items() if task.session_id == session_id]
            for task_id in owned:
                del self._tasks[task_id]
            return len(owned)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
