"""
Content-addressed, on-disk cache of translated text, partitioned per visitor.

Each visitor session gets its own scope directory, named after the session
digest; inside it every entry lives in a file named after the SHA-256
fingerprint of the normalized source text, the target language and the
backend identity:

    <cache_dir>/<scope>/<key[:2]>/<key>.txt

Nothing is shared between scopes. Entries are never evicted by the cache
itself; ``put`` overwrites and ``purge_scope`` drops a whole visitor.
"""

import copy
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import unicodedata
from pathlib import Path
from typing import Dict, Optional

from doctranslate.core.llm.base import ProviderConfig
from doctranslate.utils.locks import ReadWriteLock

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r'\s+')
_KEY_RE = re.compile(r'[0-9a-f]{64}')
_SCOPE_RE = re.compile(r'[0-9a-f]{16,64}')


def normalize_text(text: str) -> str:
    """NFC, single spaces, no leading/trailing whitespace"""
    return _WHITESPACE_RE.sub(' ', unicodedata.normalize('NFC', text)).strip()


def make_cache_key(text: str, target_language: str, config: ProviderConfig,
                   prompt_hint: Optional[str] = None) -> str:
    """
    Deterministic fingerprint of a translation request.

    Args:
        text: Source text (normalized before hashing)
        target_language: Target language name
        config: Backend configuration; provider kind and model are hashed
        prompt_hint: Optional translation-style hint

    Returns:
        64-character hex digest
    """
    provider, model = config.identity()
    payload = json.dumps({
        'text': normalize_text(text),
        'target_language': target_language.strip().lower(),
        'provider': provider,
        'model': model,
        'prompt_hint': (prompt_hint or '').strip(),
    }, sort_keys=True, ensure_ascii=False, separators=(',', ':'))
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


class TranslationCache:
    """
    Thread-safe translation cache.

    The object built at start-up is the root of all scopes; task code only
    ever touches the view returned by ``for_scope``. Reads run concurrently,
    writes are exclusive. Disk failures are logged and degrade to a cache
    miss; they never fail a translation.
    """

    def __init__(self, cache_dir: str, enabled: bool = True):
        """
        Args:
            cache_dir: Directory holding cache entries (created on demand)
            enabled: When False, ``get`` always misses but ``put`` still writes
        """
        self.cache_dir = Path(cache_dir)
        self.enabled = enabled
        self._lock = ReadWriteLock()
        self._stats_lock = ReadWriteLock()
        self._stats = {'hits': 0, 'misses': 0, 'writes': 0}

    def _scope_dir(self, scope: str) -> Path:
        if not _SCOPE_RE.fullmatch(scope or ''):
            raise ValueError(f"Invalid cache scope: {scope!r}")
        return self.cache_dir / scope

    def for_scope(self, scope: str) -> "TranslationCache":
        """
        View of the cache restricted to one visitor.

        The view shares this cache's lock and counters but reads and writes
        only below ``<cache_dir>/<scope>``.
        """
        view = copy.copy(self)
        view.cache_dir = self._scope_dir(scope)
        return view

    def purge_scope(self, scope: str) -> bool:
        """Delete every entry of one visitor; True if anything was removed"""
        directory = self._scope_dir(scope)
        with self._lock.write_locked():
            if not directory.is_dir():
                return False
            try:
                shutil.rmtree(directory)
            except OSError as e:
                logger.warning(f"Cache purge failed for scope {scope[:8]}: {e}")
                return False
        return True

    def make_key(self, text: str, target_language: str, config: ProviderConfig,
                 prompt_hint: Optional[str] = None) -> str:
        return make_cache_key(text, target_language, config, prompt_hint)

    def _entry_path(self, key: str) -> Path:
        if not _KEY_RE.fullmatch(key):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.cache_dir / key[:2] / f"{key}.txt"

    def _count(self, name: str):
        with self._stats_lock.write_locked():
            self._stats[name] += 1

    def get(self, key: str) -> Optional[str]:
        """Return the cached translation for ``key`` or None on a miss"""
        if not self.enabled:
            self._count('misses')
            return None

        path = self._entry_path(key)
        with self._lock.read_locked():
            try:
                value = path.read_text(encoding='utf-8')
            except FileNotFoundError:
                value = None
            except OSError as e:
                logger.warning(f"Cache read failed for {key[:12]}: {e}")
                value = None

        self._count('hits' if value is not None else 'misses')
        return value

    def put(self, key: str, text: str) -> None:
        """Store ``text`` under ``key``, replacing any previous value"""
        path = self._entry_path(key)
        with self._lock.write_locked():
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                # Write-then-rename so readers never see a partial entry
                fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix='.tmp')
                try:
                    with os.fdopen(fd, 'w', encoding='utf-8') as f:
                        f.write(text)
                    os.replace(tmp_path, path)
                except BaseException:
                    if os.path.exists(tmp_path):
                        os.unlink(tmp_path)
                    raise
            except OSError as e:
                logger.warning(f"Cache write failed for {key[:12]}: {e}")
                return

        self._count('writes')

    def stats(self) -> Dict[str, int]:
        with self._stats_lock.read_locked():
            return dict(self._stats)
