"""
Translation client: cache lookup, provider call with retry, write-through.
"""

import logging
import threading
from typing import Optional

from doctranslate.core.llm.base import LLMProvider
from doctranslate.core.retry_manager import RetryManager
from doctranslate.core.translation_cache import TranslationCache

logger = logging.getLogger(__name__)


class TranslationClient:
    """
    Composes the cache and one provider into ``translate(text, lang, hint)``.

    A client is built per task: it carries the task's provider, its target
    language and its force-retranslate flag, and counts the provider calls
    and cache hits the task made.
    """

    def __init__(self, provider: LLMProvider, cache: TranslationCache,
                 retry_manager: Optional[RetryManager] = None,
                 force_retranslate: bool = False):
        self.provider = provider
        self.cache = cache
        self.retry_manager = retry_manager or RetryManager()
        self.force_retranslate = force_retranslate
        self._counter_lock = threading.Lock()
        self.provider_calls = 0
        self.cache_hits = 0

    async def _call_provider(self, text: str, hint: Optional[str]) -> str:
        with self._counter_lock:
            self.provider_calls += 1
        return await self.provider.complete(text, hint)

    async def translate(self, text: str, target_language: str, hint: Optional[str] = None) -> str:
        """
        Translate one block of text.

        Args:
            text: Source text
            target_language: Target language name
            hint: Optional translation-style hint

        Returns:
            Translated text (cached or freshly produced)

        Raises:
            RetryExhaustedError: If transient failures outlast the retry budget
            ProviderError: For non-recoverable provider failures
        """
        if not text or not text.strip():
            return text

        key = self.cache.make_key(text, target_language, self.provider.config, hint)

        if not self.force_retranslate:
            cached = self.cache.get(key)
            if cached is not None:
                with self._counter_lock:
                    self.cache_hits += 1
                logger.debug(f"Cache hit {key[:12]}")
                return cached

        translated = await self.retry_manager.execute_with_retry(
            self._call_provider, text, hint,
            operation_id=f"translate[{key[:12]}]",
        )
        self.cache.put(key, translated)
        return translated

    async def close(self):
        await self.provider.close()
