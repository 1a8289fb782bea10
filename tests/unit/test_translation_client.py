"""
Unit tests for RetryManager and TranslationClient.
"""

import pytest

from doctranslate.core.exceptions import (
    ProviderAuthenticationError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTransientError,
    RetryExhaustedError,
)
from doctranslate.core.retry_manager import RetryConfig, RetryManager, RetryStrategy
from doctranslate.core.translation_client import TranslationClient


class ScriptedProvider:
    """Provider replaying a list of results; exceptions in the list are raised."""

    def __init__(self, config, script):
        self.config = config
        self.script = list(script)
        self.calls = 0
        self.closed = False

    async def complete(self, prompt, system_hint=None):
        self.calls += 1
        outcome = self.script.pop(0) if self.script else f"translated: {prompt}"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return SleepRecorder()


class TestRetryManager:
    """Retry policy per error class."""

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, sleeper):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ProviderTransientError("timeout")
            return "ok"

        manager = RetryManager(max_attempts=3, initial_delay=1.0, sleep=sleeper)
        assert await manager.execute_with_retry(flaky) == "ok"
        assert len(attempts) == 3
        assert len(sleeper.delays) == 2
        assert sleeper.delays[1] > sleeper.delays[0]

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self, sleeper):
        async def always_down():
            raise ProviderTransientError("down")

        manager = RetryManager(max_attempts=3, initial_delay=0, sleep=sleeper)
        with pytest.raises(RetryExhaustedError) as info:
            await manager.execute_with_retry(always_down)
        assert info.value.attempts == 3
        assert isinstance(info.value.original_error, ProviderTransientError)

    @pytest.mark.asyncio
    async def test_authentication_errors_are_not_retried(self, sleeper):
        calls = []

        async def unauthorized():
            calls.append(1)
            raise ProviderAuthenticationError("bad key")

        manager = RetryManager(max_attempts=5, initial_delay=0, sleep=sleeper)
        with pytest.raises(ProviderAuthenticationError):
            await manager.execute_with_retry(unauthorized)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, sleeper):
        outcomes = [ProviderRateLimitError("slow down", retry_after=4.0), "ok"]

        async def limited():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        manager = RetryManager(max_attempts=3, initial_delay=1.0, sleep=sleeper)
        assert await manager.execute_with_retry(limited) == "ok"
        assert sleeper.delays == [4.0]

    def test_linear_strategy_for_malformed_responses(self):
        manager = RetryManager(max_attempts=3, initial_delay=2.0)
        config = manager._get_config(ProviderResponseError("garbled"))
        assert config.strategy == RetryStrategy.LINEAR

    def test_custom_config_overrides_defaults(self):
        custom = {ProviderTransientError: RetryConfig(max_attempts=7, strategy=RetryStrategy.IMMEDIATE)}
        manager = RetryManager(custom_configs=custom)
        config = manager._get_config(ProviderTransientError("x"))
        assert config.max_attempts == 7
        assert manager._calculate_delay(1, config, ProviderTransientError("x")) == 0.0


class TestTranslationClient:
    """Cache lookup, retry and write-through."""

    @pytest.mark.asyncio
    async def test_miss_calls_provider_and_writes_through(self, cache, provider_config, sleeper):
        provider = ScriptedProvider(provider_config, ["Bonjour"])
        client = TranslationClient(provider, cache, RetryManager(sleep=sleeper))

        assert await client.translate("Hello", "French") == "Bonjour"
        assert client.provider_calls == 1
        assert cache.get(cache.make_key("Hello", "French", provider_config)) == "Bonjour"

    @pytest.mark.asyncio
    async def test_hit_skips_provider(self, cache, provider_config):
        cache.put(cache.make_key("Hello", "French", provider_config), "Salut")
        provider = ScriptedProvider(provider_config, [])
        client = TranslationClient(provider, cache)

        assert await client.translate("Hello", "French") == "Salut"
        assert provider.calls == 0
        assert client.cache_hits == 1

    @pytest.mark.asyncio
    async def test_force_retranslate_bypasses_lookup_but_writes(self, cache, provider_config):
        key = cache.make_key("Hello", "French", provider_config)
        cache.put(key, "Salut")
        provider = ScriptedProvider(provider_config, ["Bonjour"])
        client = TranslationClient(provider, cache, force_retranslate=True)

        assert await client.translate("Hello", "French") == "Bonjour"
        assert provider.calls == 1
        assert cache.get(key) == "Bonjour"

    @pytest.mark.asyncio
    async def test_blank_text_is_returned_unchanged(self, cache, provider_config):
        provider = ScriptedProvider(provider_config, [])
        client = TranslationClient(provider, cache)
        assert await client.translate("   ", "French") == "   "
        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self, cache, provider_config, sleeper):
        provider = ScriptedProvider(provider_config, [ProviderTransientError("timeout"), "Bonjour"])
        client = TranslationClient(provider, cache, RetryManager(max_attempts=3, initial_delay=0, sleep=sleeper))

        assert await client.translate("Hello", "French") == "Bonjour"
        assert client.provider_calls == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_do_not_poison_cache(self, cache, provider_config, sleeper):
        provider = ScriptedProvider(provider_config, [ProviderTransientError("timeout")] * 3)
        client = TranslationClient(provider, cache, RetryManager(max_attempts=3, initial_delay=0, sleep=sleeper))

        with pytest.raises(RetryExhaustedError):
            await client.translate("Hello", "French")
        assert provider.calls == 3
        assert cache.get(cache.make_key("Hello", "French", provider_config)) is None

    @pytest.mark.asyncio
    async def test_close_closes_provider(self, cache, provider_config):
        provider = ScriptedProvider(provider_config, [])
        client = TranslationClient(provider, cache)
        await client.close()
        assert provider.closed
