"""
Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and provides common fixtures
and configuration for all test modules.
"""

import sys
from pathlib import Path

# Add project root (and tests/ for the fixtures package) to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))

import pytest

from doctranslate.config import TranslationSettings
from doctranslate.core.exceptions import ProviderTransientError
from doctranslate.core.llm import ProviderConfig, ProviderKind
from doctranslate.core.translation_cache import TranslationCache
from fixtures.sample_documents import create_epub, create_pdf


class StubProvider:
    """
    In-process provider: prefixes text with the target language.

    Any prompt containing one of ``fail_markers`` raises a transient error,
    so retries and per-block failure handling can be exercised.
    """

    def __init__(self, config, target_language="", fail_markers=(), **kwargs):
        self.config = config
        self.target_language = target_language
        self.fail_markers = tuple(fail_markers)
        self.calls = []
        self.closed = False

    async def complete(self, prompt, system_hint=None):
        self.calls.append(prompt)
        for marker in self.fail_markers:
            if marker in prompt:
                raise ProviderTransientError(f"stub timeout on '{marker}'")
        return f"[{self.target_language}] {prompt}"

    async def close(self):
        self.closed = True


class StubProviderFactory:
    """Provider factory recording every provider it hands out"""

    def __init__(self, fail_markers=()):
        self.fail_markers = fail_markers
        self.providers = []

    def __call__(self, config, target_language="", transport=None, timeout=None):
        provider = StubProvider(config, target_language, fail_markers=self.fail_markers)
        self.providers.append(provider)
        return provider

    @property
    def total_calls(self):
        return sum(len(p.calls) for p in self.providers)


@pytest.fixture
def provider_config():
    """OpenAI-style configuration pointing at a non-routable test host."""
    return ProviderConfig(
        provider=ProviderKind.OPENAI,
        api_url="http://llm.test/v1/chat/completions",
        model="test-model",
        api_key="test-key",
    )


@pytest.fixture
def settings(tmp_path):
    """Settings with isolated directories and no real waiting."""
    return TranslationSettings(
        upload_dir=str(tmp_path / "uploads"),
        output_dir=str(tmp_path / "outputs"),
        cache_dir=str(tmp_path / "cache"),
        retry_delay=0,
        inter_call_delay=0,
        max_attempts=3,
    )


@pytest.fixture
def cache(settings):
    return TranslationCache(settings.cache_dir)


@pytest.fixture
def stub_factory():
    return StubProviderFactory()


async def _no_sleep(delay):
    return None


@pytest.fixture
def no_sleep():
    """Awaitable replacement for asyncio.sleep that returns immediately."""
    return _no_sleep


@pytest.fixture
def epub_path(tmp_path):
    return create_epub(tmp_path / "book.epub", description="A short book used in tests.")


@pytest.fixture
def pdf_path(tmp_path):
    return create_pdf(tmp_path / "paper.pdf")


@pytest.fixture
def failing_stub_factory():
    """Factory whose providers time out on any text containing 'TIMEOUT'."""
    return StubProviderFactory(fail_markers=("TIMEOUT",))
