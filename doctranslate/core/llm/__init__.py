"""
AI backend abstraction.

``create_llm_provider`` is the single entry point callers use; adding a
backend means adding a provider class and one line in ``PROVIDER_CLASSES``.
"""

from typing import Dict, Optional, Type

import httpx

from doctranslate.config import REQUEST_TIMEOUT
from .base import (
    LLMProvider,
    ProviderConfig,
    ProviderKind,
    build_system_prompt,
    classify_http_error,
)
from .providers import (
    ClaudeProvider,
    CustomProvider,
    DeepSeekProvider,
    GeminiProvider,
    LibreTranslateProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
)

PROVIDER_CLASSES: Dict[ProviderKind, Type[LLMProvider]] = {
    ProviderKind.OPENAI: OpenAICompatibleProvider,
    ProviderKind.DEEPSEEK: DeepSeekProvider,
    ProviderKind.CLAUDE: ClaudeProvider,
    ProviderKind.GEMINI: GeminiProvider,
    ProviderKind.OLLAMA: OllamaProvider,
    ProviderKind.CUSTOM: CustomProvider,
    ProviderKind.LIBRETRANSLATE: LibreTranslateProvider,
}


def create_llm_provider(config: ProviderConfig, target_language: str = "",
                        transport: Optional[httpx.AsyncBaseTransport] = None,
                        timeout: float = REQUEST_TIMEOUT) -> LLMProvider:
    """
    Factory function to create a provider for ``config.provider``.

    Args:
        config: Backend configuration
        target_language: Language the provider translates into
        transport: Optional httpx transport override
        timeout: Per-call timeout in seconds

    Returns:
        LLMProvider instance

    Raises:
        ValueError: If the provider kind has no implementation
    """
    provider_class = PROVIDER_CLASSES.get(config.provider)
    if provider_class is None:
        raise ValueError(f"Unsupported provider: {config.provider}")
    return provider_class(config, target_language=target_language,
                          transport=transport, timeout=timeout)


__all__ = [
    'LLMProvider',
    'ProviderConfig',
    'ProviderKind',
    'PROVIDER_CLASSES',
    'build_system_prompt',
    'classify_http_error',
    'create_llm_provider',
]
