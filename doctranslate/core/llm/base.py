"""
Base classes and data structures for AI translation backends.

This module defines the abstract base class that every provider implements,
the immutable ProviderConfig shared by all of them, and the helpers that
normalize HTTP failures into the provider error taxonomy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
import logging

import httpx

from doctranslate.config import (
    DEFAULT_MODELS,
    GEMINI_API_ENDPOINT,
    REQUEST_TIMEOUT,
)
from doctranslate.core.exceptions import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderResponseError,
    ProviderTransientError,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_TEMPLATE = (
    "You are a professional translator. Translate the following text to {language}. "
    "Keep the original meaning and style. Only return the translated text without any explanations."
)


class ProviderKind(Enum):
    """Supported backend families"""
    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    DEEPSEEK = "deepseek"
    CUSTOM = "custom"
    LIBRETRANSLATE = "libretranslate"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProviderKind":
        if not value:
            return cls.OPENAI
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported provider: {value}")


# Backends that work without credentials
KEYLESS_PROVIDERS = (ProviderKind.OLLAMA, ProviderKind.LIBRETRANSLATE)

DEFAULT_TEMPERATURE = 0.3


@dataclass(frozen=True)
class ProviderConfig:
    """Backend configuration, immutable for the lifetime of a task"""
    provider: ProviderKind
    api_url: str
    model: str
    api_key: str = ""
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = 0
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'extra', MappingProxyType(dict(self.extra or {})))

    def identity(self) -> Tuple[str, str]:
        """Backend identity used to fingerprint cached translations"""
        return self.provider.value, self.model

    @classmethod
    def from_form(cls, data: Optional[Mapping[str, Any]]) -> "ProviderConfig":
        """
        Build a config from the submitted ``llmConfig`` object.

        Applies per-provider defaults and raises ValueError with a
        user-facing message when a required field is missing.
        """
        data = data or {}
        provider = ProviderKind.parse(data.get('provider'))

        api_url = (data.get('apiUrl') or '').strip()
        model = (data.get('model') or '').strip() or DEFAULT_MODELS[provider.value]
        if not api_url and provider == ProviderKind.GEMINI:
            api_url = GEMINI_API_ENDPOINT.format(model=model)
        if not api_url:
            raise ValueError("API URL is required")

        api_key = (data.get('apiKey') or '').strip()
        if not api_key and provider not in KEYLESS_PROVIDERS:
            raise ValueError("API key is required")

        raw_temperature = data.get('temperature')
        try:
            temperature = DEFAULT_TEMPERATURE if raw_temperature in (None, '') else float(raw_temperature)
            max_tokens = int(data.get('maxTokens', 0) or 0)
        except (TypeError, ValueError):
            raise ValueError("temperature and maxTokens must be numbers")

        extra = data.get('extra') or {}
        if not isinstance(extra, Mapping):
            raise ValueError("extra must be an object")

        return cls(
            provider=provider,
            api_url=api_url,
            model=model,
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens,
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view with the key redacted"""
        return {
            'provider': self.provider.value,
            'api_url': self.api_url,
            'model': self.model,
            'has_api_key': bool(self.api_key),
            'temperature': self.temperature,
            'max_tokens': self.max_tokens,
            'extra': dict(self.extra),
        }


def build_system_prompt(target_language: str, hint: Optional[str] = None) -> str:
    """Shared translator instruction, with the user's style hint appended"""
    prompt = SYSTEM_PROMPT_TEMPLATE.format(language=target_language)
    if hint and hint.strip():
        prompt = f"{prompt} {hint.strip()}"
    return prompt


def classify_http_error(status_code: int, message: str,
                        headers: Optional[Mapping[str, str]] = None) -> ProviderError:
    """Map an HTTP failure onto the provider error taxonomy"""
    context = {'status': status_code}
    lowered = message.lower()

    if status_code in (401, 403):
        return ProviderAuthenticationError(f"Authentication failed: {message}", context)

    if status_code == 429 or 'quota' in lowered or 'rate limit' in lowered:
        retry_after = None
        if headers and headers.get('retry-after'):
            try:
                retry_after = float(headers['retry-after'])
            except ValueError:
                retry_after = None
        return ProviderRateLimitError(f"Rate limited: {message}", retry_after, context)

    if status_code >= 500 or status_code == 408:
        return ProviderTransientError(f"Server error: {message}", context)

    return ProviderRequestError(f"Request rejected: {message}", context)


class LLMProvider(ABC):
    """Abstract base class for translation backends.

    Subclasses build the backend's wire payload in ``build_request`` and
    read the translated text back in ``parse_response``; the HTTP round trip
    and the error normalization live here. There is no retry at this level.
    """

    def __init__(self, config: ProviderConfig, target_language: str = "",
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = REQUEST_TIMEOUT):
        """
        Args:
            config: Backend configuration
            target_language: Language name the system prompt asks for
            transport: Optional httpx transport (tests inject a MockTransport)
            timeout: Per-call timeout in seconds
        """
        self.config = config
        self.target_language = target_language
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client with connection pooling"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def system_prompt(self, system_hint: Optional[str] = None) -> str:
        return build_system_prompt(self.target_language, system_hint)

    @abstractmethod
    def build_request(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        """
        Build keyword arguments for ``httpx.AsyncClient.post``.

        Returns:
            Dict with at least ``url`` and ``json``; optionally ``headers``
            and ``params``
        """
        pass

    @abstractmethod
    def parse_response(self, payload: Any) -> Optional[str]:
        """Extract translated text from a decoded success payload"""
        pass

    def extract_error_message(self, response: httpx.Response) -> str:
        """Best-effort error text from a failed response"""
        try:
            payload = response.json()
        except ValueError:
            return response.text[:500] or response.reason_phrase
        if isinstance(payload, dict):
            error = payload.get('error')
            if isinstance(error, dict) and error.get('message'):
                return str(error['message'])
            if isinstance(error, str):
                return error
            if payload.get('message'):
                return str(payload['message'])
        return response.text[:500]

    async def complete(self, prompt: str, system_hint: Optional[str] = None) -> str:
        """
        Translate ``prompt`` with one outbound call.

        Args:
            prompt: Source text
            system_hint: Optional translation-style hint from the user

        Returns:
            Translated text

        Raises:
            ProviderError: classified failure (auth, rate limit, transient,
                malformed response, rejected request)
        """
        request = self.build_request(prompt, self.system_prompt(system_hint))
        url = request.pop('url')
        client = await self._get_client()

        try:
            response = await client.post(url, **request)
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"Request timed out: {e}", {'provider': self.config.provider.value})
        except httpx.TransportError as e:
            raise ProviderTransientError(f"Connection failed: {e}", {'provider': self.config.provider.value})

        if response.status_code >= 400:
            message = self.extract_error_message(response)
            logger.debug(f"{self.config.provider.value} returned {response.status_code}: {message}")
            raise classify_http_error(response.status_code, message, response.headers)

        try:
            payload = response.json()
        except ValueError:
            raise ProviderResponseError("Response is not valid JSON", {'provider': self.config.provider.value})

        try:
            text = self.parse_response(payload)
        except (KeyError, IndexError, TypeError, AttributeError):
            text = None

        # Backends sometimes answer with numbers, lists or null in the text field
        if not isinstance(text, str) or not text.strip():
            raise ProviderResponseError("no translation result", {'provider': self.config.provider.value})
        return text.strip()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.config.model})"
