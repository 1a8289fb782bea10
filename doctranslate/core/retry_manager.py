"""
Bounded retries for AI backend calls.

Timeouts, 5xx answers, rate limits and garbled payloads get a few more
tries with growing pauses in between. Bad credentials and rejected
requests are raised on the first failure.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Type

from .exceptions import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderResponseError,
    ProviderTransientError,
    RetryExhaustedError,
    TranslationError,
)

logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """How the pause grows between attempts."""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    IMMEDIATE = "immediate"
    NONE = "none"


@dataclass
class RetryConfig:
    """Retry policy for one family of errors.

    ``max_attempts`` counts the first call. Pauses start at
    ``initial_delay`` seconds, are capped at ``max_delay`` and get up to
    ``jitter`` (a fraction) of random extra on top.
    """
    max_attempts: int = 3
    initial_delay: float = 2.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: float = 0.1
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL


NO_RETRY = RetryConfig(max_attempts=1, strategy=RetryStrategy.NONE)


def build_retry_configs(max_attempts: int, initial_delay: float) -> Dict[Type[Exception], RetryConfig]:
    """Per-error retry policy derived from the global attempt count and delay"""
    def policy(**overrides) -> RetryConfig:
        return RetryConfig(max_attempts=max_attempts, initial_delay=initial_delay, **overrides)

    return {
        ProviderAuthenticationError: NO_RETRY,
        ProviderRequestError: NO_RETRY,
        # rate limits usually clear slower than a flaky connection
        ProviderRateLimitError: RetryConfig(max_attempts=max_attempts, initial_delay=initial_delay * 5,
                                            max_delay=120.0),
        ProviderTransientError: policy(),
        ProviderResponseError: policy(strategy=RetryStrategy.LINEAR),
        ProviderError: policy(),
    }


class RetryManager:
    """Awaits a coroutine function until it succeeds or its policy gives up."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 2.0,
        custom_configs: Optional[Dict[Type[Exception], RetryConfig]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.default_config = RetryConfig(max_attempts=max_attempts, initial_delay=initial_delay)
        self.configs = build_retry_configs(max_attempts, initial_delay)
        self.configs.update(custom_configs or {})
        self._sleep = sleep

    def _get_config(self, error: Exception) -> RetryConfig:
        """Policy for the error's own class, else the closest registered base."""
        exact = self.configs.get(type(error))
        if exact is not None:
            return exact
        for cls in type(error).__mro__[1:]:
            if cls in self.configs:
                return self.configs[cls]
        return self.default_config

    def _calculate_delay(self, attempt: int, config: RetryConfig, error: Exception) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if config.strategy in (RetryStrategy.IMMEDIATE, RetryStrategy.NONE):
            return 0.0

        hint = getattr(error, 'retry_after', None)
        if hint:
            return min(hint, config.max_delay)

        if config.strategy == RetryStrategy.LINEAR:
            pause = config.initial_delay * attempt
        else:
            pause = config.initial_delay * config.backoff_factor ** (attempt - 1)
        pause = min(pause, config.max_delay)

        if pause > 0 and config.jitter > 0:
            pause *= 1 + config.jitter * random.random()
        return pause

    async def execute_with_retry(self, func: Callable[..., Any], *args,
                                 operation_id: Optional[str] = None, **kwargs) -> Any:
        """Await ``func(*args, **kwargs)``, retrying recoverable failures.

        Raises:
            RetryExhaustedError: the error was recoverable but kept coming
                back until the attempt budget ran out
            TranslationError: a non-recoverable error, re-raised as is
        """
        label = operation_id or getattr(func, '__name__', 'operation')
        attempt = 1
        while True:
            try:
                outcome = await func(*args, **kwargs)
            except TranslationError as error:
                if not error.recoverable:
                    logger.error(f"{label}: giving up on non-recoverable error: {error}")
                    raise

                config = self._get_config(error)
                if config.strategy is RetryStrategy.NONE or attempt >= config.max_attempts:
                    logger.error(f"{label}: still failing after {attempt} attempt(s): {error}")
                    raise RetryExhaustedError(f"{label} failed after {attempt} attempt(s)",
                                              original_error=error, attempts=attempt)

                pause = self._calculate_delay(attempt, config, error)
                logger.warning(f"{label}: attempt {attempt} of {config.max_attempts} raised "
                               f"{type(error).__name__} ({error.message}), next try in {pause:.2f}s")
                if pause > 0:
                    await self._sleep(pause)
                attempt += 1
            else:
                if attempt > 1:
                    logger.info(f"{label}: recovered on attempt {attempt}")
                return outcome
