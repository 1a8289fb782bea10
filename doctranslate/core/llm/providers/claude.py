"""
Anthropic Messages API provider.
"""

from typing import Any, Dict, Optional

from doctranslate.config import CLAUDE_API_VERSION, CLAUDE_DEFAULT_MAX_TOKENS
from ..base import LLMProvider


class ClaudeProvider(LLMProvider):
    """
    Message-style backend.

    The key travels in ``x-api-key`` rather than a bearer header, the system
    prompt is a top-level field, and ``max_tokens`` is mandatory.
    """

    def build_request(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        max_tokens = self.config.max_tokens if self.config.max_tokens > 0 else CLAUDE_DEFAULT_MAX_TOKENS
        return {
            "url": self.config.api_url,
            "headers": {
                "Content-Type": "application/json",
                "x-api-key": self.config.api_key,
                "anthropic-version": CLAUDE_API_VERSION,
            },
            "json": {
                "model": self.config.model,
                "max_tokens": max_tokens,
                "system": system_prompt,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.config.temperature,
            },
        }

    def parse_response(self, payload: Any) -> Optional[str]:
        for block in payload.get("content", []):
            if block.get("type", "text") == "text" and block.get("text"):
                return block["text"]
        return None
