"""
Google Gemini provider implementation.

Gemini has no system role in ``generateContent``; the instruction is
prepended to the text in a single user part.
"""

from typing import Any, Dict, Optional

from ..base import LLMProvider


class GeminiProvider(LLMProvider):
    """
    Generate-content style backend.

    Configuration:
        api_key: Google AI API key, sent as the ``key`` query parameter
        api_url: ``.../models/<model>:generateContent``
    """

    def build_request(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {"temperature": self.config.temperature}
        if self.config.max_tokens > 0:
            generation_config["maxOutputTokens"] = self.config.max_tokens

        return {
            "url": self.config.api_url,
            "params": {"key": self.config.api_key},
            "headers": {"Content-Type": "application/json"},
            "json": {
                "contents": [{"parts": [{"text": f"{system_prompt}\n\n{prompt}"}]}],
                "generationConfig": generation_config,
            },
        }

    def parse_response(self, payload: Any) -> Optional[str]:
        return payload["candidates"][0]["content"]["parts"][0]["text"]
