"""
Ollama provider implementation.

Talks to a local Ollama server through ``/api/generate`` with streaming
disabled; no API key is involved.
"""

from typing import Any, Dict, Optional

from ..base import LLMProvider


class OllamaProvider(LLMProvider):
    """Local-generate style backend"""

    def build_request(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        options: Dict[str, Any] = {"temperature": self.config.temperature}
        if self.config.max_tokens > 0:
            options["num_predict"] = self.config.max_tokens

        return {
            "url": self.config.api_url,
            "json": {
                "model": self.config.model,
                "prompt": f"{system_prompt}\n\n{prompt}",
                "stream": False,
                "options": options,
            },
        }

    def parse_response(self, payload: Any) -> Optional[str]:
        return payload.get("response")
