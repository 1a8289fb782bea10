"""
OpenAI-compatible provider implementation.

Covers the chat-completion wire schema used by OpenAI, DeepSeek and the
many self-hosted servers that mimic it (llama.cpp, LM Studio, vLLM, ...).
"""

from typing import Any, Dict, Optional

from ..base import LLMProvider


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completion style backend (``/v1/chat/completions``)"""

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def build_payload(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.temperature,
        }
        if self.config.max_tokens > 0:
            payload["max_tokens"] = self.config.max_tokens
        return payload

    def build_request(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        return {
            "url": self.config.api_url,
            "json": self.build_payload(prompt, system_prompt),
            "headers": self.build_headers(),
        }

    def parse_response(self, payload: Any) -> Optional[str]:
        return payload["choices"][0]["message"]["content"]


class DeepSeekProvider(OpenAICompatibleProvider):
    """DeepSeek speaks the OpenAI chat-completion schema unchanged"""
    pass
