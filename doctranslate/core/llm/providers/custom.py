"""
Custom-schema provider.

Starts from the OpenAI request shape and merges the user's ``extra``
parameters over it, so most self-hosted gateways can be reached without a
dedicated adapter.
"""

from typing import Any, Dict, Optional

from .openai import OpenAICompatibleProvider


class CustomProvider(OpenAICompatibleProvider):
    """OpenAI-shaped request with free-form extra parameters"""

    RESPONSE_FIELDS = ("text", "output", "response", "translation")

    def build_payload(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        payload = super().build_payload(prompt, system_prompt)
        payload.update(dict(self.config.extra))
        return payload

    def parse_response(self, payload: Any) -> Optional[str]:
        if isinstance(payload, dict):
            choices = payload.get("choices")
            if choices:
                return super().parse_response(payload)
            for name in self.RESPONSE_FIELDS:
                if isinstance(payload.get(name), str):
                    return payload[name]
        return None
