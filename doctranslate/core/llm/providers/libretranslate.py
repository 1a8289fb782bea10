"""
LibreTranslate provider.

Not an LLM: the target is a language code and the style hint is ignored.
"""

from typing import Any, Dict, Optional

from doctranslate.config import LANGUAGE_CODES
from ..base import LLMProvider


def language_code(language: str) -> str:
    """Map a language name from the UI onto an ISO code, passing codes through"""
    normalized = language.strip().lower()
    if normalized in LANGUAGE_CODES:
        return LANGUAGE_CODES[normalized]
    return normalized


class LibreTranslateProvider(LLMProvider):
    """Machine translation backend speaking the LibreTranslate ``/translate`` API"""

    def build_request(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "q": prompt,
            "source": self.config.extra.get("source_language", "auto"),
            "target": language_code(self.target_language),
            "format": "text",
        }
        if self.config.api_key:
            body["api_key"] = self.config.api_key
        return {"url": self.config.api_url, "json": body}

    def parse_response(self, payload: Any) -> Optional[str]:
        return payload.get("translatedText")
