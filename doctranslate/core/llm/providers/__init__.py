"""
Provider implementations, one per backend family.

Providers:
    - openai: OpenAI-compatible chat completions (also DeepSeek)
    - claude: Anthropic Messages API
    - gemini: Google Gemini generateContent
    - ollama: Local Ollama server
    - custom: OpenAI-shaped request with extra parameters
    - libretranslate: LibreTranslate machine translation
"""

from .openai import OpenAICompatibleProvider, DeepSeekProvider
from .claude import ClaudeProvider
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .custom import CustomProvider
from .libretranslate import LibreTranslateProvider

__all__ = [
    'OpenAICompatibleProvider',
    'DeepSeekProvider',
    'ClaudeProvider',
    'GeminiProvider',
    'OllamaProvider',
    'CustomProvider',
    'LibreTranslateProvider',
]
