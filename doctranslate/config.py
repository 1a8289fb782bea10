"""
Centralized configuration
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from dotenv import load_dotenv

_config_logger = logging.getLogger('config')

_debug_mode = os.getenv('DEBUG_MODE', 'false').lower() == 'true'

# .env is optional, defaults are usable for local development
_env_file = Path.cwd() / '.env'
if _env_file.exists():
    load_dotenv(_env_file)
    if _debug_mode:
        _config_logger.debug(f"Loaded .env from: {_env_file.absolute()}")
elif _debug_mode:
    _config_logger.debug(f"No .env at {_env_file.absolute()}, using defaults")

# Server
HOST = os.getenv('HOST', '127.0.0.1')
PORT = int(os.getenv('PORT', '5000'))
DEBUG_MODE = os.getenv('DEBUG_MODE', 'false').lower() == 'true'

# Storage layout
DATA_DIR = os.getenv('DATA_DIR', 'data')
UPLOAD_DIR = os.getenv('UPLOAD_DIR', os.path.join(DATA_DIR, 'uploads'))
OUTPUT_DIR = os.getenv('OUTPUT_DIR', os.path.join(DATA_DIR, 'outputs'))
CACHE_DIR = os.getenv('CACHE_DIR', os.path.join(DATA_DIR, 'cache'))
CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
MAX_UPLOAD_MB = int(os.getenv('MAX_UPLOAD_MB', '100'))

# Sessions
SESSION_COOKIE_NAME = 'session_id'
SESSION_TIMEOUT_HOURS = float(os.getenv('SESSION_TIMEOUT_HOURS', '24'))
SESSION_SWEEP_INTERVAL = int(os.getenv('SESSION_SWEEP_INTERVAL', '3600'))
COOKIE_SECURE_DEFAULT = os.getenv('COOKIE_SECURE_DEFAULT', 'false').lower() == 'true'

# Provider calls
REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '120'))
MAX_TRANSLATION_ATTEMPTS = int(os.getenv('MAX_TRANSLATION_ATTEMPTS', '3'))
RETRY_DELAY_SECONDS = float(os.getenv('RETRY_DELAY_SECONDS', '2'))
INTER_CALL_DELAY = float(os.getenv('INTER_CALL_DELAY', '0.1'))

# Post-generation integrity check
INTEGRITY_THRESHOLD = float(os.getenv('INTEGRITY_THRESHOLD', '0.5'))

DEFAULT_MODELS = {
    'openai': 'gpt-3.5-turbo',
    'claude': 'claude-3-5-sonnet-20241022',
    'gemini': 'gemini-pro',
    'deepseek': 'deepseek-chat',
    'ollama': 'llama2',
    'custom': 'default',
    'libretranslate': 'libretranslate',
}

GEMINI_API_ENDPOINT = 'https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent'
CLAUDE_API_VERSION = '2023-06-01'
CLAUDE_DEFAULT_MAX_TOKENS = 4096

# Language names accepted from the UI, mapped to ISO 639-1 codes
LANGUAGE_CODES = {
    'english': 'en',
    'chinese': 'zh',
    'simplified chinese': 'zh',
    'traditional chinese': 'zt',
    'japanese': 'ja',
    'korean': 'ko',
    'french': 'fr',
    'german': 'de',
    'spanish': 'es',
    'italian': 'it',
    'portuguese': 'pt',
    'russian': 'ru',
    'arabic': 'ar',
    'hindi': 'hi',
    'dutch': 'nl',
    'polish': 'pl',
    'turkish': 'tr',
    'vietnamese': 'vi',
    'thai': 'th',
    'indonesian': 'id',
    'ukrainian': 'uk',
    'czech': 'cs',
    'swedish': 'sv',
    'greek': 'el',
    'hebrew': 'he',
}

# EPUB
NAMESPACES = {
    'opf': 'http://www.idpf.org/2007/opf',
    'dc': 'http://purl.org/dc/elements/1.1/',
    'xhtml': 'http://www.w3.org/1999/xhtml',
    'epub': 'http://www.idpf.org/2007/ops',
    'ncx': 'http://www.daisy.org/z3986/2005/ncx/',
    'container': 'urn:oasis:names:tc:opendocument:xmlns:container',
}

EPUB_BLOCK_TAGS = (
    'p', 'div', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'li', 'blockquote',
    'td', 'th', 'dt', 'dd', 'figcaption', 'caption',
)

# Translation sits inside the source element for these, keeping list/table markup valid
EPUB_INLINE_TRANSLATION_TAGS = ('li', 'td', 'th', 'dt', 'dd')

EPUB_TRANSLATION_STYLE = 'color: #666; font-style: italic; margin-top: 0.5em;'

EPUB_METADATA_FIELDS = ('title', 'description', 'subject')

# PDF
PDF_MIN_RUN_LENGTH = 3
PDF_LINE_SPACING = 1.2
# Bilingual translations shrink to fit above the next line, but not below this (points)
PDF_MIN_TRANSLATION_SIZE = 1.5
PDF_FALLBACK_FONT_SIZE = 11
PDF_FALLBACK_MARGIN = 56

# Scripts outside Latin-1 and CJK are drawn with an embedded font: an optional
# font file first, then FiraGO from pymupdf-fonts
PDF_FONT_FILE = os.getenv('PDF_FONT_FILE', '')
PDF_BUNDLED_FONT = 'figo'

OUTPUT_FORMATS = ('pdf', 'html', 'txt')


@dataclass
class TranslationSettings:
    """Runtime settings for one application instance.

    Module constants are the defaults; tests and embedders override them
    through Flask's app.config without touching the environment.
    """
    upload_dir: str = UPLOAD_DIR
    output_dir: str = OUTPUT_DIR
    cache_dir: str = CACHE_DIR
    cache_enabled: bool = CACHE_ENABLED
    max_upload_mb: int = MAX_UPLOAD_MB
    session_timeout_hours: float = SESSION_TIMEOUT_HOURS
    session_sweep_interval: int = SESSION_SWEEP_INTERVAL
    request_timeout: int = REQUEST_TIMEOUT
    max_attempts: int = MAX_TRANSLATION_ATTEMPTS
    retry_delay: float = RETRY_DELAY_SECONDS
    inter_call_delay: float = INTER_CALL_DELAY
    integrity_threshold: float = INTEGRITY_THRESHOLD

    @property
    def session_timeout_seconds(self) -> int:
        return int(self.session_timeout_hours * 3600)

    @classmethod
    def from_app_config(cls, app_config: Optional[Mapping[str, Any]] = None) -> 'TranslationSettings':
        """Build settings from a mapping of upper-case keys (e.g. Flask app.config)."""
        settings = cls()
        if not app_config:
            return settings
        for name in cls.__dataclass_fields__:
            key = name.upper()
            if key in app_config:
                setattr(settings, name, app_config[key])
        return settings
