"""
Text block abstraction.

A TextBlock is one independently translatable unit of source text together
with enough location data to write the translation back:
- EPUB: archive member and element path (``container_path``)
- PDF: page index plus either the content-stream operator positions of the
  run, or a bounding box when the page could not be parsed
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass
class TextBlock:
    """
    Attributes:
        block_id: Stable identifier (e.g. "epub:OEBPS/ch1.xhtml:3", "pdf:p0:r2")
        text: Source text as extracted
        kind: "body", "metadata", "toc" or "page"
        page_index: Zero-based page (PDF only)
        container_path: (member name, element path) (EPUB only)
        bbox: (x0, y0, x1, y1) in page coordinates (PDF only)
        metadata: Format-specific write-back data
        translation: Translated text, None until translated
    """
    block_id: str
    text: str
    kind: str = "body"
    page_index: Optional[int] = None
    container_path: Optional[Tuple[str, str]] = None
    bbox: Optional[Tuple[float, float, float, float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    translation: Optional[str] = None

    @property
    def is_translated(self) -> bool:
        return self.translation is not None and self.translation != self.text

    def output_text(self) -> str:
        """Translation when present, source text otherwise"""
        return self.translation if self.translation is not None else self.text

    def __repr__(self) -> str:
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"TextBlock(id={self.block_id}, text='{preview}')"
