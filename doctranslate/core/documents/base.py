"""
Abstract base class for translatable documents.

Each format (EPUB, PDF) implements the same life cycle:

    opened -> blocks-extracted -> blocks-translated -> rebuilt -> saved

The public methods enforce that order; subclasses implement the
underscore-prefixed hooks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

from doctranslate.core.exceptions import DocumentStateError
from .text_block import TextBlock


class DocumentState(Enum):
    CREATED = "created"
    OPENED = "opened"
    BLOCKS_EXTRACTED = "blocks-extracted"
    BLOCKS_TRANSLATED = "blocks-translated"
    REBUILT = "rebuilt"
    SAVED = "saved"


class GenerateMode(Enum):
    BILINGUAL = "bilingual"
    MONOLINGUAL = "monolingual"

    @classmethod
    def parse(cls, value: Optional[str]) -> "GenerateMode":
        if not value:
            return cls.BILINGUAL
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid generate mode: {value} (expected bilingual or monolingual)")


@dataclass
class RebuildResult:
    """
    Outcome of rebuild + save.

    Attributes:
        output_path: Where the output was written
        output_format: "epub", "pdf", "html" or "txt"
        strategy: "structural", "operator", "full-rebuild", "markup" or "text"
        degraded: True when a lower-fidelity fallback produced the output
        notes: Human-readable remarks (pages passed through, fallbacks taken)
    """
    output_path: str
    output_format: str
    strategy: str
    degraded: bool = False
    notes: List[str] = field(default_factory=list)


class TranslatableDocument(ABC):
    """
    Abstract interface for a document going through the translation pipeline.

    Subclasses must implement ``format_name`` and the ``_open``,
    ``_extract``, ``_rebuild`` and ``_save`` hooks.
    """

    def __init__(self, input_path: str):
        self.input_path = Path(input_path)
        self.state = DocumentState.CREATED
        self.blocks: List[TextBlock] = []
        self.mode = GenerateMode.BILINGUAL

    @property
    @abstractmethod
    def format_name(self) -> str:
        pass

    def _require(self, *states: DocumentState):
        if self.state not in states:
            expected = ", ".join(s.value for s in states)
            raise DocumentStateError(
                f"Invalid document state {self.state.value}, expected {expected}",
                {'document': self.input_path.name}
            )

    def open(self) -> None:
        self._require(DocumentState.CREATED)
        self._open()
        self.state = DocumentState.OPENED

    def extract_blocks(self) -> List[TextBlock]:
        """Return the ordered text blocks of the document"""
        self._require(DocumentState.OPENED)
        self.blocks = self._extract()
        self.state = DocumentState.BLOCKS_EXTRACTED
        return self.blocks

    def apply_translations(self, translations: Mapping[str, Optional[str]]) -> None:
        """
        Attach translations by block id.

        Blocks missing from ``translations`` (or mapped to None) keep their
        source text in the output.
        """
        self._require(DocumentState.BLOCKS_EXTRACTED)
        for block in self.blocks:
            translated = translations.get(block.block_id)
            if translated is not None:
                block.translation = translated
        self.state = DocumentState.BLOCKS_TRANSLATED

    def rebuild(self, mode: GenerateMode, output_format: Optional[str] = None) -> None:
        self._require(DocumentState.BLOCKS_TRANSLATED)
        self.mode = mode
        self._rebuild(mode, output_format)
        self.state = DocumentState.REBUILT

    def save(self, output_path: str) -> RebuildResult:
        self._require(DocumentState.REBUILT)
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        result = self._save(output_path)
        self.state = DocumentState.SAVED
        return result

    def close(self) -> None:
        """Release resources; safe to call in any state"""
        pass

    @abstractmethod
    def _open(self) -> None:
        pass

    @abstractmethod
    def _extract(self) -> List[TextBlock]:
        pass

    @abstractmethod
    def _rebuild(self, mode: GenerateMode, output_format: Optional[str]) -> None:
        pass

    @abstractmethod
    def _save(self, output_path: str) -> RebuildResult:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(input={self.input_path.name}, state={self.state.value})"
