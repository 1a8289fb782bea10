"""
Text object analysis for parsed content streams.

Walks operations tracking the text state (font, size, leading and the
text/line matrices) and groups the text-showing operators of each
BT ... ET object into one TextRun.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from doctranslate.config import PDF_MIN_RUN_LENGTH
from doctranslate.core.exceptions import ContentStreamError
from .content_stream import Operation, PdfName, PdfString
from .fonts import FontDecoder

Matrix = Tuple[float, float, float, float, float, float]

IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)
SHOW_OPERATORS = ('Tj', 'TJ', "'", '"')

# TJ adjustments at or below this (thousandths of an em) read as a word gap
KERNING_SPACE_THRESHOLD = -200

_WHITESPACE_RE = re.compile(r'\s+')


def translate_matrix(tx: float, ty: float, m: Matrix) -> Matrix:
    """[1 0 0 1 tx ty] x m"""
    a, b, c, d, e, f = m
    return (a, b, c, d, tx * a + ty * c + e, tx * b + ty * d + f)


@dataclass
class ShowOperation:
    index: int
    operator: str
    font: str
    size: float
    text: str


@dataclass
class TextRun:
    """
    The text-showing operators of one text object.

    Attributes:
        run_index: Position of the run on its page
        show_ops: Text-showing operators in stream order
        start_matrix: Line matrix at the first show operator
        last_line_matrix: Line matrix at the last show operator
        lines: Each distinct line matrix shown on, with the font size in use
    """
    run_index: int
    show_ops: List[ShowOperation] = field(default_factory=list)
    start_matrix: Matrix = IDENTITY
    last_line_matrix: Matrix = IDENTITY
    lines: List[Tuple[Matrix, float]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return _WHITESPACE_RE.sub(' ', ''.join(op.text for op in self.show_ops)).strip()

    @property
    def font(self) -> str:
        return self.show_ops[0].font

    @property
    def size(self) -> float:
        return self.show_ops[0].size

    @property
    def operator_indices(self) -> List[int]:
        return [op.index for op in self.show_ops]


def _numbers(op: Operation, count: int) -> List[float]:
    values = op.operands[-count:] if len(op.operands) >= count else []
    if len(values) != count or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        raise ContentStreamError(f"Operator {op.operator} expects {count} numbers")
    return [float(v) for v in values]


def _decode_show(op: Operation, decoder: FontDecoder) -> str:
    if op.operator == 'TJ':
        if not op.operands or not isinstance(op.operands[-1], list):
            raise ContentStreamError("TJ expects an array")
        parts = []
        for item in op.operands[-1]:
            if isinstance(item, PdfString):
                parts.append(decoder.decode(item.value))
            elif isinstance(item, (int, float)) and item <= KERNING_SPACE_THRESHOLD:
                parts.append(' ')
        return ''.join(parts)

    if not op.operands or not isinstance(op.operands[-1], PdfString):
        raise ContentStreamError(f"{op.operator} expects a string")
    return decoder.decode(op.operands[-1].value)


def find_text_runs(operations: List[Operation], decoders: Dict[str, FontDecoder]) -> List[TextRun]:
    """
    Group the text-showing operators of each text object.

    Raises:
        ContentStreamError: On nested or unbalanced BT/ET, text shown
            outside a text object or without a font, or malformed operands
    """
    runs: List[TextRun] = []
    state_stack: List[Tuple[Optional[str], float, float]] = []
    font: Optional[str] = None
    size = 0.0
    leading = 0.0
    in_text = False
    current: Optional[TextRun] = None
    line_matrix = IDENTITY
    default_decoder = FontDecoder()

    for index, op in enumerate(operations):
        name = op.operator

        if name == 'q':
            state_stack.append((font, size, leading))
        elif name == 'Q':
            if state_stack:
                font, size, leading = state_stack.pop()
        elif name == 'BT':
            if in_text:
                raise ContentStreamError("Nested BT")
            in_text = True
            line_matrix = IDENTITY
            current = TextRun(run_index=len(runs))
        elif name == 'ET':
            if not in_text:
                raise ContentStreamError("ET without BT")
            in_text = False
            if current is not None and current.show_ops:
                runs.append(current)
            current = None
        elif name == 'Tf':
            if len(op.operands) != 2 or not isinstance(op.operands[0], PdfName):
                raise ContentStreamError("Tf expects a font name and a size")
            font = str(op.operands[0])
            size = _numbers(op, 1)[0]
        elif name == 'TL':
            leading = _numbers(op, 1)[0]
        elif name == 'Tm':
            line_matrix = tuple(_numbers(op, 6))
        elif name in ('Td', 'TD'):
            tx, ty = _numbers(op, 2)
            if name == 'TD':
                leading = -ty
            line_matrix = translate_matrix(tx, ty, line_matrix)
        elif name == 'T*':
            line_matrix = translate_matrix(0.0, -leading, line_matrix)
        elif name in SHOW_OPERATORS:
            if not in_text:
                raise ContentStreamError(f"{name} outside a text object")
            if font is None:
                raise ContentStreamError(f"{name} before any Tf")
            if name in ("'", '"'):
                line_matrix = translate_matrix(0.0, -leading, line_matrix)
            text = _decode_show(op, decoders.get(font, default_decoder))
            if not current.show_ops:
                current.start_matrix = line_matrix
            current.last_line_matrix = line_matrix
            if not current.lines or current.lines[-1][0] != line_matrix:
                current.lines.append((line_matrix, size))
            current.show_ops.append(ShowOperation(index, name, font, size, text))

    if in_text:
        raise ContentStreamError("BT without ET")

    # Renumber so run_index is the position among non-empty runs
    for position, run in enumerate(runs):
        run.run_index = position
    return runs


def clean_run_text(text: str) -> Optional[str]:
    """Return the run text worth translating, or None for noise"""
    cleaned = _WHITESPACE_RE.sub(' ', text).strip()
    if len(cleaned) < PDF_MIN_RUN_LENGTH:
        return None
    if cleaned.isdigit():
        return None
    if not any(ch.isalpha() for ch in cleaned):
        return None
    return cleaned
