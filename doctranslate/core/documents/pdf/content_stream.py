"""
PDF content stream tokenizer, parser and serializer.

``parse_content_stream`` turns raw page content into a list of Operation
objects. Each operation keeps the exact source bytes it was parsed from, so
anything the rebuilder does not touch is written back verbatim; only
operations created or modified by the rebuilder are re-serialized from
their operands.

Inline images (``BI ... ID <binary> EI``) are kept as one opaque operation.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional

from doctranslate.core.exceptions import ContentStreamError

WHITESPACE = b' \t\n\r\f\x00'
DELIMITERS = b'()<>[]{}/%'

_NUMBER_RE = re.compile(rb'^[+-]?(\d+\.?\d*|\.\d+)$')
_INLINE_IMAGE_END_RE = re.compile(rb'[\s]EI(?=[\s]|$)')

_ESCAPES = {
    ord('n'): b'\n', ord('r'): b'\r', ord('t'): b'\t', ord('b'): b'\b', ord('f'): b'\f',
    ord('('): b'(', ord(')'): b')', ord('\\'): b'\\',
}


class PdfName(str):
    """A PDF name object, without the leading slash"""

    def __repr__(self) -> str:
        return f"/{str(self)}"


@dataclass(frozen=True)
class PdfString:
    """A PDF string object; ``hex`` remembers the source notation"""
    value: bytes
    hex: bool = False


@dataclass
class Operation:
    """
    One content stream operator with its operands.

    Attributes:
        operator: Operator keyword (e.g. "Tj", "re", "BI")
        operands: Parsed operand objects
        raw: Exact source bytes, None for operations built in code
    """
    operator: str
    operands: List[Any] = field(default_factory=list)
    raw: Optional[bytes] = None

    def to_bytes(self) -> bytes:
        if self.raw is not None:
            return self.raw
        parts = [serialize_object(operand) for operand in self.operands]
        parts.append(self.operator.encode('latin-1'))
        return b' '.join(parts)


# ============================================================================
# Serialization
# ============================================================================

def _format_number(value) -> bytes:
    if isinstance(value, bool):
        return b'true' if value else b'false'
    if isinstance(value, int):
        return str(value).encode('ascii')
    text = f"{value:.4f}".rstrip('0').rstrip('.')
    if text in ('', '-', '-0'):
        text = '0'
    return text.encode('ascii')


def _escape_name(name: str) -> bytes:
    out = bytearray(b'/')
    for byte in name.encode('utf-8'):
        if byte < 0x21 or byte > 0x7e or byte in DELIMITERS or byte == ord('#'):
            out += b'#%02X' % byte
        else:
            out.append(byte)
    return bytes(out)


def _escape_literal(value: bytes) -> bytes:
    out = bytearray(b'(')
    for byte in value:
        if byte in (ord('('), ord(')'), ord('\\')):
            out += b'\\' + bytes([byte])
        elif byte < 0x20 or byte > 0x7e:
            out += b'\\%03o' % byte
        else:
            out.append(byte)
    out += b')'
    return bytes(out)


def serialize_object(obj: Any) -> bytes:
    """Serialize one operand back to content stream syntax"""
    if obj is None:
        return b'null'
    if isinstance(obj, PdfName):
        return _escape_name(obj)
    if isinstance(obj, PdfString):
        if obj.hex:
            return b'<' + obj.value.hex().encode('ascii') + b'>'
        return _escape_literal(obj.value)
    if isinstance(obj, (bool, int, float)):
        return _format_number(obj)
    if isinstance(obj, list):
        return b'[' + b' '.join(serialize_object(item) for item in obj) + b']'
    if isinstance(obj, dict):
        items = b' '.join(serialize_object(PdfName(k)) + b' ' + serialize_object(v) for k, v in obj.items())
        return b'<<' + items + b'>>'
    raise ContentStreamError(f"Cannot serialize operand of type {type(obj).__name__}")


def serialize_content_stream(operations: List[Operation]) -> bytes:
    return b'\n'.join(op.to_bytes() for op in operations) + b'\n'


# ============================================================================
# Tokenizer
# ============================================================================

class _Token:
    __slots__ = ('kind', 'value', 'start', 'end')

    def __init__(self, kind: str, value: Any, start: int, end: int):
        self.kind = kind
        self.value = value
        self.start = start
        self.end = end


class ContentStreamLexer:
    """Splits content stream bytes into tokens with their byte offsets"""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def _skip_whitespace_and_comments(self):
        data = self.data
        while self.pos < len(data):
            byte = data[self.pos]
            if byte in WHITESPACE:
                self.pos += 1
            elif byte == ord('%'):
                while self.pos < len(data) and data[self.pos] not in b'\r\n':
                    self.pos += 1
            else:
                break

    def _read_literal_string(self) -> bytes:
        data = self.data
        start = self.pos
        self.pos += 1
        depth = 1
        out = bytearray()
        while self.pos < len(data):
            byte = data[self.pos]
            if byte == ord('\\'):
                self.pos += 1
                if self.pos >= len(data):
                    break
                esc = data[self.pos]
                if esc in _ESCAPES:
                    out += _ESCAPES[esc]
                    self.pos += 1
                elif 0x30 <= esc <= 0x37:
                    digits = bytearray()
                    while self.pos < len(data) and len(digits) < 3 and 0x30 <= data[self.pos] <= 0x37:
                        digits.append(data[self.pos])
                        self.pos += 1
                    out.append(int(digits, 8) & 0xFF)
                elif esc == ord('\r'):
                    self.pos += 1
                    if self.pos < len(data) and data[self.pos] == ord('\n'):
                        self.pos += 1
                elif esc == ord('\n'):
                    self.pos += 1
                else:
                    out.append(esc)
                    self.pos += 1
                continue
            if byte == ord('('):
                depth += 1
            elif byte == ord(')'):
                depth -= 1
                if depth == 0:
                    self.pos += 1
                    return bytes(out)
            out.append(byte)
            self.pos += 1
        raise ContentStreamError("Unterminated literal string", offset=start)

    def _read_hex_string(self) -> bytes:
        start = self.pos
        end = self.data.find(b'>', self.pos + 1)
        if end < 0:
            raise ContentStreamError("Unterminated hex string", offset=start)
        digits = re.sub(rb'\s', b'', self.data[self.pos + 1:end])
        if not re.fullmatch(rb'[0-9A-Fa-f]*', digits):
            raise ContentStreamError("Invalid hex string", offset=start)
        if len(digits) % 2:
            digits += b'0'
        self.pos = end + 1
        return bytes.fromhex(digits.decode('ascii'))

    def _read_regular(self) -> bytes:
        start = self.pos
        data = self.data
        while self.pos < len(data) and data[self.pos] not in WHITESPACE and data[self.pos] not in DELIMITERS:
            self.pos += 1
        return data[start:self.pos]

    def _read_name(self) -> str:
        self.pos += 1
        raw = self._read_regular()
        decoded = re.sub(rb'#([0-9A-Fa-f]{2})', lambda m: bytes([int(m.group(1), 16)]), raw)
        return decoded.decode('utf-8', errors='replace')

    def next_token(self) -> Optional[_Token]:
        self._skip_whitespace_and_comments()
        data = self.data
        if self.pos >= len(data):
            return None

        start = self.pos
        byte = data[self.pos]

        if byte == ord('('):
            return _Token('string', PdfString(self._read_literal_string()), start, self.pos)
        if byte == ord('<'):
            if data[self.pos + 1:self.pos + 2] == b'<':
                self.pos += 2
                return _Token('dict_start', None, start, self.pos)
            return _Token('string', PdfString(self._read_hex_string(), hex=True), start, self.pos)
        if byte == ord('>'):
            if data[self.pos + 1:self.pos + 2] == b'>':
                self.pos += 2
                return _Token('dict_end', None, start, self.pos)
            raise ContentStreamError("Unexpected '>'", offset=start)
        if byte == ord('['):
            self.pos += 1
            return _Token('array_start', None, start, self.pos)
        if byte == ord(']'):
            self.pos += 1
            return _Token('array_end', None, start, self.pos)
        if byte == ord('/'):
            return _Token('name', PdfName(self._read_name()), start, self.pos)
        if byte in (ord('{'), ord('}'), ord(')')):
            raise ContentStreamError(f"Unexpected delimiter {chr(byte)!r}", offset=start)

        word = self._read_regular()
        if _NUMBER_RE.match(word):
            text = word.decode('ascii')
            value = float(text) if '.' in text else int(text)
            return _Token('number', value, start, self.pos)
        if word == b'true':
            return _Token('bool', True, start, self.pos)
        if word == b'false':
            return _Token('bool', False, start, self.pos)
        if word == b'null':
            return _Token('null', None, start, self.pos)
        return _Token('operator', word.decode('latin-1'), start, self.pos)

    def __iter__(self) -> Iterator[_Token]:
        while True:
            token = self.next_token()
            if token is None:
                return
            yield token


# ============================================================================
# Parser
# ============================================================================

_SCALAR_KINDS = ('number', 'bool', 'null', 'name', 'string')


def _read_object(lexer: ContentStreamLexer, token: _Token) -> Any:
    """Complete operand starting at ``token``, descending into arrays and dicts"""
    if token.kind in _SCALAR_KINDS:
        return token.value

    if token.kind == 'array_start':
        items = []
        while True:
            item = lexer.next_token()
            if item is None:
                raise ContentStreamError("Unterminated array or dictionary", offset=token.start)
            if item.kind == 'array_end':
                return items
            items.append(_read_element(lexer, item))

    if token.kind == 'dict_start':
        items = []
        while True:
            item = lexer.next_token()
            if item is None:
                raise ContentStreamError("Unterminated array or dictionary", offset=token.start)
            if item.kind == 'dict_end':
                break
            items.append(_read_element(lexer, item))
        if len(items) % 2:
            raise ContentStreamError("Dictionary with odd number of items", offset=token.start)
        return {str(items[i]): items[i + 1] for i in range(0, len(items), 2)}

    if token.kind == 'array_end':
        raise ContentStreamError("Unbalanced ']'", offset=token.start)
    if token.kind == 'dict_end':
        raise ContentStreamError("Unbalanced '>>'", offset=token.start)
    raise ContentStreamError(f"Unexpected operator {token.value}", offset=token.start)


def _read_element(lexer: ContentStreamLexer, token: _Token) -> Any:
    if token.kind == 'operator':
        raise ContentStreamError(f"Operator {token.value} inside array or dict", offset=token.start)
    return _read_object(lexer, token)


def _read_inline_image(lexer: ContentStreamLexer, bi_start: int) -> Operation:
    """Consume ``BI <dict> ID <data> EI`` starting after the BI keyword"""
    params = {}
    while True:
        token = lexer.next_token()
        if token is None:
            raise ContentStreamError("Unterminated inline image", offset=bi_start)
        if token.kind == 'operator' and token.value == 'ID':
            break
        if token.kind != 'name':
            raise ContentStreamError("Inline image key must be a name", offset=token.start)
        value = lexer.next_token()
        if value is None:
            raise ContentStreamError("Unterminated inline image", offset=bi_start)
        if value.kind == 'operator':
            raise ContentStreamError(f"Inline image key {token.value} has no value", offset=value.start)
        params[token.value] = _read_object(lexer, value)

    # One whitespace byte separates ID from the binary data
    data_start = lexer.pos + 1
    match = _INLINE_IMAGE_END_RE.search(lexer.data, data_start)
    if not match:
        raise ContentStreamError("Inline image without EI", offset=bi_start)
    lexer.pos = match.end()
    return Operation('BI', [params], raw=lexer.data[bi_start:lexer.pos])


def parse_content_stream(data: bytes) -> List[Operation]:
    """
    Parse raw content stream bytes into operations.

    Raises:
        ContentStreamError: On unterminated strings, arrays or dicts,
            unexpected delimiters, or operands left without an operator
    """
    lexer = ContentStreamLexer(data)
    operations: List[Operation] = []
    operands: List[Any] = []
    operand_start: Optional[int] = None

    for token in lexer:
        if token.kind != 'operator':
            if operand_start is None:
                operand_start = token.start
            operands.append(_read_object(lexer, token))
            continue

        start = operand_start if operand_start is not None else token.start
        if token.value == 'BI':
            if operands:
                raise ContentStreamError("Operands before inline image", offset=start)
            operations.append(_read_inline_image(lexer, token.start))
        else:
            operations.append(Operation(token.value, operands, raw=data[start:token.end]))
        operands = []
        operand_start = None

    if operands:
        raise ContentStreamError("Trailing operands without operator", offset=operand_start)
    return operations
