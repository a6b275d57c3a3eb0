"""
Message Classifier
==================

Bounded Context: Message Classification

Turns an opaque payload into ClassifiedContent.

Classification pipeline::

    payload bytes
      │
      ├─ not UTF-8            → PlainText(best-effort text, decode_error=True)
      ├─ strict JSON parse ok → StructuredRecord(document)
      └─ parse failure        → PlainText(text)

Classification never raises for payload content: a malformed payload is a
plain-text message, not an error. The JSON attempt is wrapped in parse_json(),
which returns a ParseResult instead of letting the decoder exception escape.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from .schemas import ClassifiedContent, PlainText, StructuredRecord

Payload = Union[bytes, bytearray, memoryview, str]


@dataclass(frozen=True)
class ParseResult:
    """Outcome of a strict JSON parse attempt."""
    ok: bool
    value: Any = None
    error: Optional[str] = None


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not JSON
    raise ValueError(f"Non-standard JSON constant: {name}")


def parse_json(text: str) -> ParseResult:
    """
    Strictly parse JSON text.

    Args:
        text: Decoded payload text

    Returns:
        ParseResult with ok=True and the parsed value, or ok=False and the
        decoder's error message
    """
    try:
        value = json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as e:
        return ParseResult(ok=False, error=str(e))
    return ParseResult(ok=True, value=value)


def decode_payload(payload: Payload) -> Tuple[str, bool]:
    """
    Decode payload bytes as UTF-8.

    Returns:
        (text, ok); when ok is False the text carries U+FFFD replacement
        characters for the undecodable bytes
    """
    if isinstance(payload, str):
        return payload, True

    data = bytes(payload)
    try:
        return data.decode('utf-8'), True
    except UnicodeDecodeError:
        return data.decode('utf-8', errors='replace'), False


def classify(payload: Payload) -> ClassifiedContent:
    """
    Classify a payload as a StructuredRecord or PlainText.

    Deterministic: the same payload always yields an equal result.

    Example:
        >>> classify(b'{"temperature": 21.5}')
        StructuredRecord(document={'temperature': 21.5})
        >>> classify(b'cmd: restart')
        PlainText(raw='cmd: restart', decode_error=False)
    """
    text, decoded = decode_payload(payload)
    if not decoded:
        return PlainText(raw=text, decode_error=True)

    result = parse_json(text)
    if result.ok:
        return StructuredRecord(document=result.value)
    return PlainText(raw=text)
