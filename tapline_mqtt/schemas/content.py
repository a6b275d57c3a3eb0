"""
Classified Content and Analysis Results
=======================================

Bounded Context: Message Classification

A payload is either a StructuredRecord (strict JSON) or PlainText. Analysis
results mirror that split: RecordAnalysis for records, TextAnalysis for text.
All types are frozen; none of them is mutated after creation.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Tuple, Union

from .message import InboundMessage


@dataclass(frozen=True)
class StructuredRecord:
    """
    Payload that parsed as a JSON document.

    Attributes:
        document: The parsed JSON value (object, array, number, ...)

    The ``fields`` view is the top-level object in encounter order, or an
    empty mapping when the document is not a JSON object.
    """
    document: Any

    kind = "json"

    @property
    def fields(self) -> Mapping[str, Any]:
        if isinstance(self.document, dict):
            return MappingProxyType(self.document)
        return MappingProxyType({})


@dataclass(frozen=True)
class PlainText:
    """
    Payload that is not strict JSON.

    Attributes:
        raw: Decoded text (replacement characters where bytes were not UTF-8)
        decode_error: True when the payload was not valid UTF-8
    """
    raw: str
    decode_error: bool = False

    kind = "text"


ClassifiedContent = Union[StructuredRecord, PlainText]


@dataclass(frozen=True)
class RecordAnalysis:
    """
    Salient facts about a StructuredRecord.

    Attributes:
        field_count: Number of top-level fields
        recognized_fields: Known IoT field names present, in recognized-set order
        numeric_fields: (name, value) pairs for numeric values, in encounter order
    """
    field_count: int
    recognized_fields: Tuple[str, ...] = ()
    numeric_fields: Tuple[Tuple[str, Union[int, float]], ...] = ()

    def to_dict(self) -> dict:
        return {
            'field_count': self.field_count,
            'recognized_fields': list(self.recognized_fields),
            'numeric_fields': dict(self.numeric_fields),
        }


@dataclass(frozen=True)
class TextAnalysis:
    """
    Salient facts about a PlainText payload.

    Attributes:
        numbers: Numeric substrings, left to right, as they appear in the text
        command_like: Text starts with '/' or contains 'cmd:'
        urls: http(s) URLs found in the text
    """
    numbers: Tuple[str, ...] = ()
    command_like: bool = False
    urls: Tuple[str, ...] = field(default=())

    @property
    def url_count(self) -> int:
        return len(self.urls)

    def to_dict(self) -> dict:
        return {
            'numbers': list(self.numbers),
            'command_like': self.command_like,
            'url_count': self.url_count,
        }


ContentAnalysis = Union[RecordAnalysis, TextAnalysis]


@dataclass(frozen=True)
class Observation:
    """What the pipeline learned about one inbound message (for observers)."""
    message: InboundMessage
    content: ClassifiedContent
    analysis: ContentAnalysis
    sequence: int
