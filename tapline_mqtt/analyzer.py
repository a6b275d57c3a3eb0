"""
Content Analyzer
================

Bounded Context: Message Classification

Pure functions that extract salient facts from ClassifiedContent for
observability. Nothing here touches the message, the session state or the
counters.

Records:
    field count, recognized IoT field names, numeric (name, value) pairs
Text:
    numeric substrings, command heuristic, http(s) URLs
"""

import re
from typing import Iterable, Iterator, Tuple

from .schemas import (
    ClassifiedContent,
    ContentAnalysis,
    PlainText,
    RecordAnalysis,
    StructuredRecord,
    TextAnalysis,
)

DEFAULT_RECOGNIZED_FIELDS: Tuple[str, ...] = (
    'temperature',
    'humidity',
    'pressure',
    'timestamp',
    'device_id',
    'sensor_id',
)

COMMAND_PREFIX = '/'
COMMAND_MARKER = 'cmd:'

# Digit runs joined by dots; ASCII digits only
_NUMBER_RUN = re.compile(r'[0-9]+(?:\.[0-9]+)*')
_URL = re.compile(r'https?://\S+')


def extract_numbers(text: str) -> Iterator[str]:
    """
    Yield maximal numeric substrings left to right.

    A run with one dot is a decimal ("21.5"). Runs with several dots, such as
    IP addresses or version strings, are reported as separate integers.

    Example:
        >>> list(extract_numbers("temp 21.5 at 10.0.0.5"))
        ['21.5', '10', '0', '0', '5']
    """
    for match in _NUMBER_RUN.finditer(text):
        run = match.group()
        parts = run.split('.')
        if len(parts) <= 2:
            yield run
        else:
            yield from parts


def is_command_like(text: str) -> bool:
    return text.startswith(COMMAND_PREFIX) or COMMAND_MARKER in text


def find_urls(text: str) -> Tuple[str, ...]:
    return tuple(_URL.findall(text))


def _is_number(value) -> bool:
    # bool is an int subclass but not a measurement
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def analyze_record(
    record: StructuredRecord,
    recognized_fields: Iterable[str] = DEFAULT_RECOGNIZED_FIELDS
) -> RecordAnalysis:
    """Summarize a StructuredRecord."""
    fields = record.fields
    return RecordAnalysis(
        field_count=len(fields),
        recognized_fields=tuple(name for name in recognized_fields if name in fields),
        numeric_fields=tuple(
            (name, value) for name, value in fields.items() if _is_number(value)
        ),
    )


def analyze_text(text: PlainText) -> TextAnalysis:
    """Summarize a PlainText payload."""
    return TextAnalysis(
        numbers=tuple(extract_numbers(text.raw)),
        command_like=is_command_like(text.raw),
        urls=find_urls(text.raw),
    )


def analyze(
    content: ClassifiedContent,
    recognized_fields: Iterable[str] = DEFAULT_RECOGNIZED_FIELDS
) -> ContentAnalysis:
    """
    Analyze classified content.

    Args:
        content: StructuredRecord or PlainText
        recognized_fields: Field names worth flagging in records

    Returns:
        RecordAnalysis or TextAnalysis

    Raises:
        TypeError: If content is neither a StructuredRecord nor PlainText
    """
    if isinstance(content, StructuredRecord):
        return analyze_record(content, recognized_fields)
    if isinstance(content, PlainText):
        return analyze_text(content)
    raise TypeError(f"Cannot analyze {type(content).__name__}")
