"""Canonical text of point-in-time and pattern values.

* timestamps: ISO-8601 as produced by ``isoformat()``; a ``date`` has no
  time part, a ``datetime`` always carries the ``T`` separator.
* patterns: ``/pattern/flags`` with one letter per flag. The last ``/``
  closes the pattern, so slashes inside it need no escaping.
"""
import datetime
import re

from .errors import DeserializationError

_FLAG_LETTERS = (
    (re.ASCII,      "a"),
    (re.IGNORECASE, "i"),
    (re.LOCALE,     "L"),
    (re.MULTILINE,  "m"),
    (re.DOTALL,     "s"),
    (re.VERBOSE,    "x"),
)
_LETTER_FLAGS = {letter: flag for flag, letter in _FLAG_LETTERS}


def format_timestamp(value: datetime.date) -> str:
    return value.isoformat()


def parse_timestamp(text: str) -> datetime.date:
    try:
        if "T" in text:
            return datetime.datetime.fromisoformat(text)
        return datetime.date.fromisoformat(text)
    except (TypeError, ValueError) as e:
        raise DeserializationError(f"Malformed timestamp {text!r}") from e


def format_pattern(pattern: re.Pattern) -> str:
    letters = "".join(letter for flag, letter in _FLAG_LETTERS if pattern.flags & flag)
    return f"/{pattern.pattern}/{letters}"


def parse_pattern(text: str) -> re.Pattern:
    end = text.rfind("/")
    if not text.startswith("/") or end < 1:
        raise DeserializationError(f"Malformed pattern literal {text!r}")
    flags = 0
    for letter in text[end + 1:]:
        try:
            flags |= _LETTER_FLAGS[letter]
        except KeyError:
            raise DeserializationError(f"Unknown pattern flag '{letter}' in {text!r}") from None
    try:
        return re.compile(text[1:end], flags)
    except re.error as e:
        raise DeserializationError(f"Malformed pattern literal {text!r}: {e}") from e
