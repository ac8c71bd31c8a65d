"""
Tokenizer for ZWO workout snippets.

A snippet is a run of self-closing elements such as
``<SteadyState Duration="300" Power="0.75" />``. The tokenizer walks the text
character by character and produces two kinds of tokens:

* ``TagToken`` for every self-closing element, with its name, raw attribute
  text and the [start, end) span of the whole tag;
* ``TextToken`` for every gap between tags that contains non-whitespace.

Whitespace-only gaps produce no token. The tokenizer never fails; deciding
what a stray piece of text means is left to the parser.
"""

import re
import string
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

_TAG_NAME_CHARS = frozenset(string.ascii_letters)
_WORD_CHARS = frozenset(string.ascii_letters + string.digits + "_")
_ATTR_NAME_START = frozenset(string.ascii_letters + "_:")
_ATTR_NAME_CHARS = frozenset(string.ascii_letters + string.digits + "_:.-")

_WORKOUT_OPEN_RE = re.compile(r"<\s*workout[^>]*>", re.IGNORECASE)
_WORKOUT_CLOSE_RE = re.compile(r"</\s*workout\s*>", re.IGNORECASE)


@dataclass
class TagToken:
    """A self-closing element found in the source text"""
    name: str
    attr_text: str
    start: int
    end: int
    attrs: Dict[str, str] = field(default_factory=dict)
    has_garbage: bool = False


@dataclass
class TextToken:
    """Non-whitespace text found outside any element"""
    text: str
    start: int
    end: int


Token = Union[TagToken, TextToken]


def blank_workout_wrappers(text: str) -> str:
    """
    Replace ``<workout ...>`` and ``</workout>`` tags with spaces.

    The replacement has the same length as the tag so offsets into the result
    are valid offsets into the original text.
    """
    def blank(match):
        return " " * len(match.group(0))

    text = _WORKOUT_OPEN_RE.sub(blank, text)
    return _WORKOUT_CLOSE_RE.sub(blank, text)


def line_from_index(text: str, index: int) -> int:
    """Zero-based line number of a character offset"""
    safe_index = max(0, min(index, len(text)))
    return text.count("\n", 0, safe_index)


def parse_attributes(attr_text: str) -> Tuple[Dict[str, str], bool]:
    """
    Parse ``name="value"`` pairs from the inside of a tag.

    Returns the attribute map and a flag that is True when anything other
    than whitespace and well-formed pairs was found. Later duplicates win.
    """
    attrs: Dict[str, str] = {}
    pos = 0
    length = len(attr_text)

    while True:
        while pos < length and attr_text[pos].isspace():
            pos += 1
        if pos >= length:
            return attrs, False

        if attr_text[pos] not in _ATTR_NAME_START:
            return attrs, True
        name_start = pos
        pos += 1
        while pos < length and attr_text[pos] in _ATTR_NAME_CHARS:
            pos += 1
        name = attr_text[name_start:pos]

        while pos < length and attr_text[pos].isspace():
            pos += 1
        if pos >= length or attr_text[pos] != "=":
            return attrs, True
        pos += 1

        while pos < length and attr_text[pos].isspace():
            pos += 1
        if pos >= length or attr_text[pos] != '"':
            return attrs, True
        pos += 1

        value_end = attr_text.find('"', pos)
        if value_end == -1:
            return attrs, True
        attrs[name] = attr_text[pos:value_end]
        pos = value_end + 1


def _match_tag_at(text: str, start: int) -> Optional[TagToken]:
    """Try to read a self-closing tag whose '<' is at ``start``"""
    pos = start + 1
    length = len(text)
    while pos < length and text[pos] in _TAG_NAME_CHARS:
        pos += 1
    if pos == start + 1:
        return None
    # A name running straight into a digit or underscore is not a tag name
    if pos < length and text[pos] in _WORD_CHARS:
        return None

    close = text.find(">", pos)
    if close == -1 or close - 1 < pos or text[close - 1] != "/":
        return None

    name = text[start + 1:pos]
    attr_text = text[pos:close - 1]
    return TagToken(name=name, attr_text=attr_text, start=start, end=close + 1)


def _gap_token(text: str, start: int, end: int) -> Optional[TextToken]:
    gap = text[start:end]
    if gap.strip():
        return TextToken(text=gap, start=start, end=end)
    return None


def tokenize(text: str) -> List[Token]:
    """
    Split snippet text into tag and stray-text tokens, in document order.

    Args:
        text: Snippet text, usually already passed through
            blank_workout_wrappers

    Returns:
        List of TagToken and TextToken objects with spans into ``text``
    """
    tokens: List[Token] = []
    last_end = 0
    search_from = 0

    while True:
        lt = text.find("<", search_from)
        if lt == -1:
            break
        tag = _match_tag_at(text, lt)
        if tag is None:
            search_from = lt + 1
            continue

        gap = _gap_token(text, last_end, tag.start)
        if gap is not None:
            tokens.append(gap)

        tag.attrs, tag.has_garbage = parse_attributes(tag.attr_text)
        tokens.append(tag)
        last_end = tag.end
        search_from = tag.end

    trailing = _gap_token(text, last_end, len(text))
    if trailing is not None:
        tokens.append(trailing)

    return tokens
