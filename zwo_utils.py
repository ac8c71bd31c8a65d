"""
Utility functions and safety limits shared by the ZWO parser and writer.
"""
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from xml.sax.saxutils import escape, unescape

# Safety limits for ZWO parsing
MAX_SEGMENT_DURATION_SEC = 12 * 3600
MAX_WORKOUT_DURATION_SEC = 24 * 3600
MAX_INTERVAL_REPEATS = 500

FREERIDE_SEGMENT_FLAG = "freeride"
FREERIDE_POWER_REL = 0.5

_ESCAPE_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_UNESCAPE_ENTITIES = {"&quot;": '"', "&apos;": "'"}

_CDATA_OPEN = "<![CDATA["
_CDATA_CLOSE = "]]>"
_CDATA_CLOSE_SPLIT = "]]]]><![CDATA[>"
_POWER_QUANTUM = Decimal("0.01")


def escape_xml(text: Optional[str]) -> str:
    """Escape text for use in XML element content or a double-quoted attribute"""
    return escape(text or "", _ESCAPE_ENTITIES)


def unescape_xml(text: Optional[str]) -> str:
    """Reverse escape_xml; &amp; is resolved last so '&amp;lt;' becomes '&lt;'"""
    if not text:
        return ""
    return unescape(str(text), _UNESCAPE_ENTITIES)


def cdata_wrap(text: Optional[str]) -> str:
    """
    Wrap text in a CDATA section.

    A literal ']]>' would terminate the section early, so it is split across
    two adjacent sections ('<![CDATA[a]]]]><![CDATA[>b]]>'), which any XML
    reader joins back to the original text.
    """
    if text is None:
        return _CDATA_OPEN + _CDATA_CLOSE
    safe = str(text).replace(_CDATA_CLOSE, _CDATA_CLOSE_SPLIT)
    return _CDATA_OPEN + safe + _CDATA_CLOSE


def cdata_unwrap(text: Optional[str]) -> str:
    """
    Join the contents of one or more adjacent CDATA sections.

    Text that is not CDATA is returned unchanged. Content that does not split
    cleanly into sections is read as a single section.
    """
    if text is None:
        return ""
    value = str(text)
    if not is_cdata(value):
        return value

    parts = []
    pos = 0
    while value.startswith(_CDATA_OPEN, pos):
        end = value.find(_CDATA_CLOSE, pos + len(_CDATA_OPEN))
        if end < 0:
            break
        parts.append(value[pos + len(_CDATA_OPEN):end])
        pos = end + len(_CDATA_CLOSE)

    if pos != len(value):
        return value[len(_CDATA_OPEN):-len(_CDATA_CLOSE)]
    return "".join(parts)


def is_cdata(text: str) -> bool:
    return text.startswith(_CDATA_OPEN) and text.endswith(_CDATA_CLOSE)


def to_number(raw: Any) -> float:
    """
    Coerce an attribute value or stored tuple slot to a float.

    Anything that cannot be read as a number (None, empty strings, booleans,
    garbage text) yields NaN, so callers validate with math.isfinite only.
    Digit separators ('1_000') are not numbers in ZWO files.
    """
    if raw is None or isinstance(raw, bool):
        return math.nan
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).strip()
    if not text or "_" in text:
        return math.nan
    try:
        return float(text)
    except ValueError:
        return math.nan


def is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity"""
    return int(math.floor(value + 0.5))


def format_power(value: float) -> str:
    """
    Format a relative power value with two decimals (e.g. 0.75).

    Exact ties round away from zero, so 0.625 is written as 0.63.
    """
    return str(Decimal(value).quantize(_POWER_QUANTUM, rounding=ROUND_HALF_UP))
