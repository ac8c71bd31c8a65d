"""
ZWO (Zwift Workout) parser module.

This module turns ZWO workout text into the canonical workout model. Two entry
points are provided:

* parse_zwo_snippet parses the body of a workout (the self-closing
  SteadyState / Warmup / Cooldown / FreeRide / IntervalsT / TextEvent
  elements) and reports every problem it finds as a ParseError with the
  offending character span, so an editor can highlight all of them at once.
* parse_zwo_xml_to_canonical_workout reads a complete ``<workout_file>``
  document leniently: missing or malformed metadata becomes an empty field.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from workout_model import CanonicalWorkout, RawSegment, TextEvent
from zwo_tokenizer import (
    TagToken,
    TextToken,
    blank_workout_wrappers,
    line_from_index,
    tokenize,
)
from zwo_utils import (
    FREERIDE_POWER_REL,
    MAX_INTERVAL_REPEATS,
    MAX_SEGMENT_DURATION_SEC,
    MAX_WORKOUT_DURATION_SEC,
    cdata_unwrap,
    is_cdata,
    round_half_up,
    to_number,
    unescape_xml,
)


@dataclass
class Segment:
    """A single span produced by one workout element"""
    duration_sec: float
    p_start_rel: float  # Start power as fraction of FTP
    p_end_rel: float  # End power as fraction of FTP
    cadence_rpm: Optional[float] = None
    is_free_ride: bool = False


@dataclass
class Block:
    """
    One parsed workout element.

    ``attrs`` keeps the element's editable parameters (e.g. repeat,
    on_duration_sec) so an editor can redraw the element without working them
    back out of the expanded segments.
    """
    kind: str  # 'steady', 'warmup', 'cooldown', 'freeride', 'intervals'
    span_start: int
    span_end: int
    line_start: int
    line_end: int
    segment_start: int  # Index of the first segment in the whole workout
    segments: List[Segment] = field(default_factory=list)
    attrs: Dict[str, Any] = field(default_factory=dict)

    @property
    def segment_count(self) -> int:
        return len(self.segments)

    @property
    def duration_sec(self) -> float:
        return sum(segment.duration_sec for segment in self.segments)


@dataclass
class ParseError:
    """A problem in the source text, located by its [start, end) span"""
    start: int
    end: int
    message: str


@dataclass
class SnippetParseResult:
    """Everything parse_zwo_snippet found in a piece of workout text"""
    raw_segments: List[RawSegment] = field(default_factory=list)
    text_events: List[TextEvent] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)
    blocks: List[Block] = field(default_factory=list)
    source_text: str = ""

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> Optional[ParseError]:
        return self.errors[0] if self.errors else None


@dataclass
class _Element:
    kind: str
    segments: List[Segment]
    attrs: Dict[str, Any]


def _error(tag: TagToken, message: str) -> ParseError:
    return ParseError(start=tag.start, end=tag.end, message=message)


def _get_attr(attrs: Dict[str, str], name: str) -> Optional[str]:
    """Look up an attribute, falling back to a case-insensitive match"""
    if name in attrs:
        return attrs[name]
    target = name.lower()
    for key, value in attrs.items():
        if key.lower() == target:
            return value
    return None


def _get_number(attrs: Dict[str, str], name: str) -> float:
    return to_number(_get_attr(attrs, name))


def _get_cadence(attrs: Dict[str, str], name: str) -> Optional[float]:
    value = _get_number(attrs, name)
    return value if math.isfinite(value) else None


def _validate_duration(duration: float, label: str, tag: TagToken,
                       errors: List[ParseError]) -> bool:
    if not math.isfinite(duration) or duration <= 0:
        errors.append(_error(tag, f"{label} must have a positive numeric Duration (seconds)."))
        return False
    if duration > MAX_SEGMENT_DURATION_SEC:
        errors.append(_error(
            tag,
            f"{label} Duration is unrealistically large (max {MAX_SEGMENT_DURATION_SEC} seconds).",
        ))
        return False
    return True


def _parse_steady_state(tag: TagToken, errors: List[ParseError]) -> Optional[_Element]:
    """Parse a SteadyState element"""
    duration = _get_number(tag.attrs, "Duration")
    power = _get_number(tag.attrs, "Power")
    cadence = _get_cadence(tag.attrs, "Cadence")

    if not _validate_duration(duration, "SteadyState", tag, errors):
        return None
    if not math.isfinite(power) or power <= 0:
        errors.append(_error(
            tag, "SteadyState must have a positive numeric Power (relative FTP, e.g. 0.75)."
        ))
        return None

    segment = Segment(duration_sec=duration, p_start_rel=power, p_end_rel=power, cadence_rpm=cadence)
    return _Element(
        kind="steady",
        segments=[segment],
        attrs={"duration_sec": duration, "power_rel": power, "cadence_rpm": cadence},
    )


def _parse_ramp(tag: TagToken, errors: List[ParseError]) -> Optional[_Element]:
    """Parse a Warmup or Cooldown element; direction comes from the powers, not the name"""
    duration = _get_number(tag.attrs, "Duration")
    power_low = _get_number(tag.attrs, "PowerLow")
    power_high = _get_number(tag.attrs, "PowerHigh")
    cadence = _get_cadence(tag.attrs, "Cadence")

    if not _validate_duration(duration, tag.name, tag, errors):
        return None
    if not math.isfinite(power_low) or not math.isfinite(power_high):
        errors.append(_error(
            tag, f"{tag.name} must have PowerLow and PowerHigh as numbers (relative FTP)."
        ))
        return None

    segment = Segment(
        duration_sec=duration,
        p_start_rel=power_low,
        p_end_rel=power_high,
        cadence_rpm=cadence,
    )
    return _Element(
        kind="warmup" if tag.name == "Warmup" else "cooldown",
        segments=[segment],
        attrs={
            "duration_sec": duration,
            "power_low_rel": power_low,
            "power_high_rel": power_high,
            "cadence_rpm": cadence,
        },
    )


def _parse_free_ride(tag: TagToken, errors: List[ParseError]) -> Optional[_Element]:
    """Parse a FreeRide element; its power is a fixed placeholder"""
    duration = _get_number(tag.attrs, "Duration")
    if not _validate_duration(duration, "FreeRide", tag, errors):
        return None

    segment = Segment(
        duration_sec=duration,
        p_start_rel=FREERIDE_POWER_REL,
        p_end_rel=FREERIDE_POWER_REL,
        is_free_ride=True,
    )
    return _Element(kind="freeride", segments=[segment], attrs={"duration_sec": duration})


def _parse_intervals_t(tag: TagToken, errors: List[ParseError]) -> Optional[_Element]:
    """Parse an IntervalsT element into alternating on/off segments"""
    repeat = _get_number(tag.attrs, "Repeat")
    on_duration = _get_number(tag.attrs, "OnDuration")
    off_duration = _get_number(tag.attrs, "OffDuration")
    on_power = _get_number(tag.attrs, "OnPower")
    off_power = _get_number(tag.attrs, "OffPower")
    on_cadence = _get_cadence(tag.attrs, "Cadence")
    off_cadence = _get_cadence(tag.attrs, "CadenceResting")

    if (
        not math.isfinite(repeat)
        or repeat != int(repeat)
        or repeat < 1
        or repeat > MAX_INTERVAL_REPEATS
    ):
        errors.append(_error(
            tag, f"IntervalsT must have Repeat as a positive integer (max {MAX_INTERVAL_REPEATS})."
        ))
        return None

    if not _validate_duration(on_duration, "IntervalsT OnDuration", tag, errors):
        return None
    if not _validate_duration(off_duration, "IntervalsT OffDuration", tag, errors):
        return None

    if repeat * (on_duration + off_duration) > MAX_WORKOUT_DURATION_SEC:
        errors.append(_error(tag, "IntervalsT total duration is unrealistically large."))
        return None
    if not math.isfinite(on_power) or not math.isfinite(off_power):
        errors.append(_error(
            tag, "IntervalsT must have numeric OnPower and OffPower (relative FTP)."
        ))
        return None

    repeat_count = int(repeat)
    segments = []
    for _ in range(repeat_count):
        segments.append(Segment(
            duration_sec=on_duration,
            p_start_rel=on_power,
            p_end_rel=on_power,
            cadence_rpm=on_cadence,
        ))
        segments.append(Segment(
            duration_sec=off_duration,
            p_start_rel=off_power,
            p_end_rel=off_power,
            cadence_rpm=off_cadence,
        ))

    return _Element(
        kind="intervals",
        segments=segments,
        attrs={
            "repeat": repeat_count,
            "on_duration_sec": on_duration,
            "off_duration_sec": off_duration,
            "on_power_rel": on_power,
            "off_power_rel": off_power,
            "on_cadence_rpm": on_cadence,
            "off_cadence_rpm": off_cadence,
        },
    )


def _parse_text_event(tag: TagToken, errors: List[ParseError]) -> Optional[TextEvent]:
    """Parse a TextEvent element (attribute names are matched case-insensitively)"""
    offset = _get_number(tag.attrs, "timeoffset")
    duration = _get_number(tag.attrs, "duration")
    message = _get_attr(tag.attrs, "message")

    if not math.isfinite(offset) or offset < 0:
        errors.append(_error(
            tag, "TextEvent must include a non-negative timeoffset (seconds)."
        ))
        return None

    duration_sec = max(1, round_half_up(duration)) if math.isfinite(duration) else 10
    return TextEvent(
        offset_sec=round_half_up(offset),
        duration_sec=duration_sec,
        text=unescape_xml(message) if message is not None else "",
    )


_ELEMENT_PARSERS: Dict[str, Callable[[TagToken, List[ParseError]], Optional[_Element]]] = {
    "SteadyState": _parse_steady_state,
    "Warmup": _parse_ramp,
    "Cooldown": _parse_ramp,
    "FreeRide": _parse_free_ride,
    "Freeride": _parse_free_ride,
    "IntervalsT": _parse_intervals_t,
}

_TEXT_EVENT_TAGS = ("TextEvent", "textevent")


def _segment_to_raw(segment: Segment) -> RawSegment:
    minutes = segment.duration_sec / 60
    if segment.is_free_ride:
        return RawSegment.free_ride(minutes)
    return RawSegment(
        minutes=minutes,
        start_pct=segment.p_start_rel * 100,
        end_pct=segment.p_end_rel * 100,
        cadence_rpm=segment.cadence_rpm,
    )


def parse_zwo_snippet(text: Optional[str]) -> SnippetParseResult:
    """
    Parse ZWO workout elements into canonical segments.

    Parsing never stops at the first problem: each error is recorded and the
    remaining elements are still parsed. An enclosing ``<workout>`` tag pair
    is ignored. Error and block spans are offsets into ``text``.

    Args:
        text: Workout body text, e.g. the inside of a ``<workout>`` element

    Returns:
        SnippetParseResult with raw segments, text events, errors, blocks and
        the text the spans refer to
    """
    working = blank_workout_wrappers(text or "")
    result = SnippetParseResult(source_text=working)
    if not working.strip():
        return result

    segments: List[Segment] = []
    tokens = tokenize(working)

    for index, token in enumerate(tokens):
        if isinstance(token, TextToken):
            if index == len(tokens) - 1:
                message = "Trailing text after last element."
            else:
                message = "Unexpected text between elements; only ZWO workout elements are allowed."
            result.errors.append(ParseError(start=token.start, end=token.end, message=message))
            continue

        if token.has_garbage:
            result.errors.append(_error(
                token, "Malformed element: unexpected text or tokens inside element."
            ))
            continue

        if token.name in _TEXT_EVENT_TAGS:
            event = _parse_text_event(token, result.errors)
            if event is not None:
                result.text_events.append(event)
            continue

        element_parser = _ELEMENT_PARSERS.get(token.name)
        if element_parser is None:
            result.errors.append(_error(token, f"Unknown element <{token.name}>"))
            continue

        element = element_parser(token, result.errors)
        if element is None or not element.segments:
            continue

        result.blocks.append(Block(
            kind=element.kind,
            span_start=token.start,
            span_end=token.end,
            line_start=line_from_index(working, token.start),
            line_end=line_from_index(working, token.end),
            segment_start=len(segments),
            segments=list(element.segments),
            attrs=dict(element.attrs),
        ))
        segments.extend(element.segments)

    result.raw_segments = [_segment_to_raw(segment) for segment in segments]
    return result


def block_at_offset(blocks: List[Block], offset: int) -> Optional[Block]:
    """Return the block whose source span contains a cursor offset, if any"""
    for block in blocks:
        if block.span_start <= offset <= block.span_end:
            return block
    return None


def build_block_timings(blocks: List[Block]) -> Tuple[List[Tuple[int, int]], int]:
    """
    Compute the [start, end) time of every block in whole seconds.

    Each segment lasts at least one second, matching how the workout is
    played back.

    Returns:
        Tuple of (list of (start_sec, end_sec) per block, total seconds)
    """
    timings = []
    total_sec = 0
    for block in blocks:
        start = total_sec
        for segment in block.segments:
            total_sec += max(1, round_half_up(segment.duration_sec))
        timings.append((start, total_sec))
    return timings, total_sec


_NAME_RE = re.compile(r"<name>(.*?)</name>", re.IGNORECASE | re.DOTALL)
_DESCRIPTION_RE = re.compile(r"<description>(.*?)</description>", re.IGNORECASE | re.DOTALL)
_AUTHOR_RE = re.compile(r"<author>(.*?)</author>", re.IGNORECASE | re.DOTALL)
_ORIGINAL_URL_RE = re.compile(r'<tag[^>]*\sname="OriginalURL:([^"]*)"', re.IGNORECASE)
_WORKOUT_BODY_RE = re.compile(r"<workout(?:\s[^>]*)?>(.*?)</workout\s*>", re.IGNORECASE | re.DOTALL)


def _search_group(pattern: "re.Pattern[str]", text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1) if match else None


def find_workout_body(xml_text: str) -> Tuple[str, int]:
    """
    Locate the inside of the ``<workout>`` element of a ZWO document.

    Returns:
        Tuple of (body text, offset of the body in ``xml_text``); an empty
        body at offset 0 when there is no workout element
    """
    match = _WORKOUT_BODY_RE.search(xml_text)
    if match is None:
        return "", 0
    return match.group(1), match.start(1)


def _text_field(raw: Optional[str]) -> str:
    """Decode element text; CDATA content is taken literally"""
    if raw is None:
        return ""
    if is_cdata(raw):
        return cdata_unwrap(raw)
    return unescape_xml(raw)


def parse_zwo_xml_to_canonical_workout(xml_text: Optional[str]) -> Optional[CanonicalWorkout]:
    """
    Parse a complete ZWO document into a CanonicalWorkout.

    Each field is located independently, so a partial or malformed document
    still yields whatever can be found. Missing fields are empty strings and
    parse errors inside the workout body are dropped.

    Args:
        xml_text: ZWO XML text

    Returns:
        CanonicalWorkout, or None when ``xml_text`` is empty
    """
    if not xml_text:
        return None

    url = _search_group(_ORIGINAL_URL_RE, xml_text)
    body, _ = find_workout_body(xml_text)
    parsed = parse_zwo_snippet(body)

    return CanonicalWorkout(
        source=unescape_xml(_search_group(_AUTHOR_RE, xml_text)),
        source_url=unescape_xml(url) if url is not None else "",
        workout_title=_text_field(_search_group(_NAME_RE, xml_text)),
        description=_text_field(_search_group(_DESCRIPTION_RE, xml_text)),
        raw_segments=parsed.raw_segments,
        text_events=parsed.text_events,
    )


def load_zwo_file(zwo_path: str) -> CanonicalWorkout:
    """
    Read a .zwo file and return its CanonicalWorkout.

    Args:
        zwo_path: Path to the .zwo file

    Returns:
        CanonicalWorkout; an empty file gives an empty workout

    Raises:
        FileNotFoundError: If the ZWO file doesn't exist
    """
    try:
        with open(zwo_path, "r", encoding="utf-8") as f:
            xml_text = f.read()
    except FileNotFoundError:
        raise FileNotFoundError(f"ZWO file not found: {zwo_path}")

    return parse_zwo_xml_to_canonical_workout(xml_text) or CanonicalWorkout()
