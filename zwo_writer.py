"""
ZWO writer module.

Converts canonical workout segments back into ZWO element text, folding
repeated on/off pairs into IntervalsT elements, and wraps the result in a
complete ``<workout_file>`` document.
"""

import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from workout_model import CanonicalWorkout, RawSegment, TextEvent
from zwo_utils import cdata_wrap, escape_xml, format_power, round_half_up

# Tolerances for treating two steady segments as the same interval
DURATION_TOLERANCE_SEC = 1
POWER_TOLERANCE_REL = 0.01

# Power values at or below this are read as fractions of FTP, above as percent
RELATIVE_POWER_CEILING = 5

SPORT_TYPE = "bike"
BODY_INDENT = "    "

SegmentLike = Union[RawSegment, Sequence[Any]]


@dataclass
class _NormalizedBlock:
    kind: str  # 'steady', 'rampUp', 'rampDown', 'freeride'
    duration_sec: float
    power_start_rel: float = 0.0
    power_end_rel: float = 0.0
    cadence_rpm: Optional[float] = None


def _to_relative(value: float) -> float:
    return value if value <= RELATIVE_POWER_CEILING else value / 100


def _coerce_segment(segment: SegmentLike) -> Optional[RawSegment]:
    if isinstance(segment, RawSegment):
        return segment
    if isinstance(segment, (list, tuple)):
        return RawSegment.from_list(segment)
    return None


def _normalize_segments(segments: Iterable[SegmentLike]) -> List[_NormalizedBlock]:
    """Classify each usable segment as steady, ramp up, ramp down or free ride"""
    blocks = []
    for item in segments:
        segment = _coerce_segment(item)
        if segment is None:
            continue
        if not math.isfinite(segment.minutes) or segment.minutes <= 0:
            continue

        duration_sec = segment.minutes * 60
        if segment.freeride:
            blocks.append(_NormalizedBlock(kind="freeride", duration_sec=duration_sec))
            continue
        if not (math.isfinite(segment.start_pct) and math.isfinite(segment.end_pct)):
            continue

        start_rel = _to_relative(segment.start_pct)
        end_rel = _to_relative(segment.end_pct)
        if abs(start_rel - end_rel) < 1e-6:
            kind = "steady"
        elif end_rel > start_rel:
            kind = "rampUp"
        else:
            kind = "rampDown"

        blocks.append(_NormalizedBlock(
            kind=kind,
            duration_sec=duration_sec,
            power_start_rel=start_rel,
            power_end_rel=end_rel,
            cadence_rpm=segment.cadence_rpm,
        ))
    return blocks


def _rounded_cadence(cadence: Optional[float]) -> Optional[int]:
    if cadence is None or not math.isfinite(cadence):
        return None
    return round_half_up(cadence)


def _similar_steady(a: _NormalizedBlock, b: _NormalizedBlock) -> bool:
    if a.kind != "steady" or b.kind != "steady":
        return False
    return (
        abs(a.duration_sec - b.duration_sec) <= DURATION_TOLERANCE_SEC
        and abs(a.power_start_rel - b.power_start_rel) <= POWER_TOLERANCE_REL
        and _rounded_cadence(a.cadence_rpm) == _rounded_cadence(b.cadence_rpm)
    )


def _count_repeats(blocks: List[_NormalizedBlock], start: int) -> int:
    """
    Count how many times the steady pair at ``start`` repeats back to back.

    Only called with at least four blocks remaining. Returns 1 when the pair
    does not repeat.
    """
    first_on = blocks[start]
    first_off = blocks[start + 1]
    if first_on.kind != "steady" or first_off.kind != "steady":
        return 1

    repeat = 1
    j = start + 2
    while j + 1 < len(blocks):
        if not (_similar_steady(first_on, blocks[j]) and _similar_steady(first_off, blocks[j + 1])):
            break
        repeat += 1
        j += 2
    return repeat


def _cadence_attr(name: str, cadence: Optional[float]) -> str:
    rounded = _rounded_cadence(cadence)
    return f' {name}="{rounded}"' if rounded is not None else ""


def _intervals_line(on: _NormalizedBlock, off: _NormalizedBlock, repeat: int) -> Tuple[str, int]:
    on_duration = round_half_up(on.duration_sec)
    off_duration = round_half_up(off.duration_sec)
    line = (
        f'<IntervalsT Repeat="{repeat}"'
        f' OnDuration="{on_duration}" OffDuration="{off_duration}"'
        f' OnPower="{format_power(on.power_start_rel)}" OffPower="{format_power(off.power_start_rel)}"'
        f'{_cadence_attr("Cadence", on.cadence_rpm)}'
        f'{_cadence_attr("CadenceResting", off.cadence_rpm)} />'
    )
    return line, (on_duration + off_duration) * repeat


def _block_line(block: _NormalizedBlock) -> Tuple[str, int]:
    duration = round_half_up(block.duration_sec)
    if block.kind == "freeride":
        return f'<FreeRide Duration="{duration}" />', duration

    cadence = _cadence_attr("Cadence", block.cadence_rpm)
    if block.kind == "steady":
        line = f'<SteadyState Duration="{duration}" Power="{format_power(block.power_start_rel)}"{cadence} />'
    else:
        tag = "Warmup" if block.kind == "rampUp" else "Cooldown"
        line = (
            f'<{tag} Duration="{duration}"'
            f' PowerLow="{format_power(block.power_start_rel)}"'
            f' PowerHigh="{format_power(block.power_end_rel)}"{cadence} />'
        )
    return line, duration


def _compress_blocks(blocks: List[_NormalizedBlock]) -> List[Tuple[str, int, int]]:
    """
    Emit one element line per block, folding repeated steady pairs.

    The scan is greedy left to right: at each position the longest run of the
    pair starting there is taken, and a pair that does not repeat is written
    as individual SteadyState lines.

    Returns:
        List of (line, start_sec, end_sec) on the rounded timeline
    """
    lines = []
    cursor = 0
    i = 0
    while i < len(blocks):
        if i + 3 < len(blocks):
            repeat = _count_repeats(blocks, i)
            if repeat >= 2:
                line, duration = _intervals_line(blocks[i], blocks[i + 1], repeat)
                lines.append((line, cursor, cursor + duration))
                cursor += duration
                i += repeat * 2
                continue

        line, duration = _block_line(blocks[i])
        lines.append((line, cursor, cursor + duration))
        cursor += duration
        i += 1
    return lines


def _coerce_text_event(event: Any) -> Optional[TextEvent]:
    if isinstance(event, TextEvent):
        return event.normalized()
    if isinstance(event, Mapping):
        return TextEvent.from_dict(event).normalized()
    return None


def _text_event_line(event: TextEvent) -> str:
    return (
        f'<textevent timeoffset="{event.offset_sec}"'
        f' duration="{event.duration_sec}" message="{escape_xml(event.text)}" />'
    )


def segments_to_zwo_snippet(
    segments: Optional[Iterable[SegmentLike]],
    text_events: Optional[Iterable[Union[TextEvent, Mapping[str, Any]]]] = None,
) -> str:
    """
    Convert canonical segments into ZWO workout element text.

    Args:
        segments: RawSegment records or stored ``[minutes, start, end,
            type?, cadence?]`` tuples. Powers at or below 5 are read as
            fractions of FTP, larger values as percent
        text_events: Optional TextEvent records or ``offsetSec`` /
            ``durationSec`` / ``text`` mappings

    Returns:
        Element lines joined by newlines, without a ``<workout>`` wrapper.
        Each text event follows the element whose time span contains it;
        events past the end of the workout come last.
    """
    blocks = _normalize_segments(segments or [])
    lines = _compress_blocks(blocks)

    events = [_coerce_text_event(event) for event in text_events or []]
    events = sorted(
        (event for event in events if event is not None),
        key=lambda event: event.offset_sec,
    )
    if not events:
        return "\n".join(line for line, _, _ in lines)

    output = []
    for line, start, end in lines:
        output.append(line)
        for event in events:
            if start <= event.offset_sec < end:
                output.append(_text_event_line(event))

    total_sec = lines[-1][2] if lines else 0
    for event in events:
        if event.offset_sec >= total_sec:
            output.append(_text_event_line(event))

    return "\n".join(output)


def _as_canonical_workout(workout: Any) -> CanonicalWorkout:
    if isinstance(workout, CanonicalWorkout):
        return workout
    if isinstance(workout, Mapping):
        return CanonicalWorkout.from_dict(workout)
    return CanonicalWorkout()


def canonical_workout_to_zwo_xml(workout: Optional[Union[CanonicalWorkout, Mapping[str, Any]]]) -> str:
    """
    Build a complete ZWO document from a canonical workout.

    Metadata is written as given: author and name are XML-escaped, the
    description goes into a CDATA section and the source URL, when set, is
    stored as an ``OriginalURL:`` tag. Unusable input never raises: None or
    an unrecognised argument gives an empty workout, and stored segments or
    text events that cannot be read are skipped.

    Args:
        workout: CanonicalWorkout, or a mapping in its stored form

    Returns:
        ZWO XML text ending with a newline
    """
    workout = _as_canonical_workout(workout)
    snippet = segments_to_zwo_snippet(workout.raw_segments, workout.text_events)

    url_tag = ""
    if workout.source_url:
        url_tag = f'    <tag name="OriginalURL:{escape_xml(workout.source_url)}"/>\n'

    body = ""
    if snippet:
        body = "\n".join(BODY_INDENT + line for line in snippet.split("\n"))

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<workout_file>\n"
        f"  <author>{escape_xml(workout.source)}</author>\n"
        f"  <name>{escape_xml(workout.workout_title)}</name>\n"
        f"  <description>{cdata_wrap(workout.description)}</description>\n"
        f"  <sportType>{SPORT_TYPE}</sportType>\n"
        "  <tags>\n"
        f"{url_tag}"
        "  </tags>\n"
        "  <workout>\n"
        f"{body}\n"
        "  </workout>\n"
        "</workout_file>\n"
    )


def write_zwo_file(workout: Union[CanonicalWorkout, Mapping[str, Any]], output_path: str) -> None:
    """Write a canonical workout to disk as a .zwo file"""
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(canonical_workout_to_zwo_xml(workout))
