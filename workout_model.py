"""
Canonical workout model.

The canonical workout is the format-independent unit the rest of the
application stores, charts and exports. Its structure is a flat list of
RawSegment records; text cues live alongside as TextEvent records.

Stored workouts use a compact tuple per segment,
``[minutes, startPct, endPct, type?, cadenceRpm?]``, with trailing empty
slots omitted. RawSegment.to_list / RawSegment.from_list convert between the
two forms.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from zwo_utils import (
    FREERIDE_POWER_REL,
    FREERIDE_SEGMENT_FLAG,
    is_finite_number,
    round_half_up,
    to_number,
)


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class RawSegment:
    """One flat span of a workout"""
    minutes: float  # Duration in minutes, > 0
    start_pct: float  # Power at segment start, % FTP
    end_pct: float  # Power at segment end, % FTP
    freeride: bool = False  # Power values are a placeholder when set
    cadence_rpm: Optional[float] = None

    @property
    def duration_sec(self) -> float:
        return self.minutes * 60

    @classmethod
    def free_ride(cls, minutes: float) -> "RawSegment":
        nominal = FREERIDE_POWER_REL * 100
        return cls(minutes=minutes, start_pct=nominal, end_pct=nominal, freeride=True)

    def to_list(self) -> List[Any]:
        """Sparse storage tuple: trailing empty slots are omitted"""
        values: List[Any] = [self.minutes, self.start_pct, self.end_pct]
        if self.freeride:
            values.append(FREERIDE_SEGMENT_FLAG)
        if self.cadence_rpm is not None:
            if len(values) == 3:
                values.append(None)
            values.append(self.cadence_rpm)
        return values

    @classmethod
    def from_list(cls, values: Sequence[Any]) -> Optional["RawSegment"]:
        """
        Read a stored segment tuple.

        Returns None for anything that is not a list or tuple, for tuples too
        short to describe a segment, for durations that are missing,
        non-finite or not positive, and for non-numeric powers. A missing end
        power means a flat segment. The power slots of a free-ride tuple are
        ignored.
        """
        if not isinstance(values, (list, tuple)) or len(values) < 2:
            return None

        minutes = to_number(values[0])
        if not math.isfinite(minutes) or minutes <= 0:
            return None

        start_pct = to_number(values[1])
        end_pct = start_pct
        if len(values) > 2 and values[2] is not None:
            end_pct = to_number(values[2])

        type_tag = values[3] if len(values) > 3 else None
        if type_tag == FREERIDE_SEGMENT_FLAG:
            return cls.free_ride(minutes)
        if not (math.isfinite(start_pct) and math.isfinite(end_pct)):
            return None

        cadence = None
        if len(values) > 4 and is_finite_number(values[4]):
            cadence = float(values[4])
        elif is_finite_number(type_tag):
            # Older exports put cadence directly in the type slot
            cadence = float(type_tag)

        return cls(minutes=minutes, start_pct=start_pct, end_pct=end_pct, cadence_rpm=cadence)


@dataclass
class TextEvent:
    """A text cue shown at a point in the workout timeline"""
    offset_sec: int
    duration_sec: int = 10
    text: str = ""

    def normalized(self) -> "TextEvent":
        """Copy with a non-negative whole offset and a whole duration of at least 1s"""
        offset = to_number(self.offset_sec)
        duration = to_number(self.duration_sec)
        return TextEvent(
            offset_sec=max(0, round_half_up(offset)) if math.isfinite(offset) else 0,
            duration_sec=max(1, round_half_up(duration)) if math.isfinite(duration) and duration else 10,
            text=self.text or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"offsetSec": self.offset_sec, "durationSec": self.duration_sec, "text": self.text}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TextEvent":
        return cls(
            offset_sec=data.get("offsetSec", 0),
            duration_sec=data.get("durationSec", 10),
            text=_as_text(data.get("text")),
        )


@dataclass
class CanonicalWorkout:
    """A complete workout as stored and exported by the application"""
    source: str = ""  # Author or originating site
    source_url: str = ""
    workout_title: str = ""
    description: str = ""
    raw_segments: List[RawSegment] = field(default_factory=list)
    text_events: List[TextEvent] = field(default_factory=list)

    @property
    def total_duration_sec(self) -> float:
        return sum(segment.duration_sec for segment in self.raw_segments)

    @property
    def segment_count(self) -> int:
        return len(self.raw_segments)

    def to_dict(self) -> Dict[str, Any]:
        """Storage form using the application's JSON keys"""
        return {
            "source": self.source,
            "sourceURL": self.source_url,
            "workoutTitle": self.workout_title,
            "description": self.description,
            "rawSegments": [segment.to_list() for segment in self.raw_segments],
            "textEvents": [event.to_dict() for event in self.text_events],
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "CanonicalWorkout":
        """
        Read the storage form. Unusable segments and text events are skipped
        and missing fields are empty, so this never raises.
        """
        data = data or {}
        segments = []
        for values in _as_list(data.get("rawSegments")):
            segment = values if isinstance(values, RawSegment) else RawSegment.from_list(values)
            if segment is not None:
                segments.append(segment)

        events = []
        for event in _as_list(data.get("textEvents")):
            if isinstance(event, TextEvent):
                events.append(event)
            elif isinstance(event, Mapping):
                events.append(TextEvent.from_dict(event))

        return cls(
            source=_as_text(data.get("source")),
            source_url=_as_text(data.get("sourceURL")),
            workout_title=_as_text(data.get("workoutTitle")),
            description=_as_text(data.get("description")),
            raw_segments=segments,
            text_events=events,
        )
