"""
Training-load metrics and zone classification for canonical workouts.

All functions take canonical raw segments (RawSegment records or stored
``[minutes, startPct, endPct, type?, cadence?]`` tuples) with power in
percent of FTP.
"""
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Union

import numpy as np

from workout_model import RawSegment

DEFAULT_FTP = 250

# Upper bounds (percent FTP, exclusive) of each training zone
ZONE_BOUNDARIES = [
    (60, "Recovery"),
    (76, "Endurance"),
    (90, "Tempo"),
    (105, "Threshold"),
    (119, "VO2Max"),
]
TOP_ZONE = "Anaerobic"

# Segments at or above this percent FTP count as work
WORK_THRESHOLD_PCT = 75

DURATION_BUCKETS = [30, 60, 90, 120, 150, 180, 210, 240]


@dataclass
class WorkoutMetrics:
    """Planned training load of a workout"""
    total_sec: int
    duration_min: float
    if_value: Optional[float]  # Intensity factor
    tss: Optional[float]  # Training stress score
    kj: Optional[float]  # Work in kilojoules
    ftp: Optional[float]


def _segments(raw_segments: Optional[Iterable[Union[RawSegment, Sequence[Any]]]]) -> List[RawSegment]:
    result = []
    for item in raw_segments or []:
        segment = item if isinstance(item, RawSegment) else RawSegment.from_list(item)
        if segment is not None:
            result.append(segment)
    return result


def segment_power_samples(segment: RawSegment) -> np.ndarray:
    """
    Relative power (fraction of FTP) for each second of a segment.

    Ramps are sampled at the middle of every second. A segment always lasts
    at least one second.
    """
    duration = max(1, int(math.floor(segment.minutes * 60 + 0.5)))
    start = segment.start_pct / 100
    delta = (segment.end_pct - segment.start_pct) / 100
    midpoints = (np.arange(duration) + 0.5) / duration
    return start + delta * midpoints


def compute_metrics_from_segments(raw_segments, ftp) -> WorkoutMetrics:
    """
    Compute duration, intensity factor, TSS and kJ of a planned workout.

    Free-ride segments count toward duration only, since their power is
    not a target.

    Args:
        raw_segments: Canonical segments
        ftp: Functional Threshold Power in watts

    Returns:
        WorkoutMetrics; the load figures are None when there is no FTP or
        no segment with a power target
    """
    try:
        ftp_value = float(ftp) if ftp is not None else 0.0
    except (TypeError, ValueError):
        ftp_value = 0.0
    if not math.isfinite(ftp_value):
        ftp_value = 0.0

    segments = _segments(raw_segments)
    if not ftp_value or not segments:
        return WorkoutMetrics(
            total_sec=0,
            duration_min=0.0,
            if_value=None,
            tss=None,
            kj=None,
            ftp=ftp_value or None,
        )

    total_sec = 0
    samples = []
    for segment in segments:
        powers = segment_power_samples(segment)
        total_sec += len(powers)
        if not segment.freeride:
            samples.append(powers)

    if not samples:
        return WorkoutMetrics(
            total_sec=total_sec,
            duration_min=total_sec / 60,
            if_value=None,
            tss=None,
            kj=None,
            ftp=ftp_value,
        )

    power = np.concatenate(samples)
    intensity = float(np.mean(power ** 4) ** 0.25)
    tss = len(power) * intensity * intensity / 36
    kj = ftp_value * float(np.sum(power)) / 1000

    return WorkoutMetrics(
        total_sec=total_sec,
        duration_min=total_sec / 60,
        if_value=intensity,
        tss=tss,
        kj=kj,
        ftp=ftp_value,
    )


def zone_from_percent(pct: float) -> str:
    for upper, name in ZONE_BOUNDARIES:
        if pct < upper:
            return name
    return TOP_ZONE


def zone_from_relative(rel: float) -> str:
    """Training zone of a relative intensity (fraction of FTP)"""
    return zone_from_percent(max(0.0, rel) * 100)


def infer_zone_from_segments(raw_segments) -> str:
    """
    Classify a workout by where its time is spent.

    Returns one of 'Recovery', 'Endurance', 'Tempo', 'Threshold', 'VO2Max',
    'HIIT' or 'Uncategorized' (no segments with a power target).
    """
    zone_time = {name: 0.0 for _, name in ZONE_BOUNDARIES}
    zone_time[TOP_ZONE] = 0.0
    total_sec = 0.0
    work_sec = 0.0

    for segment in _segments(raw_segments):
        if segment.freeride:
            continue
        duration = segment.minutes * 60
        avg_pct = (segment.start_pct + segment.end_pct) / 2
        total_sec += duration
        zone_time[zone_from_percent(avg_pct)] += duration
        if avg_pct >= WORK_THRESHOLD_PCT:
            work_sec += duration

    if total_sec == 0:
        return "Uncategorized"

    if work_sec / total_sec < 0.15:
        if zone_time["Recovery"] / total_sec >= 0.7:
            return "Recovery"
        return "Endurance"

    high_sec = zone_time["VO2Max"] + zone_time["Anaerobic"]
    threshold_sec = zone_time["Threshold"]
    tempo_sec = zone_time["Tempo"]

    if high_sec / work_sec >= 0.2:
        if zone_time["Anaerobic"] / work_sec >= 0.1:
            return "HIIT"
        return "VO2Max"
    if (threshold_sec + high_sec) / work_sec >= 0.35:
        return "Threshold"
    if (tempo_sec + threshold_sec + high_sec) / work_sec >= 0.5:
        return "Tempo"
    return "Endurance"


def format_duration_min_sec(total_sec) -> str:
    """Format seconds as '45 min' or '45 min 30 sec'"""
    seconds = max(0, int(math.floor((total_sec or 0) + 0.5)))
    minutes, sec = divmod(seconds, 60)
    if not sec:
        return f"{minutes} min"
    return f"{minutes} min {sec} sec"


def get_duration_bucket(duration_min) -> str:
    """Duration filter label for a workout length in minutes"""
    if duration_min is None or not math.isfinite(duration_min):
        return ">240"
    lower = 1
    for upper in DURATION_BUCKETS:
        if duration_min <= upper:
            return f"{lower}-{upper}"
        lower = upper + 1
    return ">240"


def scale_kj_to_ftp(base_kj: Optional[float], base_ftp: float, current_ftp: float) -> Optional[float]:
    """Rescale work computed at one FTP to another FTP"""
    if base_kj is None or not math.isfinite(base_ftp) or not math.isfinite(current_ftp):
        return base_kj
    if base_ftp <= 0:
        return base_kj
    return base_kj * (current_ftp / base_ftp)
