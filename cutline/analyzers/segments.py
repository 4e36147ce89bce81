"""Segment planner: turns a trim range and removal cuts into keep-segments."""

from typing import Iterable

from cutline.errors import PlanningError
from cutline.models import TimeRange

MIN_CUT_DURATION = 0.05


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def plan_keep_segments(
    trim_start: float,
    trim_end: float,
    cuts: Iterable[TimeRange],
    min_duration: float = MIN_CUT_DURATION,
) -> list[TimeRange]:
    """Return the ordered, disjoint segments that survive trimming and cuts.

    Cuts may overlap and arrive in any order; they are clamped into the trim
    range and cuts (or leftover segments) shorter than ``min_duration`` are
    dropped as UI/float noise. An empty list means nothing survives.
    """
    if trim_start >= trim_end:
        raise PlanningError(
            f"trimStart ({trim_start}) must be before trimEnd ({trim_end})"
        )

    clamped = []
    for cut in cuts:
        start = _clamp(cut.start, trim_start, trim_end)
        end = _clamp(cut.end, trim_start, trim_end)
        if end - start >= min_duration:
            clamped.append(TimeRange(start=start, end=end))
    clamped.sort(key=lambda c: c.start)

    segments: list[TimeRange] = []
    cursor = trim_start

    for cut in clamped:
        if cut.start > cursor:
            segments.append(TimeRange(start=cursor, end=cut.start))
        cursor = max(cursor, cut.end)
        if cursor >= trim_end:
            break

    if cursor < trim_end:
        segments.append(TimeRange(start=cursor, end=trim_end))

    return [s for s in segments if s.duration >= min_duration]


def cuts_to_segments(
    cuts: Iterable[TimeRange], trim_start: float, trim_end: float
) -> list[TimeRange]:
    """Convert removal cuts into the keep-segments between them."""
    segments: list[TimeRange] = []
    cursor = trim_start

    for cut in sorted(cuts, key=lambda c: c.start):
        if cursor < cut.start:
            segments.append(TimeRange(start=cursor, end=cut.start))
        cursor = max(cursor, cut.end)

    if cursor < trim_end:
        segments.append(TimeRange(start=cursor, end=trim_end))
    return segments


def segments_to_cuts(
    segments: Iterable[TimeRange], trim_start: float, trim_end: float
) -> list[TimeRange]:
    """Convert keep-segments into the cuts covering every gap between them."""
    cuts: list[TimeRange] = []
    cursor = trim_start

    for seg in sorted(segments, key=lambda s: s.start):
        if cursor < seg.start:
            cuts.append(TimeRange(start=cursor, end=seg.start))
        cursor = max(cursor, seg.end)

    if cursor < trim_end:
        cuts.append(TimeRange(start=cursor, end=trim_end))
    return cuts


def total_duration(ranges: Iterable[TimeRange]) -> float:
    return sum(r.duration for r in ranges)
