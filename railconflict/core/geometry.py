from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

from railconflict.core.handles import Handle

# Linear interpolation in (time, position) space. Both live train positions
# and conflict timing use these helpers so the two can never disagree.


@dataclass(frozen=True)
class Occupancy:
    """One journey's use of one track of one segment."""

    journey_id: str
    segment: Handle
    track_index: int
    forward: bool  # travelling a -> b
    enter: int  # departure from the previous stop
    exit: int  # arrival at the next stop
    from_node: Handle
    to_node: Handle


def progress(start: float, end: float, t: float) -> float:
    if end <= start:
        return 1.0 if t >= end else 0.0
    return min(1.0, max(0.0, (t - start) / (end - start)))


def position_on_segment(occ: Occupancy, t: float) -> float:
    # 0.0 at segment.a, 1.0 at segment.b
    p = progress(occ.enter, occ.exit, t)
    return p if occ.forward else 1.0 - p


def overlap(a: Tuple[float, float], b: Tuple[float, float]) -> Optional[Tuple[float, float]]:
    # strict overlap of two intervals, touching endpoints do not count
    lo = max(a[0], b[0])
    hi = min(a[1], b[1])
    if lo < hi:
        return lo, hi
    return None


def _velocity(occ: Occupancy) -> float:
    span = occ.exit - occ.enter
    v = 1.0 / span if span > 0 else 0.0
    return v if occ.forward else -v


def meeting_time(o1: Occupancy, o2: Occupancy) -> Optional[float]:
    """Time in the common window at which both trains are at the same point.

    Returns None when the position lines do not cross inside the window.
    """
    window = (max(o1.enter, o2.enter), min(o1.exit, o2.exit))
    if window[0] > window[1]:
        return None
    t0 = window[0]
    d0 = position_on_segment(o1, t0) - position_on_segment(o2, t0)
    dv = _velocity(o1) - _velocity(o2)
    if abs(d0) < 1e-9:
        return float(t0)
    if dv == 0:
        return None
    t = t0 - d0 / dv
    if window[0] <= t <= window[1]:
        return t
    return None
