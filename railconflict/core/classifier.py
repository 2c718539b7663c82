from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple

from railconflict.core.geometry import Occupancy, meeting_time, overlap, position_on_segment
from railconflict.core.handles import Handle
from railconflict.core.models import ConflictType

# Pure decision rules: given two occupancies of the same segment (or the dwells
# at one station) and a few facts about the topology, decide what happened.


@dataclass(frozen=True)
class SegmentFacts:
    a: Handle
    b: Handle
    a_passing_loop: bool = False
    b_passing_loop: bool = False
    # None: junction, or station without platform data (unbounded)
    a_platforms: Optional[int] = None
    b_platforms: Optional[int] = None
    a_is_station: bool = True
    b_is_station: bool = True


@dataclass(frozen=True)
class Verdict:
    # conflict_type None means a permitted crossing at `crossing_node`
    conflict_type: Optional[ConflictType]
    time: int
    position: float  # 0 at segment.a, 1 at segment.b
    window: Tuple[int, int]
    first: Occupancy
    second: Occupancy
    crossing_node: Optional[Handle] = None


@dataclass(frozen=True)
class Dwell:
    journey_id: str
    station: Handle
    start: int
    end: int
    arrival: int
    departure: int
    arrived_via: Optional[Handle] = None


def _is_crossing_point(facts: SegmentFacts, node: Handle, overtake: bool) -> bool:
    is_a = node == facts.a
    loop = facts.a_passing_loop if is_a else facts.b_passing_loop
    if loop or overtake:
        return loop
    is_station = facts.a_is_station if is_a else facts.b_is_station
    platforms = facts.a_platforms if is_a else facts.b_platforms
    return is_station and (platforms is None or platforms >= 2)


def _near_end(o1: Occupancy, o2: Occupancy, t: float, margin: int) -> Optional[Handle]:
    # the segment end both trains are within `margin` of at time t, nearest first
    candidates = []
    for occ in (o1, o2):
        candidates.append((abs(t - occ.enter), occ.from_node))
        candidates.append((abs(t - occ.exit), occ.to_node))
    candidates.sort(key=lambda c: c[0])
    for dt, node in candidates:
        if dt <= margin:
            return node
    return None


def classify_segment_pair(
    o1: Occupancy,
    o2: Occupancy,
    facts: SegmentFacts,
    headway: int,
    station_margin: int = 30,
) -> Optional[Verdict]:
    if o1.track_index != o2.track_index:
        return None

    if o1.forward != o2.forward:
        win = overlap((o1.enter, o1.exit), (o2.enter, o2.exit))
        if win is None:
            return None
        first, second = sorted((o1, o2), key=lambda o: (o.enter, o.journey_id))
        t = meeting_time(first, second)
        if t is None:
            t = win[0]
        pos = position_on_segment(first, t)
        window = (int(win[0]), int(win[1]))
        node = _near_end(first, second, t, station_margin)
        if node is not None and _is_crossing_point(facts, node, overtake=False):
            return Verdict(None, round(t), pos, window, first, second, crossing_node=node)
        return Verdict(ConflictType.HEAD_ON, round(t), pos, window, first, second)

    # same direction: the leader enters first, or exits last on a tie
    leader, follower = sorted((o1, o2), key=lambda o: (o.enter, -o.exit, o.journey_id))
    if follower.enter - leader.exit >= headway:
        return None
    window = (min(follower.enter, leader.exit), max(follower.enter, leader.exit))
    if follower.exit < leader.exit:
        t = meeting_time(leader, follower)
        if t is None:
            t = follower.enter
        pos = position_on_segment(leader, t)
        if abs(t - follower.exit) <= station_margin and _is_crossing_point(facts, follower.to_node, overtake=True):
            return Verdict(None, round(t), pos, window, leader, follower, crossing_node=follower.to_node)
        if abs(t - follower.enter) <= station_margin and _is_crossing_point(facts, follower.from_node, overtake=True):
            return Verdict(None, round(t), pos, window, leader, follower, crossing_node=follower.from_node)
        return Verdict(ConflictType.OVERTAKING, round(t), pos, window, leader, follower)
    pos = position_on_segment(leader, follower.enter)
    return Verdict(ConflictType.BLOCK_VIOLATION, follower.enter, pos, window, leader, follower)


def platform_violations(
    dwells: List[Dwell],
    capacity: Optional[int],
    passing_loop: bool = False,
    ignore_same_direction: bool = False,
) -> List[Tuple[Dwell, Dwell]]:
    """Pairs (active, arriving) whenever a dwell starts at a full station.

    Intervals are half-open so back-to-back dwells never count as overlapping.
    """
    if capacity is None:
        return []
    pairs: List[Tuple[Dwell, Dwell]] = []
    active: List[Dwell] = []
    for d in sorted(dwells, key=lambda d: (d.start, d.end, d.journey_id)):
        active = [a for a in active if a.end > d.start]
        if len(active) >= capacity:
            for a in active:
                if a.journey_id == d.journey_id:
                    continue
                if passing_loop and (a.departure == a.arrival or d.departure == d.arrival):
                    continue
                if ignore_same_direction and a.arrived_via is not None and a.arrived_via == d.arrived_via:
                    continue
                pairs.append((a, d))
        active.append(d)
    return pairs
