from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import List, Optional, Tuple, Union

from railconflict.core.geometry import progress
from railconflict.core.handles import Handle

Seconds = int

SECONDS_PER_DAY: Seconds = 86400


class TrackDirection(str, Enum):
    FORWARD = "forward"  # a -> b only
    BACKWARD = "backward"  # b -> a only
    BIDIRECTIONAL = "bidirectional"

    def allows(self, forward: bool) -> bool:
        if self is TrackDirection.BIDIRECTIONAL:
            return True
        return (self is TrackDirection.FORWARD) == forward


@dataclass
class Track:
    direction: TrackDirection = TrackDirection.BIDIRECTIONAL


@dataclass
class Platform:
    name: str


@dataclass
class Station:
    name: str
    position: Optional[Tuple[float, float]] = None
    passing_loop: bool = False
    # Empty list means no platform data: capacity is treated as unbounded
    platforms: List[Platform] = field(default_factory=list)

    @property
    def platform_capacity(self) -> Optional[int]:
        return len(self.platforms) if self.platforms else None


@dataclass
class RoutingRule:
    from_segment: Handle
    to_segment: Handle
    allowed: bool


@dataclass
class Junction:
    name: Optional[str] = None
    position: Optional[Tuple[float, float]] = None
    routing_rules: List[RoutingRule] = field(default_factory=list)

    def is_routing_allowed(self, from_segment: Handle, to_segment: Handle) -> bool:
        if from_segment == to_segment:
            return False
        for rule in self.routing_rules:
            if rule.from_segment == from_segment and rule.to_segment == to_segment:
                return rule.allowed
        return True

    def set_routing_rule(self, from_segment: Handle, to_segment: Handle, allowed: bool) -> None:
        self.remove_routing_rule(from_segment, to_segment)
        self.routing_rules.append(RoutingRule(from_segment, to_segment, allowed))

    def remove_routing_rule(self, from_segment: Handle, to_segment: Handle) -> None:
        self.routing_rules = [
            r for r in self.routing_rules
            if not (r.from_segment == from_segment and r.to_segment == to_segment)
        ]


Node = Union[Station, Junction]


def node_name(node: Node) -> str:
    match node:
        case Station(name=name):
            return name
        case Junction(name=name):
            return name or "Junction"
        case _:
            raise TypeError(f"not a node: {node!r}")


def is_station(node: Node) -> bool:
    match node:
        case Station():
            return True
        case Junction():
            return False
        case _:
            raise TypeError(f"not a node: {node!r}")


@dataclass
class Segment:
    a: Handle
    b: Handle
    tracks: List[Track] = field(default_factory=lambda: [Track()])
    distance_km: Optional[float] = None

    def other_end(self, node: Handle) -> Handle:
        if node == self.a:
            return self.b
        if node == self.b:
            return self.a
        raise ValueError(f"node {node} is not an endpoint of this segment")

    def joins(self, n1: Handle, n2: Handle) -> bool:
        return (self.a, self.b) in ((n1, n2), (n2, n1))


class DaysOfWeek(IntFlag):
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 4
    THURSDAY = 8
    FRIDAY = 16
    SATURDAY = 32
    SUNDAY = 64
    WEEKDAYS = MONDAY | TUESDAY | WEDNESDAY | THURSDAY | FRIDAY
    WEEKENDS = SATURDAY | SUNDAY
    ALL_DAYS = WEEKDAYS | WEEKENDS

    @classmethod
    def from_weekday(cls, weekday: int) -> "DaysOfWeek":
        # 0 = Monday
        return cls(1 << (weekday % 7))

    def contains_weekday(self, weekday: int) -> bool:
        return bool(self & DaysOfWeek.from_weekday(weekday))


class ScheduleMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass
class RouteStep:
    segment: Handle
    track_index: int = 0
    forward: bool = True  # True: travel from segment.a to segment.b
    duration: Optional[Seconds] = None  # overrides distance/speed derived travel time
    dwell: Optional[Seconds] = None  # dwell at the step's destination


@dataclass
class Timetable:
    first_departure: Seconds
    last_departure: Seconds
    frequency: Seconds


@dataclass
class ManualDeparture:
    time: Seconds
    days: DaysOfWeek = DaysOfWeek.ALL_DAYS
    return_trip: bool = False
    from_node: Optional[Handle] = None
    to_node: Optional[Handle] = None


@dataclass
class Line:
    name: str
    forward_route: List[RouteStep] = field(default_factory=list)
    return_route: List[RouteStep] = field(default_factory=list)
    forward_timetable: Optional[Timetable] = None
    return_timetable: Optional[Timetable] = None
    days: DaysOfWeek = DaysOfWeek.ALL_DAYS
    mode: ScheduleMode = ScheduleMode.AUTO
    manual_departures: List[ManualDeparture] = field(default_factory=list)
    speed_kmh: Optional[float] = None
    default_dwell: Seconds = 30
    color: str = "#1f77b4"  # display only


@dataclass
class JourneyStop:
    node: Handle
    arrival: Seconds
    departure: Seconds


@dataclass
class JourneySegment:
    segment: Handle
    track_index: int = 0


@dataclass
class Journey:
    id: str
    line: str
    stops: List[JourneyStop]
    segments: List[JourneySegment]
    forward: bool = True

    def __post_init__(self) -> None:
        if len(self.stops) < 2:
            raise ValueError(f"journey {self.id} needs at least two stops")
        if len(self.segments) != len(self.stops) - 1:
            raise ValueError(f"journey {self.id}: {len(self.segments)} segments for {len(self.stops)} stops")
        prev_departure: Optional[Seconds] = None
        for stop in self.stops:
            if stop.departure < stop.arrival:
                raise ValueError(f"journey {self.id}: departure before arrival at {stop.node}")
            if prev_departure is not None and stop.arrival <= prev_departure:
                raise ValueError(f"journey {self.id}: times must strictly increase")
            prev_departure = stop.departure

    @property
    def start(self) -> Seconds:
        return self.stops[0].departure

    @property
    def end(self) -> Seconds:
        return self.stops[-1].arrival

    def position_at(self, t: float) -> Optional[Tuple[int, float]]:
        """Live position as (leg index, fraction travelled along the leg).

        Dwelling at stop i reports (i, 0.0) except at the terminus. Returns
        None outside [start, end].
        """
        if t < self.start or t > self.end:
            return None
        for i in range(len(self.segments)):
            dep = self.stops[i].departure
            arr = self.stops[i + 1].arrival
            if t < dep:
                return i, 0.0
            if t <= arr:
                return i, progress(dep, arr, t)
        return len(self.segments) - 1, 1.0


class ConflictType(str, Enum):
    HEAD_ON = "head_on"
    OVERTAKING = "overtaking"
    BLOCK_VIOLATION = "block_violation"
    PLATFORM_VIOLATION = "platform_violation"

    @property
    def label(self) -> str:
        return _CONFLICT_LABELS[self]


_CONFLICT_LABELS = {
    ConflictType.HEAD_ON: "Head-on Conflict",
    ConflictType.OVERTAKING: "Overtaking",
    ConflictType.BLOCK_VIOLATION: "Block Violation",
    ConflictType.PLATFORM_VIOLATION: "Platform Violation",
}


@dataclass(frozen=True)
class Conflict:
    conflict_type: ConflictType
    time: Seconds
    journey1: str
    journey2: str
    # Positions of the conflict location on the reference path (None when off the path)
    station1_idx: Optional[int] = None
    station2_idx: Optional[int] = None
    position: float = 0.0  # fraction between station1_idx and station2_idx
    segment: Optional[Handle] = None
    station: Optional[Handle] = None
    track_index: Optional[int] = None
    interval1: Optional[Tuple[Seconds, Seconds]] = None
    interval2: Optional[Tuple[Seconds, Seconds]] = None
    window: Optional[Tuple[Seconds, Seconds]] = None
    platform_capacity: Optional[int] = None

    @property
    def location(self) -> Optional[Handle]:
        return self.segment if self.segment is not None else self.station

    def describe(self, name1: str = "", name2: str = "") -> str:
        """Human readable message; names are the location's node names."""
        j1, j2 = self.journey1, self.journey2
        match self.conflict_type:
            case ConflictType.HEAD_ON:
                return f"{j1} conflicts with {j2} between {name1} and {name2}"
            case ConflictType.OVERTAKING:
                return f"{j2} overtakes {j1} between {name1} and {name2}"
            case ConflictType.BLOCK_VIOLATION:
                return f"{j1} block violation with {j2} between {name1} and {name2}"
            case ConflictType.PLATFORM_VIOLATION:
                return f"{j1} conflicts with {j2} at {name1}"
        raise TypeError(self.conflict_type)


@dataclass(frozen=True)
class StationCrossing:
    time: Seconds
    node: Handle
    journey1: str
    journey2: str
