from __future__ import annotations
import dataclasses
import logging
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

from railconflict.core.config import EngineConfig
from railconflict.core.detector import DetectionResult
from railconflict.core.handles import Handle
from railconflict.core.models import (
    Conflict,
    ConflictType,
    DaysOfWeek,
    Journey,
    JourneySegment,
    JourneyStop,
    Junction,
    Line,
    ManualDeparture,
    Platform,
    RouteStep,
    RoutingRule,
    ScheduleMode,
    Segment,
    Station,
    StationCrossing,
    Timetable,
    Track,
    TrackDirection,
    node_name,
)
from railconflict.core.network import Network

logger = logging.getLogger(__name__)

# Explicit wire shapes for everything that crosses a process or HTTP boundary.
# Handles keep their generation so stale references stay detectably stale.


class HandleIn(BaseModel):
    index: int = Field(ge=0)
    generation: int = Field(0, ge=0)

    def to_handle(self) -> Handle:
        return Handle(self.index, self.generation)

    @classmethod
    def of(cls, h: Handle) -> "HandleIn":
        return cls(index=h.index, generation=h.generation)


class StationIn(BaseModel):
    kind: Literal["station"] = "station"
    handle: HandleIn
    name: str
    position: Tuple[float, float] | None = None
    passing_loop: bool = False
    platforms: List[str] = []


class RoutingRuleIn(BaseModel):
    from_segment: HandleIn
    to_segment: HandleIn
    allowed: bool


class JunctionIn(BaseModel):
    kind: Literal["junction"] = "junction"
    handle: HandleIn
    name: str | None = None
    position: Tuple[float, float] | None = None
    routing_rules: List[RoutingRuleIn] = []


NodeIn = Annotated[Union[StationIn, JunctionIn], Field(discriminator="kind")]


class SegmentIn(BaseModel):
    handle: HandleIn
    a: HandleIn
    b: HandleIn
    tracks: List[TrackDirection] = [TrackDirection.BIDIRECTIONAL]
    distance_km: float | None = None


class JourneyStopIn(BaseModel):
    node: HandleIn
    arrival: int
    departure: int


class JourneySegmentIn(BaseModel):
    segment: HandleIn
    track_index: int = 0


class JourneyIn(BaseModel):
    id: str
    line: str = ""
    stops: List[JourneyStopIn]
    segments: List[JourneySegmentIn]
    forward: bool = True


class RouteStepIn(BaseModel):
    segment: HandleIn
    track_index: int = 0
    forward: bool = True
    duration: int | None = None
    dwell: int | None = None


class TimetableIn(BaseModel):
    first_departure: int
    last_departure: int
    frequency: int


class ManualDepartureIn(BaseModel):
    time: int
    days: int = int(DaysOfWeek.ALL_DAYS)
    return_trip: bool = False
    from_node: HandleIn | None = None
    to_node: HandleIn | None = None


class LineIn(BaseModel):
    name: str
    forward_route: List[RouteStepIn] = []
    return_route: List[RouteStepIn] = []
    forward_timetable: TimetableIn | None = None
    return_timetable: TimetableIn | None = None
    days: int = int(DaysOfWeek.ALL_DAYS)
    mode: ScheduleMode = ScheduleMode.AUTO
    manual_departures: List[ManualDepartureIn] = []
    speed_kmh: float | None = None
    default_dwell: int = 30
    color: str = "#1f77b4"


class ConfigIn(BaseModel):
    min_headway_seconds: int | None = None
    station_margin_seconds: int | None = None
    platform_buffer_seconds: int | None = None
    ignore_same_direction_platform_conflicts: bool | None = None
    max_conflicts: int | None = None
    horizon_days: int | None = None
    max_journeys_per_line: int | None = None

    def apply(self, base: Optional[EngineConfig] = None) -> EngineConfig:
        overrides = {k: v for k, v in self.model_dump().items() if v is not None}
        return dataclasses.replace(base or EngineConfig(), **overrides)


class SnapshotIn(BaseModel):
    nodes: List[NodeIn] = []
    segments: List[SegmentIn] = []
    journeys: List[JourneyIn] = []
    reference_path: List[HandleIn] = []
    config: ConfigIn | None = None


class ScenarioIn(BaseModel):
    nodes: List[NodeIn] = []
    segments: List[SegmentIn] = []
    lines: List[LineIn] = []
    reference_path: List[HandleIn] = []
    day: int = 0
    config: ConfigIn | None = None


class ConflictOut(BaseModel):
    conflict_type: ConflictType
    label: str
    message: str = ""
    time: int
    journey1: str
    journey2: str
    station1_idx: int | None = None
    station2_idx: int | None = None
    position: float = 0.0
    segment: HandleIn | None = None
    station: HandleIn | None = None
    track_index: int | None = None
    interval1: Tuple[int, int] | None = None
    interval2: Tuple[int, int] | None = None
    window: Tuple[int, int] | None = None
    platform_capacity: int | None = None


class CrossingOut(BaseModel):
    time: int
    node: HandleIn
    journey1: str
    journey2: str


class DetectionOut(BaseModel):
    conflicts: List[ConflictOut] = []
    crossings: List[CrossingOut] = []
    skipped: List[str] = []


# --- domain -> wire -------------------------------------------------------


def network_to_models(network: Network) -> Tuple[List[Union[StationIn, JunctionIn]], List[SegmentIn]]:
    nodes: List[Union[StationIn, JunctionIn]] = []
    for h, node in network.nodes.items():
        match node:
            case Station():
                nodes.append(StationIn(
                    handle=HandleIn.of(h),
                    name=node.name,
                    position=node.position,
                    passing_loop=node.passing_loop,
                    platforms=[p.name for p in node.platforms],
                ))
            case Junction():
                nodes.append(JunctionIn(
                    handle=HandleIn.of(h),
                    name=node.name,
                    position=node.position,
                    routing_rules=[
                        RoutingRuleIn(from_segment=HandleIn.of(r.from_segment), to_segment=HandleIn.of(r.to_segment), allowed=r.allowed)
                        for r in node.routing_rules
                    ],
                ))
    segments = [
        SegmentIn(
            handle=HandleIn.of(h),
            a=HandleIn.of(seg.a),
            b=HandleIn.of(seg.b),
            tracks=[t.direction for t in seg.tracks],
            distance_km=seg.distance_km,
        )
        for h, seg in network.segments.items()
    ]
    return nodes, segments


def journey_to_model(j: Journey) -> JourneyIn:
    return JourneyIn(
        id=j.id,
        line=j.line,
        stops=[JourneyStopIn(node=HandleIn.of(s.node), arrival=s.arrival, departure=s.departure) for s in j.stops],
        segments=[JourneySegmentIn(segment=HandleIn.of(s.segment), track_index=s.track_index) for s in j.segments],
        forward=j.forward,
    )


def make_snapshot(
    network: Network,
    journeys: List[Journey],
    reference_path: List[Handle],
    config: Optional[EngineConfig] = None,
) -> SnapshotIn:
    nodes, segments = network_to_models(network)
    cfg = None
    if config is not None:
        cfg = ConfigIn(**{f: getattr(config, f) for f in ConfigIn.model_fields})
    return SnapshotIn(
        nodes=nodes,
        segments=segments,
        journeys=[journey_to_model(j) for j in journeys],
        reference_path=[HandleIn.of(h) for h in reference_path],
        config=cfg,
    )


def conflict_to_model(c: Conflict, network: Optional[Network] = None) -> ConflictOut:
    message = ""
    if network is not None:
        message = c.describe(*_location_names(c, network))
    return ConflictOut(
        conflict_type=c.conflict_type,
        label=c.conflict_type.label,
        message=message,
        time=c.time,
        journey1=c.journey1,
        journey2=c.journey2,
        station1_idx=c.station1_idx,
        station2_idx=c.station2_idx,
        position=c.position,
        segment=HandleIn.of(c.segment) if c.segment is not None else None,
        station=HandleIn.of(c.station) if c.station is not None else None,
        track_index=c.track_index,
        interval1=c.interval1,
        interval2=c.interval2,
        window=c.window,
        platform_capacity=c.platform_capacity,
    )


def _location_names(c: Conflict, network: Network) -> Tuple[str, str]:
    if c.station is not None and c.station in network.nodes:
        return node_name(network.node(c.station)), ""
    seg = network.segments.get(c.segment) if c.segment is not None else None
    if seg is None:
        return "", ""
    return node_name(network.node(seg.a)), node_name(network.node(seg.b))


def result_to_model(result: DetectionResult, network: Optional[Network] = None) -> DetectionOut:
    return DetectionOut(
        conflicts=[conflict_to_model(c, network) for c in result.conflicts],
        crossings=[
            CrossingOut(time=x.time, node=HandleIn.of(x.node), journey1=x.journey1, journey2=x.journey2)
            for x in result.crossings
        ],
        skipped=list(result.skipped),
    )


# --- wire -> domain -------------------------------------------------------


def conflict_from_model(c: ConflictOut) -> Conflict:
    return Conflict(
        conflict_type=c.conflict_type,
        time=c.time,
        journey1=c.journey1,
        journey2=c.journey2,
        station1_idx=c.station1_idx,
        station2_idx=c.station2_idx,
        position=c.position,
        segment=c.segment.to_handle() if c.segment is not None else None,
        station=c.station.to_handle() if c.station is not None else None,
        track_index=c.track_index,
        interval1=c.interval1,
        interval2=c.interval2,
        window=c.window,
        platform_capacity=c.platform_capacity,
    )


def result_from_model(out: DetectionOut) -> DetectionResult:
    return DetectionResult(
        conflicts=[conflict_from_model(c) for c in out.conflicts],
        crossings=[StationCrossing(time=x.time, node=x.node.to_handle(), journey1=x.journey1, journey2=x.journey2) for x in out.crossings],
        skipped=list(out.skipped),
    )


# Freed slots keep their index, so a live map may be sparse; beyond this it is a bad payload
_MAX_SPARE_SLOTS = 4096


def _check_handle_range(kind: str, handles: List[HandleIn], count: int) -> None:
    limit = count + _MAX_SPARE_SLOTS
    for h in handles:
        if not 0 <= h.index < limit:
            raise ValueError(f"{kind} handle index {h.index} out of range (limit {limit})")


def build_network(nodes: List[Union[StationIn, JunctionIn]], segments: List[SegmentIn]) -> Network:
    network = Network()
    _check_handle_range("node", [n.handle for n in nodes], len(nodes))
    _check_handle_range("segment", [s.handle for s in segments], len(segments))
    for n in nodes:
        match n:
            case StationIn():
                node: Union[Station, Junction] = Station(
                    name=n.name,
                    position=n.position,
                    passing_loop=n.passing_loop,
                    platforms=[Platform(p) for p in n.platforms],
                )
            case JunctionIn():
                node = Junction(
                    name=n.name,
                    position=n.position,
                    routing_rules=[
                        RoutingRule(r.from_segment.to_handle(), r.to_segment.to_handle(), r.allowed)
                        for r in n.routing_rules
                    ],
                )
        network.nodes.restore(n.handle.to_handle(), node)
    for s in segments:
        a, b = s.a.to_handle(), s.b.to_handle()
        if a not in network.nodes or b not in network.nodes or a == b:
            raise ValueError(f"segment {s.handle.index} has invalid endpoints")
        network.segments.restore(
            s.handle.to_handle(),
            Segment(a=a, b=b, tracks=[Track(d) for d in s.tracks] or [Track()], distance_km=s.distance_km),
        )
    return network


def build_journeys(items: List[JourneyIn]) -> Tuple[List[Journey], List[str]]:
    journeys: List[Journey] = []
    skipped: List[str] = []
    for j in items:
        try:
            journeys.append(Journey(
                id=j.id,
                line=j.line,
                stops=[JourneyStop(node=s.node.to_handle(), arrival=s.arrival, departure=s.departure) for s in j.stops],
                segments=[JourneySegment(segment=s.segment.to_handle(), track_index=s.track_index) for s in j.segments],
                forward=j.forward,
            ))
        except ValueError as e:
            logger.warning(f"Skipping malformed journey {j.id}: {e}")
            skipped.append(j.id)
    return journeys, skipped


def _route(steps: List[RouteStepIn]) -> List[RouteStep]:
    return [
        RouteStep(segment=s.segment.to_handle(), track_index=s.track_index, forward=s.forward, duration=s.duration, dwell=s.dwell)
        for s in steps
    ]


def _timetable(t: TimetableIn | None) -> Optional[Timetable]:
    if t is None:
        return None
    return Timetable(first_departure=t.first_departure, last_departure=t.last_departure, frequency=t.frequency)


def build_lines(items: List[LineIn]) -> List[Line]:
    return [
        Line(
            name=l.name,
            forward_route=_route(l.forward_route),
            return_route=_route(l.return_route),
            forward_timetable=_timetable(l.forward_timetable),
            return_timetable=_timetable(l.return_timetable),
            days=DaysOfWeek(l.days & int(DaysOfWeek.ALL_DAYS)),
            mode=l.mode,
            manual_departures=[
                ManualDeparture(
                    time=m.time,
                    days=DaysOfWeek(m.days & int(DaysOfWeek.ALL_DAYS)),
                    return_trip=m.return_trip,
                    from_node=m.from_node.to_handle() if m.from_node else None,
                    to_node=m.to_node.to_handle() if m.to_node else None,
                )
                for m in l.manual_departures
            ],
            speed_kmh=l.speed_kmh,
            default_dwell=l.default_dwell,
            color=l.color,
        )
        for l in items
    ]


def load_snapshot(snap: SnapshotIn) -> Tuple[Network, List[Journey], List[Handle], EngineConfig, List[str]]:
    network = build_network(snap.nodes, snap.segments)
    journeys, skipped = build_journeys(snap.journeys)
    cfg = snap.config.apply() if snap.config is not None else EngineConfig()
    return network, journeys, [h.to_handle() for h in snap.reference_path], cfg, skipped
