from __future__ import annotations
import logging
from typing import List, Optional

from railconflict.core.config import EngineConfig
from railconflict.core.handles import Handle, StaleHandleError
from railconflict.core.models import (
    SECONDS_PER_DAY,
    Journey,
    JourneySegment,
    JourneyStop,
    Line,
    RouteStep,
    ScheduleMode,
    Seconds,
    Station,
    Timetable,
)
from railconflict.core.network import Network, RouteError

logger = logging.getLogger(__name__)

# Schedule generator:
# - expand each line's timetable (or manual departures) into concrete journeys
# - walk the route accumulating travel time per segment and dwell at stations
# - routes that no longer resolve are skipped, never fatal


def generate_journeys(
    lines: List[Line],
    network: Network,
    day: int = 0,
    config: Optional[EngineConfig] = None,
) -> List[Journey]:
    cfg = config or EngineConfig()
    journeys: List[Journey] = []
    for line in lines:
        journeys.extend(generate_line_journeys(line, network, day, cfg))
    return journeys


def generate_line_journeys(line: Line, network: Network, day: int = 0, config: Optional[EngineConfig] = None) -> List[Journey]:
    """Journeys for one line over the configured horizon.

    `day` is the weekday (0 = Monday) of the first day in the horizon. Times
    are seconds since 00:00 of that day.
    """
    cfg = config or EngineConfig()
    journeys: List[Journey] = []
    seq = 0
    for offset in range(cfg.horizon_days):
        weekday = (day + offset) % 7
        base = offset * SECONDS_PER_DAY
        for steps, departure, forward in _departures(line, network, weekday, cfg):
            seq += 1
            try:
                journeys.append(build_journey(line, steps, network, base + departure, f"{line.name} {seq:04d}", forward, cfg))
            except (RouteError, StaleHandleError, ValueError) as e:
                logger.warning(f"Skipping journey {line.name} {seq:04d}: {e}")
    return journeys


def _departures(line: Line, network: Network, weekday: int, cfg: EngineConfig):
    if line.mode is ScheduleMode.MANUAL:
        for dep in line.manual_departures:
            if not dep.days.contains_weekday(weekday):
                continue
            route = line.return_route if dep.return_trip else line.forward_route
            try:
                steps = subroute(network, route, dep.from_node, dep.to_node)
            except (RouteError, StaleHandleError) as e:
                logger.warning(f"Skipping manual departure of {line.name} at {dep.time}: {e}")
                continue
            yield steps, dep.time, not dep.return_trip
        return

    if not line.days.contains_weekday(weekday):
        return
    for route, timetable, forward in (
        (line.forward_route, line.forward_timetable, True),
        (line.return_route, line.return_timetable, False),
    ):
        if not route or timetable is None:
            continue
        try:
            network.route_nodes(route)
        except (RouteError, StaleHandleError) as e:
            logger.warning(f"Skipping {'forward' if forward else 'return'} route of {line.name}: {e}")
            continue
        for t in departure_times(timetable, cfg.max_journeys_per_line):
            yield route, t, forward


def departure_times(timetable: Timetable, limit: int = 100) -> List[Seconds]:
    # both bounds are inclusive
    if timetable.frequency <= 0:
        return [timetable.first_departure]
    times: List[Seconds] = []
    t = timetable.first_departure
    while t <= timetable.last_departure and len(times) < limit:
        times.append(t)
        t += timetable.frequency
    return times


def subroute(network: Network, steps: List[RouteStep], from_node: Optional[Handle], to_node: Optional[Handle]) -> List[RouteStep]:
    if from_node is None and to_node is None:
        return steps
    nodes = network.route_nodes(steps)
    start = 0
    if from_node is not None:
        if from_node not in nodes:
            raise RouteError(f"node {from_node} is not on the route")
        start = nodes.index(from_node)
    end = len(nodes) - 1
    if to_node is not None:
        if to_node not in nodes[start + 1:]:
            raise RouteError(f"node {to_node} is not on the route after {from_node}")
        end = nodes.index(to_node, start + 1)
    return steps[start:end]


def travel_seconds(step: RouteStep, line: Line, network: Network, cfg: EngineConfig) -> Seconds:
    if step.duration is not None:
        return int(step.duration)
    seg = network.segment(step.segment)
    if seg.distance_km is not None:
        speed = line.speed_kmh or cfg.default_speed_kmh
        if speed > 0:
            return max(1, round(seg.distance_km / speed * 3600))
    return cfg.default_segment_seconds


def build_journey(
    line: Line,
    steps: List[RouteStep],
    network: Network,
    departure: Seconds,
    journey_id: str,
    forward: bool = True,
    config: Optional[EngineConfig] = None,
) -> Journey:
    cfg = config or EngineConfig()
    nodes = network.route_nodes(steps)
    stops = [JourneyStop(node=nodes[0], arrival=departure, departure=departure)]
    segments: List[JourneySegment] = []
    t = departure
    for i, step in enumerate(steps):
        t += travel_seconds(step, line, network, cfg)
        node = nodes[i + 1]
        dwell = 0
        # dwell only at intermediate stations, never at junctions or the terminus
        if i < len(steps) - 1:
            match network.node(node):
                case Station(passing_loop=loop):
                    if step.dwell is not None:
                        dwell = step.dwell
                    else:
                        dwell = 0 if loop else line.default_dwell
        stops.append(JourneyStop(node=node, arrival=t, departure=t + dwell))
        segments.append(JourneySegment(segment=step.segment, track_index=step.track_index))
        t += dwell
    return Journey(id=journey_id, line=line.name, stops=stops, segments=segments, forward=forward)
