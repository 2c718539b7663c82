from typing import Any, Dict, List, Optional, Tuple

from railconflict.core.config import EngineConfig
from railconflict.core.detector import DetectionResult, detect
from railconflict.core.handles import Handle
from railconflict.core.models import Journey, Line, RouteStep, Timetable, TrackDirection
from railconflict.core.network import Network
from railconflict.core.timetable import generate_journeys


def build_demo_network() -> Tuple[Network, List[Line], List[Handle]]:
    # Single-track branch with a passing loop, joined to a double-track main line at a junction
    net = Network()
    north = net.add_station("North", (0.0, 0.0), platforms=2)
    loop = net.add_station("Loop", (0.0, 5.0), passing_loop=True, platforms=2)
    central = net.add_station("Central", (0.0, 10.0), platforms=1)
    jct = net.add_junction("Central Jct", (0.0, 12.0))
    south = net.add_station("South", (0.0, 20.0), platforms=3)
    east = net.add_station("East", (6.0, 14.0), platforms=1)

    s1 = net.add_segment(north, loop, distance_km=5.0)
    s2 = net.add_segment(loop, central, distance_km=5.0)
    s3 = net.add_segment(central, jct, tracks=[TrackDirection.FORWARD, TrackDirection.BACKWARD], distance_km=2.0)
    s4 = net.add_segment(jct, south, tracks=[TrackDirection.FORWARD, TrackDirection.BACKWARD], distance_km=8.0)
    s5 = net.add_segment(jct, east, distance_km=6.0)

    shuttle = Line(
        name="Shuttle",
        forward_route=[RouteStep(s1), RouteStep(s2), RouteStep(s3, 0), RouteStep(s4, 0)],
        return_route=[RouteStep(s4, 1, False), RouteStep(s3, 1, False), RouteStep(s2, 0, False), RouteStep(s1, 0, False)],
        forward_timetable=Timetable(6 * 3600, 8 * 3600, 1800),
        return_timetable=Timetable(6 * 3600 + 900, 8 * 3600, 1800),
        speed_kmh=60.0,
    )
    branch = Line(
        name="Branch",
        forward_route=[RouteStep(s2), RouteStep(s3, 0), RouteStep(s5)],
        return_route=[RouteStep(s5, 0, False), RouteStep(s3, 1, False), RouteStep(s2, 0, False)],
        forward_timetable=Timetable(6 * 3600 + 600, 8 * 3600, 3600),
        return_timetable=Timetable(6 * 3600 + 1200, 8 * 3600, 3600),
        speed_kmh=50.0,
        color="#d62728",
    )
    return net, [shuttle, branch], [north, loop, central, jct, south]


def run_scenario(
    network: Network,
    lines: List[Line],
    reference_path: List[Handle],
    day: int = 0,
    config: Optional[EngineConfig] = None,
) -> Dict[str, Any]:
    journeys = generate_journeys(lines, network, day=day, config=config)
    result = detect(network, journeys, reference_path, config)
    return {
        "journeys": journeys,
        "result": result,
    }


def occupancy_json(journeys: List[Journey]) -> List[Dict[str, Any]]:
    # One entry per traversed segment, in the shape a time-distance chart needs
    rows: List[Dict[str, Any]] = []
    for j in journeys:
        for k, seg in enumerate(j.segments):
            rows.append({
                "journey": j.id,
                "line": j.line,
                "segment": str(seg.segment),
                "track": seg.track_index,
                "start": j.stops[k].departure,
                "end": j.stops[k + 1].arrival,
            })
    return rows


def conflicts_by_journey(result: DetectionResult) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for c in result.conflicts:
        counts[c.journey1] = counts.get(c.journey1, 0) + 1
        counts[c.journey2] = counts.get(c.journey2, 0) + 1
    return counts
