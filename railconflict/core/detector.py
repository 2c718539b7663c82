from __future__ import annotations
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from railconflict.core.classifier import Dwell, SegmentFacts, Verdict, classify_segment_pair, platform_violations
from railconflict.core.config import EngineConfig
from railconflict.core.geometry import Occupancy
from railconflict.core.handles import Handle
from railconflict.core.models import (
    Conflict,
    ConflictType,
    Journey,
    Station,
    StationCrossing,
    is_station,
)
from railconflict.core.network import Network

logger = logging.getLogger(__name__)


class InvalidReferencePath(ValueError):
    pass


class StaleJourneyError(ValueError):
    pass


@dataclass
class DetectionResult:
    conflicts: List[Conflict] = field(default_factory=list)
    crossings: List[StationCrossing] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


DedupKey = Tuple[FrozenSet[str], ConflictType, Handle]


def detect_conflicts(
    network: Network,
    journeys: Sequence[Journey],
    reference_path: Sequence[Handle] = (),
    config: Optional[EngineConfig] = None,
) -> List[Conflict]:
    return detect(network, journeys, reference_path, config).conflicts


def detect(
    network: Network,
    journeys: Sequence[Journey],
    reference_path: Sequence[Handle] = (),
    config: Optional[EngineConfig] = None,
) -> DetectionResult:
    """Find every pair of journeys unsafely sharing a track or platform.

    Inputs are only read. The reference path (an ordered list of node
    handles) is used to express conflict locations as path positions.
    Journeys that reference stale handles are skipped, never fatal.
    """
    cfg = config or EngineConfig()
    path_index = _validate_path(network, reference_path)
    result = DetectionResult()
    t0 = time.perf_counter()

    occupancies: Dict[str, Dict[Handle, List[Occupancy]]] = {}
    valid: List[Journey] = []
    for j in journeys:
        if j.id in occupancies:
            logger.warning(f"Skipping duplicate journey id {j.id}")
            result.skipped.append(j.id)
            continue
        try:
            occupancies[j.id] = _occupancy_map(network, j)
        except StaleJourneyError as e:
            logger.warning(f"Skipping journey {j.id}: {e}")
            result.skipped.append(j.id)
            continue
        valid.append(j)

    seen: Set[DedupKey] = set()
    headway = cfg.min_headway_seconds
    facts_cache: Dict[Handle, SegmentFacts] = {}
    ordered = sorted(valid, key=lambda j: (j.start, j.id))
    for i, ji in enumerate(ordered):
        occ_i = occupancies[ji.id]
        for jj in ordered[i + 1:]:
            # sorted by start: nothing later can reach back into ji's run
            if jj.start >= ji.end + headway:
                break
            occ_j = occupancies[jj.id]
            for seg in occ_i.keys() & occ_j.keys():
                facts = facts_cache.get(seg)
                if facts is None:
                    facts = facts_cache[seg] = _segment_facts(network, seg)
                for oa in occ_i[seg]:
                    for ob in occ_j[seg]:
                        if ob.enter >= oa.exit + headway or oa.enter >= ob.exit + headway:
                            continue
                        verdict = classify_segment_pair(oa, ob, facts, headway, cfg.station_margin_seconds)
                        if verdict is not None:
                            _record_verdict(result, seen, verdict, path_index)

    _detect_platforms(network, valid, cfg, path_index, result, seen)

    if len(result.conflicts) > cfg.max_conflicts:
        logger.info(f"Truncating {len(result.conflicts)} conflicts to {cfg.max_conflicts}")
        del result.conflicts[cfg.max_conflicts:]
    logger.debug(
        "detected %d conflicts among %d journeys in %.3fs",
        len(result.conflicts), len(valid), time.perf_counter() - t0,
    )
    return result


def _validate_path(network: Network, path: Sequence[Handle]) -> Dict[Handle, int]:
    index: Dict[Handle, int] = {}
    for i, h in enumerate(path):
        if h not in network.nodes:
            raise InvalidReferencePath(f"reference path entry {i} ({h}) does not exist")
        if h in index:
            raise InvalidReferencePath(f"node {h} appears twice in the reference path")
        index[h] = i
    return index


def _occupancy_map(network: Network, journey: Journey) -> Dict[Handle, List[Occupancy]]:
    occ: Dict[Handle, List[Occupancy]] = defaultdict(list)
    for stop in journey.stops:
        if stop.node not in network.nodes:
            raise StaleJourneyError(f"node {stop.node} no longer exists")
    for leg, js in enumerate(journey.segments):
        seg = network.segments.get(js.segment)
        if seg is None:
            raise StaleJourneyError(f"segment {js.segment} no longer exists")
        frm, to = journey.stops[leg], journey.stops[leg + 1]
        if not seg.joins(frm.node, to.node):
            raise StaleJourneyError(f"segment {js.segment} does not join {frm.node} and {to.node}")
        if not 0 <= js.track_index < len(seg.tracks):
            raise StaleJourneyError(f"segment {js.segment} has no track {js.track_index}")
        forward = frm.node == seg.a
        if not seg.tracks[js.track_index].direction.allows(forward):
            raise StaleJourneyError(f"track {js.track_index} of segment {js.segment} does not run that way")
        occ[js.segment].append(Occupancy(
            journey_id=journey.id,
            segment=js.segment,
            track_index=js.track_index,
            forward=forward,
            enter=frm.departure,
            exit=to.arrival,
            from_node=frm.node,
            to_node=to.node,
        ))
    return dict(occ)


def _segment_facts(network: Network, h: Handle) -> SegmentFacts:
    seg = network.segment(h)
    a, b = network.node(seg.a), network.node(seg.b)
    return SegmentFacts(
        a=seg.a,
        b=seg.b,
        a_passing_loop=isinstance(a, Station) and a.passing_loop,
        b_passing_loop=isinstance(b, Station) and b.passing_loop,
        a_platforms=network.platform_count(seg.a),
        b_platforms=network.platform_count(seg.b),
        a_is_station=is_station(a),
        b_is_station=is_station(b),
    )


def _path_location(path_index: Dict[Handle, int], a: Handle, b: Handle, pos_ab: float) -> Tuple[Optional[int], Optional[int], float]:
    ia, ib = path_index.get(a), path_index.get(b)
    if ia is None or ib is None:
        return None, None, pos_ab
    if ia <= ib:
        return ia, ib, pos_ab
    return ib, ia, 1.0 - pos_ab


def _record_verdict(result: DetectionResult, seen: Set[DedupKey], v: Verdict, path_index: Dict[Handle, int]) -> None:
    if v.conflict_type is None:
        if v.crossing_node is not None:
            result.crossings.append(StationCrossing(
                time=v.time, node=v.crossing_node, journey1=v.first.journey_id, journey2=v.second.journey_id,
            ))
        return
    key = (frozenset((v.first.journey_id, v.second.journey_id)), v.conflict_type, v.first.segment)
    if key in seen:
        return
    seen.add(key)
    a, b = (v.first.from_node, v.first.to_node) if v.first.forward else (v.first.to_node, v.first.from_node)
    s1, s2, pos = _path_location(path_index, a, b, v.position)
    result.conflicts.append(Conflict(
        conflict_type=v.conflict_type,
        time=v.time,
        journey1=v.first.journey_id,
        journey2=v.second.journey_id,
        station1_idx=s1,
        station2_idx=s2,
        position=pos,
        segment=v.first.segment,
        track_index=v.first.track_index,
        interval1=(v.first.enter, v.first.exit),
        interval2=(v.second.enter, v.second.exit),
        window=v.window,
    ))


def _detect_platforms(
    network: Network,
    journeys: List[Journey],
    cfg: EngineConfig,
    path_index: Dict[Handle, int],
    result: DetectionResult,
    seen: Set[DedupKey],
) -> None:
    buffer = cfg.platform_buffer_seconds
    by_station: Dict[Handle, List[Dwell]] = defaultdict(list)
    for j in journeys:
        last = len(j.stops) - 1
        for k, stop in enumerate(j.stops):
            if not is_station(network.node(stop.node)):
                continue
            # no buffer before the origin's departure or after the terminus arrival
            start = stop.arrival - buffer if k > 0 else stop.arrival
            end = stop.departure + buffer if k < last else stop.departure
            by_station[stop.node].append(Dwell(
                journey_id=j.id,
                station=stop.node,
                start=start,
                end=end,
                arrival=stop.arrival,
                departure=stop.departure,
                arrived_via=j.segments[k - 1].segment if k > 0 else None,
            ))

    for node, dwells in by_station.items():
        station = network.station(node)
        capacity = station.platform_capacity
        for active, arriving in platform_violations(
            dwells,
            capacity,
            passing_loop=station.passing_loop,
            ignore_same_direction=cfg.ignore_same_direction_platform_conflicts,
        ):
            key = (frozenset((active.journey_id, arriving.journey_id)), ConflictType.PLATFORM_VIOLATION, node)
            if key in seen:
                continue
            seen.add(key)
            idx = path_index.get(node)
            result.conflicts.append(Conflict(
                conflict_type=ConflictType.PLATFORM_VIOLATION,
                time=arriving.start,
                journey1=active.journey_id,
                journey2=arriving.journey_id,
                station1_idx=idx,
                station2_idx=idx,
                station=node,
                interval1=(active.start, active.end),
                interval2=(arriving.start, arriving.end),
                window=(arriving.start, min(active.end, arriving.end)),
                platform_capacity=capacity,
            ))
