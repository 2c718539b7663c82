from __future__ import annotations
import copy
import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Tuple

from railconflict.core.handles import Handle, SlotMap, StaleHandleError
from railconflict.core.models import (
    Junction,
    Node,
    Platform,
    RouteStep,
    Segment,
    Station,
    Track,
    TrackDirection,
)

logger = logging.getLogger(__name__)


class RouteError(ValueError):
    pass


@dataclass
class NodeRemoval:
    """Result of deleting a node, consumed by route repair."""

    node: Handle
    removed_segments: List[Handle] = field(default_factory=list)
    # old segment data, so routes can still be walked across removed segments
    removed: Dict[Handle, Segment] = field(default_factory=dict)
    # (segment_in, segment_out) -> bypass segment, recorded in both orders
    bypass: Dict[Tuple[Handle, Handle], Handle] = field(default_factory=dict)


class Network:
    def __init__(self) -> None:
        self.nodes: SlotMap[Node] = SlotMap()
        self.segments: SlotMap[Segment] = SlotMap()

    # --- nodes -------------------------------------------------------------

    def add_station(
        self,
        name: str,
        position: Optional[Tuple[float, float]] = None,
        passing_loop: bool = False,
        platforms: int | Iterable[str] | None = None,
    ) -> Handle:
        if platforms is None:
            plats: List[Platform] = []
        elif isinstance(platforms, int):
            plats = [Platform(str(i + 1)) for i in range(platforms)]
        else:
            plats = [Platform(p) for p in platforms]
        return self.nodes.insert(Station(name=name, position=position, passing_loop=passing_loop, platforms=plats))

    def add_junction(self, name: Optional[str] = None, position: Optional[Tuple[float, float]] = None) -> Handle:
        return self.nodes.insert(Junction(name=name, position=position))

    def node(self, h: Handle) -> Node:
        return self.nodes[h]

    def station(self, h: Handle) -> Station:
        node = self.nodes[h]
        if not isinstance(node, Station):
            raise ValueError(f"node {h} is not a station")
        return node

    def platform_count(self, h: Handle) -> Optional[int]:
        match self.nodes[h]:
            case Station() as st:
                return st.platform_capacity
            case Junction():
                return None
            case other:
                raise TypeError(f"not a node: {other!r}")

    # --- segments and tracks ----------------------------------------------

    def add_segment(
        self,
        a: Handle,
        b: Handle,
        tracks: Optional[List[TrackDirection]] = None,
        distance_km: Optional[float] = None,
    ) -> Handle:
        if a == b:
            raise ValueError("segment endpoints must differ")
        # raises StaleHandleError for unknown endpoints
        self.nodes[a]
        self.nodes[b]
        track_list = [Track(d) for d in (tracks or [TrackDirection.BIDIRECTIONAL])]
        return self.segments.insert(Segment(a=a, b=b, tracks=track_list, distance_km=distance_km))

    def segment(self, h: Handle) -> Segment:
        return self.segments[h]

    def remove_segment(self, h: Handle) -> Segment:
        seg = self.segments.remove(h)
        for _, node in self.nodes.items():
            if isinstance(node, Junction):
                node.routing_rules = [
                    r for r in node.routing_rules if r.from_segment != h and r.to_segment != h
                ]
        return seg

    def add_track(self, h: Handle, direction: TrackDirection = TrackDirection.BIDIRECTIONAL) -> int:
        seg = self.segments[h]
        seg.tracks.append(Track(direction))
        return len(seg.tracks) - 1

    def remove_track(self, h: Handle, track_index: int) -> None:
        seg = self.segments[h]
        if len(seg.tracks) <= 1:
            raise ValueError("a segment keeps at least one track")
        if not 0 <= track_index < len(seg.tracks):
            raise IndexError(track_index)
        del seg.tracks[track_index]

    def track_count(self, h: Handle) -> int:
        return len(self.segments[h].tracks)

    def track_directions(self, h: Handle) -> List[TrackDirection]:
        return [t.direction for t in self.segments[h].tracks]

    def incident_segments(self, node: Handle) -> List[Handle]:
        return [h for h, seg in self.segments.items() if node in (seg.a, seg.b)]

    # --- routing rules -----------------------------------------------------

    def is_routing_allowed(self, node: Handle, from_segment: Handle, to_segment: Handle) -> bool:
        match self.nodes[node]:
            case Junction() as j:
                return j.is_routing_allowed(from_segment, to_segment)
            case Station():
                return from_segment != to_segment
            case other:
                raise TypeError(f"not a node: {other!r}")

    def _junction(self, node: Handle) -> Junction:
        j = self.nodes[node]
        if not isinstance(j, Junction):
            raise ValueError(f"node {node} is not a junction")
        return j

    def set_routing_rule(self, node: Handle, from_segment: Handle, to_segment: Handle, allowed: bool) -> None:
        j = self._junction(node)
        incident = self.incident_segments(node)
        if from_segment not in incident or to_segment not in incident:
            raise ValueError("routing rules must reference segments connected to the junction")
        j.set_routing_rule(from_segment, to_segment, allowed)

    def remove_routing_rule(self, node: Handle, from_segment: Handle, to_segment: Handle) -> None:
        self._junction(node).remove_routing_rule(from_segment, to_segment)

    def allowed_outgoing(self, node: Handle, from_segment: Handle) -> List[Handle]:
        return [s for s in self.incident_segments(node) if self.is_routing_allowed(node, from_segment, s)]

    def validate_junction(self, node: Handle) -> List[str]:
        """List problems with a junction; an empty list means it is usable."""
        self._junction(node)
        incident = self.incident_segments(node)
        problems: List[str] = []
        if len(incident) < 3:
            problems.append(f"junction has {len(incident)} connections, needs at least 3")
        for s in incident:
            if not self.allowed_outgoing(node, s):
                problems.append(f"segment {s} has no allowed exit")
        return problems

    # --- topology edits ----------------------------------------------------

    def delete_node(self, node: Handle) -> NodeRemoval:
        """Remove a node and bridge the routes that passed through it.

        Stations are bridged for every pair of neighbours. Junctions are only
        bridged for the movements their routing rules allow.
        """
        target = self.nodes[node]
        incident = self.incident_segments(node)
        removal = NodeRemoval(node=node)

        pairs: List[Tuple[Handle, Handle]] = []
        for s1, s2 in combinations(incident, 2):
            seg1, seg2 = self.segments[s1], self.segments[s2]
            far1, far2 = seg1.other_end(node), seg2.other_end(node)
            if far1 == far2:
                continue
            if isinstance(target, Junction) and not (
                target.is_routing_allowed(s1, s2) or target.is_routing_allowed(s2, s1)
            ):
                continue
            pairs.append((s1, s2))

        for s1, s2 in pairs:
            seg1, seg2 = self.segments[s1], self.segments[s2]
            far1, far2 = seg1.other_end(node), seg2.other_end(node)
            dirs1 = [t.direction for t in seg1.tracks]
            dirs2 = [t.direction for t in seg2.tracks]
            # keep a matching layout; orientation of the bypass is far1 -> far2
            if dirs1 == dirs2 and seg1.a == far1 and seg2.b == far2:
                directions = dirs1
            else:
                directions = [TrackDirection.BIDIRECTIONAL] * max(len(dirs1), len(dirs2))
            distance = None
            if seg1.distance_km is not None and seg2.distance_km is not None:
                distance = seg1.distance_km + seg2.distance_km
            new = self.add_segment(far1, far2, tracks=directions, distance_km=distance)
            removal.bypass[(s1, s2)] = new
            removal.bypass[(s2, s1)] = new

        for s in incident:
            removal.removed[s] = self.remove_segment(s)
            removal.removed_segments.append(s)
        self.nodes.remove(node)
        logger.debug("deleted node %s: %d segments removed, %d bypasses", node, len(incident), len(pairs))
        return removal

    # --- routes ------------------------------------------------------------

    def route_nodes(self, steps: List[RouteStep]) -> List[Handle]:
        """Resolve a route to its node sequence.

        Raises RouteError for stale segments, missing tracks, broken chains,
        wrong-way tracks and movements forbidden at a junction.
        """
        if not steps:
            raise RouteError("empty route")
        nodes: List[Handle] = []
        prev_seg: Optional[Handle] = None
        for i, step in enumerate(steps):
            seg = self.segments.get(step.segment)
            if seg is None:
                raise RouteError(f"step {i}: segment {step.segment} no longer exists")
            if not 0 <= step.track_index < len(seg.tracks):
                raise RouteError(f"step {i}: segment {step.segment} has no track {step.track_index}")
            if not seg.tracks[step.track_index].direction.allows(step.forward):
                raise RouteError(f"step {i}: track {step.track_index} of {step.segment} does not allow this direction")
            start, end = (seg.a, seg.b) if step.forward else (seg.b, seg.a)
            if nodes:
                if nodes[-1] != start:
                    raise RouteError(f"step {i}: route is not continuous at {start}")
                if prev_seg is not None and not self.is_routing_allowed(start, prev_seg, step.segment):
                    raise RouteError(f"step {i}: movement {prev_seg} -> {step.segment} forbidden at {start}")
            else:
                nodes.append(start)
            nodes.append(end)
            prev_seg = step.segment
        return nodes

    def validate_route(self, steps: List[RouteStep]) -> bool:
        try:
            self.route_nodes(steps)
        except (RouteError, StaleHandleError):
            return False
        return True

    def repair_route(self, steps: List[RouteStep], removal: NodeRemoval) -> List[RouteStep]:
        """Re-path a route through the bypass segments of a node removal.

        Consecutive steps that entered and left the removed node become one
        step on the bypass. Steps with no bypass are left untouched and fail
        route resolution later.
        """
        repaired: List[RouteStep] = []
        i = 0
        while i < len(steps):
            step = steps[i]
            nxt = steps[i + 1] if i + 1 < len(steps) else None
            if nxt is not None and (step.segment, nxt.segment) in removal.bypass:
                new = removal.bypass[(step.segment, nxt.segment)]
                old = removal.removed[step.segment]
                start = old.a if step.forward else old.b
                seg = self.segments[new]
                duration = None
                if step.duration is not None and nxt.duration is not None:
                    duration = step.duration + nxt.duration
                repaired.append(RouteStep(
                    segment=new,
                    track_index=min(step.track_index, len(seg.tracks) - 1),
                    forward=seg.a == start,
                    duration=duration,
                    dwell=nxt.dwell,
                ))
                i += 2
                continue
            repaired.append(step)
            i += 1
        return repaired

    def snapshot(self) -> "Network":
        return copy.deepcopy(self)
