import pytest

from railconflict.core.config import EngineConfig
from railconflict.core.detector import InvalidReferencePath, detect, detect_conflicts
from railconflict.core.handles import Handle
from railconflict.core.models import ConflictType, Journey, JourneySegment, JourneyStop, TrackDirection
from railconflict.core.network import Network

CFG = EngineConfig(min_headway_seconds=60, station_margin_seconds=30, platform_buffer_seconds=30)


def T(h: int, m: int, s: int = 0) -> int:
    return h * 3600 + m * 60 + s


def _run(jid, legs, forward=True):
    # legs: [(node, arrival, departure), ...] interleaved with segment handles
    stops = [JourneyStop(n, arr, dep) for n, arr, dep in legs[0::2]]
    segs = [s if isinstance(s, JourneySegment) else JourneySegment(s) for s in legs[1::2]]
    return Journey(id=jid, line="L", stops=stops, segments=segs, forward=forward)


def _pair(**station_kwargs):
    net = Network()
    a = net.add_station("A", **station_kwargs)
    b = net.add_station("B")
    seg = net.add_segment(a, b)
    return net, a, b, seg


def test_head_on_on_single_track():
    net, a, b, seg = _pair()
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (b, T(10, 5), T(10, 5))])
    j2 = _run("J2", [(b, T(10, 2), T(10, 2)), seg, (a, T(10, 7), T(10, 7))], forward=False)

    conflicts = detect_conflicts(net, [j1, j2], [a, b], CFG)
    assert len(conflicts) == 1
    c = conflicts[0]
    assert c.conflict_type is ConflictType.HEAD_ON
    assert {c.journey1, c.journey2} == {"J1", "J2"}
    assert c.time == T(10, 3, 30)
    assert c.window == (T(10, 2), T(10, 5))
    assert (c.station1_idx, c.station2_idx) == (0, 1)
    assert c.segment == seg
    # detector position and live position come from the same interpolation
    assert c.position == pytest.approx(0.7)
    assert j1.position_at(c.time) == (0, pytest.approx(0.7))
    assert c.describe("A", "B") == "J1 conflicts with J2 between A and B"


def test_position_is_relative_to_reference_path_order():
    net, a, b, seg = _pair()
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (b, T(10, 5), T(10, 5))])
    j2 = _run("J2", [(b, T(10, 2), T(10, 2)), seg, (a, T(10, 7), T(10, 7))], forward=False)
    [c] = detect_conflicts(net, [j1, j2], [b, a], CFG)
    assert (c.station1_idx, c.station2_idx) == (0, 1)
    assert c.position == pytest.approx(0.3)
    # off the reference path: no path coordinates
    [off] = detect_conflicts(net, [j1, j2], [], CFG)
    assert off.station1_idx is None and off.station2_idx is None


def test_following_train_within_headway_is_block_violation():
    net, a, b, seg = _pair()
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (b, T(10, 10), T(10, 10))])
    j2 = _run("J2", [(a, T(10, 1), T(10, 1)), seg, (b, T(10, 12), T(10, 12))])
    [c] = detect_conflicts(net, [j2, j1], [a, b], CFG)
    assert c.conflict_type is ConflictType.BLOCK_VIOLATION
    assert (c.journey1, c.journey2) == ("J1", "J2")
    assert c.time == T(10, 1)


def test_faster_follower_catching_up_is_overtaking():
    net, a, b, seg = _pair()
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (b, T(10, 10), T(10, 10))])
    j2 = _run("J2", [(a, T(10, 1), T(10, 1)), seg, (b, T(10, 8), T(10, 8))])
    [c] = detect_conflicts(net, [j1, j2], [a, b], CFG)
    assert c.conflict_type is ConflictType.OVERTAKING
    assert c.time == T(10, 3, 20)
    assert c.describe("A", "B") == "J2 overtakes J1 between A and B"


def test_headway_separates_following_trains():
    net, a, b, seg = _pair()
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (b, T(10, 10), T(10, 10))])
    j2 = _run("J2", [(a, T(10, 11), T(10, 11)), seg, (b, T(10, 21), T(10, 21))])
    assert detect_conflicts(net, [j1, j2], [a, b], CFG) == []
    # the same pair violates a longer headway
    strict = EngineConfig(min_headway_seconds=120)
    [c] = detect_conflicts(net, [j1, j2], [a, b], strict)
    assert c.conflict_type is ConflictType.BLOCK_VIOLATION


def _through_station(platforms):
    net = Network()
    p, q, r, u = (net.add_station(n) for n in "PQRU")
    s = net.add_station("S", platforms=platforms)
    ps, sq, rs, su = net.add_segment(p, s), net.add_segment(s, q), net.add_segment(r, s), net.add_segment(s, u)
    j1 = _run("J1", [(p, T(9, 50), T(9, 50)), ps, (s, T(10, 0), T(10, 4)), sq, (q, T(10, 14), T(10, 14))])
    j2 = _run("J2", [(r, T(9, 52), T(9, 52)), rs, (s, T(10, 2), T(10, 5)), su, (u, T(10, 15), T(10, 15))])
    return net, s, [j1, j2]


def test_platform_violation_when_dwells_exceed_capacity():
    net, s, journeys = _through_station(1)
    conflicts = detect_conflicts(net, journeys, [s], CFG)
    assert len(conflicts) == 1
    c = conflicts[0]
    assert c.conflict_type is ConflictType.PLATFORM_VIOLATION
    assert c.station == s
    assert (c.journey1, c.journey2) == ("J1", "J2")
    assert c.platform_capacity == 1
    # dwell padded by the platform buffer
    assert c.time == T(10, 1, 30)
    assert c.station1_idx == 0


def test_enough_platforms_or_no_platform_data_is_fine():
    net, s, journeys = _through_station(2)
    assert detect_conflicts(net, journeys, [s], CFG) == []
    net, s, journeys = _through_station(None)
    assert detect_conflicts(net, journeys, [s], CFG) == []


def test_direction_dedicated_tracks_never_conflict():
    net = Network()
    a, b = net.add_station("A"), net.add_station("B")
    seg = net.add_segment(a, b, tracks=[TrackDirection.FORWARD, TrackDirection.BACKWARD])
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), JourneySegment(seg, 0), (b, T(10, 5), T(10, 5))])
    j2 = _run("J2", [(b, T(10, 0), T(10, 0)), JourneySegment(seg, 1), (a, T(10, 5), T(10, 5))], forward=False)
    assert detect_conflicts(net, [j1, j2], [a, b], CFG) == []


def test_meeting_at_passing_loop_is_a_crossing():
    net, loop, b, seg = _pair(passing_loop=True)
    j1 = _run("J1", [(loop, T(10, 0), T(10, 0)), seg, (b, T(10, 10), T(10, 10))])
    j2 = _run("J2", [(b, T(9, 50, 20), T(9, 50, 20)), seg, (loop, T(10, 0, 20), T(10, 0, 20))], forward=False)
    result = detect(net, [j1, j2], [loop, b], CFG)
    assert result.conflicts == []
    assert len(result.crossings) == 1
    assert result.crossings[0].node == loop
    assert result.crossings[0].time == T(10, 0, 10)


def test_same_meeting_at_single_platform_station_is_head_on():
    net, a, b, seg = _pair(platforms=1)
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (b, T(10, 10), T(10, 10))])
    j2 = _run("J2", [(b, T(9, 50, 20), T(9, 50, 20)), seg, (a, T(10, 0, 20), T(10, 0, 20))], forward=False)
    on_line = [c for c in detect_conflicts(net, [j1, j2], [a, b], CFG) if c.segment == seg]
    assert [c.conflict_type for c in on_line] == [ConflictType.HEAD_ON]


def test_overtake_at_passing_loop_is_permitted_but_not_elsewhere():
    for loop, expected in ((True, []), (False, [ConflictType.OVERTAKING])):
        net = Network()
        a = net.add_station("A")
        far = net.add_station("L", passing_loop=loop)
        seg = net.add_segment(a, far)
        j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (far, T(10, 10), T(10, 10))])
        j2 = _run("J2", [(a, T(10, 2), T(10, 2)), seg, (far, T(10, 9, 55), T(10, 9, 55))])
        result = detect(net, [j1, j2], [a, far], CFG)
        assert [c.conflict_type for c in result.conflicts] == expected
        assert len(result.crossings) == (1 if loop else 0)


def test_junction_rules_do_not_hide_geometric_conflicts():
    net = Network()
    j = net.add_junction("J")
    a, b = net.add_station("A"), net.add_station("B")
    sa, sb = net.add_segment(a, j), net.add_segment(j, b)
    net.set_routing_rule(j, sa, sb, False)
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), sa, (j, T(10, 5), T(10, 5)), sb, (b, T(10, 9), T(10, 9))])
    j2 = _run("J2", [(b, T(10, 1), T(10, 1)), sb, (j, T(10, 6), T(10, 6)), sa, (a, T(10, 11), T(10, 11))], forward=False)
    conflicts = detect_conflicts(net, [j1, j2], [a, j, b], CFG)
    assert ConflictType.HEAD_ON in {c.conflict_type for c in conflicts}
    # junctions have no platforms to violate
    assert all(c.station != j for c in conflicts)


def test_stale_journey_is_skipped_not_fatal():
    net = Network()
    a, b, c = (net.add_station(n) for n in "ABC")
    s1, s2 = net.add_segment(a, b), net.add_segment(b, c)
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), s1, (b, T(10, 5), T(10, 5))])
    j2 = _run("J2", [(b, T(10, 2), T(10, 2)), s1, (a, T(10, 7), T(10, 7))], forward=False)
    stale = _run("J3", [(b, T(10, 0), T(10, 0)), s2, (c, T(10, 5), T(10, 5))])
    net.remove_segment(s2)
    result = detect(net, [j1, j2, stale], [a, b], CFG)
    assert result.skipped == ["J3"]
    assert [x.conflict_type for x in result.conflicts] == [ConflictType.HEAD_ON]


def test_invalid_reference_path_raises():
    net, a, b, seg = _pair()
    with pytest.raises(InvalidReferencePath):
        detect_conflicts(net, [], [a, a], CFG)
    with pytest.raises(InvalidReferencePath):
        detect_conflicts(net, [], [a, Handle(99, 0)], CFG)
    gone = net.add_station("Gone")
    net.delete_node(gone)
    with pytest.raises(InvalidReferencePath):
        detect_conflicts(net, [], [a, gone], CFG)


def test_disconnected_components_never_conflict():
    net = Network()
    a, b = net.add_station("A"), net.add_station("B")
    c, d = net.add_station("C"), net.add_station("D")
    s1, s2 = net.add_segment(a, b), net.add_segment(c, d)
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), s1, (b, T(10, 5), T(10, 5))])
    j2 = _run("J2", [(c, T(10, 0), T(10, 0)), s2, (d, T(10, 5), T(10, 5))])
    assert detect_conflicts(net, [j1, j2], [a, b], CFG) == []


def _busy_corridor():
    net = Network()
    stations = [net.add_station(f"S{i}", platforms=1) for i in range(4)]
    segs = [net.add_segment(x, y) for x, y in zip(stations, stations[1:])]
    journeys = []
    for k in range(6):
        t0 = T(8, 0) + k * 120
        fwd = k % 2 == 0
        order = stations if fwd else stations[::-1]
        seq = segs if fwd else segs[::-1]
        legs = [(order[0], t0, t0)]
        t = t0
        for i, s in enumerate(seq):
            t += 300
            dep = t + (60 if i < len(seq) - 1 else 0)
            legs += [s, (order[i + 1], t, dep)]
            t = dep
        journeys.append(_run(f"J{k}", legs, forward=fwd))
    return net, stations, journeys


def test_detection_is_idempotent_and_without_duplicates():
    net, stations, journeys = _busy_corridor()
    first = detect(net, journeys, stations, CFG)
    second = detect(net, journeys, stations, CFG)
    assert first.conflicts
    assert first.conflicts == second.conflicts
    keys = [(frozenset((c.journey1, c.journey2)), c.conflict_type, c.location) for c in first.conflicts]
    assert len(keys) == len(set(keys))
    # input order does not change the answer
    reordered = detect(net, list(reversed(journeys)), stations, CFG)
    assert sorted(map(repr, reordered.conflicts)) == sorted(map(repr, first.conflicts))


def test_max_conflicts_truncates():
    net, stations, journeys = _busy_corridor()
    cfg = EngineConfig(min_headway_seconds=60, max_conflicts=2)
    assert len(detect_conflicts(net, journeys, stations, cfg)) == 2


def test_journey_against_one_way_track_is_skipped():
    net = Network()
    a, b = net.add_station("A"), net.add_station("B")
    seg = net.add_segment(a, b, tracks=[TrackDirection.FORWARD])
    j1 = _run("J1", [(a, T(10, 0), T(10, 0)), seg, (b, T(10, 5), T(10, 5))])
    wrong_way = _run("J2", [(b, T(10, 2), T(10, 2)), seg, (a, T(10, 7), T(10, 7))], forward=False)
    result = detect(net, [j1, wrong_way], [a, b], CFG)
    assert result.skipped == ["J2"]
    assert result.conflicts == []


def _turnaround(origin_departure):
    # J1 terminates at S, J2 starts from S on another segment
    net = Network()
    p, s, q = net.add_station("P"), net.add_station("S", platforms=1), net.add_station("Q")
    ps, sq = net.add_segment(p, s), net.add_segment(s, q)
    j1 = _run("J1", [(p, T(9, 50), T(9, 50)), ps, (s, T(10, 0), T(10, 0))])
    j2 = _run("J2", [(s, origin_departure, origin_departure), sq, (q, T(10, 10), T(10, 10))])
    return net, s, [j1, j2]


def test_terminus_and_origin_are_not_padded_outward():
    # terminus holds [arrival - buffer, arrival], origin holds [departure, departure + buffer]
    net, s, journeys = _turnaround(T(10, 0))
    assert detect_conflicts(net, journeys, [s], CFG) == []

    net, s, journeys = _turnaround(T(9, 59, 45))
    [c] = detect_conflicts(net, journeys, [s], CFG)
    assert c.conflict_type is ConflictType.PLATFORM_VIOLATION
    assert c.station == s
    assert {c.journey1, c.journey2} == {"J1", "J2"}
