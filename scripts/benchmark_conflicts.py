"""Benchmark conflict detection for varying numbers of journeys.

Usage (PowerShell):
    python scripts/benchmark_conflicts.py -Min 100 -Max 1000 -Step 300 -Stations 20 -Tracks 1
    python -m scripts.benchmark_conflicts -Min 100 -Max 1000 -Step 300 -Stations 20 -Tracks 2 -Json

Notes:
    - The sweep over start times keeps the pair count close to O(J * k) where k is the
      number of journeys running at the same time.
    - With -Tracks 2 each direction gets its own track, so only same-direction conflicts remain.
"""

from __future__ import annotations
import argparse, random, statistics, json, time, os, sys
from typing import List, Tuple

# Ensure project root on path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from railconflict.core.config import EngineConfig  # type: ignore
from railconflict.core.detector import detect  # type: ignore
from railconflict.core.handles import Handle  # type: ignore
from railconflict.core.models import Journey, Line, RouteStep, TrackDirection  # type: ignore
from railconflict.core.network import Network  # type: ignore
from railconflict.core.timetable import build_journey  # type: ignore


def build_corridor(num_stations: int, tracks: int) -> Tuple[Network, List[Handle], List[Handle]]:
    net = Network()
    stations = [net.add_station(f"S{i+1}", platforms=random.randint(1, 3)) for i in range(num_stations)]
    layout = [TrackDirection.FORWARD, TrackDirection.BACKWARD] if tracks >= 2 else [TrackDirection.BIDIRECTIONAL]
    segments = [
        net.add_segment(a, b, tracks=layout, distance_km=random.uniform(2.0, 10.0))
        for a, b in zip(stations, stations[1:])
    ]
    return net, stations, segments


def build_random_journeys(n: int, net: Network, segments: List[Handle], tracks: int) -> List[Journey]:
    line = Line(name="Bench", speed_kmh=80.0)
    cfg = EngineConfig()
    journeys: List[Journey] = []
    for i in range(n):
        forward = random.random() < 0.5
        length = random.randint(1, len(segments))
        start = random.randint(0, len(segments) - length)
        chunk = segments[start:start + length]
        track = 0 if forward or tracks < 2 else 1
        if forward:
            steps = [RouteStep(s, track, True) for s in chunk]
        else:
            steps = [RouteStep(s, track, False) for s in reversed(chunk)]
        dep = random.randint(0, 18 * 3600)
        journeys.append(build_journey(line, steps, net, dep, f"J{i+1:05d}", forward, cfg))
    return journeys


def run_once(n_journeys: int, net: Network, segments: List[Handle], tracks: int) -> dict:
    journeys = build_random_journeys(n_journeys, net, segments, tracks)
    t0 = time.perf_counter()
    result = detect(net, journeys)
    dt = time.perf_counter() - t0
    return {
        "n_journeys": n_journeys,
        "tracks": tracks,
        "legs_mean": statistics.fmean(len(j.segments) for j in journeys) if journeys else 0.0,
        "elapsed_s": dt,
        "conflicts": len(result.conflicts),
        "crossings": len(result.crossings),
    }


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('-Min', type=int, default=100)
    ap.add_argument('-Max', type=int, default=1000)
    ap.add_argument('-Step', type=int, default=300)
    ap.add_argument('-Stations', type=int, default=20)
    ap.add_argument('-Tracks', type=int, default=1, choices=[1, 2])
    ap.add_argument('-Repeats', type=int, default=3)
    ap.add_argument('-Json', action='store_true')
    args = ap.parse_args()

    random.seed(42)
    net, _, segments = build_corridor(args.Stations, args.Tracks)
    rows = []
    for n in range(args.Min, args.Max + 1, args.Step):
        for _ in range(args.Repeats):
            row = run_once(n, net, segments, args.Tracks)
            rows.append(row)
            if args.Json:
                print(json.dumps(row))
            else:
                print(f"Journeys={row['n_journeys']:<5} elapsed={row['elapsed_s']*1000:8.2f} ms conflicts={row['conflicts']:<5} crossings={row['crossings']:<4} tracks={row['tracks']}")
    if not args.Json:
        from collections import defaultdict
        by_n = defaultdict(list)
        for r in rows:
            by_n[r['n_journeys']].append(r['elapsed_s'])
        print('\nSummary (mean ms per journey count)')
        for n in sorted(by_n):
            ms = statistics.fmean(by_n[n]) * 1000
            print(f"  {n:>5}: {ms:8.2f} ms")


if __name__ == '__main__':
    main()
