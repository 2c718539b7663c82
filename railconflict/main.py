import asyncio
import logging

from railconflict.core.models import node_name
from railconflict.sim.scenario import build_demo_network, run_scenario
from railconflict.sim.simulator import summarize_detection
from railconflict.sim.worker import DetectionWorker


def _hhmm(t: int) -> str:
    day, rem = divmod(t, 86400)
    prefix = f"+{day}d " if day else ""
    return f"{prefix}{rem // 3600:02d}:{rem % 3600 // 60:02d}:{rem % 60:02d}"


async def _rerun_in_worker(network, journeys, path) -> None:
    with DetectionWorker(max_workers=1) as worker:
        result = await worker.run(network, journeys, path)
    if result is not None:
        print("Worker run agrees:", len(result.conflicts), "conflicts")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    network, lines, path = build_demo_network()

    out = run_scenario(network, lines, path)
    journeys, result = out["journeys"], out["result"]

    print("KPIs:", summarize_detection(journeys, result))
    print("First 10 conflicts:")
    for c in result.conflicts[:10]:
        loc = c.location
        if c.station is not None:
            names = (node_name(network.node(c.station)), "")
        else:
            seg = network.segment(loc)
            names = (node_name(network.node(seg.a)), node_name(network.node(seg.b)))
        print(f"  {_hhmm(c.time)}  {c.conflict_type.label:<18} {c.describe(*names)}")
    asyncio.run(_rerun_in_worker(network, journeys, path))
