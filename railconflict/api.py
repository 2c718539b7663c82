import asyncio
import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import RedirectResponse, Response
from pydantic import ValidationError

from railconflict.core.config import EngineConfig
from railconflict.core.detector import InvalidReferencePath, detect
from railconflict.core.timetable import generate_journeys
from railconflict.sim.audit import write_audit
from railconflict.sim.scenario import build_demo_network, occupancy_json, run_scenario
from railconflict.sim.simulator import summarize_detection
from railconflict.sim.snapshot import (
    DetectionOut,
    ScenarioIn,
    SnapshotIn,
    build_lines,
    build_network,
    journey_to_model,
    load_snapshot,
    result_to_model,
)
from railconflict.sim.worker import run_detection_job

logger = logging.getLogger(__name__)

app = FastAPI(title="Rail Conflict Engine API")


@app.get("/")
async def root() -> RedirectResponse:
    # Redirect base URL to interactive docs to avoid 404 confusion
    return RedirectResponse(url="/docs")


@app.get("/favicon.ico")
async def favicon() -> Response:
    # Return empty 204 for favicon to avoid noisy 404s in logs
    return Response(status_code=204)


@app.get("/demo")
async def demo(day: int = 0) -> Dict[str, Any]:
    network, lines, path = build_demo_network()
    out = run_scenario(network, lines, path, day=day)
    journeys, result = out["journeys"], out["result"]
    return {
        "kpis": summarize_detection(journeys, result),
        "journeys": [journey_to_model(j).model_dump() for j in journeys],
        "occupancy": occupancy_json(journeys),
        **result_to_model(result, network).model_dump(),
    }


@app.post("/detect")
async def detect_endpoint(body: Dict[str, Any]) -> Dict[str, Any]:
    """Detect conflicts in a serialized snapshot.

    Body: { nodes: [...], segments: [...], journeys: [...], reference_path: [...], config: {...} }
    The run happens in the executor so the event loop stays responsive.
    """
    try:
        snap = SnapshotIn.model_validate(body)
        # validate topology and config up front so errors come back as a message
        build_network(snap.nodes, snap.segments)
        if snap.config is not None:
            snap.config.apply()
    except (ValidationError, ValueError) as e:
        logger.warning(f"Rejected snapshot: {e}")
        return {"error": f"invalid snapshot: {e}"}
    loop = asyncio.get_running_loop()
    try:
        raw = await loop.run_in_executor(None, run_detection_job, snap.model_dump_json())
    except (InvalidReferencePath, ValueError) as e:
        logger.warning(f"Detection rejected: {e}")
        return {"error": str(e)}
    out = DetectionOut.model_validate_json(raw)
    write_audit({
        "type": "detect",
        "journeys": len(snap.journeys),
        "conflicts": len(out.conflicts),
        "skipped": out.skipped,
    })
    return out.model_dump()


@app.post("/schedule")
async def schedule(body: Dict[str, Any]) -> Dict[str, Any]:
    # Generate journeys from lines, then detect conflicts among them
    try:
        scenario = ScenarioIn.model_validate(body)
        network = build_network(scenario.nodes, scenario.segments)
        cfg = scenario.config.apply() if scenario.config is not None else EngineConfig()
    except (ValidationError, ValueError) as e:
        return {"error": f"invalid scenario: {e}"}
    lines = build_lines(scenario.lines)
    journeys = generate_journeys(lines, network, day=scenario.day, config=cfg)
    path = [h.to_handle() for h in scenario.reference_path]
    try:
        result = detect(network, journeys, path, cfg)
    except InvalidReferencePath as e:
        return {"error": str(e)}
    kpis = summarize_detection(journeys, result)
    write_audit({
        "type": "schedule",
        "day": scenario.day,
        "lines": [l.name for l in lines],
        "kpis": kpis,
    })
    return {
        "kpis": kpis,
        "journeys": [journey_to_model(j).model_dump() for j in journeys],
        **result_to_model(result, network).model_dump(),
    }


@app.post("/kpis")
async def kpis(body: Dict[str, Any]) -> Dict[str, Any]:
    # KPIs for a snapshot without returning the full conflict list
    try:
        network, journeys, path, cfg, skipped = load_snapshot(SnapshotIn.model_validate(body))
        result = detect(network, journeys, path, cfg)
    except (ValidationError, ValueError) as e:
        return {"error": str(e)}
    result.skipped = skipped + result.skipped
    k = summarize_detection(journeys, result)
    write_audit({"type": "kpis", "kpis": k})
    return {"kpis": k}
