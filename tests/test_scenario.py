import json

from railconflict.core.config import EngineConfig
from railconflict.core.detector import DetectionResult
from railconflict.sim.scenario import build_demo_network, conflicts_by_journey, occupancy_json, run_scenario
from railconflict.sim.simulator import summarize_detection


def test_demo_scenario_runs_every_line():
    network, lines, path = build_demo_network()
    for line in lines:
        assert network.validate_route(line.forward_route)
        assert network.validate_route(line.return_route)
    out = run_scenario(network, lines, path, config=EngineConfig(horizon_days=1))
    journeys, result = out["journeys"], out["result"]
    assert {j.line for j in journeys} == {"Shuttle", "Branch"}
    assert result.skipped == []
    kpis = summarize_detection(journeys, result)
    assert kpis["total_journeys"] == len(journeys)
    assert kpis["conflicts"] == sum(kpis[t] for t in ("head_on", "overtaking", "block_violation", "platform_violation"))
    rows = occupancy_json(journeys)
    assert len(rows) == sum(len(j.segments) for j in journeys)
    assert all(r["end"] > r["start"] for r in rows)


def test_summary_of_empty_schedule():
    kpis = summarize_detection([], DetectionResult())
    assert kpis["total_journeys"] == 0
    assert kpis["conflicts"] == 0
    assert conflicts_by_journey(DetectionResult()) == {}


def test_write_audit_appends_jsonl(tmp_path):
    from railconflict.sim import audit as audit_mod
    audit_mod.AUDIT_DIR = tmp_path
    audit_mod.AUDIT_FILE = tmp_path / "events.jsonl"
    audit_mod.write_audit({"type": "detect", "conflicts": 3})
    audit_mod.write_audit({"type": "kpis"})
    lines = audit_mod.AUDIT_FILE.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["type"] == "detect" and first["conflicts"] == 3
    assert "ts" in first
