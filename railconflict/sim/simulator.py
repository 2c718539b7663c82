from typing import Dict, List, Union

from railconflict.core.detector import DetectionResult
from railconflict.core.models import ConflictType, Journey

# KPI helpers over a generated schedule and its detection result


def summarize_detection(journeys: List[Journey], result: DetectionResult) -> Dict[str, Union[int, float]]:
    # returns basic KPIs: journeys, span, conflicts by type, share of journeys involved
    if not journeys:
        return {"total_journeys": 0, "makespan": 0, "conflicts": 0, "crossings": 0, "skipped": len(result.skipped), "involved_pct": 0.0}
    start = min(j.start for j in journeys)
    end = max(j.end for j in journeys)
    involved = set()
    for c in result.conflicts:
        involved.add(c.journey1)
        involved.add(c.journey2)
    kpis: Dict[str, Union[int, float]] = {
        "total_journeys": len(journeys),
        "makespan": end - start,
        "conflicts": len(result.conflicts),
        "crossings": len(result.crossings),
        "skipped": len(result.skipped),
        "involved_pct": round(100.0 * len(involved) / len(journeys), 1),
    }
    for t in ConflictType:
        kpis[t.value] = sum(1 for c in result.conflicts if c.conflict_type is t)
    return kpis
