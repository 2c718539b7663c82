import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

AUDIT_DIR = Path(os.getenv("RAILCONFLICT_AUDIT_DIR", Path(__file__).parents[2] / "audit"))
AUDIT_DIR.mkdir(parents=True, exist_ok=True)
AUDIT_FILE = AUDIT_DIR / "events.jsonl"


def write_audit(event: Dict[str, Any]) -> None:
    # append a JSONL entry, stamped with the write time
    entry = {"ts": datetime.now(timezone.utc).isoformat(timespec="seconds"), **event}
    with AUDIT_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
