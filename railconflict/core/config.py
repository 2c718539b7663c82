from __future__ import annotations
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Load .env early (no error if missing)
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    # Minimum time between one train leaving a track and the next entering it
    min_headway_seconds: int = int(os.getenv("RAILCONFLICT_MIN_HEADWAY", "60"))
    # Meetings this close to a station are crossings at the station, not on the line
    station_margin_seconds: int = int(os.getenv("RAILCONFLICT_STATION_MARGIN", "30"))
    # Added around each dwell when counting platform occupancy
    platform_buffer_seconds: int = int(os.getenv("RAILCONFLICT_PLATFORM_BUFFER", "30"))
    ignore_same_direction_platform_conflicts: bool = _env_bool("RAILCONFLICT_IGNORE_SAME_DIRECTION_PLATFORM")
    max_conflicts: int = int(os.getenv("RAILCONFLICT_MAX_CONFLICTS", "9999"))
    # Schedule generation
    horizon_days: int = 2
    max_journeys_per_line: int = 100
    default_segment_seconds: int = 300
    default_speed_kmh: float = 80.0

    def __post_init__(self) -> None:
        if self.min_headway_seconds < 0:
            raise ValueError("min_headway_seconds must be >= 0")
        if self.horizon_days < 1:
            raise ValueError("horizon_days must be >= 1")
