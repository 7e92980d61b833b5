from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # murverse/internal_core/config.py -> murverse -> repo root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_set(name: str) -> bool:
    value = os.getenv(name)
    return value is not None and value != ""


def _getenv_int_preset(name: str, default: int, preset_value: Optional[int]) -> int:
    if _env_set(name):
        return _getenv_int(name, default)
    if preset_value is not None:
        return int(preset_value)
    return default


def _preset_overrides(name: str) -> dict[str, object]:
    # Dense canvas: 200x200 board scanned cell by cell.
    if name == "dense_canvas_v1":
        return {
            "MURVERSE_GRID_ROWS": 200,
            "MURVERSE_GRID_COLS": 200,
            "MURVERSE_PLACEMENT_GAP": 1,
        }
    return {}


@dataclass(frozen=True)
class AppConfig:
    MURVERSE_LAYOUT_PRESET: str
    MURVERSE_CELL_SIZE_PX: int
    MURVERSE_GRID_ROWS: int
    MURVERSE_GRID_COLS: int
    MURVERSE_PLACEMENT_GAP: int
    MURVERSE_DRAG_THRESHOLD_PX: int
    MURVERSE_MAX_CONTENT_LENGTH: int
    MURVERSE_MAX_NOTE_LENGTH: int
    MURVERSE_MAX_TAGS_COUNT: int
    MURVERSE_VERTICAL_CJK: bool
    MURVERSE_DISPLAY_VERTICAL_PROBABILITY: float
    MURVERSE_POSITION_STORE: str
    MURVERSE_POSITION_STORE_PATH: str
    MURVERSE_LOG_LEVEL: str
    MURVERSE_LOG_FILE: str

    def position_store_path(self, repo_root: Optional[Path] = None) -> Path:
        raw = Path(self.MURVERSE_POSITION_STORE_PATH).expanduser()
        if raw.is_absolute():
            return raw
        return ((repo_root or _project_root()) / raw).resolve()


def load_config() -> AppConfig:
    layout_preset = _getenv_str("MURVERSE_LAYOUT_PRESET", "")
    preset = _preset_overrides(layout_preset)

    return AppConfig(
        MURVERSE_LAYOUT_PRESET=layout_preset,
        MURVERSE_CELL_SIZE_PX=_getenv_int("MURVERSE_CELL_SIZE_PX", 20),
        MURVERSE_GRID_ROWS=_getenv_int_preset(
            "MURVERSE_GRID_ROWS", 100, preset.get("MURVERSE_GRID_ROWS")
        ),
        MURVERSE_GRID_COLS=_getenv_int_preset(
            "MURVERSE_GRID_COLS", 100, preset.get("MURVERSE_GRID_COLS")
        ),
        MURVERSE_PLACEMENT_GAP=_getenv_int_preset(
            "MURVERSE_PLACEMENT_GAP", 3, preset.get("MURVERSE_PLACEMENT_GAP")
        ),
        MURVERSE_DRAG_THRESHOLD_PX=_getenv_int("MURVERSE_DRAG_THRESHOLD_PX", 5),
        MURVERSE_MAX_CONTENT_LENGTH=_getenv_int("MURVERSE_MAX_CONTENT_LENGTH", 100),
        MURVERSE_MAX_NOTE_LENGTH=_getenv_int("MURVERSE_MAX_NOTE_LENGTH", 500),
        MURVERSE_MAX_TAGS_COUNT=_getenv_int("MURVERSE_MAX_TAGS_COUNT", 20),
        MURVERSE_VERTICAL_CJK=_getenv_bool("MURVERSE_VERTICAL_CJK", False),
        MURVERSE_DISPLAY_VERTICAL_PROBABILITY=_getenv_float(
            "MURVERSE_DISPLAY_VERTICAL_PROBABILITY", 0.3
        ),
        MURVERSE_POSITION_STORE=_getenv_str("MURVERSE_POSITION_STORE", "memory"),
        MURVERSE_POSITION_STORE_PATH=_getenv_str(
            "MURVERSE_POSITION_STORE_PATH", "./tmp/fragment_positions.json"
        ),
        MURVERSE_LOG_LEVEL=_getenv_str("MURVERSE_LOG_LEVEL", "INFO"),
        MURVERSE_LOG_FILE=_getenv_str("MURVERSE_LOG_FILE", ""),
    )
