from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    data_root: Path
    flow_grid_size: int = 256
    default_engine: str = "slope_capacity"
    height_exaggeration: float = 1.0
    default_terrain_resolution: int = 256


def load_settings() -> Settings:
    env_root = os.environ.get("LFE_DATA_ROOT")
    if env_root:
        root = Path(env_root).expanduser().resolve()
    else:
        root = Path.home() / ".lava_flow_engine"

    overrides: dict[str, object] = {}
    grid_size = os.environ.get("LFE_FLOW_GRID_SIZE")
    if grid_size:
        overrides["flow_grid_size"] = int(grid_size)
    engine = os.environ.get("LFE_ENGINE")
    if engine:
        overrides["default_engine"] = engine
    return Settings(data_root=root, **overrides)
