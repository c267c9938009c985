from __future__ import annotations

import io
from dataclasses import dataclass

import numpy as np
from PIL import Image

from ..models import EngineKind
from ..utils import sha256_bytes
from .flow_grid import FlowGrid, to_texture_orientation
from .thermal.rheology import AMBIENT_TEMP_C, INITIAL_TEMP_C
from .thermal.state import ThermalGridState

SLOPE_CAPACITY_CHANNELS = ("thickness",)
THERMAL_CHANNELS = ("thickness", "temperature", "velocity", "liquid")

THICKNESS_SCALE = 100.0  # per meter
VELOCITY_SCALE = 50.0  # per m/s


@dataclass(frozen=True)
class FieldSnapshot:
    """Immutable multichannel uint8 grid in texture orientation.

    ``data[row, col, channel]`` with ``row`` growing with texture ``v``.
    """

    engine: EngineKind
    tick: int
    channel_names: tuple[str, ...]
    data: np.ndarray
    total_mass: float

    @property
    def size(self) -> int:
        return int(self.data.shape[0])

    def channel(self, name: str) -> np.ndarray:
        return self.data[..., self.channel_names.index(name)]

    @property
    def checksum(self) -> str:
        return sha256_bytes(self.data.tobytes())


def _to_byte(values: np.ndarray) -> np.ndarray:
    return np.clip(np.floor(values), 0.0, 255.0).astype(np.uint8)


def _freeze(data: np.ndarray) -> np.ndarray:
    data.setflags(write=False)
    return data


def export_flow_grid(grid: FlowGrid, tick: int) -> FieldSnapshot:
    data = to_texture_orientation(grid.thickness)[..., None].copy()
    return FieldSnapshot(
        engine=EngineKind.slope_capacity,
        tick=tick,
        channel_names=SLOPE_CAPACITY_CHANNELS,
        data=_freeze(data),
        total_mass=float(grid.total_mass()),
    )


def export_thermal_state(state: ThermalGridState, tick: int) -> FieldSnapshot:
    temperature_span = INITIAL_TEMP_C - AMBIENT_TEMP_C
    channels = (
        _to_byte(state.thickness * THICKNESS_SCALE),
        _to_byte((state.temperature - AMBIENT_TEMP_C) / temperature_span * 255.0),
        _to_byte(state.speed * VELOCITY_SCALE),
        np.where(state.solid, 0, 255).astype(np.uint8),
    )
    data = np.stack([to_texture_orientation(channel) for channel in channels], axis=-1)
    return FieldSnapshot(
        engine=EngineKind.thermal_rheology,
        tick=tick,
        channel_names=THERMAL_CHANNELS,
        data=_freeze(data),
        total_mass=float(state.thickness.sum()),
    )


def encode_png(snapshot: FieldSnapshot) -> bytes:
    if snapshot.data.shape[-1] == 1:
        image = Image.fromarray(np.array(snapshot.data[..., 0]))
    else:
        image = Image.fromarray(np.array(snapshot.data))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
