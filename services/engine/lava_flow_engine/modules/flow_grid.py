from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from ..utils import clamp01

MAX_THICKNESS = 255


def require_grid_size(size: int, minimum: int = 1) -> int:
    if isinstance(size, bool) or not isinstance(size, (int, np.integer)):
        raise ValueError("grid size must be an integer")
    if size < minimum:
        raise ValueError(f"grid size must be at least {minimum}")
    return int(size)


def require_dt(dt: float) -> float:
    value = float(dt)
    if not math.isfinite(value) or value < 0.0:
        raise ValueError("dt must be finite and non-negative")
    return value


def grid_cell_from_uv(u: float, v: float, size: int) -> tuple[int, int]:
    """Map texture coordinates onto ``(col, row)``; rows run opposite to ``v``."""
    col = int(math.floor(clamp01(u) * (size - 1)))
    row = int(math.floor(clamp01(1.0 - v) * (size - 1)))
    return col, row


def to_texture_orientation(grid: np.ndarray) -> np.ndarray:
    """Reorder rows so the row index grows with texture ``v``."""
    return np.ascontiguousarray(grid[::-1])


def disc_window(col: int, row: int, radius: int, size: int) -> tuple[slice, slice, np.ndarray]:
    """Clip the square around a disc to the grid; also return squared distances."""
    y0 = max(0, row - radius)
    y1 = min(size - 1, row + radius)
    x0 = max(0, col - radius)
    x1 = min(size - 1, col + radius)
    dy = np.arange(y0, y1 + 1) - row
    dx = np.arange(x0, x1 + 1) - col
    dist2 = (dy * dy)[:, None] + (dx * dx)[None, :]
    return slice(y0, y1 + 1), slice(x0, x1 + 1), dist2


def injection_radius_cells(size: int, radius_fraction: float) -> int:
    return max(2, int(math.floor(size * radius_fraction)))


@dataclass
class FlowGrid:
    size: int
    thickness: np.ndarray
    scratch: np.ndarray

    @classmethod
    def create(cls, size: int) -> "FlowGrid":
        size = require_grid_size(size)
        return cls(
            size=size,
            thickness=np.zeros((size, size), dtype=np.uint8),
            scratch=np.zeros((size, size), dtype=np.float64),
        )

    def total_mass(self) -> int:
        return int(self.thickness.sum(dtype=np.int64))

    def is_idle(self) -> bool:
        return not self.thickness.any()

    def clear(self) -> None:
        self.thickness.fill(0)
        self.scratch.fill(0.0)


@dataclass(frozen=True)
class Vent:
    u: float
    v: float


@dataclass
class VentRegistry:
    enabled: bool = True
    _vents: list[Vent] = field(default_factory=list)

    def place(self, u: float, v: float) -> Vent:
        vent = Vent(u=clamp01(u), v=clamp01(v))
        self._vents.append(vent)
        return vent

    def clear(self) -> None:
        self._vents.clear()

    def active(self) -> list[Vent]:
        return list(self._vents) if self.enabled else []

    def __iter__(self):
        return iter(list(self._vents))

    def __len__(self) -> int:
        return len(self._vents)
