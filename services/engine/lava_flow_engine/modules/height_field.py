from __future__ import annotations

import io

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..utils import clamp01

# Terrarium tiles pack meters as R * 256 + G + B / 256 - 32768.
TERRARIUM_OFFSET_M = 32768.0


def _bilinear_axis(count: int, resolution: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    coords = np.linspace(0.0, 1.0, count) if count > 1 else np.zeros(1)
    pos = coords * (resolution - 1)
    lower = np.floor(pos).astype(np.int64)
    upper = np.minimum(lower + 1, resolution - 1)
    return lower, upper, pos - lower


class HeightField:
    """Square grid of ground elevations in meters.

    Normalized coordinates ``(x, y)`` follow the grid: ``x`` grows with the
    column index and ``y`` with the row index. Texture ``(u, v)`` coordinates
    map onto it as ``x = u`` and ``y = 1 - v``. A pristine copy is kept so
    terrain feedback can be undone.
    """

    def __init__(self, heights: np.ndarray):
        arr = np.array(heights, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
            raise ValueError("height field must be a square 2D grid")
        if arr.shape[0] < 2:
            raise ValueError("height field needs at least 2x2 samples")
        if not np.all(np.isfinite(arr)):
            raise ValueError("height field contains non-finite elevations")
        self._original = arr
        self.heights = arr.copy()

    @classmethod
    def flat(cls, resolution: int, elevation: float = 0.0) -> "HeightField":
        return cls(np.full((resolution, resolution), float(elevation), dtype=np.float64))

    @classmethod
    def from_terrarium_png(cls, payload: bytes) -> "HeightField":
        try:
            with Image.open(io.BytesIO(payload)) as image:
                rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError(f"could not decode terrarium image: {exc}") from exc

        meters = rgb[..., 0] * 256.0 + rgb[..., 1] + rgb[..., 2] / 256.0 - TERRARIUM_OFFSET_M
        height, width = meters.shape
        side = min(height, width)
        top = (height - side) // 2
        left = (width - side) // 2
        return cls(meters[top : top + side, left : left + side])

    @property
    def resolution(self) -> int:
        return int(self.heights.shape[0])

    @property
    def original(self) -> np.ndarray:
        return self._original.copy()

    @property
    def modified(self) -> bool:
        return not np.array_equal(self.heights, self._original)

    def sample(self, x: float, y: float) -> float:
        res = self.resolution
        px = clamp01(x) * (res - 1)
        py = clamp01(y) * (res - 1)
        x0 = int(px)
        y0 = int(py)
        x1 = min(x0 + 1, res - 1)
        y1 = min(y0 + 1, res - 1)
        sx = px - x0
        sy = py - y0

        h = self.heights
        top = h[y0, x0] * (1.0 - sx) + h[y0, x1] * sx
        bottom = h[y1, x0] * (1.0 - sx) + h[y1, x1] * sx
        return float(top * (1.0 - sy) + bottom * sy)

    def sample_grid(self, size: int, *, pristine: bool = False) -> np.ndarray:
        """Resample onto a ``size x size`` grid spanning the full extent."""
        source = self._original if pristine else self.heights
        x0, x1, fx = _bilinear_axis(size, self.resolution)
        y0, y1, fy = _bilinear_axis(size, self.resolution)

        top = source[np.ix_(y0, x0)] * (1.0 - fx)[None, :] + source[np.ix_(y0, x1)] * fx[None, :]
        bottom = source[np.ix_(y1, x0)] * (1.0 - fx)[None, :] + source[np.ix_(y1, x1)] * fx[None, :]
        return top * (1.0 - fy)[:, None] + bottom * fy[:, None]

    def write_cell_offsets(self, rows: np.ndarray, cols: np.ndarray, grid_size: int, offsets: np.ndarray) -> None:
        """Set the nearest height sample of each flow-grid cell to its pristine
        elevation plus that cell's offset in meters.

        Offsets are relative to the pristine terrain, so the sample keeps its
        own elevation whatever the grid and field resolutions are.
        """
        if rows.size == 0:
            return
        res = self.resolution
        scale = (res - 1) / max(1, grid_size - 1)
        sample_rows = np.clip(np.rint(rows * scale).astype(np.int64), 0, res - 1)
        sample_cols = np.clip(np.rint(cols * scale).astype(np.int64), 0, res - 1)
        self.heights[sample_rows, sample_cols] = self._original[sample_rows, sample_cols] + offsets

    def reset(self) -> None:
        self.heights[...] = self._original
