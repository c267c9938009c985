from __future__ import annotations

import math

import numpy as np

from .flow_grid import (
    MAX_THICKNESS,
    FlowGrid,
    disc_window,
    grid_cell_from_uv,
    injection_radius_cells,
    require_dt,
    require_grid_size,
)

EPSILON = 1e-6
MAX_STEP_S = 0.1
# Keeps exact integers intact through raw / 255 * 255 before flooring.
QUANTIZATION_GUARD = 1e-9
DIAGONAL_WEIGHT = 1.0 / math.sqrt(2.0)

# (row offset, col offset, drop weight)
NEIGHBOR_OFFSETS: tuple[tuple[int, int, float], ...] = (
    (0, -1, 1.0),
    (0, 1, 1.0),
    (-1, 0, 1.0),
    (1, 0, 1.0),
    (-1, -1, DIAGONAL_WEIGHT),
    (-1, 1, DIAGONAL_WEIGHT),
    (1, -1, DIAGONAL_WEIGHT),
    (1, 1, DIAGONAL_WEIGHT),
)


def _offset_slices(dy: int, dx: int, size: int) -> tuple[tuple[slice, slice], tuple[slice, slice]]:
    src = (
        slice(max(0, -dy), size - max(0, dy)),
        slice(max(0, -dx), size - max(0, dx)),
    )
    dst = (
        slice(max(0, dy), size - max(0, -dy)),
        slice(max(0, dx), size - max(0, -dx)),
    )
    return src, dst


def inject_thickness(grid: FlowGrid, u: float, v: float, amount: float, radius_fraction: float) -> None:
    """Add a disc of fluid with ``1 - d^2 / R^2`` falloff, saturating at 255."""
    if not amount > 0.0 or not radius_fraction >= 0.0:
        return

    size = grid.size
    radius = injection_radius_cells(size, radius_fraction)
    col, row = grid_cell_from_uv(u, v, size)
    add = math.floor(amount)
    if add <= 0:
        return

    rows, cols, dist2 = disc_window(col, row, radius, size)
    radius2 = float(radius * radius)
    falloff = 1.0 - dist2 / radius2
    addition = np.floor(add * falloff).astype(np.int64)
    addition[dist2 > radius2] = 0

    window = grid.thickness[rows, cols]
    grid.thickness[rows, cols] = np.minimum(MAX_THICKNESS, window.astype(np.int64) + addition).astype(np.uint8)


class SlopeCapacityTransport:
    """Moves quantized fluid downhill with capacity ``mobility * step * slope``.

    All working buffers are allocated once for the grid size. Cells on the
    border simply have fewer neighbours; nothing wraps or reflects. A receiver
    never fills past 1.0, so quantizing back to 0..255 loses nothing but the
    fractional remainder of each cell.
    """

    def __init__(self, size: int):
        self.size = require_grid_size(size)
        shape = (self.size, self.size)
        self._surface = np.zeros(shape, dtype=np.float64)
        self._drops = np.zeros((len(NEIGHBOR_OFFSETS), *shape), dtype=np.float64)
        self._slope_sum = np.zeros(shape, dtype=np.float64)
        self._moved = np.zeros(shape, dtype=np.float64)
        self._share = np.zeros(shape, dtype=np.float64)
        self._out = np.zeros(shape, dtype=np.float64)
        self._laplacian = np.zeros(shape, dtype=np.float64)
        self._contrib = np.zeros(shape, dtype=np.float64)
        self._incoming = np.zeros(shape, dtype=np.float64)
        self._accept = np.zeros(shape, dtype=np.float64)
        self._flowing = np.zeros(shape, dtype=bool)
        self._mask = np.zeros(shape, dtype=bool)
        self._neighbors = [
            (_offset_slices(dy, dx, self.size), weight) for dy, dx, weight in NEIGHBOR_OFFSETS
        ]

    def advance(
        self,
        grid: FlowGrid,
        ground: np.ndarray,
        dt: float,
        mobility: float,
        cooling_rate: float,
        viscosity: float,
    ) -> None:
        dt = require_dt(dt)
        if grid.size != self.size or ground.shape != (self.size, self.size):
            raise ValueError("grid and ground must match the transport size")

        if grid.is_idle():
            return

        step = min(dt, MAX_STEP_S)
        mobility = max(0.0, float(mobility))
        cooling_rate = max(0.0, float(cooling_rate))
        viscosity = max(0.0, float(viscosity))

        value = grid.scratch
        np.divide(grid.thickness, 255.0, out=value)
        np.add(ground, value, out=self._surface)

        out = self._out
        np.copyto(out, value)
        if mobility > 0.0 and step > 0.0:
            self._transport(value, mobility * step)

        if viscosity > EPSILON:
            lap = self._laplacian
            np.multiply(out, -4.0, out=lap)
            lap[:, 1:] += out[:, :-1]
            lap[:, :-1] += out[:, 1:]
            lap[1:, :] += out[:-1, :]
            lap[:-1, :] += out[1:, :]
            lap *= viscosity * step
            out += lap

        if cooling_rate > 0.0:
            out -= cooling_rate * step
        np.maximum(out, 0.0, out=out)

        out *= 255.0
        out += QUANTIZATION_GUARD
        np.floor(out, out=out)
        np.clip(out, 0.0, float(MAX_THICKNESS), out=out)
        np.copyto(grid.thickness, out, casting="unsafe")

    def _transport(self, value: np.ndarray, rate: float) -> None:
        surface = self._surface
        drops = self._drops
        drops.fill(0.0)
        for k, ((src, dst), weight) in enumerate(self._neighbors):
            drop = drops[k]
            np.subtract(surface[src], surface[dst], out=drop[src])
            np.maximum(drop[src], 0.0, out=drop[src])
            drop[src] *= weight
        np.sum(drops, axis=0, out=self._slope_sum)

        flowing = self._flowing
        mask = self._mask
        np.greater(self._slope_sum, EPSILON, out=flowing)
        np.greater(value, 0.0, out=mask)
        np.logical_and(flowing, mask, out=flowing)
        if not flowing.any():
            return

        moved = self._moved
        np.multiply(self._slope_sum, rate, out=moved)
        np.minimum(moved, value, out=moved)
        np.logical_not(flowing, out=mask)
        np.copyto(moved, 0.0, where=mask)

        share = self._share
        share.fill(0.0)
        np.divide(moved, self._slope_sum, out=share, where=flowing)

        contrib = self._contrib
        incoming = self._incoming
        incoming.fill(0.0)
        for k, ((src, dst), _weight) in enumerate(self._neighbors):
            np.multiply(share[src], drops[k][src], out=contrib[src])
            incoming[dst] += contrib[src]

        # Fraction of the inflow each receiver accepts without passing 1.0;
        # the rest stays with the sender.
        accept = self._accept
        np.subtract(1.0, value, out=accept)
        np.maximum(accept, 0.0, out=accept)
        np.minimum(accept, incoming, out=accept)
        np.greater(incoming, 0.0, out=mask)
        np.divide(accept, incoming, out=accept, where=mask)

        out = self._out
        out -= moved
        for k, ((src, dst), _weight) in enumerate(self._neighbors):
            np.multiply(share[src], drops[k][src], out=contrib[src])
            out[src] += contrib[src]
            np.multiply(contrib[src], accept[dst], out=contrib[src])
            out[dst] += contrib[src]
            out[src] -= contrib[src]
