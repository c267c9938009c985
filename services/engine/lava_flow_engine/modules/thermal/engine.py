from __future__ import annotations

import numpy as np

from ..flow_grid import disc_window, grid_cell_from_uv, injection_radius_cells, require_dt, require_grid_size
from ..height_field import HeightField
from .rheology import (
    CRUST_GROWTH_RATE,
    CRUST_TEMP_C,
    DENSITY,
    EROSION_TEMP_C,
    INITIAL_TEMP_C,
    SOLIDIFICATION_TEMP_C,
    bingham_velocity,
    cooled_temperature,
    erosion_depth,
    vft_viscosity,
)
from .state import TerrainModificationState, ThermalGridState

MAX_STEP_S = 0.1
CELL_SIZE_M = 1.0

MIN_ACTIVE_THICKNESS = 0.001
MIN_FLUX_SPEED = 0.01
MIN_FLUX_THICKNESS = 0.05
MAX_FLUX_FRACTION = 0.5

EROSION_MIN_THICKNESS = 0.1
DEPOSITION_RATE = 0.5

# One injection unit adds this many meters at the disc centre.
THICKNESS_PER_UNIT_M = 0.01


class ThermalRheologyEngine:
    """Thermal lava model with Bingham flow and terrain feedback.

    Cells in the outer ring never flow or cool; they can still receive lava
    from their interior neighbours. While this engine runs it owns the height
    field: deposits and erosion are written straight into it.
    """

    def __init__(self, height_field: HeightField, size: int):
        self.size = require_grid_size(size, minimum=3)
        self.height_field = height_field
        self.state = ThermalGridState.ambient(self.size)
        self.terrain = TerrainModificationState.from_ground(
            height_field.sample_grid(self.size),
            pristine=height_field.sample_grid(self.size, pristine=True),
        )

        interior = np.zeros((self.size, self.size), dtype=bool)
        interior[1:-1, 1:-1] = True
        self._interior = interior
        rows, cols = np.indices((self.size, self.size))
        self._rows = rows
        self._cols = cols

    @property
    def cell_area(self) -> float:
        return CELL_SIZE_M * CELL_SIZE_M

    def total_mass(self) -> float:
        return float(self.state.thickness.sum())

    def inject(
        self,
        u: float,
        v: float,
        amount: float,
        radius_fraction: float,
        temperature: float = INITIAL_TEMP_C,
    ) -> None:
        if not amount > 0.0 or not radius_fraction >= 0.0:
            return

        radius = injection_radius_cells(self.size, radius_fraction)
        col, row = grid_cell_from_uv(u, v, self.size)
        rows, cols, dist2 = disc_window(col, row, radius, self.size)

        weight = 1.0 - np.sqrt(dist2) / radius
        added = np.where(weight > 0.0, amount * weight * THICKNESS_PER_UNIT_M, 0.0)
        mask = added > 0.0
        if not mask.any():
            return

        s = self.state
        thickness = s.thickness[rows, cols]
        temp = s.temperature[rows, cols]
        old_mass = thickness * DENSITY
        new_mass = added * DENSITY
        total_mass = old_mass + new_mass
        mixed = np.where(mask, (temp * old_mass + temperature * new_mass) / np.where(mask, total_mass, 1.0), temp)

        s.temperature[rows, cols] = mixed
        s.thickness[rows, cols] = thickness + added
        solid = mixed < SOLIDIFICATION_TEMP_C
        s.solid[rows, cols] = np.where(mask, solid, s.solid[rows, cols])
        s.age[rows, cols] = np.where(mask, 0.0, s.age[rows, cols])
        s.crust[rows, cols] = np.where(mask, 0.0, s.crust[rows, cols])
        s.viscosity[rows, cols] = np.where(mask, vft_viscosity(mixed), s.viscosity[rows, cols])
        halt = mask & solid
        s.velocity_x[rows, cols] = np.where(halt, 0.0, s.velocity_x[rows, cols])
        s.velocity_y[rows, cols] = np.where(halt, 0.0, s.velocity_y[rows, cols])

    def advance(self, dt: float) -> None:
        step = min(require_dt(dt), MAX_STEP_S)
        s = self.state
        active = self._interior & (s.thickness >= MIN_ACTIVE_THICKNESS)
        if step <= 0.0 or not active.any():
            return

        grad_x, grad_y = self._surface_gradient()
        source_temperature = s.temperature.copy()

        self._cool(active, step)

        moving = active & ~s.solid
        vx, vy = bingham_velocity(s.thickness, s.viscosity, grad_x, grad_y)
        s.velocity_x[active] = np.where(moving, vx, 0.0)[active]
        s.velocity_y[active] = np.where(moving, vy, 0.0)[active]

        self._redistribute(moving, step, source_temperature)
        self._apply_terrain_feedback(active, step)

        stalled = s.solid | (s.thickness < MIN_ACTIVE_THICKNESS)
        s.velocity_x[stalled] = 0.0
        s.velocity_y[stalled] = 0.0

    def clear(self) -> None:
        self.state.reset()
        self.height_field.reset()
        self.terrain.reset(self.height_field.sample_grid(self.size, pristine=True))

    def _surface_gradient(self) -> tuple[np.ndarray, np.ndarray]:
        surface = self.terrain.elevation + self.state.thickness
        grad_x = np.zeros_like(surface)
        grad_y = np.zeros_like(surface)
        grad_x[:, 1:-1] = (surface[:, 2:] - surface[:, :-2]) / (2.0 * CELL_SIZE_M)
        grad_y[1:-1, :] = (surface[2:, :] - surface[:-2, :]) / (2.0 * CELL_SIZE_M)
        return grad_x, grad_y

    def _cool(self, active: np.ndarray, step: float) -> None:
        s = self.state
        speed = np.hypot(s.velocity_x[active], s.velocity_y[active])
        temperature = cooled_temperature(
            s.temperature[active],
            s.thickness[active],
            speed,
            step,
            self.cell_area,
        )
        s.temperature[active] = temperature
        s.viscosity[active] = vft_viscosity(temperature)

        crusting = active & ~s.solid & (s.temperature < CRUST_TEMP_C)
        s.crust[crusting] += step * CRUST_GROWTH_RATE

        solidified = active & (s.temperature < SOLIDIFICATION_TEMP_C)
        s.solid[solidified] = True
        s.velocity_x[solidified] = 0.0
        s.velocity_y[solidified] = 0.0
        s.age[active] += step

    def _redistribute(self, moving: np.ndarray, step: float, source_temperature: np.ndarray) -> None:
        s = self.state
        vx = s.velocity_x
        vy = s.velocity_y
        speed = np.hypot(vx, vy)
        flowing = moving & (speed > MIN_FLUX_SPEED) & (s.thickness > MIN_FLUX_THICKNESS)
        if not flowing.any():
            return

        flux = np.where(flowing, np.minimum(s.thickness * MAX_FLUX_FRACTION, speed * step * s.thickness), 0.0)
        safe_speed = np.where(flowing, speed, 1.0)
        flux_x = flux * vx / safe_speed
        flux_y = flux * vy / safe_speed

        received = np.zeros_like(flux)
        incoming_temp = np.full_like(flux, -np.inf)
        sent_temp = np.where(flowing, source_temperature, -np.inf)

        # (amount leaving each source, source slice, receiver slice)
        transfers = (
            (np.where(flux_x > 0.0, flux_x, 0.0), (slice(None), slice(None, -1)), (slice(None), slice(1, None))),
            (np.where(flux_x < 0.0, -flux_x, 0.0), (slice(None), slice(1, None)), (slice(None), slice(None, -1))),
            (np.where(flux_y > 0.0, flux_y, 0.0), (slice(None, -1), slice(None)), (slice(1, None), slice(None))),
            (np.where(flux_y < 0.0, -flux_y, 0.0), (slice(1, None), slice(None)), (slice(None, -1), slice(None))),
        )
        outgoing = np.zeros_like(flux)
        for amount, src, dst in transfers:
            outgoing += amount
            received[dst] += amount[src]
            carried = np.where(amount[src] > 0.0, sent_temp[src], -np.inf)
            np.maximum(incoming_temp[dst], carried, out=incoming_temp[dst])

        s.thickness -= outgoing
        np.maximum(s.thickness, 0.0, out=s.thickness)

        gaining = received > 0.0
        dry = gaining & (s.thickness < MIN_ACTIVE_THICKNESS)
        liquid = gaining & ~dry & ~s.solid

        s.temperature[dry] = incoming_temp[dry]
        s.solid[dry] = False
        s.age[dry] = 0.0
        s.crust[dry] = 0.0
        s.temperature[liquid] = np.maximum(s.temperature[liquid], incoming_temp[liquid])

        refreshed = dry | liquid
        s.viscosity[refreshed] = vft_viscosity(s.temperature[refreshed])
        s.thickness += received

    def _apply_terrain_feedback(self, active: np.ndarray, step: float) -> None:
        s = self.state
        mods = self.terrain

        eroding = active & (s.temperature > EROSION_TEMP_C) & (s.thickness > EROSION_MIN_THICKNESS)
        if eroding.any():
            mods.base_elevation[eroding] -= erosion_depth(s.temperature[eroding], step)

        depositing = active & s.solid & (s.thickness > 0.0)
        if depositing.any():
            mods.lava_thickness[depositing] = np.maximum(
                mods.lava_thickness[depositing],
                DEPOSITION_RATE * s.thickness[depositing],
            )

        changed = eroding | depositing
        if not changed.any():
            return
        mods.refresh_elevation()
        self.height_field.write_cell_offsets(
            self._rows[changed],
            self._cols[changed],
            self.size,
            mods.offsets(changed),
        )
