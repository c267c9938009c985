from __future__ import annotations

import numpy as np

from ..models import EngineKind, FlowConfig, ValidationIssue
from .field_export import FieldSnapshot, export_flow_grid, export_thermal_state
from .flow_grid import FlowGrid
from .height_field import HeightField
from .thermal import ThermalRheologyEngine
from .transport import SlopeCapacityTransport, inject_thickness
from .validation import validate_flow_grid, validate_height_field, validate_thermal_state


class BaseLavaBackend:
    """Common surface of the lava engines; a session drives exactly one."""

    kind: EngineKind

    def __init__(self, height_field: HeightField, grid_size: int, exaggeration: float = 1.0):
        self.height_field = height_field
        self.grid_size = grid_size
        self.exaggeration = exaggeration

    def advance(self, dt: float, config: FlowConfig) -> None:
        raise NotImplementedError

    def inject(self, u: float, v: float, amount: float, radius: float) -> None:
        raise NotImplementedError

    def export_snapshot(self, tick: int) -> FieldSnapshot:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def total_mass(self) -> float:
        raise NotImplementedError

    def set_exaggeration(self, exaggeration: float) -> None:
        self.exaggeration = exaggeration

    def diagnose(self) -> list[ValidationIssue]:
        return validate_height_field(self.height_field)


class SlopeCapacityBackend(BaseLavaBackend):
    kind = EngineKind.slope_capacity

    def __init__(self, height_field: HeightField, grid_size: int, exaggeration: float = 1.0):
        super().__init__(height_field, grid_size, exaggeration)
        self.grid = FlowGrid.create(grid_size)
        self.transport = SlopeCapacityTransport(grid_size)
        self.ground = self._derive_ground()

    def _derive_ground(self) -> np.ndarray:
        return self.height_field.sample_grid(self.grid_size) * self.exaggeration

    def advance(self, dt: float, config: FlowConfig) -> None:
        self.transport.advance(
            self.grid,
            self.ground,
            dt,
            mobility=config.mobility,
            cooling_rate=config.cooling,
            viscosity=config.viscosity,
        )

    def inject(self, u: float, v: float, amount: float, radius: float) -> None:
        inject_thickness(self.grid, u, v, amount, radius)

    def export_snapshot(self, tick: int) -> FieldSnapshot:
        return export_flow_grid(self.grid, tick)

    def clear(self) -> None:
        self.grid.clear()
        self.height_field.reset()
        self.ground = self._derive_ground()

    def total_mass(self) -> float:
        return float(self.grid.total_mass())

    def set_exaggeration(self, exaggeration: float) -> None:
        super().set_exaggeration(exaggeration)
        self.ground = self._derive_ground()

    def diagnose(self) -> list[ValidationIssue]:
        return super().diagnose() + validate_flow_grid(self.grid, self.ground)


class ThermalRheologyBackend(BaseLavaBackend):
    """Works in physical meters; exaggeration only affects how hosts draw it."""

    kind = EngineKind.thermal_rheology

    def __init__(self, height_field: HeightField, grid_size: int, exaggeration: float = 1.0):
        super().__init__(height_field, grid_size, exaggeration)
        self.engine = ThermalRheologyEngine(height_field, grid_size)

    def advance(self, dt: float, config: FlowConfig) -> None:
        self.engine.advance(dt)

    def inject(self, u: float, v: float, amount: float, radius: float) -> None:
        self.engine.inject(u, v, amount, radius)

    def export_snapshot(self, tick: int) -> FieldSnapshot:
        return export_thermal_state(self.engine.state, tick)

    def clear(self) -> None:
        self.engine.clear()

    def total_mass(self) -> float:
        return self.engine.total_mass()

    def diagnose(self) -> list[ValidationIssue]:
        return super().diagnose() + validate_thermal_state(self.engine.state)


def build_backend(
    kind: EngineKind,
    height_field: HeightField,
    grid_size: int,
    exaggeration: float = 1.0,
) -> BaseLavaBackend:
    if kind == EngineKind.thermal_rheology:
        return ThermalRheologyBackend(height_field, grid_size, exaggeration)
    return SlopeCapacityBackend(height_field, grid_size, exaggeration)
