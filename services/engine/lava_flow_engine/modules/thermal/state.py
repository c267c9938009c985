from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .rheology import AMBIENT_TEMP_C, VISCOSITY_SOLID


@dataclass
class ThermalGridState:
    thickness: np.ndarray
    temperature: np.ndarray
    velocity_x: np.ndarray
    velocity_y: np.ndarray
    viscosity: np.ndarray
    age: np.ndarray
    crust: np.ndarray
    solid: np.ndarray

    @classmethod
    def ambient(cls, size: int) -> "ThermalGridState":
        shape = (size, size)
        return cls(
            thickness=np.zeros(shape, dtype=np.float64),
            temperature=np.full(shape, AMBIENT_TEMP_C, dtype=np.float64),
            velocity_x=np.zeros(shape, dtype=np.float64),
            velocity_y=np.zeros(shape, dtype=np.float64),
            viscosity=np.full(shape, VISCOSITY_SOLID, dtype=np.float64),
            age=np.zeros(shape, dtype=np.float64),
            crust=np.zeros(shape, dtype=np.float64),
            solid=np.ones(shape, dtype=bool),
        )

    @property
    def speed(self) -> np.ndarray:
        return np.hypot(self.velocity_x, self.velocity_y)

    def reset(self) -> None:
        self.thickness.fill(0.0)
        self.temperature.fill(AMBIENT_TEMP_C)
        self.velocity_x.fill(0.0)
        self.velocity_y.fill(0.0)
        self.viscosity.fill(VISCOSITY_SOLID)
        self.age.fill(0.0)
        self.crust.fill(0.0)
        self.solid.fill(True)


@dataclass
class TerrainModificationState:
    base_elevation: np.ndarray
    lava_thickness: np.ndarray
    elevation: np.ndarray
    pristine: np.ndarray

    @classmethod
    def from_ground(cls, ground: np.ndarray, pristine: np.ndarray | None = None) -> "TerrainModificationState":
        base = np.array(ground, dtype=np.float64)
        return cls(
            base_elevation=base,
            lava_thickness=np.zeros_like(base),
            elevation=base.copy(),
            pristine=base.copy() if pristine is None else np.array(pristine, dtype=np.float64),
        )

    def reset(self, ground: np.ndarray) -> None:
        self.pristine[...] = ground
        self.base_elevation[...] = ground
        self.lava_thickness.fill(0.0)
        self.elevation[...] = ground

    def refresh_elevation(self) -> None:
        np.add(self.base_elevation, self.lava_thickness, out=self.elevation)

    def offsets(self, mask: np.ndarray) -> np.ndarray:
        """Elevation change from the untouched terrain at the masked cells."""
        return self.elevation[mask] - self.pristine[mask]
