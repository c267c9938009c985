from .engine import ThermalRheologyEngine
from .rheology import AMBIENT_TEMP_C, INITIAL_TEMP_C, SOLIDIFICATION_TEMP_C, vft_viscosity
from .state import TerrainModificationState, ThermalGridState

__all__ = [
    "ThermalRheologyEngine",
    "AMBIENT_TEMP_C",
    "INITIAL_TEMP_C",
    "SOLIDIFICATION_TEMP_C",
    "vft_viscosity",
    "TerrainModificationState",
    "ThermalGridState",
]
