from __future__ import annotations

import numpy as np

KELVIN_OFFSET = 273.15
GRAVITY = 9.81
STEFAN_BOLTZMANN = 5.67e-8

# Basaltic lava.
DENSITY = 2500.0  # kg/m^3
SPECIFIC_HEAT = 1000.0  # J/(kg K)
EMISSIVITY = 0.95
YIELD_STRENGTH = 100.0  # Pa
VELOCITY_SCALE = 0.1

INITIAL_TEMP_C = 1200.0
AMBIENT_TEMP_C = 20.0
CRUST_TEMP_C = 900.0
SOLIDIFICATION_TEMP_C = 700.0
CRUST_GROWTH_RATE = 0.1  # m/s below CRUST_TEMP_C

CONDUCTIVE_COOLING = 0.3
CONVECTIVE_COOLING = 0.5

# Vogel-Fulcher-Tammann constants, Kelvin basis.
VFT_A = -4.55
VFT_B = 6270.0
VFT_T0 = 837.0
VISCOSITY_SOLID = 1e6  # Pa s

MIN_FLOW_THICKNESS = 0.01
MIN_SLOPE = 1e-6

EROSION_TEMP_C = 1000.0
EROSION_RATE = 0.001  # m/s per 200 C above EROSION_TEMP_C
MAX_EROSION_PER_STEP_M = 1.0


def vft_viscosity(temperature: np.ndarray) -> np.ndarray:
    """Dynamic viscosity in Pa s; solid below the solidification temperature."""
    temperature = np.asarray(temperature, dtype=np.float64)
    solid = temperature < SOLIDIFICATION_TEMP_C
    denom = np.maximum(temperature + KELVIN_OFFSET - VFT_T0, 1.0)
    # Solid cells would overflow exp; they take the fixed solid value.
    exponent = np.where(solid, 0.0, VFT_A + VFT_B / denom)
    liquid = np.exp(exponent) * 1000.0
    return np.where(solid, VISCOSITY_SOLID, liquid)


def erosion_depth(temperature: np.ndarray, dt: float) -> np.ndarray:
    """Meters of ground removed in one step, capped at MAX_EROSION_PER_STEP_M."""
    excess = np.maximum(np.asarray(temperature, dtype=np.float64) - EROSION_TEMP_C, 0.0)
    return np.minimum(EROSION_RATE * dt * excess / 200.0, MAX_EROSION_PER_STEP_M)


def heat_loss_rate(temperature: np.ndarray, speed: np.ndarray, area: float) -> np.ndarray:
    """Radiative + conductive + convective loss in watts."""
    t_surface = temperature + KELVIN_OFFSET
    t_ambient = AMBIENT_TEMP_C + KELVIN_OFFSET
    excess = temperature - AMBIENT_TEMP_C

    radiative = EMISSIVITY * STEFAN_BOLTZMANN * area * (t_surface**4 - t_ambient**4)
    conductive = CONDUCTIVE_COOLING * excess * area
    convective = CONVECTIVE_COOLING * speed * excess * area
    return radiative + conductive + convective


def cooled_temperature(
    temperature: np.ndarray,
    thickness: np.ndarray,
    speed: np.ndarray,
    dt: float,
    area: float,
) -> np.ndarray:
    mass = DENSITY * thickness * area
    heat = heat_loss_rate(temperature, speed, area) * dt
    delta = heat / np.maximum(mass * SPECIFIC_HEAT, 1e-12)
    return np.maximum(AMBIENT_TEMP_C, temperature - delta)


def bingham_velocity(
    thickness: np.ndarray,
    viscosity: np.ndarray,
    grad_x: np.ndarray,
    grad_y: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Velocity of a Bingham plastic sheet, pointing down the surface gradient.

    Below the yield strength the sheet does not move at all.
    """
    slope = np.hypot(grad_x, grad_y)
    shear = DENSITY * GRAVITY * thickness * slope
    yielding = (shear >= YIELD_STRENGTH) & (slope >= MIN_SLOPE) & (thickness >= MIN_FLOW_THICKNESS)

    strain_rate = np.where(yielding, (shear - YIELD_STRENGTH) / np.maximum(viscosity, 1e-12), 0.0)
    magnitude = strain_rate * thickness * VELOCITY_SCALE
    safe_slope = np.where(yielding, slope, 1.0)
    return -magnitude * grad_x / safe_slope, -magnitude * grad_y / safe_slope
