from __future__ import annotations

import math
import warnings

import numpy as np
import pytest

from lava_flow_engine.modules.height_field import HeightField
from lava_flow_engine.modules.thermal import (
    INITIAL_TEMP_C,
    SOLIDIFICATION_TEMP_C,
    ThermalRheologyEngine,
    vft_viscosity,
)
from lava_flow_engine.modules.thermal import rheology
from lava_flow_engine.modules.thermal.rheology import (
    VISCOSITY_SOLID,
    bingham_velocity,
    cooled_temperature,
    erosion_depth,
)


def _slope_field(size: int, rise_per_cell: float) -> HeightField:
    cols = np.arange(size, dtype=np.float64)
    return HeightField(np.tile(cols * rise_per_cell, (size, 1)))


def _seed_cell(engine: ThermalRheologyEngine, row: int, col: int, thickness: float, temperature: float) -> None:
    s = engine.state
    s.thickness[row, col] = thickness
    s.temperature[row, col] = temperature
    s.solid[row, col] = temperature < SOLIDIFICATION_TEMP_C
    s.viscosity[row, col] = float(vft_viscosity(temperature))


def test_vft_viscosity_matches_formula_and_solid_cap():
    expected = math.exp(-4.55 + 6270.0 / (1200.0 + 273.15 - 837.0)) * 1000.0
    assert float(vft_viscosity(1200.0)) == pytest.approx(expected)
    assert float(vft_viscosity(650.0)) == VISCOSITY_SOLID
    assert float(vft_viscosity(1100.0)) > float(vft_viscosity(1200.0))


def test_vft_viscosity_of_cold_cells_raises_no_overflow_warning():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        viscosity = vft_viscosity(np.array([20.0, 699.0, 1200.0]))

    assert viscosity[0] == VISCOSITY_SOLID
    assert viscosity[1] == VISCOSITY_SOLID
    assert np.isfinite(viscosity[2])


def test_erosion_depth_is_zero_when_cool_and_capped_when_hot():
    depth = erosion_depth(np.array([900.0, 1000.0, 1200.0, 1.0e7]), 0.1)

    assert depth[0] == 0.0
    assert depth[1] == 0.0
    assert depth[2] == pytest.approx(0.001 * 0.1 * 200.0 / 200.0)
    assert depth[3] == 1.0


def test_bingham_flow_needs_yield_and_points_downhill():
    thickness = np.array([1.0, 1.0])
    viscosity = np.array([2.0e5, 2.0e5])
    grad_x = np.array([0.001, 0.5])
    grad_y = np.zeros(2)

    vx, vy = bingham_velocity(thickness, viscosity, grad_x, grad_y)

    assert vx[0] == 0.0 and vy[0] == 0.0
    assert vx[1] < 0.0
    assert vy[1] == 0.0


def test_cooling_never_drops_below_ambient():
    cooled = cooled_temperature(np.array([1200.0, 25.0]), np.array([1e-6, 1e-6]), np.zeros(2), 0.1, 1.0)
    assert np.all(cooled >= 20.0)
    assert cooled[0] < 1200.0


def test_injection_creates_hot_liquid_disc():
    engine = ThermalRheologyEngine(HeightField.flat(16), 16)
    engine.inject(0.5, 0.5, 255.0, 0.0)

    row = col = 7
    s = engine.state
    assert s.thickness[row, col] == pytest.approx(2.55)
    assert s.temperature[row, col] == pytest.approx(INITIAL_TEMP_C)
    assert not s.solid[row, col]
    assert s.thickness[0, 0] == 0.0
    assert s.solid[0, 0]


def test_solidification_is_one_way_until_reinjected():
    engine = ThermalRheologyEngine(HeightField.flat(9), 9)
    _seed_cell(engine, 4, 4, 0.01, 720.0)

    for _ in range(500):
        engine.advance(0.1)
        if engine.state.solid[4, 4]:
            break
    assert engine.state.solid[4, 4]

    for _ in range(20):
        engine.advance(0.1)
        assert engine.state.solid[4, 4]
        assert engine.state.temperature[4, 4] < SOLIDIFICATION_TEMP_C
        assert engine.state.velocity_x[4, 4] == 0.0
        assert engine.state.velocity_y[4, 4] == 0.0

    engine.inject(0.5, 0.5, 255.0, 0.0)
    assert not engine.state.solid[4, 4]
    assert engine.state.temperature[4, 4] > 1100.0


def test_steep_slope_moves_lava_downhill_and_conserves_mass():
    size = 16
    engine = ThermalRheologyEngine(_slope_field(size, 10.0), size)
    engine.inject(0.5, 0.5, 100.0, 0.0)
    before = engine.total_mass()

    engine.advance(0.1)

    s = engine.state
    assert engine.total_mass() == pytest.approx(before, rel=1e-12)
    assert s.velocity_x[7, 7] < 0.0
    # Downhill neighbour outside the injected disc picked up hot lava.
    assert s.thickness[7, 5] > 0.0
    assert not s.solid[7, 5]
    assert s.temperature[7, 5] > 1000.0
    # Nothing climbs the slope.
    assert s.thickness[7, 9] == 0.0


def test_solid_lava_deposits_into_height_field_and_clear_restores():
    engine = ThermalRheologyEngine(HeightField.flat(9), 9)
    _seed_cell(engine, 4, 4, 0.4, 600.0)

    engine.advance(0.1)

    assert engine.terrain.lava_thickness[4, 4] == pytest.approx(0.2)
    assert engine.height_field.modified
    assert engine.height_field.heights[4, 4] == pytest.approx(0.2)

    engine.clear()

    assert not engine.height_field.modified
    assert engine.total_mass() == 0.0
    assert np.all(engine.terrain.elevation == 0.0)
    assert np.all(engine.state.solid)


def test_thermal_engine_preconditions():
    with pytest.raises(ValueError):
        ThermalRheologyEngine(HeightField.flat(4), 2)
    engine = ThermalRheologyEngine(HeightField.flat(4), 4)
    with pytest.raises(ValueError):
        engine.advance(-1.0)
    with pytest.raises(ValueError):
        engine.advance(float("inf"))


def test_only_hot_thick_lava_erodes_the_ground():
    engine = ThermalRheologyEngine(HeightField.flat(9), 9)
    _seed_cell(engine, 4, 4, 0.5, 1200.0)
    _seed_cell(engine, 2, 2, 0.05, 1200.0)
    _seed_cell(engine, 6, 6, 0.5, 950.0)

    engine.advance(0.1)

    s = engine.state
    base = engine.terrain.base_elevation
    expected = 0.001 * 0.1 * (s.temperature[4, 4] - 1000.0) / 200.0
    assert base[4, 4] == pytest.approx(-expected)
    assert base[2, 2] == 0.0
    assert base[6, 6] == 0.0
    assert engine.height_field.heights[4, 4] == pytest.approx(-expected)
    assert engine.height_field.heights[2, 2] == 0.0


def test_erosion_is_capped_at_one_meter_per_step(monkeypatch):
    monkeypatch.setattr(rheology, "EROSION_RATE", 1.0e5)
    engine = ThermalRheologyEngine(HeightField.flat(9), 9)
    _seed_cell(engine, 4, 4, 0.5, 1200.0)

    engine.advance(0.1)
    assert engine.terrain.base_elevation[4, 4] == pytest.approx(-1.0)
    engine.advance(0.1)
    assert engine.terrain.base_elevation[4, 4] == pytest.approx(-2.0)
    assert engine.height_field.heights[4, 4] == pytest.approx(-2.0)


def test_crust_grows_on_liquid_lava_below_crust_temperature():
    engine = ThermalRheologyEngine(HeightField.flat(9), 9)
    _seed_cell(engine, 4, 4, 0.5, 850.0)
    _seed_cell(engine, 2, 2, 0.5, 950.0)

    engine.advance(0.1)
    assert engine.state.crust[4, 4] == pytest.approx(0.01)
    assert engine.state.crust[2, 2] == 0.0
    assert not engine.state.solid[4, 4]

    engine.advance(0.1)
    assert engine.state.crust[4, 4] == pytest.approx(0.02)


def test_deposit_offsets_the_matching_sample_when_resolutions_differ():
    field = HeightField(np.tile(np.arange(40, dtype=np.float64) * 2.0, (40, 1)))
    engine = ThermalRheologyEngine(field, 24)
    _seed_cell(engine, 12, 12, 0.4, 600.0)

    engine.advance(0.1)

    changed = np.argwhere(field.heights != field.original)
    assert changed.tolist() == [[20, 20]]
    assert field.heights[20, 20] == pytest.approx(field.original[20, 20] + 0.2)


def test_height_field_moves_no_more_than_the_grid_when_resolutions_differ():
    field = HeightField(np.tile(np.arange(40, dtype=np.float64) * 2.0, (40, 1)))
    engine = ThermalRheologyEngine(field, 24)
    engine.inject(0.5, 0.5, 100.0, 0.05)

    for _ in range(5):
        engine.advance(0.1)

    grid_change = np.abs(engine.terrain.elevation - engine.terrain.pristine).max()
    field_change = np.abs(field.heights - field.original).max()
    assert field.modified
    assert field_change <= grid_change + 1e-9
    assert field_change < 0.01
