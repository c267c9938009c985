from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from lava_flow_engine.modules.height_field import HeightField


def _terrarium_png(pixels: list[list[tuple[int, int, int]]]) -> bytes:
    image = Image.fromarray(np.array(pixels, dtype=np.uint8))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def test_terrarium_decode_and_centre_crop():
    sea = (128, 0, 0)
    hill = (128, 100, 128)
    payload = _terrarium_png(
        [
            [sea, hill, (0, 0, 0)],
            [hill, sea, (0, 0, 0)],
        ]
    )

    field = HeightField.from_terrarium_png(payload)

    assert field.resolution == 2
    assert field.heights[0, 0] == pytest.approx(0.0)
    assert field.heights[0, 1] == pytest.approx(100.5)
    assert field.heights[1, 0] == pytest.approx(100.5)


def test_terrarium_decode_rejects_garbage():
    with pytest.raises(ValueError):
        HeightField.from_terrarium_png(b"not an image")


def test_bilinear_sampling_follows_grid_axes():
    field = HeightField(np.array([[0.0, 10.0], [20.0, 30.0]]))

    assert field.sample(0.5, 0.5) == pytest.approx(15.0)
    assert field.sample(1.0, 0.0) == pytest.approx(10.0)
    assert field.sample(0.0, 1.0) == pytest.approx(20.0)
    assert field.sample(-3.0, 7.0) == pytest.approx(20.0)

    grid = field.sample_grid(3)
    assert grid.shape == (3, 3)
    assert grid[1, 1] == pytest.approx(15.0)
    assert grid[2, 2] == pytest.approx(30.0)


def test_cell_offsets_and_reset_round_trip():
    field = HeightField.flat(5, elevation=2.0)
    field.write_cell_offsets(np.array([2]), np.array([4]), 5, np.array([7.0]))
    field.write_cell_offsets(np.array([2]), np.array([4]), 5, np.array([-0.5]))

    assert field.modified
    assert field.heights[2, 4] == 1.5
    assert field.original[2, 4] == 2.0
    assert field.sample_grid(5, pristine=True)[2, 4] == pytest.approx(2.0)

    field.reset()
    assert not field.modified


def test_height_field_rejects_bad_grids():
    with pytest.raises(ValueError):
        HeightField(np.zeros((2, 3)))
    with pytest.raises(ValueError):
        HeightField(np.zeros((1, 1)))
    with pytest.raises(ValueError):
        HeightField(np.array([[0.0, np.nan], [0.0, 0.0]]))


def test_cell_offsets_land_on_the_nearest_sample_of_a_finer_field():
    ramp = np.tile(np.arange(9, dtype=np.float64) * 3.0, (9, 1))
    field = HeightField(ramp)

    # Cell (1, 2) of a 5-cell grid sits on sample (2, 4) of the 9-sample field.
    field.write_cell_offsets(np.array([1]), np.array([2]), 5, np.array([0.25]))

    assert np.argwhere(field.heights != ramp).tolist() == [[2, 4]]
    assert field.heights[2, 4] == pytest.approx(12.25)
