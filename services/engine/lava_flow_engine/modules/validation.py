from __future__ import annotations

import numpy as np

from ..models import ValidationIssue
from .field_export import FieldSnapshot
from .flow_grid import FlowGrid, VentRegistry
from .height_field import HeightField
from .thermal.engine import MIN_ACTIVE_THICKNESS
from .thermal.rheology import AMBIENT_TEMP_C, SOLIDIFICATION_TEMP_C
from .thermal.state import ThermalGridState


def validate_height_field(height_field: HeightField) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    bad = int(np.count_nonzero(~np.isfinite(height_field.heights)))
    if bad:
        issues.append(
            ValidationIssue(
                code="height_field_non_finite",
                severity="error",
                message="Height field contains non-finite elevations",
                details={"cells": bad},
            )
        )
    return issues


def validate_flow_grid(grid: FlowGrid, ground: np.ndarray) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if grid.thickness.dtype != np.uint8 or grid.thickness.shape != (grid.size, grid.size):
        issues.append(
            ValidationIssue(
                code="flow_grid_layout",
                severity="error",
                message="Flow grid is not a square uint8 grid of the configured size",
                details={"dtype": str(grid.thickness.dtype), "shape": list(grid.thickness.shape)},
            )
        )
    if ground.shape != (grid.size, grid.size) or not np.all(np.isfinite(ground)):
        issues.append(
            ValidationIssue(
                code="ground_invalid",
                severity="error",
                message="Resampled ground does not match the flow grid or has non-finite values",
            )
        )
    saturated = int(np.count_nonzero(grid.thickness == 255))
    if saturated:
        issues.append(
            ValidationIssue(
                code="flow_grid_saturated",
                severity="warning",
                message="Some cells hit the thickness ceiling; further injection there is lost",
                details={"cells": saturated},
            )
        )
    return issues


def validate_thermal_state(state: ThermalGridState) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    fields = {
        "thickness": state.thickness,
        "temperature": state.temperature,
        "velocity_x": state.velocity_x,
        "velocity_y": state.velocity_y,
        "viscosity": state.viscosity,
    }
    for name, values in fields.items():
        if not np.all(np.isfinite(values)):
            issues.append(
                ValidationIssue(
                    code="thermal_non_finite",
                    severity="error",
                    message=f"Thermal field {name} contains non-finite values",
                    details={"field": name},
                )
            )

    if np.any(state.thickness < 0.0):
        issues.append(
            ValidationIssue(
                code="thermal_negative_thickness",
                severity="error",
                message="Lava thickness went negative",
                details={"min": float(state.thickness.min())},
            )
        )

    if np.any(state.temperature < AMBIENT_TEMP_C - 1e-9):
        issues.append(
            ValidationIssue(
                code="thermal_below_ambient",
                severity="error",
                message="Temperature fell below ambient",
                details={"min": float(state.temperature.min())},
            )
        )

    cold_liquid = ~state.solid & (state.temperature < SOLIDIFICATION_TEMP_C)
    if cold_liquid.any():
        issues.append(
            ValidationIssue(
                code="thermal_cold_liquid",
                severity="error",
                message="Cells below the solidification temperature are still liquid",
                details={"cells": int(np.count_nonzero(cold_liquid))},
            )
        )

    stalled = state.solid | (state.thickness < MIN_ACTIVE_THICKNESS)
    moving = stalled & ((state.velocity_x != 0.0) | (state.velocity_y != 0.0))
    if moving.any():
        issues.append(
            ValidationIssue(
                code="thermal_stalled_velocity",
                severity="error",
                message="Solid or near-empty cells carry a non-zero velocity",
                details={"cells": int(np.count_nonzero(moving))},
            )
        )
    return issues


def validate_vents(vents: VentRegistry) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for index, vent in enumerate(vents):
        if not (0.0 <= vent.u <= 1.0 and 0.0 <= vent.v <= 1.0):
            issues.append(
                ValidationIssue(
                    code="vent_out_of_bounds",
                    severity="error",
                    message=f"Vent {index} lies outside the unit square",
                    details={"u": vent.u, "v": vent.v},
                )
            )
    if len(vents) and not vents.enabled:
        issues.append(
            ValidationIssue(
                code="vents_disabled",
                severity="warning",
                message="Vents are placed but disabled; they will not inject",
                details={"count": len(vents)},
            )
        )
    return issues


def validate_snapshot(snapshot: FieldSnapshot, grid_size: int) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    expected = (grid_size, grid_size, len(snapshot.channel_names))
    if snapshot.data.shape != expected or snapshot.data.dtype != np.uint8:
        issues.append(
            ValidationIssue(
                code="snapshot_layout",
                severity="error",
                message="Snapshot does not match the grid size and channel list",
                details={"shape": list(snapshot.data.shape), "expected": list(expected)},
            )
        )
    return issues
