from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EngineKind(str, Enum):
    slope_capacity = "slope_capacity"
    thermal_rheology = "thermal_rheology"


MOBILITY_RANGE = (0.05, 2.0)
VISCOSITY_RANGE = (0.0, 0.2)
COOLING_RANGE = (0.0, 0.2)
INJECTION_AMOUNT_RANGE = (30.0, 1000.0)
INJECTION_RADIUS_RANGE = (0.001, 0.2)


class FlowConfig(BaseModel):
    """Per-tick simulation parameters.

    The ranges are the documented UI ranges. Values are clamped rather than
    rejected: negative rates become zero and anything above the maximum is
    capped. Lower bounds are advisory so tests and hosts can freeze transport
    with ``mobility=0``. A negative ``injectionRadius`` is kept as-is and turns
    injection into a no-op.
    """

    model_config = ConfigDict(allow_inf_nan=False, populate_by_name=True)

    mobility: float = Field(default=2.0, validation_alias=AliasChoices("mobility", "flowRate"))
    viscosity: float = 0.01
    cooling: float = 0.001
    injectionAmount: float = 255.0
    injectionRadius: float = 0.001

    @model_validator(mode="after")
    def clamp_ranges(self) -> "FlowConfig":
        self.mobility = min(MOBILITY_RANGE[1], max(0.0, self.mobility))
        self.viscosity = min(VISCOSITY_RANGE[1], max(0.0, self.viscosity))
        self.cooling = min(COOLING_RANGE[1], max(0.0, self.cooling))
        self.injectionAmount = min(INJECTION_AMOUNT_RANGE[1], max(0.0, self.injectionAmount))
        self.injectionRadius = min(INJECTION_RADIUS_RANGE[1], self.injectionRadius)
        return self


class TerrainSource(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    resolution: int | None = Field(default=None, ge=2, le=8192)
    flatElevation: float | None = None
    heights: list[list[float]] | None = None
    terrariumPngBase64: str | None = None

    @model_validator(mode="after")
    def validate_single_source(self) -> "TerrainSource":
        provided = [
            value
            for value in (self.flatElevation, self.heights, self.terrariumPngBase64)
            if value is not None
        ]
        if len(provided) > 1:
            raise ValueError("provide only one of flatElevation, heights or terrariumPngBase64")
        if self.heights is not None:
            size = len(self.heights)
            if size < 2 or any(len(row) != size for row in self.heights):
                raise ValueError("heights must be a square grid of at least 2x2 samples")
        return self


class ElevationSample(BaseModel):
    """Ground elevation at texture coordinates, including terrain feedback."""

    sessionId: str
    u: float
    v: float
    elevation: float


class SessionCreateRequest(BaseModel):
    engine: EngineKind | None = None
    gridSize: int | None = Field(default=None, ge=3, le=4096)
    exaggeration: float | None = Field(default=None, gt=0.0)
    terrain: TerrainSource = Field(default_factory=TerrainSource)


class TickRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    dt: float = Field(ge=0.0)
    config: FlowConfig | None = None
    includeData: bool = False


class InjectRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    u: float
    v: float
    amount: float | None = None
    radius: float | None = None


class HoldRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    u: float
    v: float


class VentRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    u: float
    v: float


class VentsEnabledRequest(BaseModel):
    enabled: bool


class PausedRequest(BaseModel):
    paused: bool


class ExaggerationRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    exaggeration: float = Field(gt=0.0)


class VentSummary(BaseModel):
    u: float
    v: float


class SessionSummary(BaseModel):
    sessionId: str
    engine: EngineKind
    gridSize: int
    terrainResolution: int
    exaggeration: float
    tick: int
    paused: bool
    ventsEnabled: bool
    vents: list[VentSummary] = Field(default_factory=list)
    holding: bool = False
    totalMass: float
    terrainModified: bool
    config: FlowConfig
    createdAt: str


class SnapshotSummary(BaseModel):
    sessionId: str
    engine: EngineKind
    tick: int
    gridSize: int
    channels: list[str]
    totalMass: float
    checksum: str
    orientation: Literal["texture_v_up"] = "texture_v_up"
    data: dict[str, list[list[int]]] | None = None


class HeightFieldSummary(BaseModel):
    sessionId: str
    resolution: int
    minElevation: float
    maxElevation: float
    modified: bool
    heights: list[list[float]] | None = None


class ValidationIssue(BaseModel):
    code: str
    severity: Literal["error", "warning"]
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class DiagnosticsReport(BaseModel):
    sessionId: str
    engine: EngineKind
    checkedAt: str = Field(default_factory=utc_now_iso)
    ok: bool = True
    issues: list[ValidationIssue] = Field(default_factory=list)


class ExportArtifact(BaseModel):
    artifactId: str
    type: Literal["snapshot", "heightfield", "metadata"]
    format: Literal["npy", "png", "json"]
    width: int
    height: int
    channels: int
    path: str
    checksum: str


class ExportRequest(BaseModel):
    includeHeightField: bool = True
    formats: list[Literal["npy", "png"]] = Field(default_factory=lambda: ["npy", "png"])

    @model_validator(mode="after")
    def validate_formats(self) -> "ExportRequest":
        if not self.formats:
            raise ValueError("at least one export format is required")
        return self


class ExportResult(BaseModel):
    sessionId: str
    tick: int
    artifacts: list[ExportArtifact]


class ExportListing(BaseModel):
    sessionId: str
    files: list[str] = Field(default_factory=list)


class ViewStateEntry(BaseModel):
    key: str
    value: dict[str, Any] = Field(default_factory=dict)
    updatedAt: str = Field(default_factory=utc_now_iso)


class ViewStateWrite(BaseModel):
    value: dict[str, Any] = Field(default_factory=dict)
