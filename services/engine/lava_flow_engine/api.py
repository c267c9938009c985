from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

import structlog
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware

from .artifact_store import ArtifactStore
from .models import (
    DiagnosticsReport,
    ElevationSample,
    ExaggerationRequest,
    ExportListing,
    ExportRequest,
    ExportResult,
    HeightFieldSummary,
    HoldRequest,
    InjectRequest,
    PausedRequest,
    SessionCreateRequest,
    SessionSummary,
    SnapshotSummary,
    TerrainSource,
    TickRequest,
    VentRequest,
    VentsEnabledRequest,
    ViewStateEntry,
    ViewStateWrite,
)
from .settings import Settings, load_settings
from .simulation_service import SimulationService
from .view_state_store import ViewStateStore

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _call(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else "not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    view_state = ViewStateStore(settings.data_root / "view_state.sqlite3")
    artifact_store = ArtifactStore(settings.data_root)
    simulation = SimulationService(settings, view_state, artifact_store)

    app = FastAPI(title="Lava Flow Engine", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.view_state = view_state
    app.state.artifact_store = artifact_store
    app.state.simulation = simulation

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/sessions", response_model=SessionSummary)
    def create_session(request: SessionCreateRequest) -> SessionSummary:
        return _call(lambda: simulation.create_session(request))

    @app.get("/v1/sessions", response_model=list[SessionSummary])
    def list_sessions() -> list[SessionSummary]:
        return simulation.list_sessions()

    @app.get("/v1/sessions/{session_id}", response_model=SessionSummary)
    def get_session(session_id: str) -> SessionSummary:
        return _call(lambda: simulation.get_session(session_id))

    @app.delete("/v1/sessions/{session_id}")
    def delete_session(session_id: str) -> dict[str, str]:
        _call(lambda: simulation.delete_session(session_id))
        return {"status": "deleted"}

    @app.put("/v1/sessions/{session_id}/terrain", response_model=SessionSummary)
    def load_terrain(session_id: str, request: TerrainSource) -> SessionSummary:
        return _call(lambda: simulation.load_terrain(session_id, request))

    @app.post("/v1/sessions/{session_id}/tick", response_model=SnapshotSummary)
    def tick(session_id: str, request: TickRequest) -> SnapshotSummary:
        return _call(lambda: simulation.tick(session_id, request.dt, request.config, request.includeData))

    @app.post("/v1/sessions/{session_id}/inject", response_model=SnapshotSummary)
    def inject(session_id: str, request: InjectRequest) -> SnapshotSummary:
        return _call(lambda: simulation.inject(session_id, request.u, request.v, request.amount, request.radius))

    @app.post("/v1/sessions/{session_id}/hold", response_model=SessionSummary)
    def start_hold(session_id: str, request: HoldRequest) -> SessionSummary:
        return _call(lambda: simulation.start_hold(session_id, request.u, request.v))

    @app.delete("/v1/sessions/{session_id}/hold", response_model=SessionSummary)
    def stop_hold(session_id: str) -> SessionSummary:
        return _call(lambda: simulation.stop_hold(session_id))

    @app.post("/v1/sessions/{session_id}/vents", response_model=SessionSummary)
    def place_vent(session_id: str, request: VentRequest) -> SessionSummary:
        return _call(lambda: simulation.place_vent(session_id, request.u, request.v))

    @app.delete("/v1/sessions/{session_id}/vents", response_model=SessionSummary)
    def clear_vents(session_id: str) -> SessionSummary:
        return _call(lambda: simulation.clear_vents(session_id))

    @app.put("/v1/sessions/{session_id}/vents/enabled", response_model=SessionSummary)
    def set_vents_enabled(session_id: str, request: VentsEnabledRequest) -> SessionSummary:
        return _call(lambda: simulation.set_vents_enabled(session_id, request.enabled))

    @app.put("/v1/sessions/{session_id}/paused", response_model=SessionSummary)
    def set_paused(session_id: str, request: PausedRequest) -> SessionSummary:
        return _call(lambda: simulation.set_paused(session_id, request.paused))

    @app.post("/v1/sessions/{session_id}/clear", response_model=SessionSummary)
    def clear(session_id: str) -> SessionSummary:
        return _call(lambda: simulation.clear(session_id))

    @app.put("/v1/sessions/{session_id}/exaggeration", response_model=SessionSummary)
    def set_exaggeration(session_id: str, request: ExaggerationRequest) -> SessionSummary:
        return _call(lambda: simulation.set_exaggeration(session_id, request.exaggeration))

    @app.get("/v1/sessions/{session_id}/snapshot", response_model=SnapshotSummary)
    def get_snapshot(session_id: str, includeData: bool = False) -> SnapshotSummary:
        return _call(lambda: simulation.snapshot(session_id, includeData))

    @app.get("/v1/sessions/{session_id}/snapshot.png")
    def get_snapshot_png(session_id: str) -> Response:
        payload = _call(lambda: simulation.snapshot_png(session_id))
        return Response(content=payload, media_type="image/png")

    @app.post("/v1/sessions/{session_id}/exports", response_model=ExportResult)
    def export_snapshot(session_id: str, request: ExportRequest) -> ExportResult:
        return _call(lambda: simulation.export(session_id, request))

    @app.get("/v1/sessions/{session_id}/exports", response_model=ExportListing)
    def list_exports(session_id: str) -> ExportListing:
        return _call(lambda: simulation.list_exports(session_id))

    @app.get("/v1/sessions/{session_id}/heightfield", response_model=HeightFieldSummary)
    def get_height_field(session_id: str, includeHeights: bool = False) -> HeightFieldSummary:
        return _call(lambda: simulation.height_field(session_id, includeHeights))

    @app.get("/v1/sessions/{session_id}/heightfield/sample", response_model=ElevationSample)
    def sample_height(session_id: str, u: float, v: float) -> ElevationSample:
        return _call(lambda: simulation.sample_height(session_id, u, v))

    @app.get("/v1/sessions/{session_id}/diagnostics", response_model=DiagnosticsReport)
    def get_diagnostics(session_id: str) -> DiagnosticsReport:
        return _call(lambda: simulation.diagnose(session_id))

    @app.get("/v1/view-state", response_model=list[str])
    def list_view_state_keys() -> list[str]:
        return simulation.list_view_state_keys()

    @app.get("/v1/view-state/{key}", response_model=ViewStateEntry)
    def load_view_state(key: str) -> ViewStateEntry:
        return _call(lambda: simulation.load_view_state(key))

    @app.put("/v1/view-state/{key}", response_model=ViewStateEntry)
    def save_view_state(key: str, request: ViewStateWrite) -> ViewStateEntry:
        return _call(lambda: simulation.save_view_state(key, request.value))

    @app.delete("/v1/view-state/{key}")
    def delete_view_state(key: str) -> dict[str, str]:
        _call(lambda: simulation.delete_view_state(key))
        return {"status": "deleted"}

    logger.info("app created", data_root=str(settings.data_root), default_engine=settings.default_engine)
    return app
