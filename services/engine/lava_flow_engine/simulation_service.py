from __future__ import annotations

import base64
import binascii
import threading
import uuid
from pathlib import Path
from typing import Any

import numpy as np
import structlog

from .artifact_store import ArtifactStore
from .models import (
    DiagnosticsReport,
    ElevationSample,
    EngineKind,
    ExportArtifact,
    ExportListing,
    ExportRequest,
    ExportResult,
    FlowConfig,
    HeightFieldSummary,
    SessionCreateRequest,
    SessionSummary,
    SnapshotSummary,
    TerrainSource,
    ViewStateEntry,
    VentSummary,
    utc_now_iso,
)
from .modules.field_export import FieldSnapshot, encode_png
from .modules.flow_grid import to_texture_orientation
from .modules.height_field import HeightField
from .session import LavaSession
from .settings import Settings
from .utils import sha256_bytes, stable_hash
from .view_state_store import ViewStateStore

ENGINE_VERSION = "0.1.0"

logger = structlog.get_logger(__name__)


def height_field_from_source(source: TerrainSource, default_resolution: int) -> HeightField:
    if source.heights is not None:
        return HeightField(np.asarray(source.heights, dtype=np.float64))
    if source.terrariumPngBase64 is not None:
        try:
            payload = base64.b64decode(source.terrariumPngBase64, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"terrain image is not valid base64: {exc}") from exc
        return HeightField.from_terrarium_png(payload)
    return HeightField.flat(source.resolution or default_resolution, source.flatElevation or 0.0)


class SimulationService:
    def __init__(self, settings: Settings, view_state: ViewStateStore, artifact_store: ArtifactStore):
        self.settings = settings
        self.view_state = view_state
        self.artifact_store = artifact_store
        self._sessions: dict[str, LavaSession] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _get(self, session_id: str) -> tuple[LavaSession, threading.Lock]:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise KeyError(f"session {session_id} not found")
            return session, self._locks[session_id]

    def create_session(self, request: SessionCreateRequest) -> SessionSummary:
        kind = request.engine or EngineKind(self.settings.default_engine)
        grid_size = request.gridSize or self.settings.flow_grid_size
        exaggeration = request.exaggeration or self.settings.height_exaggeration
        height_field = height_field_from_source(request.terrain, self.settings.default_terrain_resolution)

        session_id = str(uuid.uuid4())
        session = LavaSession(session_id, kind, height_field, grid_size, exaggeration)
        with self._registry_lock:
            self._sessions[session_id] = session
            self._locks[session_id] = threading.Lock()
        logger.info(
            "session created",
            session_id=session_id,
            engine=kind.value,
            grid_size=grid_size,
            terrain_resolution=height_field.resolution,
        )
        return self._summary(session)

    def get_session(self, session_id: str) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            return self._summary(session)

    def delete_session(self, session_id: str) -> None:
        with self._registry_lock:
            if self._sessions.pop(session_id, None) is None:
                raise KeyError(f"session {session_id} not found")
            self._locks.pop(session_id, None)
        self.artifact_store.remove_session(session_id)
        logger.info("session deleted", session_id=session_id)

    def list_sessions(self) -> list[SessionSummary]:
        with self._registry_lock:
            session_ids = list(self._sessions)
        return [self.get_session(session_id) for session_id in session_ids]

    def load_terrain(self, session_id: str, source: TerrainSource) -> SessionSummary:
        height_field = height_field_from_source(source, self.settings.default_terrain_resolution)
        session, lock = self._get(session_id)
        with lock:
            session.load_terrain(height_field)
            return self._summary(session)

    def tick(self, session_id: str, dt: float, config: FlowConfig | None = None, include_data: bool = False) -> SnapshotSummary:
        session, lock = self._get(session_id)
        with lock:
            snapshot = session.tick(dt, config)
        return self._snapshot_summary(session_id, snapshot, include_data)

    def inject(
        self,
        session_id: str,
        u: float,
        v: float,
        amount: float | None = None,
        radius: float | None = None,
    ) -> SnapshotSummary:
        session, lock = self._get(session_id)
        with lock:
            snapshot = session.inject(u, v, amount, radius)
        return self._snapshot_summary(session_id, snapshot, False)

    def start_hold(self, session_id: str, u: float, v: float) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.start_hold(u, v)
            return self._summary(session)

    def stop_hold(self, session_id: str) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.stop_hold()
            return self._summary(session)

    def place_vent(self, session_id: str, u: float, v: float) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.place_vent(u, v)
            return self._summary(session)

    def clear_vents(self, session_id: str) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.clear_vents()
            return self._summary(session)

    def set_vents_enabled(self, session_id: str, enabled: bool) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.set_vents_enabled(enabled)
            return self._summary(session)

    def set_paused(self, session_id: str, paused: bool) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.set_paused(paused)
            return self._summary(session)

    def clear(self, session_id: str) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.clear()
            return self._summary(session)

    def set_exaggeration(self, session_id: str, exaggeration: float) -> SessionSummary:
        session, lock = self._get(session_id)
        with lock:
            session.set_exaggeration(exaggeration)
            return self._summary(session)

    def snapshot(self, session_id: str, include_data: bool = False) -> SnapshotSummary:
        session, _lock = self._get(session_id)
        return self._snapshot_summary(session_id, session.snapshot, include_data)

    def snapshot_png(self, session_id: str) -> bytes:
        session, _lock = self._get(session_id)
        return encode_png(session.snapshot)

    def height_field(self, session_id: str, include_heights: bool = False) -> HeightFieldSummary:
        session, lock = self._get(session_id)
        with lock:
            field = session.height_field
            heights = field.heights.copy()
            modified = field.modified
        return HeightFieldSummary(
            sessionId=session_id,
            resolution=int(heights.shape[0]),
            minElevation=float(heights.min()),
            maxElevation=float(heights.max()),
            modified=modified,
            heights=heights.tolist() if include_heights else None,
        )

    def sample_height(self, session_id: str, u: float, v: float) -> ElevationSample:
        session, lock = self._get(session_id)
        with lock:
            elevation = session.height_field.sample(u, 1.0 - v)
        return ElevationSample(sessionId=session_id, u=u, v=v, elevation=elevation)

    def diagnose(self, session_id: str) -> DiagnosticsReport:
        session, lock = self._get(session_id)
        with lock:
            issues = session.diagnose()
        return DiagnosticsReport(
            sessionId=session_id,
            engine=session.kind,
            ok=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def export(self, session_id: str, request: ExportRequest) -> ExportResult:
        session, lock = self._get(session_id)
        with lock:
            snapshot = session.snapshot
            heights = to_texture_orientation(session.height_field.heights) if request.includeHeightField else None
            config = session.config.model_dump(mode="json")

        store = self.artifact_store
        artifact_id = str(uuid.uuid4())
        size = snapshot.size
        channels = len(snapshot.channel_names)
        stem = f"tick{snapshot.tick}_{artifact_id}"
        artifacts: list[ExportArtifact] = []

        if "npy" in request.formats:
            path = store.write_array(store.export_path(session_id, f"{stem}.npy"), snapshot.data)
            artifacts.append(self._artifact(artifact_id, "snapshot", "npy", size, size, channels, path))
        if "png" in request.formats:
            path = store.write_bytes(store.export_path(session_id, f"{stem}.png"), encode_png(snapshot))
            artifacts.append(self._artifact(artifact_id, "snapshot", "png", size, size, channels, path))
        if heights is not None:
            resolution = int(heights.shape[0])
            path = store.write_array(store.export_path(session_id, f"{stem}_heightfield.npy"), heights)
            artifacts.append(self._artifact(artifact_id, "heightfield", "npy", resolution, resolution, 1, path))

        metadata_payload = {
            "sessionId": session_id,
            "engine": snapshot.engine.value,
            "engineVersion": ENGINE_VERSION,
            "tick": snapshot.tick,
            "channels": list(snapshot.channel_names),
            "orientation": "texture_v_up",
            "snapshotChecksum": snapshot.checksum,
            "parameterHash": stable_hash(config),
            "config": config,
            "exportedAt": utc_now_iso(),
            "artifacts": [artifact.model_dump(mode="json") for artifact in artifacts],
        }
        metadata_path = store.write_json(store.metadata_path(session_id, artifact_id), metadata_payload)
        artifacts.append(self._artifact(artifact_id, "metadata", "json", size, size, channels, metadata_path))

        logger.info("snapshot exported", session_id=session_id, tick=snapshot.tick, artifacts=len(artifacts))
        return ExportResult(sessionId=session_id, tick=snapshot.tick, artifacts=artifacts)

    def list_exports(self, session_id: str) -> ExportListing:
        self._get(session_id)
        files = [path.name for path in self.artifact_store.list_exports(session_id)]
        return ExportListing(sessionId=session_id, files=files)

    def list_view_state_keys(self) -> list[str]:
        return self.view_state.keys()

    def load_view_state(self, key: str) -> ViewStateEntry:
        entry = self.view_state.load(key)
        if entry is None:
            raise KeyError(f"view state {key} not found")
        return entry

    def save_view_state(self, key: str, value: dict[str, Any]) -> ViewStateEntry:
        return self.view_state.save(key, value)

    def delete_view_state(self, key: str) -> None:
        if not self.view_state.delete(key):
            raise KeyError(f"view state {key} not found")

    def _artifact(
        self,
        artifact_id: str,
        artifact_type: str,
        fmt: str,
        width: int,
        height: int,
        channels: int,
        path: Path,
    ) -> ExportArtifact:
        return ExportArtifact(
            artifactId=artifact_id,
            type=artifact_type,
            format=fmt,
            width=width,
            height=height,
            channels=channels,
            path=str(path),
            checksum=sha256_bytes(path.read_bytes()),
        )

    def _summary(self, session: LavaSession) -> SessionSummary:
        return SessionSummary(
            sessionId=session.session_id,
            engine=session.kind,
            gridSize=session.grid_size,
            terrainResolution=session.height_field.resolution,
            exaggeration=session.exaggeration,
            tick=session.tick_count,
            paused=session.paused,
            ventsEnabled=session.vents.enabled,
            vents=[VentSummary(u=vent.u, v=vent.v) for vent in session.vents],
            holding=session.hold is not None,
            totalMass=session.total_mass(),
            terrainModified=session.height_field.modified,
            config=session.config,
            createdAt=session.created_at,
        )

    def _snapshot_summary(self, session_id: str, snapshot: FieldSnapshot, include_data: bool) -> SnapshotSummary:
        data = None
        if include_data:
            data = {name: snapshot.channel(name).tolist() for name in snapshot.channel_names}
        return SnapshotSummary(
            sessionId=session_id,
            engine=snapshot.engine,
            tick=snapshot.tick,
            gridSize=snapshot.size,
            channels=list(snapshot.channel_names),
            totalMass=snapshot.total_mass,
            checksum=snapshot.checksum,
            data=data,
        )
