from __future__ import annotations

from dataclasses import dataclass

import structlog

from .models import EngineKind, FlowConfig, ValidationIssue, utc_now_iso
from .modules.field_export import FieldSnapshot
from .modules.flow_grid import Vent, VentRegistry, require_dt
from .modules.height_field import HeightField
from .modules.lava_backends import BaseLavaBackend, build_backend
from .modules.validation import validate_snapshot, validate_vents

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HoldPoint:
    u: float
    v: float


class LavaSession:
    """One interactive simulation: a height field, one engine and its vents.

    Each unpaused tick injects at the held point first, then at every enabled
    vent, and finally advances the engine. Callers only ever see exported
    snapshots, never the live buffers.
    """

    def __init__(
        self,
        session_id: str,
        kind: EngineKind,
        height_field: HeightField,
        grid_size: int,
        exaggeration: float = 1.0,
        config: FlowConfig | None = None,
    ):
        if not exaggeration > 0.0:
            raise ValueError("exaggeration must be positive")
        self.session_id = session_id
        self.kind = kind
        self.grid_size = grid_size
        self.exaggeration = float(exaggeration)
        self.config = config or FlowConfig()
        self.vents = VentRegistry()
        self.paused = False
        self.hold: HoldPoint | None = None
        self.tick_count = 0
        self.created_at = utc_now_iso()
        self.backend: BaseLavaBackend = build_backend(kind, height_field, grid_size, self.exaggeration)
        self._snapshot = self.backend.export_snapshot(self.tick_count)

    @property
    def height_field(self) -> HeightField:
        return self.backend.height_field

    @property
    def snapshot(self) -> FieldSnapshot:
        return self._snapshot

    def tick(self, dt: float, config: FlowConfig | None = None) -> FieldSnapshot:
        dt = require_dt(dt)
        if config is not None:
            self.config = config
        if self.paused:
            return self._snapshot

        cfg = self.config
        if self.hold is not None:
            self.backend.inject(self.hold.u, self.hold.v, cfg.injectionAmount, cfg.injectionRadius)
        for vent in self.vents.active():
            self.backend.inject(vent.u, vent.v, cfg.injectionAmount, cfg.injectionRadius)

        self.backend.advance(dt, cfg)
        self.tick_count += 1
        self._snapshot = self.backend.export_snapshot(self.tick_count)
        return self._snapshot

    def inject(self, u: float, v: float, amount: float | None = None, radius: float | None = None) -> FieldSnapshot:
        amount = self.config.injectionAmount if amount is None else amount
        radius = self.config.injectionRadius if radius is None else radius
        self.backend.inject(u, v, amount, radius)
        self._snapshot = self.backend.export_snapshot(self.tick_count)
        return self._snapshot

    def start_hold(self, u: float, v: float) -> HoldPoint:
        self.hold = HoldPoint(u=u, v=v)
        return self.hold

    def stop_hold(self) -> None:
        self.hold = None

    def place_vent(self, u: float, v: float) -> Vent:
        vent = self.vents.place(u, v)
        logger.info("vent placed", session_id=self.session_id, u=vent.u, v=vent.v, count=len(self.vents))
        return vent

    def clear_vents(self) -> None:
        self.vents.clear()
        logger.info("vents cleared", session_id=self.session_id)

    def set_vents_enabled(self, enabled: bool) -> None:
        self.vents.enabled = enabled

    def set_paused(self, paused: bool) -> None:
        self.paused = paused

    def clear(self) -> FieldSnapshot:
        """Remove all lava, vents and any hold, and restore the original terrain."""
        self.backend.clear()
        self.vents.clear()
        self.hold = None
        self._snapshot = self.backend.export_snapshot(self.tick_count)
        logger.info("session cleared", session_id=self.session_id, engine=self.kind.value)
        return self._snapshot

    def load_terrain(self, height_field: HeightField) -> FieldSnapshot:
        """Swap in a new height field; the engine restarts empty, vents stay."""
        self.backend = build_backend(self.kind, height_field, self.grid_size, self.exaggeration)
        self.hold = None
        self._snapshot = self.backend.export_snapshot(self.tick_count)
        logger.info(
            "terrain loaded",
            session_id=self.session_id,
            resolution=height_field.resolution,
            vents=len(self.vents),
        )
        return self._snapshot

    def set_exaggeration(self, exaggeration: float) -> None:
        if not exaggeration > 0.0:
            raise ValueError("exaggeration must be positive")
        self.exaggeration = float(exaggeration)
        self.backend.set_exaggeration(self.exaggeration)

    def total_mass(self) -> float:
        return self.backend.total_mass()

    def diagnose(self) -> list[ValidationIssue]:
        issues = self.backend.diagnose()
        issues.extend(validate_vents(self.vents))
        issues.extend(validate_snapshot(self._snapshot, self.grid_size))
        return issues
