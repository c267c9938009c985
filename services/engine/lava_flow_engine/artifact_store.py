from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any

import numpy as np

from .utils import ensure_dir


class ArtifactStore:
    def __init__(self, data_root: Path):
        self.data_root = ensure_dir(data_root)
        self.sessions_root = ensure_dir(self.data_root / "sessions")

    def session_dir(self, session_id: str) -> Path:
        return self.sessions_root / session_id

    def export_path(self, session_id: str, filename: str) -> Path:
        return ensure_dir(self.session_dir(session_id) / "exports") / filename

    def metadata_path(self, session_id: str, artifact_id: str) -> Path:
        return self.export_path(session_id, f"{artifact_id}.metadata.json")

    def write_json(self, path: Path, payload: dict[str, Any]) -> Path:
        ensure_dir(path.parent)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    def write_array(self, path: Path, arr: np.ndarray) -> Path:
        ensure_dir(path.parent)
        np.save(path, arr)
        return path

    def write_bytes(self, path: Path, payload: bytes) -> Path:
        ensure_dir(path.parent)
        path.write_bytes(payload)
        return path

    def list_exports(self, session_id: str) -> list[Path]:
        root = self.session_dir(session_id) / "exports"
        if not root.exists():
            return []
        return sorted(path for path in root.iterdir() if path.is_file())

    def remove_session(self, session_id: str) -> None:
        root = self.session_dir(session_id)
        if root.exists():
            shutil.rmtree(root)
