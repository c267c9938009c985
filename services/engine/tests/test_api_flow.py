from __future__ import annotations

import base64
import io
from pathlib import Path

import numpy as np
from fastapi.testclient import TestClient
from PIL import Image

from lava_flow_engine.api import create_app
from lava_flow_engine.settings import Settings


def _terrarium_base64(size: int) -> str:
    rgb = np.zeros((size, size, 3), dtype=np.uint8)
    rgb[..., 0] = 128
    rgb[..., 1] = np.arange(size, dtype=np.uint8)[None, :] * 10
    buffer = io.BytesIO()
    Image.fromarray(rgb).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def test_end_to_end_session_flow(tmp_path):
    app = create_app(Settings(data_root=tmp_path, flow_grid_size=32))
    client = TestClient(app)

    assert client.get("/health").json() == {"status": "ok"}

    create = client.post("/v1/sessions", json={"terrain": {"flatElevation": 0.0, "resolution": 16}})
    create.raise_for_status()
    session = create.json()
    session_id = session["sessionId"]
    assert session["engine"] == "slope_capacity"
    assert session["gridSize"] == 32
    assert session["config"]["mobility"] == 2.0

    vent = client.post(f"/v1/sessions/{session_id}/vents", json={"u": 0.5, "v": 0.5})
    vent.raise_for_status()
    assert vent.json()["vents"] == [{"u": 0.5, "v": 0.5}]

    tick = client.post(
        f"/v1/sessions/{session_id}/tick",
        json={"dt": 0.1, "config": {"flowRate": 0.5, "cooling": 0.0}, "includeData": True},
    )
    tick.raise_for_status()
    snapshot = tick.json()
    assert snapshot["tick"] == 1
    assert snapshot["orientation"] == "texture_v_up"
    assert snapshot["totalMass"] > 0
    assert len(snapshot["data"]["thickness"]) == 32

    summary = client.get(f"/v1/sessions/{session_id}").json()
    assert summary["config"]["mobility"] == 0.5
    assert summary["tick"] == 1

    png = client.get(f"/v1/sessions/{session_id}/snapshot.png")
    assert png.status_code == 200
    assert png.headers["content-type"] == "image/png"

    diagnostics = client.get(f"/v1/sessions/{session_id}/diagnostics")
    diagnostics.raise_for_status()
    assert diagnostics.json()["ok"] is True

    export = client.post(f"/v1/sessions/{session_id}/exports", json={})
    export.raise_for_status()
    artifacts = export.json()["artifacts"]
    assert {(item["type"], item["format"]) for item in artifacts} == {
        ("snapshot", "npy"),
        ("snapshot", "png"),
        ("heightfield", "npy"),
        ("metadata", "json"),
    }
    for item in artifacts:
        assert Path(item["path"]).exists()
        assert len(item["checksum"]) == 64

    listing = client.get(f"/v1/sessions/{session_id}/exports")
    listing.raise_for_status()
    assert listing.json()["files"] == sorted(Path(item["path"]).name for item in artifacts)

    cleared = client.post(f"/v1/sessions/{session_id}/clear").json()
    assert cleared["totalMass"] == 0
    assert cleared["vents"] == []

    deleted = client.delete(f"/v1/sessions/{session_id}")
    deleted.raise_for_status()
    assert client.get(f"/v1/sessions/{session_id}").status_code == 404


def test_thermal_session_over_terrarium_terrain(tmp_path):
    client = TestClient(create_app(Settings(data_root=tmp_path)))

    create = client.post(
        "/v1/sessions",
        json={
            "engine": "thermal_rheology",
            "gridSize": 16,
            "terrain": {"terrariumPngBase64": _terrarium_base64(16)},
        },
    )
    create.raise_for_status()
    session_id = create.json()["sessionId"]
    assert create.json()["terrainResolution"] == 16

    client.post(f"/v1/sessions/{session_id}/hold", json={"u": 0.5, "v": 0.5}).raise_for_status()
    tick = client.post(f"/v1/sessions/{session_id}/tick", json={"dt": 0.05})
    tick.raise_for_status()
    assert tick.json()["channels"] == ["thickness", "temperature", "velocity", "liquid"]
    assert tick.json()["totalMass"] > 0

    released = client.delete(f"/v1/sessions/{session_id}/hold").json()
    assert released["holding"] is False

    field = client.get(f"/v1/sessions/{session_id}/heightfield", params={"includeHeights": True}).json()
    assert field["resolution"] == 16
    assert len(field["heights"]) == 16

    sample = client.get(f"/v1/sessions/{session_id}/heightfield/sample", params={"u": 0.5, "v": 0.9})
    sample.raise_for_status()
    assert sample.json()["u"] == 0.5
    assert abs(sample.json()["elevation"] - 75.0) < 1.0
    missing = client.get("/v1/sessions/missing/heightfield/sample", params={"u": 0.5, "v": 0.5})
    assert missing.status_code == 404


def test_session_controls_and_errors(tmp_path):
    client = TestClient(create_app(Settings(data_root=tmp_path, flow_grid_size=16)))

    assert client.get("/v1/sessions/missing").status_code == 404
    assert client.post("/v1/sessions/missing/tick", json={"dt": 0.1}).status_code == 404

    bad_terrain = client.post("/v1/sessions", json={"terrain": {"terrariumPngBase64": "@@not-base64@@"}})
    assert bad_terrain.status_code == 400

    two_sources = client.post("/v1/sessions", json={"terrain": {"flatElevation": 1.0, "heights": [[0, 0], [0, 0]]}})
    assert two_sources.status_code == 422

    session_id = client.post("/v1/sessions", json={}).json()["sessionId"]
    assert client.post(f"/v1/sessions/{session_id}/tick", json={"dt": -1.0}).status_code == 422

    paused = client.put(f"/v1/sessions/{session_id}/paused", json={"paused": True}).json()
    assert paused["paused"] is True
    client.post(f"/v1/sessions/{session_id}/inject", json={"u": 0.5, "v": 0.5}).raise_for_status()
    tick = client.post(f"/v1/sessions/{session_id}/tick", json={"dt": 0.1}).json()
    assert tick["tick"] == 0
    assert tick["totalMass"] > 0

    disabled = client.put(f"/v1/sessions/{session_id}/vents/enabled", json={"enabled": False}).json()
    assert disabled["ventsEnabled"] is False

    exaggerated = client.put(f"/v1/sessions/{session_id}/exaggeration", json={"exaggeration": 2.5}).json()
    assert exaggerated["exaggeration"] == 2.5
    assert client.put(f"/v1/sessions/{session_id}/exaggeration", json={"exaggeration": 0}).status_code == 422

    reloaded = client.put(f"/v1/sessions/{session_id}/terrain", json={"heights": [[0, 1], [2, 3]]}).json()
    assert reloaded["terrainResolution"] == 2
    assert reloaded["totalMass"] == 0


def test_view_state_endpoints(tmp_path):
    client = TestClient(create_app(Settings(data_root=tmp_path)))

    assert client.get("/v1/view-state/camera").status_code == 404

    saved = client.put("/v1/view-state/camera", json={"value": {"position": [1, 2, 3], "zoom": 1.5}})
    saved.raise_for_status()
    loaded = client.get("/v1/view-state/camera").json()
    assert loaded["value"] == {"position": [1, 2, 3], "zoom": 1.5}
    client.put("/v1/view-state/panel", json={"value": {"open": True}}).raise_for_status()
    assert client.get("/v1/view-state").json() == ["camera", "panel"]

    client.delete("/v1/view-state/camera").raise_for_status()
    assert client.delete("/v1/view-state/camera").status_code == 404
    assert client.get("/v1/view-state").json() == ["panel"]
