from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "web"))
sys.path.insert(0, str(ROOT / "tests"))

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from fakes import CountingSource
from hostpulse_core.config import DaemonConfig
from hostpulse_core.service import MetricsService
from hostpulse_web import app as web_app
from hostpulse_web import create_app


def _service(max_subscribers: int = 100, static_dir: str | None = None, **broadcast) -> MetricsService:
    cfg = DaemonConfig()
    for key, value in broadcast.items():
        setattr(cfg.broadcast, key, value)
    cfg.sampling.warmup_ms = 10
    cfg.history.capacity = 5
    cfg.broadcast.max_subscribers = max_subscribers
    cfg.server.static_dir = static_dir
    return MetricsService(cfg, source=CountingSource())


@pytest.fixture()
def service():
    svc = _service()
    yield svc
    svc.stop()


@pytest.fixture()
def client(service):
    with TestClient(create_app(service, manage_service=False)) as c:
        yield c


def test_snapshot_unavailable_until_first_tick(client, service) -> None:
    assert client.get("/api/snapshot").status_code == 503

    service.sampler.tick()
    resp = client.get("/api/snapshot")
    assert resp.status_code == 200
    body = resp.json()
    assert body["sequence"] == 1
    assert body["cpu"]["usage_percent"] == 30.0
    assert body["display"]["cpu"] == "30.0%"
    assert body["source"] == "scripted"


def test_history_is_bounded_and_ordered(client, service) -> None:
    for _ in range(7):
        service.sampler.tick()
    history = client.get("/api/history").json()
    assert [s["sequence"] for s in history] == [3, 4, 5, 6, 7]


def test_health_and_clients(client, service) -> None:
    service.sampler.tick()
    handle = service.subscribe()

    health = client.get("/api/health").json()
    assert health["service"] == "hostpulse"
    assert health["source"] == "counting"
    assert health["subscribers"] == 1
    assert health["last_sequence"] == 1

    clients = client.get("/api/clients").json()
    assert [c["id"] for c in clients] == [handle.id]
    assert clients[0]["queue_depth"] == 0


def test_cors_header_present(client) -> None:
    resp = client.get("/api/health", headers={"Origin": "http://dashboard.local"})
    assert resp.headers.get("access-control-allow-origin") == "*"


def test_websocket_backfill_then_live(client, service) -> None:
    for _ in range(3):
        service.sampler.tick()

    with client.websocket_connect("/ws") as ws:
        backfill = [ws.receive_json()["sequence"] for _ in range(3)]
        assert backfill == [1, 2, 3]

        service.sampler.tick()
        live = ws.receive_json()
        assert live["sequence"] == 4
        assert "display" in live


def test_websocket_rejected_at_subscriber_limit() -> None:
    svc = _service(max_subscribers=1)
    try:
        svc.subscribe()
        with TestClient(create_app(svc, manage_service=False)) as c:
            with c.websocket_connect("/ws") as ws:
                with pytest.raises(WebSocketDisconnect) as exc:
                    ws.receive_json()
        assert exc.value.code == 1013
    finally:
        svc.stop()


def _wait_for(condition, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def test_websocket_stalled_client_closed_with_policy_violation(monkeypatch) -> None:
    svc = _service(queue_depth=1, stall_threshold=1)
    entered = threading.Event()
    release = threading.Event()
    encode = web_app.snapshot_to_dict

    def slow_encode(snapshot):
        # holds the handler mid-send, as a client that stopped reading would
        entered.set()
        release.wait(5)
        return encode(snapshot)

    monkeypatch.setattr(web_app, "snapshot_to_dict", slow_encode)
    try:
        with TestClient(create_app(svc, manage_service=False)) as c:
            with c.websocket_connect("/ws") as ws:
                assert _wait_for(lambda: svc.broadcaster.subscriber_count == 1)
                svc.sampler.tick()
                assert entered.wait(5)

                for _ in range(4):
                    svc.sampler.tick()
                assert svc.broadcaster.evicted == 1
                assert svc.broadcaster.subscriber_count == 0

                release.set()
                assert ws.receive_json()["sequence"] == 1
                with pytest.raises(WebSocketDisconnect) as exc:
                    ws.receive_json()
        assert exc.value.code == 1008
    finally:
        release.set()
        svc.stop()


def test_static_dashboard_served(tmp_path) -> None:
    (tmp_path / "index.html").write_text("<h1>dashboard</h1>", encoding="utf-8")
    svc = _service(static_dir=str(tmp_path))
    try:
        with TestClient(create_app(svc, manage_service=False)) as c:
            assert "dashboard" in c.get("/").text
            assert c.get("/api/health").status_code == 200
    finally:
        svc.stop()
