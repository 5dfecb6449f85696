"""
Tests for FastAPI Routes
========================

Tests for:
- Health endpoints
- Task start, status, listing and cancellation
- Request validation
- Device console inspection and gestures
"""

import subprocess
import time
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.agent.console import DeviceConsole
from app.agent.decision import DecisionClient
from app.agent.task_loop import LoopConfig, TaskLoop
from app.api.routes.device import get_device_console
from app.api.routes.tasks import TaskRecord, _tasks, get_loop_factory
from app.capture.coordinator import CaptureConfig, CaptureCoordinator
from app.config import LLMSettings, Settings, get_settings
from app.device.adb import AdbBridge
from app.main import app
from app.perception.annotator import ScreenAnnotator
from tests.conftest import (
    FakeCaptureSession,
    FakeGestureSink,
    FakeUiTree,
    FakeVisionModel,
    SAMPLE_DUMP,
    make_png,
    reply,
)

TERMINAL = {"COMPLETED", "CANCELLED", "FAILED", "ROUND_LIMIT_REACHED"}


@pytest.fixture(autouse=True)
def clean_registry():
    _tasks.clear()
    yield
    _tasks.clear()
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Create test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def use_fake_loops(sample_root, tmp_path):
    """
    Route task loops through in-memory fakes.

    Returns a function taking the scripted model replies.
    """

    def _install(*replies, delay: float = 0.0, fail_with: Exception = None):
        def factory(request, settings, on_progress):
            @asynccontextmanager
            async def runtime():
                if fail_with is not None:
                    raise fail_with
                session = FakeCaptureSession(make_png())
                yield TaskLoop(
                    capture=CaptureCoordinator(
                        session,
                        CaptureConfig(settle_delay=0.0, callback_timeout=0.05, poll_attempts=1, poll_delay=0.0),
                    ),
                    ui_tree=FakeUiTree(sample_root),
                    gesture_sink=FakeGestureSink(),
                    decision=DecisionClient(FakeVisionModel(*replies, delay=delay)),
                    annotator=ScreenAnnotator(tmp_path),
                    config=LoopConfig(
                        max_rounds=request.max_rounds or 3,
                        request_interval=0.0,
                        settle_delay=0.0,
                    ),
                    on_progress=on_progress,
                )

            return runtime()

        app.dependency_overrides[get_loop_factory] = lambda: factory

    return _install


def _wait_for_status(client, task_id: str, statuses=TERMINAL, timeout: float = 3.0) -> dict:
    """Poll the status endpoint until the task reaches one of ``statuses``."""
    deadline = time.monotonic() + timeout
    while True:
        data = client.get(f"/tasks/{task_id}").json()
        if data["status"] in statuses:
            return data
        if time.monotonic() > deadline:
            raise AssertionError(f"task {task_id} stuck in {data['status']}")
        time.sleep(0.02)


class TestHealthRoutes:
    """Tests for health check endpoints."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    def test_liveness_check(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness_with_credentials(self, client):
        app.dependency_overrides[get_settings] = lambda: Settings(
            llm=LLMSettings(llm_provider="openai", llm_api_key="sk-real-key")
        )

        response = client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["llm_configured"] is True
        assert "adb_available" in data["checks"]

    def test_readiness_without_credentials(self, client):
        app.dependency_overrides[get_settings] = lambda: Settings(
            llm=LLMSettings(llm_provider="openai", llm_api_key="")
        )

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["detail"]["checks"]["llm_configured"] is False

    def test_service_info(self, client):
        response = client.get("/health/info")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "screen-pilot-agent"
        assert "version" in data
        assert "max_rounds" in data["config"]
        assert "llm_model" in data["config"]


class TestRootEndpoint:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Screen Pilot Agent"
        assert data["tasks"] == "/tasks"

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc123"})

        assert response.headers["X-Request-ID"] == "abc123"
        assert response.headers["X-Response-Time"].endswith("ms")


class TestTaskRoutes:
    def test_task_completes(self, client, use_fake_loops):
        use_fake_loops(reply("tap(1)", summary="Tapped OK."), reply("FINISH", summary="Done."))

        response = client.post("/tasks", json={"task": "press ok"})

        assert response.status_code == 202
        task_id = response.json()["task_id"]

        data = _wait_for_status(client, task_id)
        assert data["status"] == "COMPLETED"
        assert data["task"] == "press ok"
        assert data["result"]["completed"] is True
        assert data["result"]["message"] == "Done."
        assert data["current_round"] == 2
        assert [p["round"] for p in data["progress"]] == [1, 2]
        assert data["progress"][0]["action"] == "tap(1) at (30, 20)"

    def test_round_budget_override(self, client, use_fake_loops):
        use_fake_loops(reply("tap(2)"))

        response = client.post("/tasks", json={"task": "keep going", "max_rounds": 2})
        data = _wait_for_status(client, response.json()["task_id"])

        assert data["status"] == "ROUND_LIMIT_REACHED"
        assert data["result"]["success"] is True
        assert data["result"]["rounds"] == 2

    def test_second_task_conflicts_while_running(self, client, use_fake_loops):
        use_fake_loops(reply("tap(1)"), delay=10.0)

        first = client.post("/tasks", json={"task": "slow"})
        second = client.post("/tasks", json={"task": "another"})

        assert first.status_code == 202
        assert second.status_code == 409

        client.post(f"/tasks/{first.json()['task_id']}/cancel")
        _wait_for_status(client, first.json()["task_id"])

    def test_cancel_running_task(self, client, use_fake_loops):
        use_fake_loops(reply("tap(1)"), delay=10.0)
        task_id = client.post("/tasks", json={"task": "slow"}).json()["task_id"]

        response = client.post(f"/tasks/{task_id}/cancel")

        assert response.status_code == 200
        data = _wait_for_status(client, task_id)
        assert data["status"] == "CANCELLED"
        assert data["result"]["success"] is False

    def test_new_task_after_previous_finished(self, client, use_fake_loops):
        use_fake_loops(reply("FINISH"))

        first = client.post("/tasks", json={"task": "one"}).json()["task_id"]
        _wait_for_status(client, first)
        second = client.post("/tasks", json={"task": "two"})

        assert second.status_code == 202
        _wait_for_status(client, second.json()["task_id"])

        listed = client.get("/tasks").json()
        assert [t["task"] for t in listed] == ["two", "one"]

    def test_runtime_failure_is_reported(self, client, use_fake_loops):
        use_fake_loops(fail_with=RuntimeError("No ADB device available for screen capture"))

        task_id = client.post("/tasks", json={"task": "x"}).json()["task_id"]
        data = _wait_for_status(client, task_id)

        assert data["status"] == "FAILED"
        assert "No ADB device" in data["error"]

    def test_unknown_task(self, client):
        assert client.get("/tasks/nope").status_code == 404
        assert client.post("/tasks/nope/cancel").status_code == 404

    @pytest.mark.parametrize(
        "body",
        [
            {"task": ""},
            {"task": "   "},
            {},
            {"task": "x", "max_rounds": 0},
            {"task": "x" * 1001},
        ],
    )
    def test_invalid_request(self, client, body):
        assert client.post("/tasks", json=body).status_code == 422

    def test_task_is_stripped(self, client, use_fake_loops):
        use_fake_loops(reply("FINISH"))

        task_id = client.post("/tasks", json={"task": "  open clock  "}).json()["task_id"]

        assert _wait_for_status(client, task_id)["task"] == "open clock"


# ===================================================================
# Device console
# ===================================================================


def _fake_adb(*args, **kwargs):
    outputs = {
        ("shell", "wm", "size"): "Physical size: 1080x2340\nOverride size: 720x1560\n",
        ("shell", "wm", "density"): "Physical density: 420\n",
        ("shell", "cat", "/sdcard/window_dump.xml"): SAMPLE_DUMP,
    }
    return subprocess.CompletedProcess(args=["adb", *args], returncode=0, stdout=outputs.get(args, ""), stderr="")


@pytest.fixture
def device_bridge():
    bridge = AdbBridge(serial="emulator-5554", adb_path="/usr/bin/adb")
    bridge.connected = True
    bridge.run = AsyncMock(side_effect=_fake_adb)
    bridge.run_bytes = AsyncMock(return_value=make_png((1080, 2340)))
    return bridge


@pytest.fixture
def use_fake_device(device_bridge, tmp_path):
    """Serve the device console over a scripted bridge."""
    console = DeviceConsole(device_bridge, ScreenAnnotator(tmp_path / "inspect"))
    app.dependency_overrides[get_device_console] = lambda: console
    return console


class TestDeviceRoutes:
    def test_info(self, client, use_fake_device):
        response = client.get("/device/info")

        assert response.status_code == 200
        assert response.json() == {
            "serial": "emulator-5554",
            "width": 720,
            "height": 1560,
            "physical_width": 1080,
            "physical_height": 2340,
            "dpi": 420,
            "density": 2.625,
        }

    def test_ui_dump(self, client, use_fake_device):
        response = client.get("/device/ui-dump")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<hierarchy" in response.text

    def test_ui_dump_failure(self, client, use_fake_device, device_bridge):
        device_bridge.run = AsyncMock(
            return_value=subprocess.CompletedProcess(args=["adb"], returncode=1, stdout="", stderr="idle")
        )

        assert client.get("/device/ui-dump").status_code == 502

    def test_elements(self, client, use_fake_device, tmp_path):
        response = client.get("/device/elements")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert [e["label"] for e in data["elements"]] == [1, 2]
        assert data["elements"][0]["id"] == "com.android.settings.id_title"
        assert data["annotated_path"].endswith("_labeled.png")
        assert len(list((tmp_path / "inspect").glob("inspect_*_labeled.png"))) == 1

    @pytest.mark.parametrize("annotated", ["false", "true"])
    def test_screenshot(self, client, use_fake_device, annotated):
        response = client.get("/device/screenshot", params={"annotated": annotated})

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    def test_screenshot_failure(self, client, use_fake_device, device_bridge):
        device_bridge.run_bytes = AsyncMock(side_effect=RuntimeError("ADB command failed"))

        assert client.get("/device/screenshot").status_code == 502

    @pytest.mark.parametrize(
        "path,body,command",
        [
            ("/device/tap", {"x": 540, "y": 300}, ("shell", "input", "tap", "540", "300")),
            (
                "/device/long-press",
                {"x": 540, "y": 300, "duration_ms": 800},
                ("shell", "input", "swipe", "540", "300", "540", "300", "800"),
            ),
            (
                "/device/swipe",
                {"start_x": 200, "start_y": 600, "end_x": 200, "end_y": 100},
                ("shell", "input", "swipe", "200", "600", "200", "100", "500"),
            ),
            ("/device/back", None, ("shell", "input", "keyevent", "KEYCODE_BACK")),
        ],
    )
    def test_gestures(self, client, use_fake_device, device_bridge, path, body, command):
        response = client.post(path, json=body)

        assert response.status_code == 200
        assert response.json()["completed"] is True
        device_bridge.run.assert_awaited_once_with(*command)

    def test_text(self, client, use_fake_device, device_bridge):
        response = client.post("/device/text", json={"text": "hi there"})

        assert response.json()["completed"] is True
        assert device_bridge.run.await_args_list[-1].args == ("shell", "input", "text", "hi%sthere")

    def test_invalid_coordinates(self, client, use_fake_device):
        assert client.post("/device/tap", json={"x": -1, "y": 10}).status_code == 422

    def test_gestures_refused_while_task_runs(self, client, use_fake_device, device_bridge):
        _tasks["busy"] = TaskRecord(task_id="busy", task="open clock")

        response = client.post("/device/tap", json={"x": 1, "y": 1})

        assert response.status_code == 409
        device_bridge.run.assert_not_awaited()

    def test_inspection_allowed_while_task_runs(self, client, use_fake_device):
        _tasks["busy"] = TaskRecord(task_id="busy", task="open clock")

        assert client.get("/device/info").status_code == 200

    def test_disconnected_device(self, client, use_fake_device, device_bridge):
        device_bridge.connected = False

        assert client.get("/device/info").status_code == 503
        assert client.post("/device/back").status_code == 503
