"""
Integration tests for the HTTP surface.

The application runs with its full lifespan against a stub engine, so
channel supervisors are live while the endpoints are exercised.
"""

import asyncio
import json
import os
import subprocess
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from hlsrelay.api import events as events_api
from hlsrelay.api.events import SSE_HEADERS, event_stream, format_sse
from hlsrelay.events.bus import EventBus
from hlsrelay.events.models import EventKind, LifecycleEvent
from hlsrelay.streaming.supervisor import SupervisorState


async def next_frame(stream) -> str:
    return await stream.__anext__()


@pytest.mark.integration
class TestHealthAPI:
    """Tests for /api/health endpoints."""

    def test_health(self, client: TestClient):
        """Service reports healthy while supervisors run."""
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["channels"] == 3
        assert data["subscribers"] == 0
        assert "version" in data

    def test_ffmpeg_missing(self, client: TestClient, app):
        """A bad FFmpeg path is reported, not raised."""
        app.state.config.ffmpeg.path = "/nonexistent/ffmpeg"

        response = client.get("/api/health/ffmpeg")

        assert response.status_code == 200
        assert response.json()["status"] == "error"

    def test_ffmpeg_check_runs_off_the_event_loop(self, client: TestClient):
        """The blocking version check must not stall supervisors."""
        loop_thread = client.portal.call(threading.get_ident)
        check_threads = []

        def fake_run(cmd, **kwargs):
            check_threads.append(threading.get_ident())
            return subprocess.CompletedProcess(cmd, 0, stdout="ffmpeg version 6.1\n", stderr="")

        with patch("hlsrelay.api.health.subprocess.run", side_effect=fake_run):
            response = client.get("/api/health/ffmpeg")

        assert response.status_code == 200
        assert response.json()["version"] == "ffmpeg version 6.1"
        assert len(check_threads) == 1
        assert check_threads[0] != loop_thread

    def test_system(self, client: TestClient, stub_engine):
        """Host resources and per-channel process usage."""
        deadline = time.monotonic() + 2
        while len(stub_engine.running) < 3 and time.monotonic() < deadline:
            time.sleep(0.01)

        response = client.get("/api/health/system")

        assert response.status_code == 200
        data = response.json()
        assert data["cpu_count"] >= 1
        assert "total_gb" in data["output_disk"]
        assert sorted(data["ffmpeg_processes"]) == ["0", "1", "2"]
        assert data["ffmpeg_processes"]["1"]["pid"] == os.getpid()


@pytest.mark.integration
class TestChannelsAPI:
    """Tests for /api/channels endpoints."""

    def test_list_channels(self, client: TestClient):
        """Every configured channel is listed in index order."""
        response = client.get("/api/channels")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [c["channel_id"] for c in data["channels"]] == [0, 1, 2]
        assert data["channels"][1]["manifest_url"] == "/streams/stream1.m3u8"
        assert data["channels"][2]["descriptor"]["source_address"].startswith(
            "udp://127.0.0.1:5002"
        )

    def test_get_channel(self, client: TestClient, app, stub_engine):
        """A single channel reports its supervisor state."""
        group = app.state.supervisors
        deadline = time.monotonic() + 2
        while len(stub_engine.running) < 3 and time.monotonic() < deadline:
            time.sleep(0.01)

        response = client.get("/api/channels/1")

        assert response.status_code == 200
        data = response.json()
        assert data["channel_id"] == 1
        assert data["state"] == SupervisorState.RUNNING.value
        assert group.get(1).state == SupervisorState.RUNNING

    def test_get_channel_not_found(self, client: TestClient):
        """Unknown channel index returns 404."""
        response = client.get("/api/channels/99")

        assert response.status_code == 404


@pytest.mark.integration
class TestStreamsMount:
    """Tests for static HLS output serving."""

    def test_serves_output_directory(self, client: TestClient, relay_config):
        """Files in the output directory are served under /streams."""
        (Path(relay_config.paths.output_dir) / "readme.txt").write_text("hello")

        response = client.get("/streams/readme.txt")

        assert response.status_code == 200
        assert response.text == "hello"

    def test_missing_file(self, client: TestClient):
        """Missing segments return 404."""
        response = client.get("/streams/stream0.m3u8")

        assert response.status_code == 404


@pytest.mark.integration
class TestLifespan:
    """Startup and shutdown wiring."""

    def test_startup_creates_directories(self, client: TestClient, relay_config):
        assert Path(relay_config.paths.output_dir).is_dir()
        assert Path(relay_config.paths.log_dir).is_dir()

    def test_shutdown_stops_supervisors_and_closes_subscriptions(self, app, stub_engine):
        with TestClient(app):
            subscription = app.state.bus.subscribe(label="observer")
            assert app.state.supervisors.is_running

        assert not app.state.supervisors.is_running
        assert stub_engine.running == set()
        assert subscription.closed
        assert app.state.bus.subscriber_count == 0


@pytest.mark.integration
class TestEventsEndpoint:
    """Tests for /events and /api/events/stats."""

    def test_stream_headers(self, client: TestClient, monkeypatch):
        """The endpoint sets SSE headers and streams the generator output."""

        async def finite_stream(bus, label, keepalive_seconds=15.0):
            yield ": connected\n\n"
            yield format_sse(LifecycleEvent(channel_id=2, kind=EventKind.CLOSED))

        monkeypatch.setattr(events_api, "event_stream", finite_stream)

        response = client.get("/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        for name, value in SSE_HEADERS.items():
            if name != "Connection":
                assert response.headers[name] == value
        assert response.text == (
            ": connected\n\n"
            'event: closed\ndata: {"channelId": 2, "eventType": "closed"}\n\n'
        )

    def test_stats(self, client: TestClient, app):
        app.state.bus.subscribe(label="observer")

        response = client.get("/api/events/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["subscribers"] == 1
        assert data["inbox_size"] == 10


@pytest.mark.integration
class TestEventStream:
    """Tests for the per-observer SSE generator."""

    @pytest.mark.asyncio
    async def test_connected_then_events(self):
        bus = EventBus()
        stream = event_stream(bus, "test-client", keepalive_seconds=5)

        assert await stream.__anext__() == ": connected\n\n"
        assert bus.subscriber_count == 1

        bus.broadcast(LifecycleEvent(channel_id=1, kind=EventKind.CLOSED))
        frame = await stream.__anext__()

        assert frame.startswith("event: closed\ndata: ")
        assert frame.endswith("\n\n")
        payload = json.loads(frame.split("data: ", 1)[1])
        assert payload == {"channelId": 1, "eventType": "closed"}

        await stream.aclose()
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_keepalive(self):
        bus = EventBus()
        stream = event_stream(bus, "idle-client", keepalive_seconds=0.05)
        await stream.__anext__()

        assert await stream.__anext__() == ": keepalive\n\n"
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_shutdown_ends_stream(self):
        bus = EventBus()
        stream = event_stream(bus, "client", keepalive_seconds=5)
        await stream.__anext__()

        pending = asyncio.create_task(next_frame(stream))
        await asyncio.sleep(0)
        bus.close_all()

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(pending, timeout=1)
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_client_is_released(self):
        bus = EventBus()
        stream = event_stream(bus, "client", keepalive_seconds=5)
        await stream.__anext__()
        subscription = next(iter(bus._subscribers))

        pending = asyncio.create_task(next_frame(stream))
        await asyncio.sleep(0)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert subscription.closed
        assert bus.subscriber_count == 0
        assert bus.broadcast(LifecycleEvent(channel_id=0, kind=EventKind.CLOSED)) == 0

    @pytest.mark.asyncio
    async def test_frames_follow_broadcast_order(self):
        bus = EventBus()
        stream = event_stream(bus, "client", keepalive_seconds=5)
        await stream.__anext__()

        for channel_id in range(3):
            bus.broadcast(LifecycleEvent(channel_id=channel_id, kind=EventKind.CLOSED))
        frames = [await stream.__anext__() for _ in range(3)]

        ids = [json.loads(f.split("data: ", 1)[1])["channelId"] for f in frames]
        assert ids == [0, 1, 2]
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_transport_gone_releases(self):
        """The server stops iterating when the client's socket goes away."""
        bus = EventBus()
        stream = event_stream(bus, "client", keepalive_seconds=5)
        await stream.__anext__()
        subscription = next(iter(bus._subscribers))
        bus.broadcast(LifecycleEvent(channel_id=1, kind=EventKind.CLOSED))
        await stream.__anext__()

        await stream.aclose()

        assert not bus.is_subscribed(subscription)
        assert subscription.closed
        assert bus.broadcast(LifecycleEvent(channel_id=1, kind=EventKind.CLOSED)) == 0

    @pytest.mark.asyncio
    async def test_one_closed_stream_does_not_affect_another(self):
        bus = EventBus()
        leaving = event_stream(bus, "leaving", keepalive_seconds=5)
        staying = event_stream(bus, "staying", keepalive_seconds=5)
        await leaving.__anext__()
        await staying.__anext__()

        bus.broadcast(LifecycleEvent(channel_id=1, kind=EventKind.CLOSED))
        await leaving.aclose()
        bus.broadcast(LifecycleEvent(channel_id=2, kind=EventKind.CLOSED))

        frames = [await staying.__anext__() for _ in range(2)]
        ids = [json.loads(f.split("data: ", 1)[1])["channelId"] for f in frames]
        assert ids == [1, 2]
        assert bus.subscriber_count == 1
        await staying.aclose()
