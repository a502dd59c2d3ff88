import json
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from django.apps import apps
from django.test import AsyncClient
from django.utils import timezone

from streams.jobs import Status
from streams.manager import StreamManager
from streams.store import DjangoJobStore

from .conftest import video_upload

pytestmark = pytest.mark.django_db(transaction=True)


@pytest_asyncio.fixture
async def api_manager(transactional_db, monkeypatch, files, encoder):
    m = StreamManager(
        DjangoJobStore(),
        files,
        monitor_interval=0.05,
        spawn_grace=0.2,
        stop_timeout=2.0,
        command_builder=encoder,
    )
    monkeypatch.setattr(apps.get_app_config("streams"), "manager", m)
    yield m
    await m.shutdown()


@pytest.fixture
def client():
    return AsyncClient()


def start_form(key="k1", **extra):
    form = {"title": f"Stream {key}", "stream_key": key, "video": video_upload()}
    form.update(extra)
    return form


class TestStartValidation:
    @pytest.mark.asyncio
    async def test_missing_title(self, client, api_manager):
        form = start_form()
        del form["title"]
        response = await client.post("/api/streams/start/", form)
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["message"] == "Title is required."

    @pytest.mark.asyncio
    async def test_missing_video(self, client, api_manager):
        form = start_form()
        del form["video"]
        response = await client.post("/api/streams/start/", form)
        assert response.status_code == 400
        assert response.json()["message"] == "Video file is required."

    @pytest.mark.asyncio
    async def test_video_without_extension(self, client, api_manager, files):
        response = await client.post("/api/streams/start/", start_form(video=video_upload("clip")))
        assert response.status_code == 400
        assert response.json()["message"] == "Video file has no extension."
        assert not files.files

    @pytest.mark.asyncio
    async def test_start_time_in_the_past(self, client, api_manager):
        past = (timezone.now() - timedelta(minutes=1)).isoformat()
        response = await client.post(
            "/api/streams/start/",
            start_form(schedule_enabled="true", schedule_start_enabled="true", schedule_start=past),
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Start time must be in the future."


class TestStreamLifecycle:
    @pytest.mark.asyncio
    async def test_start_list_stop(self, client, api_manager, files):
        response = await client.post("/api/streams/start/", start_form("k1", bitrate="3000", loop="on"))
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Streaming started"
        assert body["stream_key"] == "k1"
        record_id = body["container_id"]

        active = (await client.get("/api/streams/active/")).json()
        assert [item["id"] for item in active] == [record_id]
        assert active[0]["is_streaming"] is True
        assert active[0]["bitrate"] == 3000
        assert active[0]["loop_enabled"] is True
        assert active[0]["registry"]["pid"] is not None

        conflict = await client.post("/api/streams/start/", start_form("k1"))
        assert conflict.status_code == 409
        assert conflict.json()["success"] is False

        response = await client.post(
            "/api/streams/stop/", json.dumps({"stream_key": "k1"}), content_type="application/json"
        )
        assert response.status_code == 200
        assert response.json()["status"] == Status.STOPPED

        history = (await client.get("/api/streams/history/")).json()
        assert [item["id"] for item in history] == [record_id]
        assert history[0]["is_streaming"] is False
        assert not files.files

        listing = (await client.get("/api/streams/")).json()
        assert [item["id"] for item in listing] == [record_id]

    @pytest.mark.asyncio
    async def test_schedule_then_cancel(self, client, api_manager, encoder):
        start = (timezone.now() + timedelta(minutes=5)).isoformat()
        response = await client.post(
            "/api/streams/start/",
            start_form(
                "k2",
                schedule_enabled="true",
                schedule_start_enabled="true",
                schedule_start=start,
                schedule_duration_enabled="true",
                schedule_duration="2",
            ),
        )
        assert response.status_code == 202
        body = response.json()
        assert body["scheduled"] is True
        assert body["duration"] == 2 * 60 * 1000

        schedules = (await client.get("/api/streams/scheduled/")).json()["schedules"]
        assert [s["stream_key"] for s in schedules] == ["k2"]

        response = await client.post("/api/streams/k2/cancel-schedule/")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert (await client.get("/api/streams/scheduled/")).json()["schedules"] == []
        assert encoder.commands == []

        again = await client.post("/api/streams/k2/cancel-schedule/")
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_stop_unknown_key(self, client, api_manager):
        response = await client.post("/api/streams/stop/", {"stream_key": "nobody"})
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Stream not found."}

    @pytest.mark.asyncio
    async def test_stop_with_invalid_json(self, client, api_manager):
        response = await client.post("/api/streams/stop/", "{not json", content_type="application/json")
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestStatusFeed:
    @pytest.mark.asyncio
    async def test_unknown_key(self, client, api_manager):
        response = await client.get("/api/streams/nobody/status/")
        assert response["Content-Type"].startswith("text/event-stream")
        assert response["Cache-Control"] == "no-cache"
        body = b"".join([chunk async for chunk in response.streaming_content])
        assert body == b'data: {"is_streaming": false, "auto_stopped": false}\n\n'


class TestHistory:
    @pytest.mark.asyncio
    async def test_delete_entry(self, client, api_manager):
        response = await client.post("/api/streams/start/", start_form("k1"))
        record_id = response.json()["container_id"]

        refused = await client.delete(f"/api/streams/history/{record_id}/")
        assert refused.status_code == 409

        await client.post("/api/streams/stop/", {"stream_key": "k1"})
        response = await client.delete(f"/api/streams/history/{record_id}/")
        assert response.status_code == 200
        assert (await client.get("/api/streams/history/")).json() == []

    @pytest.mark.asyncio
    async def test_delete_missing_entry(self, client, api_manager):
        response = await client.delete(f"/api/streams/history/{uuid.uuid4()}/")
        assert response.status_code == 404
