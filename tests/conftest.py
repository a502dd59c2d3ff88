import sys
from datetime import timedelta

import pytest
import pytest_asyncio
from django.core.files.uploadedfile import SimpleUploadedFile
from django.utils import timezone

from streams.exceptions import PersistenceError
from streams.jobs import EncodingParams, JobSpec, Schedule, Status
from streams.manager import StreamManager
from streams.models import StreamJob
from streams.utils import generate_stored_name

SLEEPER = "import time; time.sleep(60)"
CRASHER = "import sys, time; time.sleep(0.3); sys.stderr.write('rtmp: connection refused\\n'); sys.exit(1)"
DIES_AT_ONCE = "import sys; sys.stderr.write('moov atom not found\\n'); sys.exit(1)"


class MemoryJobStore:
    """JobStore over unsaved StreamJob instances."""

    def __init__(self):
        self.records = {}
        self.fail_on = set()

    def _check(self, op):
        if op in self.fail_on:
            raise PersistenceError(f"Job store {op} failed: unavailable")

    async def create(self, spec, **fields):
        self._check("create")
        record = StreamJob(**spec.record_fields(), **fields)
        record.created_at = timezone.now()
        self.records[record.id] = record
        return record.id

    async def get(self, record_id):
        return self.records.get(record_id)

    async def update(self, record_id, **fields):
        self._check("update")
        record = self.records.get(record_id)
        if record is None:
            return
        for name, value in fields.items():
            setattr(record, name, value)

    async def delete(self, record_id):
        self._check("delete")
        return self.records.pop(record_id, None) is not None

    async def find_by_key(self, stream_key):
        self._check("find_by_key")
        matches = [r for r in self.records.values() if r.stream_key == stream_key]
        matches.sort(key=lambda r: (r.is_streaming, r.created_at), reverse=True)
        return matches[0] if matches else None

    async def query_active(self):
        return [r for r in self.records.values() if r.is_streaming]

    async def query_all(self):
        return list(self.records.values())

    async def query_history(self):
        return [
            r for r in self.records.values()
            if not r.is_streaming and r.status in (Status.STOPPED, Status.FAILED)
        ]

    async def query_pending_schedules(self):
        return [
            r for r in self.records.values()
            if r.is_streaming and r.status == Status.SCHEDULED
            and r.schedule_enabled and r.schedule_start_enabled and r.schedule_start is not None
        ]

    async def query_interrupted(self):
        return [r for r in self.records.values() if r.is_streaming and r.status != Status.SCHEDULED]


class MemoryFileStore:
    def __init__(self):
        self.files = {}
        self.deleted = []

    async def save(self, upload, prefix):
        name = generate_stored_name(prefix, upload.name)
        self.files[name] = upload.read()
        return name

    def source(self, name):
        return f"/media/uploads/{name}"

    async def delete(self, name):
        self.deleted.append(name)
        self.files.pop(name, None)


class FakeEncoder:
    """Command builder running a small python script in place of ffmpeg."""

    def __init__(self):
        self.scripts = {}
        self.commands = []

    def __call__(self, spec, video_source, audio_source=None, binary="ffmpeg"):
        self.commands.append((spec.stream_key, video_source, audio_source))
        script = self.scripts.get(spec.stream_key, SLEEPER)
        if script is None:
            return ["/nonexistent/encoder-binary"]
        return [sys.executable, "-c", script]


def make_spec(key="k1", start_in=None, duration=None, **overrides) -> JobSpec:
    start_at = timezone.now() + start_in if start_in is not None else None
    fields = dict(
        stream_key=key,
        title=f"Stream {key}",
        stream_url="rtmp://live.example.com/app",
        video_file="",
        encoding=EncodingParams(bitrate=2500),
        schedule=Schedule(
            enabled=start_at is not None or duration is not None,
            start_at=start_at,
            duration_minutes=duration,
        ),
        preview_video="clip.mp4",
    )
    fields.update(overrides)
    return JobSpec(**fields)


def video_upload(name="clip.mp4"):
    return SimpleUploadedFile(name, b"\x00\x00\x00\x18ftypmp42", content_type="video/mp4")


@pytest.fixture
def store():
    return MemoryJobStore()


@pytest.fixture
def files():
    return MemoryFileStore()


@pytest.fixture
def encoder():
    return FakeEncoder()


@pytest.fixture
def fast_durations(monkeypatch):
    """Make a scheduled duration of N minutes last N * 0.3 seconds."""
    def duration(self):
        if not self.enabled or not self.duration_minutes:
            return None
        return timedelta(seconds=0.3 * self.duration_minutes)
    monkeypatch.setattr(Schedule, "duration", property(duration))


@pytest_asyncio.fixture
async def manager(store, files, encoder):
    m = StreamManager(
        store,
        files,
        monitor_interval=0.05,
        spawn_grace=0.2,
        stop_timeout=2.0,
        command_builder=encoder,
    )
    yield m
    await m.shutdown()
