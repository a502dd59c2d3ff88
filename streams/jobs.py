import asyncio
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from django.utils import timezone

from .models import StreamJob

Status = StreamJob.Status

TERMINAL = {Status.STOPPED, Status.FAILED}


class StopReason(str, enum.Enum):
    """Tag attached to a termination signal sent by the supervisor itself."""
    MANUAL = "manual"
    AUTO = "auto"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class EncodingParams:
    bitrate: int                 # kbit/s
    fps: int = 30
    resolution: str = "1280:720"
    loop: bool = False
    audio_enabled: bool = False


@dataclass(frozen=True)
class Schedule:
    enabled: bool = False
    start_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None

    @property
    def is_delayed(self) -> bool:
        return self.enabled and self.start_at is not None

    @property
    def duration(self) -> Optional[timedelta]:
        if not self.enabled or not self.duration_minutes:
            return None
        return timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class JobSpec:
    """Everything needed to (re)build the encoder invocation for one stream key."""
    stream_key: str
    title: str
    stream_url: str
    video_file: str                      # name inside the file store
    encoding: EncodingParams
    audio_file: Optional[str] = None
    schedule: Schedule = Schedule()
    preview_video: str = ""              # original upload names
    preview_audio: Optional[str] = None

    @property
    def target(self) -> str:
        return f"{self.stream_url.rstrip('/')}/{self.stream_key}"

    @property
    def source_files(self) -> List[str]:
        return [name for name in (self.video_file, self.audio_file) if name]

    def record_fields(self) -> dict:
        return {
            "title": self.title,
            "stream_key": self.stream_key,
            "stream_url": self.stream_url,
            "preview_file_video": self.preview_video,
            "preview_file_audio": self.preview_audio,
            "stream_file_video": self.video_file,
            "stream_file_audio": self.audio_file,
            "bitrate": self.encoding.bitrate,
            "fps": self.encoding.fps,
            "resolution": self.encoding.resolution,
            "loop_enabled": self.encoding.loop,
            "audio_enabled": self.encoding.audio_enabled,
            "schedule_enabled": self.schedule.enabled,
            "schedule_start_enabled": self.schedule.start_at is not None,
            "schedule_duration_enabled": self.schedule.duration_minutes is not None,
            "schedule_start": self.schedule.start_at,
            "schedule_duration": self.schedule.duration_minutes,
        }

    @classmethod
    def from_record(cls, record: StreamJob) -> "JobSpec":
        return cls(
            stream_key=record.stream_key,
            title=record.title,
            stream_url=record.stream_url,
            video_file=record.stream_file_video,
            audio_file=record.stream_file_audio or None,
            encoding=EncodingParams(
                bitrate=record.bitrate,
                fps=record.fps,
                resolution=record.resolution,
                loop=record.loop_enabled,
                audio_enabled=record.audio_enabled,
            ),
            schedule=Schedule(
                enabled=record.schedule_enabled,
                start_at=record.schedule_start if record.schedule_start_enabled else None,
                duration_minutes=record.schedule_duration if record.schedule_duration_enabled else None,
            ),
            preview_video=record.preview_file_video,
            preview_audio=record.preview_file_audio,
        )


@dataclass(eq=False)
class ActiveStream:
    """
    Runtime handle for one stream key, owned by the registry.

    `process` is set only while live and `start_timer` only while scheduled.
    `finished` flips once, in ProcessSupervisor.finish().
    """
    spec: JobSpec
    record_id: Optional[uuid.UUID] = None
    status: str = Status.IDLE
    process: Optional[asyncio.subprocess.Process] = None
    start_timer: Optional[asyncio.TimerHandle] = None
    auto_stop_timer: Optional[asyncio.TimerHandle] = None
    kill_timer: Optional[asyncio.TimerHandle] = None
    stop_reason: Optional[StopReason] = None
    error: str = ""
    finished: bool = False
    created_at: datetime = field(default_factory=timezone.now)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    exited: asyncio.Event = field(default_factory=asyncio.Event)   # encoder exit observed
    done: asyncio.Event = field(default_factory=asyncio.Event)     # terminal cleanup finished

    def cancel_timers(self) -> None:
        for name in ("start_timer", "auto_stop_timer", "kill_timer"):
            timer = getattr(self, name)
            if timer is not None:
                timer.cancel()
                setattr(self, name, None)

    @property
    def key(self) -> str:
        return self.spec.stream_key

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def launching(self) -> bool:
        """Start timer already fired but the process is not up yet."""
        return self.status == Status.SCHEDULED and self.start_timer is None

    def snapshot(self) -> dict:
        start_at = self.spec.schedule.start_at
        duration = self.spec.schedule.duration
        return {
            "stream_key": self.key,
            "title": self.spec.title,
            "status": str(self.status),
            "container_id": str(self.record_id) if self.record_id else None,
            "pid": self.pid,
            "start_time": start_at.isoformat() if start_at else None,
            "duration": int(duration.total_seconds() * 1000) if duration else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }
