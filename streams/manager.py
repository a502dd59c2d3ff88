"""
Stream job lifecycle manager.

Owns the registry, scheduler, supervisor and status hub for one process.
The streams AppConfig creates one instance at startup; the ASGI lifespan
handler runs recover() and shutdown() around the server's lifetime.
"""
import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import AsyncIterator, Callable, List, Optional

from django.conf import settings
from django.utils import timezone

from .encoder import build_command
from .exceptions import InvalidJob, JobNotFound, StreamKeyInUse
from .files import get_file_store
from .jobs import ActiveStream, JobSpec, Status, StopReason
from .monitor import StatusHub
from .registry import StreamRegistry
from .scheduler import ELAPSED_FAIL, Scheduler
from .store import DjangoJobStore, JobStore
from .supervisor import ProcessSupervisor
from .tasks import BackgroundTasks
from .utils import AUDIO_PREFIX, VIDEO_PREFIX

logger = logging.getLogger(__name__)

# Sole event for a key with nothing registered. auto_stopped stays false: no
# duration timer ended a job for this key.
NOT_STREAMING = {"is_streaming": False, "auto_stopped": False}


class StreamManager:
    def __init__(
        self,
        store: JobStore,
        files,
        *,
        binary: str = "ffmpeg",
        monitor_interval: float = 5.0,
        spawn_grace: float = 5.0,
        stop_timeout: float = 10.0,
        elapsed_policy: str = ELAPSED_FAIL,
        command_builder: Callable = build_command,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.files = files
        self.clock = clock
        self.stop_timeout = stop_timeout
        self.tasks = BackgroundTasks()
        self.registry = StreamRegistry(store)
        self.hub = StatusHub(monitor_interval, on_lost=self._process_lost)
        self.supervisor = ProcessSupervisor(
            self.registry, store, files, self.hub, self.tasks,
            binary=binary,
            spawn_grace=spawn_grace,
            stop_timeout=stop_timeout,
            command_builder=command_builder,
        )
        self.scheduler = Scheduler(
            self.registry, store, self.supervisor, self.hub, self.tasks,
            elapsed_policy=elapsed_policy,
            clock=clock,
        )

    @classmethod
    def from_settings(cls) -> "StreamManager":
        return cls(
            DjangoJobStore(),
            get_file_store(),
            binary=settings.FFMPEG_BINARY,
            monitor_interval=settings.STREAM_MONITOR_INTERVAL,
            spawn_grace=settings.STREAM_SPAWN_GRACE,
            stop_timeout=settings.STREAM_STOP_TIMEOUT,
            elapsed_policy=settings.STREAM_ELAPSED_SCHEDULE_POLICY,
        )

    def _process_lost(self, handle: ActiveStream) -> None:
        self.supervisor.process_lost(handle)

    async def _wait_done(self, handle: ActiveStream) -> None:
        try:
            await asyncio.wait_for(handle.done.wait(), self.stop_timeout + 5)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for %s to finish cleanup", handle.key)

    async def _discard(self, names) -> None:
        for name in names:
            if name:
                await self.files.delete(name)

    async def start(self, spec: JobSpec, video=None, audio=None) -> ActiveStream:
        """
        Submit a job. With `video`/`audio` upload objects the sources are
        stored only after the key is reserved, and removed again if the
        submission fails before the job is registered. Files named in `spec`
        by the caller are the caller's to roll back until then.
        """
        schedule = spec.schedule
        if schedule.is_delayed and schedule.start_at <= self.clock():
            raise InvalidJob("Schedule start time must be in the future.")
        if not await self.registry.try_reserve(spec.stream_key):
            raise StreamKeyInUse()

        stored = []
        try:
            if video is not None:
                spec = dataclasses.replace(spec, video_file=await self.files.save(video, VIDEO_PREFIX))
                stored.append(spec.video_file)
            if audio is not None:
                spec = dataclasses.replace(spec, audio_file=await self.files.save(audio, AUDIO_PREFIX))
                stored.append(spec.audio_file)
            record_id = await self.store.create(
                spec,
                is_streaming=True,
                status=Status.SCHEDULED if schedule.is_delayed else Status.IDLE,
            )
        except BaseException:
            self.registry.release(spec.stream_key)
            await self._discard(stored)
            raise

        handle = ActiveStream(spec=spec, record_id=record_id)
        self.registry.commit(spec.stream_key, handle)

        if schedule.is_delayed:
            try:
                self.scheduler.schedule(handle)
            except InvalidJob:
                self.supervisor.finish(handle, Status.FAILED, error="Schedule start time passed")
                await self._wait_done(handle)
                raise
            return handle

        try:
            await self.supervisor.launch(handle)
        except Exception as e:
            self.supervisor.finish(handle, Status.FAILED, error=str(e))
            await self._wait_done(handle)
            raise
        self.scheduler.arm_auto_stop(handle)
        return handle

    async def stop(self, key: str) -> ActiveStream:
        handle = self.registry.lookup(key)
        if handle is None or handle.finished:
            raise JobNotFound()
        if handle.status == Status.SCHEDULED and handle.start_timer is not None:
            # Not live yet: stopping a pending schedule is cancelling it
            self.scheduler.cancel(key)
        else:
            self.supervisor.request_stop(handle, StopReason.MANUAL)
        await self._wait_done(handle)
        return handle

    async def cancel_schedule(self, key: str) -> ActiveStream:
        handle = self.scheduler.cancel(key)
        await self._wait_done(handle)
        return handle

    async def subscribe(self, key: str) -> AsyncIterator[dict]:
        """Status events for `key` until the job ends or the caller goes away."""
        handle = self.registry.lookup(key)
        if handle is None or handle.finished:
            yield dict(NOT_STREAMING)
            return
        async for event in self.hub.subscribe(handle):
            yield event

    def scheduled(self) -> List[ActiveStream]:
        return sorted(self.registry.scheduled(), key=lambda h: h.spec.schedule.start_at)

    def lookup(self, key: str) -> Optional[ActiveStream]:
        return self.registry.lookup(key)

    async def active_records(self):
        return await self.store.query_active()

    async def all_records(self):
        return await self.store.query_all()

    async def history(self):
        return await self.store.query_history()

    async def delete_history(self, record_id) -> None:
        record = await self.store.get(record_id)
        if record is None:
            raise JobNotFound("History entry not found.")
        if record.is_streaming:
            raise StreamKeyInUse("Stream is still active, stop it before deleting its history.")
        await self.store.delete(record_id)

    async def recover(self) -> dict:
        """
        Startup pass over the job store: close records whose encoder died
        with the previous process, then re-arm pending schedules.
        """
        now = self.clock()
        interrupted = 0
        for record in await self.store.query_interrupted():
            logger.warning("Stream %s was live when the service stopped, closing it", record.stream_key)
            await self.store.update(
                record.id,
                status=Status.STOPPED,
                is_streaming=False,
                ended_at=now,
                error="Interrupted by service restart",
            )
            await self._discard(JobSpec.from_record(record).source_files)
            interrupted += 1
        counts = await self.scheduler.recover()
        counts["interrupted"] = interrupted
        return counts

    async def shutdown(self) -> None:
        """
        Stop every live encoder. Pending schedules only lose their timers;
        their records stay as they are so recover() re-arms them.
        """
        waiting = []
        for handle in self.registry.handles():
            if handle.status == Status.SCHEDULED and handle.start_timer is not None:
                handle.cancel_timers()
                self.registry.release(handle.key, handle)
                continue
            self.supervisor.request_stop(handle, StopReason.SHUTDOWN)
            waiting.append(handle)
        if waiting:
            logger.info("Stopping %d live stream(s) for shutdown", len(waiting))
            await asyncio.gather(*(self._wait_done(h) for h in waiting))
        self.hub.close_all()
        await self.tasks.drain(timeout=self.stop_timeout)
