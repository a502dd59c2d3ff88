"""
Start timers, auto-stop timers and schedule recovery.

Timers are plain loop.call_later() handles. The delay is taken from the wall
clock when the timer is armed, so a schedule recovered after a restart still
fires at its original start time.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from django.utils import timezone

from .exceptions import InvalidJob, JobNotFound, SpawnError
from .jobs import ActiveStream, JobSpec, Status, StopReason
from .monitor import StatusHub
from .registry import StreamRegistry
from .store import JobStore
from .supervisor import ProcessSupervisor
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)

ELAPSED_FAIL = "fail"
ELAPSED_START = "start"


class Scheduler:
    def __init__(
        self,
        registry: StreamRegistry,
        store: JobStore,
        supervisor: ProcessSupervisor,
        hub: StatusHub,
        tasks: BackgroundTasks,
        *,
        elapsed_policy: str = ELAPSED_FAIL,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.registry = registry
        self.store = store
        self.supervisor = supervisor
        self.hub = hub
        self.tasks = tasks
        self.elapsed_policy = elapsed_policy
        self.clock = clock

    def schedule(self, handle: ActiveStream, now: Optional[datetime] = None) -> ActiveStream:
        start_at = handle.spec.schedule.start_at
        if start_at is None:
            raise InvalidJob("Schedule has no start time.")
        delay = (start_at - (now or self.clock())).total_seconds()
        if delay <= 0:
            raise InvalidJob("Schedule start time must be in the future.")
        loop = asyncio.get_running_loop()
        handle.start_timer = loop.call_later(delay, self._timer_fired, handle)
        handle.status = Status.SCHEDULED
        logger.info("Scheduled %s to start in %.0f seconds (at %s)", handle.key, delay, start_at.isoformat())
        return handle

    def _timer_fired(self, handle: ActiveStream) -> None:
        handle.start_timer = None
        if handle.finished:
            return
        self.tasks.spawn(self._fire(handle), name=f"schedule:{handle.key}")

    async def _fire(self, handle: ActiveStream) -> None:
        logger.info("Start time reached for %s", handle.key)
        try:
            await self.supervisor.launch(handle)
        except Exception as e:
            detail = str(getattr(e, "detail", e))
            if isinstance(e, SpawnError):
                logger.error("Scheduled stream %s failed to start: %s", handle.key, detail)
            else:
                logger.exception("Scheduled stream %s failed to start", handle.key)
            self.supervisor.finish(handle, Status.FAILED, error=detail)
            return
        if handle.finished:
            return
        self.hub.publish(handle.key, {"event": "schedule_started", "is_streaming": True})
        self.arm_auto_stop(handle)

    def arm_auto_stop(self, handle: ActiveStream, duration: Optional[timedelta] = None):
        """
        Stop `handle` once `duration` (default: the job's scheduled duration)
        has passed since its process started.
        """
        duration = duration or handle.spec.schedule.duration
        if not duration or handle.finished:
            return None
        delay = duration.total_seconds()
        if handle.started_at is not None:
            delay -= (timezone.now() - handle.started_at).total_seconds()
        loop = asyncio.get_running_loop()
        handle.auto_stop_timer = loop.call_later(max(delay, 0), self._auto_stop_fired, handle)
        logger.info("Auto-stop for %s armed in %.0f seconds", handle.key, max(delay, 0))
        return handle.auto_stop_timer

    def _auto_stop_fired(self, handle: ActiveStream) -> None:
        handle.auto_stop_timer = None
        if handle.finished:
            return
        logger.info("Duration elapsed for %s", handle.key)
        self.supervisor.request_stop(handle, StopReason.AUTO)

    def cancel(self, key: str) -> ActiveStream:
        """
        Cancel a pending schedule. A schedule that already fired is stopped
        through the normal stop path instead; the caller can wait on
        `handle.done` either way.
        """
        handle = self.registry.lookup(key)
        if handle is None or handle.finished:
            raise JobNotFound("Schedule not found.")
        if handle.status == Status.SCHEDULED and handle.start_timer is not None:
            logger.info("Cancelling schedule for %s", key)
            handle.start_timer.cancel()
            handle.start_timer = None
            self.supervisor.finish(handle, Status.STOPPED)
        else:
            self.supervisor.request_stop(handle, StopReason.MANUAL)
        return handle

    async def recover(self) -> dict:
        """Re-arm every persisted schedule that is still pending."""
        now = self.clock()
        counts = {"rearmed": 0, "started": 0, "failed": 0, "skipped": 0}
        for record in await self.store.query_pending_schedules():
            spec = JobSpec.from_record(record)
            if not await self.registry.try_reserve(spec.stream_key, record_id=record.id):
                logger.warning(
                    "Not recovering schedule %s: stream key %s is already taken", record.id, spec.stream_key
                )
                counts["skipped"] += 1
                continue
            handle = ActiveStream(spec=spec, record_id=record.id, created_at=record.created_at)
            self.registry.commit(spec.stream_key, handle)

            if spec.schedule.start_at > now:
                self.schedule(handle, now=now)
                counts["rearmed"] += 1
            elif self.elapsed_policy == ELAPSED_START:
                logger.warning("Schedule for %s elapsed during downtime, starting now", spec.stream_key)
                handle.status = Status.SCHEDULED
                self._timer_fired(handle)
                counts["started"] += 1
            else:
                logger.warning("Schedule for %s elapsed during downtime, marking failed", spec.stream_key)
                self.supervisor.finish(handle, Status.FAILED, error="Schedule elapsed while the service was down")
                counts["failed"] += 1
        logger.info("Schedule recovery: %s", counts)
        return counts
