"""
Status channels and liveness monitors, one of each per stream key.

A channel fans events out to every subscriber queue. The monitor probes the
tracked pid every `interval` seconds while at least one subscriber listens;
it is a second detector of termination next to the supervisor's exit
handler, and both end in the same idempotent cleanup.
"""
import asyncio
import logging
import os
from typing import AsyncIterator, Callable, Dict, Optional, Set

from .jobs import ActiveStream, Status

logger = logging.getLogger(__name__)

CLOSED = object()


class StatusChannel:
    def __init__(self, key: str):
        self.key = key
        self.closed = False
        self._queues: Set[asyncio.Queue] = set()

    @property
    def subscribers(self) -> int:
        return len(self._queues)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        if self.closed:
            queue.put_nowait(CLOSED)
        else:
            self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.discard(queue)

    def publish(self, event: dict) -> None:
        if self.closed:
            return
        for queue in self._queues:
            queue.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for queue in self._queues:
            queue.put_nowait(CLOSED)
        self._queues.clear()


class LivenessMonitor:
    def __init__(
        self,
        handle: ActiveStream,
        channel: StatusChannel,
        interval: float,
        on_lost: Callable[[ActiveStream], None],
    ):
        self.handle = handle
        self.channel = channel
        self.interval = interval
        self.on_lost = on_lost
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"liveness:{self.handle.key}")

    def stop(self) -> None:
        if self.running:
            self._task.cancel()
        self._task = None

    def probe(self) -> Optional[dict]:
        """One liveness check. None means there is nothing to report this round."""
        handle = self.handle
        if handle.finished:
            return None
        if handle.status == Status.SCHEDULED:
            start_at = handle.spec.schedule.start_at
            return {
                "is_streaming": False,
                "scheduled": True,
                "start_time": start_at.isoformat() if start_at else None,
            }
        process = handle.process
        if process is None or process.returncode is not None:
            # Not spawned yet, or exited and the exit handler is about to run
            return None
        try:
            os.kill(process.pid, 0)
        except PermissionError:
            pass
        except OSError:
            logger.warning("Liveness probe: pid %s for %s is gone", process.pid, handle.key)
            self.on_lost(handle)
            return None
        return {"is_streaming": True}

    async def _run(self) -> None:
        # The channel is closed by StatusHub.close() from the terminal transition
        while not self.handle.finished:
            event = self.probe()
            if event is not None:
                self.channel.publish(event)
            await asyncio.sleep(self.interval)


class StatusHub:
    def __init__(self, interval: float, on_lost: Callable[[ActiveStream], None]):
        self.interval = interval
        self.on_lost = on_lost
        self._channels: Dict[str, StatusChannel] = {}
        self._monitors: Dict[str, LivenessMonitor] = {}

    def monitor_running(self, key: str) -> bool:
        monitor = self._monitors.get(key)
        return monitor is not None and monitor.running

    def publish(self, key: str, event: dict) -> None:
        channel = self._channels.get(key)
        if channel is not None:
            channel.publish(event)

    def close(self, key: str, final_event: Optional[dict] = None) -> None:
        """Send a terminal event to current subscribers and tear the key down."""
        monitor = self._monitors.pop(key, None)
        if monitor is not None:
            monitor.stop()
        channel = self._channels.pop(key, None)
        if channel is not None:
            if final_event is not None:
                channel.publish(final_event)
            channel.close()

    def close_all(self) -> None:
        for key in list(self._channels):
            self.close(key)

    def _attach(self, handle: ActiveStream) -> StatusChannel:
        channel = self._channels.get(handle.key)
        if channel is None or channel.closed:
            channel = self._channels[handle.key] = StatusChannel(handle.key)
        monitor = self._monitors.get(handle.key)
        if monitor is None or monitor.handle is not handle:
            if monitor is not None:
                monitor.stop()
            monitor = self._monitors[handle.key] = LivenessMonitor(
                handle, channel, self.interval, self.on_lost
            )
        monitor.channel = channel
        monitor.start()
        return channel

    def _detach(self, key: str, channel: StatusChannel, queue: asyncio.Queue) -> None:
        channel.unsubscribe(queue)
        if channel.subscribers or self._channels.get(key) is not channel:
            return
        # Last listener gone, no point probing any more
        del self._channels[key]
        monitor = self._monitors.pop(key, None)
        if monitor is not None:
            monitor.stop()

    async def subscribe(self, handle: ActiveStream) -> AsyncIterator[dict]:
        channel = self._attach(handle)
        queue = channel.subscribe()
        try:
            while True:
                event = await queue.get()
                if event is CLOSED:
                    return
                yield event
        finally:
            self._detach(handle.key, channel, queue)
