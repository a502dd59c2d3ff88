"""
Encoder process ownership for one stream key at a time.

Every way a live job can end feeds finish(): the exit watcher (completed or
errored), a stop request (the watcher sees the tagged exit), and a failed
liveness probe. finish() runs once per handle; later calls are no-ops.
"""
import asyncio
import logging
import re
import shlex
import signal
from collections import deque
from typing import Callable, List, Optional

from django.utils import timezone

from .encoder import build_command
from .exceptions import EncoderCrashed, PersistenceError, SpawnError
from .jobs import ActiveStream, Status, StopReason
from .monitor import StatusHub
from .registry import StreamRegistry
from .store import JobStore
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20
_LINE_BREAK = re.compile(rb"[\r\n]")


def terminal_event(handle: ActiveStream) -> dict:
    return {
        "is_streaming": False,
        "auto_stopped": handle.stop_reason == StopReason.AUTO,
        "status": str(handle.status),
    }


class ProcessSupervisor:
    def __init__(
        self,
        registry: StreamRegistry,
        store: JobStore,
        files,
        hub: StatusHub,
        tasks: BackgroundTasks,
        *,
        binary: str = "ffmpeg",
        spawn_grace: float = 5.0,
        stop_timeout: float = 10.0,
        command_builder: Callable[..., List[str]] = build_command,
    ):
        self.registry = registry
        self.store = store
        self.files = files
        self.hub = hub
        self.tasks = tasks
        self.binary = binary
        self.spawn_grace = spawn_grace
        self.stop_timeout = stop_timeout
        self.command_builder = command_builder

    def command_for(self, handle: ActiveStream) -> List[str]:
        spec = handle.spec
        video = self.files.source(spec.video_file)
        audio = None
        if spec.encoding.audio_enabled and spec.audio_file:
            audio = self.files.source(spec.audio_file)
        return self.command_builder(spec, video, audio, binary=self.binary)

    async def launch(self, handle: ActiveStream) -> ActiveStream:
        """
        Spawn the encoder for `handle` and move it to live.

        Raises SpawnError when the process cannot be created, or when it dies
        with an error inside the spawn grace window. In the latter case the
        terminal cleanup has already run.
        """
        cmd = self.command_for(handle)
        logger.info("Starting encoder for %s (%s)", handle.key, handle.spec.title)
        logger.debug("Encoder command: %s", shlex.join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.error("Encoder for %s could not be spawned: %s", handle.key, e)
            raise SpawnError(f"Could not start encoder: {e}") from e

        handle.process = process
        handle.status = Status.LIVE
        handle.started_at = timezone.now()
        self.tasks.spawn(self._watch(handle), name=f"encoder:{handle.key}")
        logger.info("Encoder for %s running as pid %s", handle.key, process.pid)

        if handle.stop_reason is not None:
            # Stop arrived while the start timer's launch was in flight
            self.request_stop(handle, handle.stop_reason)

        if handle.record_id is not None and not handle.finished:
            try:
                await self.store.update(
                    handle.record_id,
                    status=Status.LIVE,
                    is_streaming=True,
                    started_at=handle.started_at,
                )
            except PersistenceError:
                logger.error("Could not record %s as live, stream keeps running", handle.key)

        if self.spawn_grace > 0 and not handle.exited.is_set():
            try:
                await asyncio.wait_for(handle.exited.wait(), self.spawn_grace)
            except asyncio.TimeoutError:
                pass
        if handle.finished and handle.status == Status.FAILED:
            raise SpawnError(f"Encoder exited during startup: {handle.error}")
        return handle

    async def _watch(self, handle: ActiveStream) -> None:
        process = handle.process
        tail = deque(maxlen=STDERR_TAIL_LINES)
        pending = b""
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            *lines, pending = _LINE_BREAK.split(pending + chunk)
            pending = pending[-4096:]
            for raw in lines:
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    tail.append(line)
                    logger.debug("[%s] %s", handle.key, line)
        returncode = await process.wait()
        self._on_exit(handle, returncode, "\n".join(tail))

    def _on_exit(self, handle: ActiveStream, returncode: int, stderr_tail: str) -> None:
        if handle.stop_reason is not None:
            # ffmpeg reports our SIGTERM as exit 255 ("Exiting normally, received signal 15")
            logger.info(
                "Encoder for %s stopped (%s, exit %s)", handle.key, handle.stop_reason.value, returncode
            )
            self.finish(handle, Status.STOPPED)
        elif returncode == 0:
            logger.info("Encoder for %s finished", handle.key)
            self.finish(handle, Status.STOPPED)
        else:
            crash = EncoderCrashed(f"Encoder exited with code {returncode}: {stderr_tail[-2000:]}")
            logger.error("Encoder for %s failed: %s", handle.key, crash.detail)
            self.finish(handle, Status.FAILED, error=str(crash.detail))
        handle.exited.set()

    def request_stop(self, handle: ActiveStream, reason: StopReason = StopReason.MANUAL) -> bool:
        """
        Tag the handle and send SIGTERM. Cleanup happens when the exit is
        observed, not here. Returns False if the job already ended.
        """
        if handle.finished:
            return False
        if handle.stop_reason is None:
            handle.stop_reason = reason
        process = handle.process
        if process is None or process.returncode is not None:
            return True
        logger.info("Stopping encoder for %s (%s)", handle.key, handle.stop_reason.value)
        try:
            process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            return True
        if handle.kill_timer is None:
            loop = asyncio.get_running_loop()
            handle.kill_timer = loop.call_later(self.stop_timeout, self._kill, handle)
        return True

    def _kill(self, handle: ActiveStream) -> None:
        handle.kill_timer = None
        process = handle.process
        if handle.finished or process is None or process.returncode is not None:
            return
        logger.warning("Encoder for %s ignored SIGTERM for %ss, killing", handle.key, self.stop_timeout)
        try:
            process.kill()
        except ProcessLookupError:
            pass

    def process_lost(self, handle: ActiveStream) -> None:
        """Liveness probe found no process behind a live handle."""
        if handle.finished:
            return
        status = Status.STOPPED if handle.stop_reason is not None else Status.FAILED
        self.finish(handle, status, error="Encoder process is no longer running")

    def finish(self, handle: ActiveStream, status: str, *, error: str = "") -> Optional[asyncio.Task]:
        """
        Terminal transition. The in-memory part (registry slot, timers,
        status channel) completes before anything awaits; the durable record
        and source files are handled by a background task.
        """
        if handle.finished:
            return None
        handle.finished = True
        handle.status = status
        handle.error = error
        handle.ended_at = timezone.now()
        handle.process = None
        handle.cancel_timers()
        self.registry.release(handle.key, handle)
        self.hub.close(handle.key, terminal_event(handle))
        logger.info("Stream %s is %s", handle.key, status)
        return self.tasks.spawn(self._cleanup(handle), name=f"cleanup:{handle.key}")

    async def _cleanup(self, handle: ActiveStream) -> None:
        try:
            if handle.record_id is not None:
                if handle.status == Status.FAILED:
                    await self.store.delete(handle.record_id)
                else:
                    await self.store.update(
                        handle.record_id,
                        status=handle.status,
                        is_streaming=False,
                        auto_stopped=handle.stop_reason == StopReason.AUTO,
                        ended_at=handle.ended_at,
                        error=handle.error,
                    )
        except PersistenceError:
            logger.error("Job record for %s not updated after %s", handle.key, handle.status)
        finally:
            try:
                for name in handle.spec.source_files:
                    await self.files.delete(name)
            finally:
                handle.done.set()
