"""
Durable job records.

The lifecycle code only talks to the JobStore contract below; the Django
implementation wraps every database failure in PersistenceError.
"""
import functools
import logging
import uuid
from typing import List, Optional, Protocol

from django.db import DatabaseError

from .exceptions import PersistenceError
from .jobs import JobSpec, Status
from .models import StreamJob

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    async def create(self, spec: JobSpec, **fields) -> uuid.UUID: ...
    async def get(self, record_id) -> Optional[StreamJob]: ...
    async def update(self, record_id, **fields) -> None: ...
    async def delete(self, record_id) -> bool: ...
    async def find_by_key(self, stream_key: str) -> Optional[StreamJob]: ...
    async def query_active(self) -> List[StreamJob]: ...
    async def query_all(self) -> List[StreamJob]: ...
    async def query_history(self) -> List[StreamJob]: ...
    async def query_pending_schedules(self) -> List[StreamJob]: ...
    async def query_interrupted(self) -> List[StreamJob]: ...


def _persistence(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DatabaseError as e:
            logger.error("Job store %s failed: %s", func.__name__, e)
            raise PersistenceError(f"Job store {func.__name__} failed: {e}") from e
    return wrapper


class DjangoJobStore:
    """JobStore backed by the StreamJob model through Django's async ORM."""

    @_persistence
    async def create(self, spec: JobSpec, **fields) -> uuid.UUID:
        record = await StreamJob.objects.acreate(**spec.record_fields(), **fields)
        return record.id

    @_persistence
    async def get(self, record_id) -> Optional[StreamJob]:
        return await StreamJob.objects.filter(pk=record_id).afirst()

    @_persistence
    async def update(self, record_id, **fields) -> None:
        record = await StreamJob.objects.filter(pk=record_id).afirst()
        if record is None:
            logger.warning("Job record %s vanished before update %s", record_id, sorted(fields))
            return
        for name, value in fields.items():
            setattr(record, name, value)
        await record.asave(update_fields=[*fields, "updated_at"])

    @_persistence
    async def delete(self, record_id) -> bool:
        deleted, _ = await StreamJob.objects.filter(pk=record_id).adelete()
        return deleted > 0

    @_persistence
    async def find_by_key(self, stream_key: str) -> Optional[StreamJob]:
        # Prefer a row that still claims the key over old history rows
        return await (
            StreamJob.objects.filter(stream_key=stream_key)
            .order_by("-is_streaming", "-created_at")
            .afirst()
        )

    @_persistence
    async def query_active(self) -> List[StreamJob]:
        return [r async for r in StreamJob.objects.filter(is_streaming=True)]

    @_persistence
    async def query_all(self) -> List[StreamJob]:
        return [r async for r in StreamJob.objects.all()]

    @_persistence
    async def query_history(self) -> List[StreamJob]:
        return [
            r async for r in StreamJob.objects.filter(
                is_streaming=False, status__in=[Status.STOPPED, Status.FAILED]
            ).order_by("-ended_at")
        ]

    @_persistence
    async def query_pending_schedules(self) -> List[StreamJob]:
        return [
            r async for r in StreamJob.objects.filter(
                is_streaming=True,
                status=Status.SCHEDULED,
                schedule_enabled=True,
                schedule_start_enabled=True,
                schedule_start__isnull=False,
            ).order_by("schedule_start")
        ]

    @_persistence
    async def query_interrupted(self) -> List[StreamJob]:
        return [
            r async for r in StreamJob.objects.filter(is_streaming=True)
            .exclude(status=Status.SCHEDULED)
        ]
