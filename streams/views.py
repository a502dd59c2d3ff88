import json
import logging

from django.apps import apps
from django.http import JsonResponse, QueryDict, StreamingHttpResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError

from .exceptions import InvalidJob
from .jobs import Status
from .serializers import (
    StartStreamSerializer,
    StopStreamSerializer,
    StreamJobSerializer,
    scheduled_response,
)

logger = logging.getLogger(__name__)


def get_manager():
    return apps.get_app_config("streams").manager


def _first_message(detail) -> str:
    """Flatten a DRF error detail (dict / list / str) to its first message."""
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
        return ""
    if isinstance(detail, list):
        return _first_message(detail[0]) if detail else ""
    return str(detail)


def error_response(message: str, status_code: int = 400, **extra) -> JsonResponse:
    return JsonResponse({"success": False, "message": message, **extra}, status=status_code)


class StreamAPIView(View):
    """
    Async JSON view. Lifecycle errors (APIException subclasses) become
    {"success": false, "message": ...} with the exception's status code.
    No session auth, so no CSRF, same as DRF's APIView.
    """

    @classmethod
    def as_view(cls, **initkwargs):
        return csrf_exempt(super().as_view(**initkwargs))

    async def dispatch(self, request, *args, **kwargs):
        try:
            return await super().dispatch(request, *args, **kwargs)
        except ValidationError as e:
            return error_response(_first_message(e.detail), status.HTTP_400_BAD_REQUEST, errors=e.detail)
        except APIException as e:
            if e.status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.path, e.detail)
            return error_response(str(e.detail), e.status_code)

    @staticmethod
    def body(request) -> QueryDict:
        if request.content_type == "application/json":
            try:
                payload = json.loads(request.body or b"{}")
            except json.JSONDecodeError as e:
                raise InvalidJob(f"Invalid JSON body: {e}") from e
            data = QueryDict(mutable=True)
            for key, value in payload.items():
                data[key] = value
            return data
        data = request.POST.copy()
        data.update(request.FILES)
        return data


class StartStreamView(StreamAPIView):
    """
    Accepts the multipart form (video, optional audio, encoding and schedule
    fields), reserves the stream key, stores the uploads and either starts
    the encoder or arms the schedule.
    """

    async def post(self, request):
        ser = StartStreamSerializer(data=self.body(request))
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        handle = await get_manager().start(ser.to_spec(), video=data["video"], audio=data.get("audio"))
        if handle.status == Status.SCHEDULED:
            return JsonResponse(scheduled_response(handle), status=status.HTTP_202_ACCEPTED)
        return JsonResponse({
            "message": "Streaming started",
            "stream_key": handle.key,
            "container_id": str(handle.record_id),
        })


class StopStreamView(StreamAPIView):
    async def post(self, request):
        ser = StopStreamSerializer(data=self.body(request))
        ser.is_valid(raise_exception=True)
        handle = await get_manager().stop(ser.validated_data["stream_key"])
        return JsonResponse({"success": True, "message": "Streaming stopped", "status": str(handle.status)})


class CancelScheduleView(StreamAPIView):
    async def post(self, request, stream_key):
        handle = await get_manager().cancel_schedule(stream_key)
        return JsonResponse({"success": True, "status": str(handle.status)})


async def _event_stream(events):
    async for event in events:
        yield f"data: {json.dumps(event)}\n\n"


class StreamStatusView(StreamAPIView):
    """Server-Sent Events feed of one stream key's status."""

    async def get(self, request, stream_key):
        response = StreamingHttpResponse(
            _event_stream(get_manager().subscribe(stream_key)),
            content_type="text/event-stream",
        )
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        return response


class StreamListView(StreamAPIView):
    async def get(self, request):
        records = await get_manager().all_records()
        return JsonResponse(StreamJobSerializer(records, many=True).data, safe=False)


class ActiveStreamListView(StreamAPIView):
    """Records that claim their key, joined with what the registry holds for it."""

    async def get(self, request):
        manager = get_manager()
        out = []
        for record in await manager.active_records():
            item = StreamJobSerializer(record).data
            handle = manager.lookup(record.stream_key)
            item["registry"] = handle.snapshot() if handle is not None and handle.record_id == record.id else None
            out.append(item)
        return JsonResponse(out, safe=False)


class ScheduledStreamListView(StreamAPIView):
    async def get(self, request):
        return JsonResponse({"schedules": [h.snapshot() for h in get_manager().scheduled()]})


class HistoryListView(StreamAPIView):
    async def get(self, request):
        records = await get_manager().history()
        return JsonResponse(StreamJobSerializer(records, many=True).data, safe=False)


class HistoryDetailView(StreamAPIView):
    async def delete(self, request, record_id):
        await get_manager().delete_history(record_id)
        return JsonResponse({"success": True, "message": "History entry deleted"})
