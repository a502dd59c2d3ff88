import re

from django.conf import settings
from django.utils import timezone
from rest_framework import serializers

from .jobs import EncodingParams, JobSpec, Schedule
from .models import StreamJob
from .utils import epoch_millis, file_extension

RESOLUTION_RE = re.compile(r"^(\d{2,5})[:x](\d{2,5})$")


class StreamJobSerializer(serializers.ModelSerializer):
    class Meta:
        model = StreamJob
        fields = [
            "id",
            "title",
            "stream_key",
            "stream_url",
            "preview_file_video",
            "preview_file_audio",
            "bitrate",
            "fps",
            "resolution",
            "loop_enabled",
            "audio_enabled",
            "status",
            "is_streaming",
            "auto_stopped",
            "error",
            "schedule_enabled",
            "schedule_start_enabled",
            "schedule_duration_enabled",
            "schedule_start",
            "schedule_duration",
            "created_at",
            "started_at",
            "ended_at",
            "updated_at",
        ]


class StartStreamSerializer(serializers.Serializer):
    title = serializers.CharField(
        max_length=255, error_messages={"required": "Title is required.", "blank": "Title is required."}
    )
    stream_key = serializers.CharField(
        max_length=255,
        error_messages={"required": "Stream key is required.", "blank": "Stream key is required."},
    )
    rtmp_url = serializers.CharField(max_length=512, required=False, allow_blank=True)
    video = serializers.FileField(error_messages={"required": "Video file is required."})
    audio = serializers.FileField(required=False, allow_null=True)

    bitrate = serializers.IntegerField(min_value=100, max_value=50000, default=2500)
    fps = serializers.IntegerField(min_value=1, max_value=120, default=30)
    resolution = serializers.CharField(default="1280:720")
    loop = serializers.BooleanField(required=False, default=False)
    audio_file = serializers.BooleanField(required=False, default=False)   # use the uploaded audio track

    schedule_enabled = serializers.BooleanField(required=False, default=False)
    schedule_start_enabled = serializers.BooleanField(required=False, default=False)
    schedule_duration_enabled = serializers.BooleanField(required=False, default=False)
    schedule_start = serializers.DateTimeField(required=False, allow_null=True)
    schedule_duration = serializers.IntegerField(min_value=1, required=False, allow_null=True)  # minutes

    def validate_stream_key(self, value):
        value = value.strip()
        if not value or "/" in value or any(c.isspace() for c in value):
            raise serializers.ValidationError("Stream key must be a single path segment without spaces.")
        return value

    def validate_video(self, value):
        if file_extension(value.name) == "":
            raise serializers.ValidationError("Video file has no extension.")
        return value

    def validate_audio(self, value):
        if value is not None and file_extension(value.name) == "":
            raise serializers.ValidationError("Audio file has no extension.")
        return value

    def validate_resolution(self, value):
        m = RESOLUTION_RE.match(value.strip().lower())
        if not m:
            raise serializers.ValidationError("Resolution must look like 1280:720.")
        return f"{m.group(1)}:{m.group(2)}"

    def validate(self, attrs):
        if attrs.get("schedule_enabled") and attrs.get("schedule_start_enabled"):
            start = attrs.get("schedule_start")
            if start is None:
                raise serializers.ValidationError({"schedule_start": "Start time is required for a scheduled stream."})
            if start <= timezone.now():
                raise serializers.ValidationError({"schedule_start": "Start time must be in the future."})
        if attrs.get("schedule_enabled") and attrs.get("schedule_duration_enabled"):
            if not attrs.get("schedule_duration"):
                raise serializers.ValidationError({"schedule_duration": "Duration is required when it is enabled."})
        return attrs

    def to_spec(self) -> JobSpec:
        """JobSpec for the validated request; source files are filled in once stored."""
        data = self.validated_data
        enabled = data["schedule_enabled"]
        start_at = data.get("schedule_start") if enabled and data["schedule_start_enabled"] else None
        duration = data.get("schedule_duration") if enabled and data["schedule_duration_enabled"] else None
        audio = data.get("audio")
        return JobSpec(
            stream_key=data["stream_key"],
            title=data["title"],
            stream_url=data.get("rtmp_url") or settings.STREAM_DEFAULT_URL,
            video_file="",
            encoding=EncodingParams(
                bitrate=data["bitrate"],
                fps=data["fps"],
                resolution=data["resolution"],
                loop=data["loop"],
                audio_enabled=data["audio_file"] and audio is not None,
            ),
            schedule=Schedule(enabled=enabled, start_at=start_at, duration_minutes=duration),
            preview_video=data["video"].name,
            preview_audio=audio.name if audio is not None else None,
        )


class StopStreamSerializer(serializers.Serializer):
    stream_key = serializers.CharField(max_length=255)


def scheduled_response(handle) -> dict:
    duration = handle.spec.schedule.duration
    return {
        "message": "Stream scheduled",
        "scheduled": True,
        "start_time": epoch_millis(handle.spec.schedule.start_at),
        "duration": int(duration.total_seconds() * 1000) if duration else None,
    }
