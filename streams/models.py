import uuid
from django.db import models

class StreamJob(models.Model):
    class Status(models.TextChoices):
        IDLE = "idle"
        SCHEDULED = "scheduled"
        LIVE = "live"
        STOPPED = "stopped"
        FAILED = "failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=255)
    stream_key = models.CharField(max_length=255, db_index=True)   # not unique: history keeps old rows
    stream_url = models.CharField(max_length=512)                  # target base, key is appended

    preview_file_video = models.CharField(max_length=255)          # original upload names
    preview_file_audio = models.CharField(max_length=255, blank=True, null=True)
    stream_file_video = models.CharField(max_length=255)           # names in the file store
    stream_file_audio = models.CharField(max_length=255, blank=True, null=True)

    bitrate = models.PositiveIntegerField()                        # kbit/s
    fps = models.PositiveSmallIntegerField()
    resolution = models.CharField(max_length=32)                   # "W:H"
    loop_enabled = models.BooleanField(default=False)
    audio_enabled = models.BooleanField(default=False)

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.IDLE)
    is_streaming = models.BooleanField(default=False, db_index=True)
    auto_stopped = models.BooleanField(default=False)
    error = models.TextField(blank=True, default="")

    schedule_enabled = models.BooleanField(default=False)
    schedule_start_enabled = models.BooleanField(default=False)
    schedule_duration_enabled = models.BooleanField(default=False)
    schedule_start = models.DateTimeField(blank=True, null=True)
    schedule_duration = models.PositiveIntegerField(blank=True, null=True)  # minutes

    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(blank=True, null=True)
    ended_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.title} ({self.stream_key}, {self.status})"
