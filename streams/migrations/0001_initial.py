import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="StreamJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=255)),
                ("stream_key", models.CharField(db_index=True, max_length=255)),
                ("stream_url", models.CharField(max_length=512)),
                ("preview_file_video", models.CharField(max_length=255)),
                ("preview_file_audio", models.CharField(blank=True, max_length=255, null=True)),
                ("stream_file_video", models.CharField(max_length=255)),
                ("stream_file_audio", models.CharField(blank=True, max_length=255, null=True)),
                ("bitrate", models.PositiveIntegerField()),
                ("fps", models.PositiveSmallIntegerField()),
                ("resolution", models.CharField(max_length=32)),
                ("loop_enabled", models.BooleanField(default=False)),
                ("audio_enabled", models.BooleanField(default=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("idle", "Idle"),
                            ("scheduled", "Scheduled"),
                            ("live", "Live"),
                            ("stopped", "Stopped"),
                            ("failed", "Failed"),
                        ],
                        default="idle",
                        max_length=16,
                    ),
                ),
                ("is_streaming", models.BooleanField(db_index=True, default=False)),
                ("auto_stopped", models.BooleanField(default=False)),
                ("error", models.TextField(blank=True, default="")),
                ("schedule_enabled", models.BooleanField(default=False)),
                ("schedule_start_enabled", models.BooleanField(default=False)),
                ("schedule_duration_enabled", models.BooleanField(default=False)),
                ("schedule_start", models.DateTimeField(blank=True, null=True)),
                ("schedule_duration", models.PositiveIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
