from django.apps import AppConfig


class StreamsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "streams"

    manager = None

    def ready(self):
        from .manager import StreamManager

        # One manager per process; the ASGI lifespan runs recover()/shutdown()
        self.manager = StreamManager.from_settings()
