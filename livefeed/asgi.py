"""
ASGI entrypoint. Serve with a single worker, e.g.

    uvicorn livefeed.asgi:application --workers 1

The stream registry and the encoder processes belong to that one process.
Lifespan startup re-arms persisted schedules, shutdown stops live encoders.
"""
import logging
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "livefeed.settings")

django_application = get_asgi_application()

logger = logging.getLogger(__name__)


async def _lifespan(receive, send):
    from django.apps import apps

    manager = apps.get_app_config("streams").manager
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            try:
                counts = await manager.recover()
            except Exception as e:
                logger.exception("Stream recovery failed")
                await send({"type": "lifespan.startup.failed", "message": str(e)})
                return
            logger.info("Stream manager ready: %s", counts)
            await send({"type": "lifespan.startup.complete"})
        elif message["type"] == "lifespan.shutdown":
            await manager.shutdown()
            await send({"type": "lifespan.shutdown.complete"})
            return


async def application(scope, receive, send):
    if scope["type"] == "lifespan":
        await _lifespan(receive, send)
        return
    await django_application(scope, receive, send)
