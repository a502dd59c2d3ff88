"""
Source media storage.

LocalFileStore keeps uploads under MEDIA_ROOT/uploads, S3FileStore keeps
them in a bucket and hands the encoder a presigned URL. Deletion is
best-effort in both: failures are logged, never raised.
"""
import logging
import os
from pathlib import Path

from asgiref.sync import sync_to_async
from django.conf import settings

from . import s3
from .utils import generate_stored_name

logger = logging.getLogger(__name__)


class LocalFileStore:
    def __init__(self, root=None):
        self.root = Path(root or settings.MEDIA_ROOT) / "uploads"

    def _save(self, upload, prefix: str) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        name = generate_stored_name(prefix, upload.name)
        with open(self.root / name, "wb") as f:
            for chunk in upload.chunks():
                f.write(chunk)
        return name

    async def save(self, upload, prefix: str) -> str:
        """Save to MEDIA_ROOT/uploads/<prefix>_<hex><ext> and return the stored name."""
        return await sync_to_async(self._save)(upload, prefix)

    def source(self, name: str) -> str:
        return str(self.root / name)

    async def delete(self, name: str) -> None:
        path = self.root / name
        try:
            await sync_to_async(os.remove)(path)
            logger.info("Deleted source file %s", path)
        except FileNotFoundError:
            logger.debug("Source file %s already gone", path)
        except OSError as e:
            logger.warning("Could not delete source file %s: %s", path, e)


class S3FileStore:
    key_prefix = "uploads"

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}/{name}"

    def _save(self, upload, prefix: str) -> str:
        name = generate_stored_name(prefix, upload.name)
        s3.upload_fileobj(upload, self._key(name), content_type=getattr(upload, "content_type", None))
        return name

    async def save(self, upload, prefix: str) -> str:
        return await sync_to_async(self._save)(upload, prefix)

    def source(self, name: str) -> str:
        return s3.create_presigned_get(self._key(name))

    async def delete(self, name: str) -> None:
        key = self._key(name)
        try:
            await sync_to_async(s3.delete_object)(key)
            logger.info("Deleted source object %s", key)
        except Exception as e:  # noqa: BLE001 - botocore raises many unrelated types
            logger.warning("Could not delete source object %s: %s", key, e)


def get_file_store():
    if settings.STREAM_FILE_BACKEND == "s3":
        return S3FileStore()
    return LocalFileStore()
