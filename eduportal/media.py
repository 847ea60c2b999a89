"""Media storage for course covers and lesson videos.

Uploads are written under ``MEDIA_ROOT`` and served by the app's static mount
at ``MEDIA_URL``. Every stored file is identified by a ``public_id`` that is
also its path relative to the media root.
"""
import logging
import os
import uuid
from dataclasses import dataclass

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from eduportal.config import settings
from eduportal.errors import ValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
ALLOWED_KINDS = ("video", "image")


@dataclass
class MediaAsset:
    url: str
    public_id: str
    size: int
    format: str


class LocalMediaStore:
    def __init__(self, root, base_url, max_bytes):
        self.root = root
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes

    def _path(self, public_id):
        path = os.path.abspath(os.path.join(self.root, public_id))
        if not path.startswith(os.path.abspath(self.root) + os.sep):
            raise ValidationError("Invalid media id")
        return path

    async def upload(self, file: UploadFile, kind, folder="uploads") -> MediaAsset:
        """Store ``file`` if its content type matches ``kind`` (video or image)."""
        content_type = (file.content_type or "").lower()
        if kind not in ALLOWED_KINDS or not content_type.startswith(kind + "/"):
            raise ValidationError(f"Only {kind} files are allowed")

        ext = os.path.splitext(file.filename or "")[1].lower() or "." + content_type.split("/", 1)[1]
        public_id = f"{folder}/{kind}s/{uuid.uuid4().hex}{ext}"
        path = self._path(public_id)
        os.makedirs(os.path.dirname(path), exist_ok=True)

        size = 0
        try:
            async with aiofiles.open(path, "wb") as f:
                while True:
                    chunk = await file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise ValidationError("File too large")
                    await f.write(chunk)
        except ValidationError:
            await aiofiles.os.remove(path)
            raise

        logger.info("Stored %s (%d bytes) as %s", file.filename, size, public_id)
        return MediaAsset(
            url=f"{self.base_url}/{public_id}",
            public_id=public_id,
            size=size,
            format=ext.lstrip("."),
        )

    async def delete(self, public_id):
        if not public_id:
            return False
        path = self._path(public_id)
        if not os.path.exists(path):
            logger.warning("Media %s already gone", public_id)
            return False
        await aiofiles.os.remove(path)
        logger.info("Deleted media %s", public_id)
        return True


def get_media_store() -> LocalMediaStore:
    return LocalMediaStore(settings.MEDIA_ROOT, settings.MEDIA_URL, settings.MAX_UPLOAD_BYTES)
