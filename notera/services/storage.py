import hashlib
import hmac
import logging
import os
import re
import time
from urllib.parse import urlencode

import aiofiles
import aiofiles.os

from notera.config import settings
from notera.errors import DownloadError, UploadFailed, ValidationError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9-]+\.[a-z0-9]+$")


def lesson_audio_key(lesson_id: str, extension: str) -> str:
    return f"{lesson_id}.{extension}"


class AudioStore:
    """Filesystem bucket holding one audio object per lesson.

    Objects are addressed by flat keys of the form ``<lesson-id>.<ext>``.
    Playback goes through signed, expiring URLs served by ``/api/audio``;
    the processing function reads objects directly.
    """

    def __init__(self, root: str | None = None, secret: str | None = None) -> None:
        self.root = root or settings.audio_root
        self._secret = (secret or settings.signing_secret).encode()
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, key: str) -> str:
        if not _KEY_RE.match(key or ""):
            raise ValidationError(f"Invalid audio key: {key!r}")
        return os.path.join(self.root, key)

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def upload(
        self, key: str, data: bytes, content_type: str, *, upsert: bool = True
    ) -> str:
        path = self.path_for(key)
        if not upsert and os.path.exists(path):
            raise UploadFailed(f"Audio object {key} already exists")
        tmp_path = f"{path}.part"
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            logger.error("Upload of %s (%s, %d bytes) failed: %s", key, content_type, len(data), e)
            raise UploadFailed(f"Could not store audio object {key}") from e
        logger.info("Stored %s (%s, %d bytes)", key, content_type, len(data))
        return key

    async def download(self, key: str) -> bytes:
        path = self.path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise DownloadError(f"Could not download audio object {key}: {e}") from e

    async def remove(self, keys: list[str]) -> list[str]:
        """Delete objects, ignoring keys that do not exist. Returns removed keys."""
        removed = []
        for key in keys:
            try:
                await aiofiles.os.remove(self.path_for(key))
            except FileNotFoundError:
                continue
            removed.append(key)
        return removed

    def exists(self, key: str) -> bool:
        return os.path.exists(self.path_for(key))

    # ------------------------------------------------------------------
    # Signed URLs
    # ------------------------------------------------------------------

    def _signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def create_signed_url(self, key: str, expires_in: int | None = None) -> str:
        self.path_for(key)
        expires = int(time.time()) + (expires_in or settings.signed_url_ttl_seconds)
        query = urlencode({"expires": expires, "token": self._signature(key, expires)})
        return f"/api/audio/{key}?{query}"

    def verify_signed_url(self, key: str, expires: int, token: str) -> bool:
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._signature(key, expires), token)
