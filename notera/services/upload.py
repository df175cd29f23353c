import logging

from notera.clients.functions_client import ProcessingDispatcher
from notera.database import get_async_conn
from notera.errors import NotFound, ProcessingDispatchError, UploadFailed, ValidationError
from notera.models import Lesson
from notera.recording.audio_utils import AudioPayload
from notera.repositories.classes import ClassRepository
from notera.repositories.lessons import LessonRepository
from notera.services.events import LessonEventHub
from notera.services.session import SessionContext, require_class_access
from notera.services.storage import AudioStore, lesson_audio_key

logger = logging.getLogger(__name__)


def validate_title(title: str | None) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Enter a title for the lesson")
    return cleaned


class LessonUploader:
    """Turns a finished recording into a stored lesson and starts processing.

    The row store and the blob store share no transaction, so saving is a
    two-step saga: insert the row, then upload the audio.  If the upload
    fails, the compensating action deletes the row again.
    """

    def __init__(
        self,
        audio_store: AudioStore,
        dispatcher: ProcessingDispatcher,
        events: LessonEventHub | None = None,
    ) -> None:
        self.audio_store = audio_store
        self.dispatcher = dispatcher
        self.events = events

    async def save_lesson(
        self,
        ctx: SessionContext,
        class_id: str,
        title: str,
        subject: str | None,
        duration_seconds: int,
        audio: AudioPayload | None,
    ) -> Lesson:
        title = validate_title(title)
        if duration_seconds < 0:
            raise ValidationError("Duration cannot be negative")
        subject = (subject or "").strip() or None

        conn = await get_async_conn()
        try:
            classroom = await ClassRepository(conn).get(class_id)
            if classroom is None:
                raise NotFound(f"Class {class_id} not found")
            require_class_access(ctx, classroom, manage=True)

            lessons = LessonRepository(conn, self.events)
            lesson = await lessons.create(class_id, title, subject, duration_seconds)
            logger.info("Created lesson %s in class %s", lesson.id, class_id)

            if audio is not None and len(audio) > 0:
                key = lesson_audio_key(lesson.id, audio.extension)
                try:
                    await self.audio_store.upload(key, audio.data, audio.mime_type, upsert=True)
                except Exception as e:
                    logger.error("Audio upload for lesson %s failed: %s", lesson.id, e)
                    await self._compensate(lessons, lesson.id)
                    raise UploadFailed("Could not upload the recording") from e
                await lessons.set_audio_url(lesson.id, key)

            try:
                await self.dispatcher.dispatch(lesson.id, ctx.access_token)
            except ProcessingDispatchError as e:
                # Row and audio are kept; the lesson is shown without a transcription.
                logger.warning("Processing trigger for %s failed: %s", lesson.id, e)
                await lessons.mark_ready_without_content(lesson.id)

            return await lessons.require(lesson.id)
        finally:
            await conn.close()

    @staticmethod
    async def _compensate(lessons: LessonRepository, lesson_id: str) -> None:
        try:
            await lessons.delete(lesson_id)
        except Exception:
            logger.exception("Could not remove lesson %s after failed upload", lesson_id)
