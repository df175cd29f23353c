import logging

from notera.clients.functions_client import ProcessingDispatcher
from notera.database import get_async_conn
from notera.errors import InvalidTransition, NotFound, ProcessingDispatchError
from notera.models import Lesson, LessonStatus
from notera.recording.audio_utils import DEFAULT_EXTENSION
from notera.repositories.classes import ClassRepository
from notera.repositories.lessons import LessonRepository
from notera.services.events import LessonEventHub
from notera.services.session import SessionContext, require_class_access
from notera.services.storage import AudioStore, lesson_audio_key

logger = logging.getLogger(__name__)


def merge_lesson_update(lessons: list[dict], changed: dict) -> list[dict]:
    """Fold a ``lesson_updated`` payload into an already loaded lesson list.

    Lessons that are not loaded are ignored; the list is never reloaded.
    """
    return [
        {**lesson, **changed} if lesson.get("id") == changed.get("id") else lesson
        for lesson in lessons
    ]


class LessonObserver:
    """Teacher-side actions on processed lessons: retry and delete."""

    def __init__(
        self,
        audio_store: AudioStore,
        dispatcher: ProcessingDispatcher,
        events: LessonEventHub | None = None,
    ) -> None:
        self.audio_store = audio_store
        self.dispatcher = dispatcher
        self.events = events

    async def retry_processing(self, ctx: SessionContext, lesson_id: str) -> Lesson:
        """Rerun the whole pipeline for a lesson in ``error``."""
        conn = await get_async_conn()
        try:
            lessons = LessonRepository(conn, self.events)
            lesson = await self._load_managed(conn, ctx, lessons, lesson_id)
            if lesson.status != LessonStatus.ERROR:
                raise InvalidTransition(
                    f"Only failed lessons can be retried (status is {lesson.status.value})"
                )

            token = await lessons.reopen_for_retry(lesson_id)
            logger.info("Retrying processing of lesson %s", lesson_id)
            try:
                await self.dispatcher.dispatch(lesson_id, ctx.access_token)
            except ProcessingDispatchError:
                await lessons.fail(lesson_id, token)
                raise
            return await lessons.require(lesson_id)
        finally:
            await conn.close()

    async def delete_lesson(self, ctx: SessionContext, lesson_id: str) -> None:
        """Remove the audio (best effort) and then the lesson row."""
        conn = await get_async_conn()
        try:
            lessons = LessonRepository(conn, self.events)
            lesson = await self._load_managed(conn, ctx, lessons, lesson_id)

            key = lesson.audio_url or lesson_audio_key(lesson_id, DEFAULT_EXTENSION)
            try:
                await self.audio_store.remove([key])
            except Exception as e:
                logger.warning("Could not remove audio %s for lesson %s: %s", key, lesson_id, e)

            await lessons.delete(lesson_id)
            logger.info("Deleted lesson %s", lesson_id)
        finally:
            await conn.close()

    @staticmethod
    async def _load_managed(conn, ctx, lessons: LessonRepository, lesson_id: str) -> Lesson:
        lesson = await lessons.require(lesson_id)
        classroom = await ClassRepository(conn).get(lesson.class_id)
        if classroom is None:
            raise NotFound(f"Class {lesson.class_id} not found")
        require_class_access(ctx, classroom, manage=True)
        return lesson
