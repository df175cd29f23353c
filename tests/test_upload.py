from __future__ import annotations

import asyncio

import pytest

from conftest import RecordingDispatcher
from notera.database import get_async_conn
from notera.errors import Forbidden, NotFound, UploadFailed, ValidationError
from notera.models import LessonStatus
from notera.recording.audio_utils import AudioPayload
from notera.repositories.lessons import LessonRepository
from notera.services.upload import LessonUploader

AUDIO = AudioPayload(data=b"webm-bytes" * 50)


class FailingStore:
    def __init__(self, store) -> None:
        self.store = store

    async def upload(self, key, data, content_type, *, upsert=True):
        raise UploadFailed("disk full")


async def _lessons(class_id: str):
    conn = await get_async_conn()
    try:
        return await LessonRepository(conn).list_for_class(class_id)
    finally:
        await conn.close()


def test_saved_lesson_links_audio_and_triggers_processing(school, store, teacher_ctx) -> None:
    dispatcher = RecordingDispatcher()
    uploader = LessonUploader(store, dispatcher)
    class_id = school["classroom"].id

    lesson = asyncio.run(
        uploader.save_lesson(teacher_ctx, class_id, "  Bråk  ", "Matematik", 1800, AUDIO)
    )

    assert lesson.title == "Bråk"
    assert lesson.status == LessonStatus.RECORDING
    assert lesson.duration_seconds == 1800
    assert lesson.audio_url == f"{lesson.id}.webm"
    assert asyncio.run(store.download(lesson.audio_url)) == AUDIO.data
    assert dispatcher.calls == [(lesson.id, teacher_ctx.access_token)]


def test_empty_title_is_rejected_before_anything_is_written(school, store, teacher_ctx) -> None:
    dispatcher = RecordingDispatcher()
    uploader = LessonUploader(store, dispatcher)

    with pytest.raises(ValidationError):
        asyncio.run(
            uploader.save_lesson(teacher_ctx, school["classroom"].id, "   ", None, 10, AUDIO)
        )

    assert asyncio.run(_lessons(school["classroom"].id)) == []
    assert dispatcher.calls == []


def test_failed_upload_removes_the_lesson_row(school, store, teacher_ctx) -> None:
    dispatcher = RecordingDispatcher()
    uploader = LessonUploader(FailingStore(store), dispatcher)
    class_id = school["classroom"].id

    with pytest.raises(UploadFailed):
        asyncio.run(uploader.save_lesson(teacher_ctx, class_id, "Test", None, 60, AUDIO))

    async def find() -> list:
        conn = await get_async_conn()
        try:
            return await LessonRepository(conn).find_by_title(class_id, "Test")
        finally:
            await conn.close()

    assert asyncio.run(find()) == []
    assert dispatcher.calls == []


def test_failed_dispatch_falls_back_to_ready(school, store, teacher_ctx) -> None:
    uploader = LessonUploader(store, RecordingDispatcher(fail=True))

    lesson = asyncio.run(
        uploader.save_lesson(teacher_ctx, school["classroom"].id, "Bråk", None, 60, AUDIO)
    )

    assert lesson.status == LessonStatus.READY
    assert lesson.audio_url == f"{lesson.id}.webm"
    assert lesson.transcription is None
    assert lesson.summary is None


def test_empty_recording_skips_upload(school, store, teacher_ctx) -> None:
    dispatcher = RecordingDispatcher()
    uploader = LessonUploader(store, dispatcher)

    lesson = asyncio.run(
        uploader.save_lesson(
            teacher_ctx, school["classroom"].id, "Tyst", None, 0, AudioPayload(data=b"")
        )
    )

    assert lesson.audio_url is None
    assert len(dispatcher.calls) == 1


def test_wav_recording_keeps_its_container(school, store, teacher_ctx) -> None:
    uploader = LessonUploader(store, RecordingDispatcher())
    payload = AudioPayload(data=b"RIFF....WAVE", mime_type="audio/wav", extension="wav")

    lesson = asyncio.run(
        uploader.save_lesson(teacher_ctx, school["classroom"].id, "Mic", None, 5, payload)
    )

    assert lesson.audio_url == f"{lesson.id}.wav"


def test_students_cannot_save_lessons(school, store, student_ctx) -> None:
    uploader = LessonUploader(store, RecordingDispatcher())
    with pytest.raises(Forbidden):
        asyncio.run(
            uploader.save_lesson(student_ctx, school["classroom"].id, "Bråk", None, 5, AUDIO)
        )


def test_unknown_class_is_not_found(db, store, teacher_ctx) -> None:
    uploader = LessonUploader(store, RecordingDispatcher())
    with pytest.raises(NotFound):
        asyncio.run(uploader.save_lesson(teacher_ctx, "no-such-class", "Bråk", None, 5, AUDIO))
