from __future__ import annotations

import asyncio

import pytest

from conftest import CollectingSubscriber, FakeGemini, InlineDispatcher, RecordingDispatcher
from notera.database import get_async_conn
from notera.errors import AIEndpointError, InvalidTransition, ProcessingDispatchError
from notera.models import LessonStatus
from notera.repositories.lessons import LessonRepository
from notera.services.events import LessonEventHub
from notera.services.observer import LessonObserver, merge_lesson_update
from notera.services.processing import LessonProcessor

AUDIO = b"webm-bytes" * 20


async def _failed_lesson(class_id: str, store) -> str:
    """A lesson that went through a failed processing attempt."""
    conn = await get_async_conn()
    try:
        lessons = LessonRepository(conn)
        lesson = await lessons.create(class_id, "Bråk", None, 60)
        await store.upload(f"{lesson.id}.webm", AUDIO, "audio/webm")
        await lessons.set_audio_url(lesson.id, f"{lesson.id}.webm")
    finally:
        await conn.close()
    with pytest.raises(AIEndpointError):
        await LessonProcessor(store, FakeGemini(AIEndpointError(500, "boom"))).process(lesson.id)
    return lesson.id


async def _get(lesson_id: str):
    conn = await get_async_conn()
    try:
        return await LessonRepository(conn).get(lesson_id)
    finally:
        await conn.close()


def test_retry_reruns_pipeline_from_scratch(school, store, teacher_ctx) -> None:
    class_id = school["classroom"].id
    lesson_id = asyncio.run(_failed_lesson(class_id, store))
    assert asyncio.run(_get(lesson_id)).status == LessonStatus.ERROR

    events = LessonEventHub()
    subscriber = CollectingSubscriber()
    events.register(class_id, subscriber)
    gemini = FakeGemini("---TRANSKRIPTION---\nNytt försök\n---SAMMANFATTNING---\n- ny")
    dispatcher = InlineDispatcher(LessonProcessor(store, gemini, events))

    lesson = asyncio.run(
        LessonObserver(store, dispatcher, events).retry_processing(teacher_ctx, lesson_id)
    )

    assert dispatcher.calls == [lesson_id]
    assert lesson.status == LessonStatus.READY
    assert lesson.transcription == "Nytt försök"
    assert lesson.summary == "- ny"
    statuses = subscriber.statuses()
    assert statuses[0] == "processing"
    assert statuses[-1] == "ready"
    assert len(gemini.calls) == 1


def test_only_failed_lessons_can_be_retried(school, store, teacher_ctx) -> None:
    async def recording_lesson() -> str:
        conn = await get_async_conn()
        try:
            return (await LessonRepository(conn).create(school["classroom"].id, "Bråk", None, 1)).id
        finally:
            await conn.close()

    lesson_id = asyncio.run(recording_lesson())
    dispatcher = RecordingDispatcher()
    with pytest.raises(InvalidTransition):
        asyncio.run(LessonObserver(store, dispatcher).retry_processing(teacher_ctx, lesson_id))
    assert dispatcher.calls == []
    assert asyncio.run(_get(lesson_id)).status == LessonStatus.RECORDING


def test_retry_that_cannot_dispatch_returns_to_error(school, store, teacher_ctx) -> None:
    lesson_id = asyncio.run(_failed_lesson(school["classroom"].id, store))
    observer = LessonObserver(store, RecordingDispatcher(fail=True))

    with pytest.raises(ProcessingDispatchError):
        asyncio.run(observer.retry_processing(teacher_ctx, lesson_id))

    assert asyncio.run(_get(lesson_id)).status == LessonStatus.ERROR


def test_delete_removes_audio_and_row(school, store, teacher_ctx) -> None:
    class_id = school["classroom"].id
    lesson_id = asyncio.run(_failed_lesson(class_id, store))
    events = LessonEventHub()
    subscriber = CollectingSubscriber()
    events.register(class_id, subscriber)

    asyncio.run(LessonObserver(store, RecordingDispatcher(), events).delete_lesson(teacher_ctx, lesson_id))

    assert asyncio.run(_get(lesson_id)) is None
    assert not store.exists(f"{lesson_id}.webm")
    assert subscriber.messages[-1] == {"type": "lesson_deleted", "lessonId": lesson_id}


def test_delete_survives_audio_removal_failure(school, store, teacher_ctx) -> None:
    lesson_id = asyncio.run(_failed_lesson(school["classroom"].id, store))

    class BrokenStore:
        async def remove(self, keys):
            raise OSError("bucket unavailable")

    asyncio.run(LessonObserver(BrokenStore(), RecordingDispatcher()).delete_lesson(teacher_ctx, lesson_id))

    assert asyncio.run(_get(lesson_id)) is None


def test_merge_updates_only_loaded_lessons() -> None:
    loaded = [
        {"id": "a", "status": "processing", "title": "A"},
        {"id": "b", "status": "ready", "title": "B"},
    ]
    merged = merge_lesson_update(loaded, {"id": "a", "status": "ready", "summary": "- x"})
    assert merged[0] == {"id": "a", "status": "ready", "title": "A", "summary": "- x"}
    assert merged[1] is loaded[1]
    assert merge_lesson_update(loaded, {"id": "zzz", "status": "error"}) == loaded
