import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect

from notera.database import get_async_conn
from notera.deps import get_observer, get_session_context, get_uploader
from notera.errors import NoteraError, NotFound
from notera.recording.audio_utils import MIME_TYPES, AudioPayload, extension_for_mime
from notera.repositories.classes import ClassRepository
from notera.repositories.lessons import LessonRepository
from notera.services.observer import LessonObserver
from notera.services.session import SessionContext, build_session, require_class_access
from notera.services.upload import LessonUploader

logger = logging.getLogger(__name__)

router = APIRouter(tags=["lessons"])


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


async def _get_class_or_404(conn, class_id: str):
    classroom = await ClassRepository(conn).get(class_id)
    if classroom is None:
        raise NotFound(f"Class {class_id} not found")
    return classroom


# ------------------------------------------------------------------
# REST endpoints
# ------------------------------------------------------------------


@router.get("/api/classes/{class_id}/lessons")
async def list_lessons(
    class_id: str, ctx: SessionContext = Depends(get_session_context)
) -> list[dict]:
    conn = await get_async_conn()
    try:
        classroom = await _get_class_or_404(conn, class_id)
        require_class_access(ctx, classroom, manage=False)
        lessons = await LessonRepository(conn).list_for_class(class_id)
        return [lesson.to_dict() for lesson in lessons]
    finally:
        await conn.close()


@router.post("/api/classes/{class_id}/lessons", status_code=201)
async def upload_lesson(
    class_id: str,
    title: str = Form(""),
    subject: str | None = Form(None),
    duration_seconds: int = Form(0),
    audio: UploadFile | None = File(None),
    ctx: SessionContext = Depends(get_session_context),
    uploader: LessonUploader = Depends(get_uploader),
) -> dict:
    """Save a recording made by the browser and start processing it."""
    payload = None
    if audio is not None:
        extension = extension_for_mime(audio.content_type)
        payload = AudioPayload(
            data=await audio.read(), mime_type=MIME_TYPES[extension], extension=extension
        )
    lesson = await uploader.save_lesson(
        ctx, class_id, title, subject, duration_seconds, payload
    )
    return lesson.to_dict()


@router.get("/api/lessons/{lesson_id}")
async def get_lesson(
    lesson_id: str,
    request: Request,
    ctx: SessionContext = Depends(get_session_context),
) -> dict:
    """Lesson detail with a time-limited playback URL for its audio."""
    conn = await get_async_conn()
    try:
        lesson = await LessonRepository(conn).require(lesson_id, with_class=True)
        classroom = await _get_class_or_404(conn, lesson.class_id)
        require_class_access(ctx, classroom, manage=False)
    finally:
        await conn.close()

    result = lesson.to_dict()
    if lesson.audio_url:
        result["audio_signed_url"] = request.app.state.audio_store.create_signed_url(
            lesson.audio_url
        )
    return result


@router.post("/api/lessons/{lesson_id}/retry")
async def retry_lesson(
    lesson_id: str,
    ctx: SessionContext = Depends(get_session_context),
    observer: LessonObserver = Depends(get_observer),
) -> dict:
    lesson = await observer.retry_processing(ctx, lesson_id)
    return lesson.to_dict()


@router.delete("/api/lessons/{lesson_id}")
async def delete_lesson(
    lesson_id: str,
    ctx: SessionContext = Depends(get_session_context),
    observer: LessonObserver = Depends(get_observer),
) -> dict:
    await observer.delete_lesson(ctx, lesson_id)
    return {"message": "Lesson deleted", "lessonId": lesson_id}


# ------------------------------------------------------------------
# WebSocket endpoint
# ------------------------------------------------------------------


@router.websocket("/ws/classes/{class_id}/lessons")
async def lesson_updates(websocket: WebSocket, class_id: str, token: str = "") -> None:
    """Live lesson changes for one class: a snapshot, then update events."""
    conn = await get_async_conn()
    try:
        ctx = await build_session(websocket.app.state.auth_client, conn, token)
        classroom = await _get_class_or_404(conn, class_id)
        require_class_access(ctx, classroom, manage=False)
        lessons = await LessonRepository(conn).list_for_class(class_id)
    except NoteraError as e:
        logger.info("Rejected lesson feed for class %s: %s", class_id, e.message)
        await websocket.close(code=1008)
        return
    finally:
        await conn.close()

    await websocket.accept()
    events = websocket.app.state.events
    events.register(class_id, websocket)
    try:
        await websocket.send_json(
            {"type": "snapshot", "lessons": [lesson.to_dict() for lesson in lessons]}
        )
        while True:
            await websocket.receive_text()  # keep-alive; client sends pings
    except WebSocketDisconnect:
        pass
    finally:
        events.unregister(class_id, websocket)
