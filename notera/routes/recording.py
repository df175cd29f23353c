from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from notera.database import get_async_conn
from notera.deps import get_session_context, get_uploader
from notera.errors import NotFound
from notera.recording import Recorder, RecordingResult
from notera.repositories.classes import ClassRepository
from notera.services.session import SessionContext, require_class_access
from notera.services.upload import LessonUploader, validate_title

router = APIRouter(prefix="/api", tags=["recording"])

# In-memory registry of microphone sessions, one per class.
# class_id -> Recorder
_active: dict[str, Recorder] = {}
# Finished recordings whose save failed, kept so the save can be retried.
# class_id -> RecordingResult
_unsaved: dict[str, RecordingResult] = {}


class StopRecording(BaseModel):
    title: str = ""
    subject: str | None = None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


async def _require_managed_class(ctx: SessionContext, class_id: str) -> None:
    conn = await get_async_conn()
    try:
        classroom = await ClassRepository(conn).get(class_id)
    finally:
        await conn.close()
    if classroom is None:
        raise NotFound(f"Class {class_id} not found")
    require_class_access(ctx, classroom, manage=True)


def _get_active_or_400(class_id: str) -> Recorder:
    recorder = _active.get(class_id)
    if recorder is None or not recorder.is_recording:
        raise HTTPException(status_code=400, detail="No active recording for this class.")
    return recorder


def _status(class_id: str, recorder: Recorder | None) -> dict:
    if recorder is None:
        return {
            "class_id": class_id,
            "isRecording": False,
            "isPaused": False,
            "elapsedSeconds": 0,
            "lastError": None,
            "unsaved": class_id in _unsaved,
        }
    return {"class_id": class_id, **recorder.state(), "unsaved": class_id in _unsaved}


# ==================================================================
# REST endpoints
# ==================================================================


@router.post("/classes/{class_id}/recording/start")
async def start_recording(
    class_id: str, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    """Start capturing from the server's microphone for a class."""
    await _require_managed_class(ctx, class_id)
    existing = _active.get(class_id)
    if existing is not None and existing.is_recording:
        raise HTTPException(status_code=409, detail="Recording already active for this class.")

    recorder = Recorder()
    if not recorder.start():
        raise HTTPException(status_code=400, detail=recorder.last_error)
    _active[class_id] = recorder
    return _status(class_id, recorder)


@router.post("/classes/{class_id}/recording/pause")
async def pause_recording(
    class_id: str, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    await _require_managed_class(ctx, class_id)
    recorder = _get_active_or_400(class_id)
    recorder.pause()
    return _status(class_id, recorder)


@router.post("/classes/{class_id}/recording/resume")
async def resume_recording(
    class_id: str, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    await _require_managed_class(ctx, class_id)
    recorder = _get_active_or_400(class_id)
    recorder.resume()
    return _status(class_id, recorder)


@router.get("/classes/{class_id}/recording")
async def recording_status(
    class_id: str, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    await _require_managed_class(ctx, class_id)
    return _status(class_id, _active.get(class_id))


@router.post("/classes/{class_id}/recording/stop")
async def stop_recording(
    class_id: str,
    body: StopRecording,
    ctx: SessionContext = Depends(get_session_context),
    uploader: LessonUploader = Depends(get_uploader),
) -> dict:
    """Stop capture and save the lesson.

    The title is checked before capture is torn down, so a missing title
    leaves the recording running.  If saving fails, the finished recording
    is kept and the next call to this endpoint retries the save.
    """
    await _require_managed_class(ctx, class_id)
    title = validate_title(body.title)

    result = _unsaved.pop(class_id, None)
    if result is None:
        recorder = _get_active_or_400(class_id)
        result = recorder.stop()
        _active.pop(class_id, None)

    try:
        lesson = await uploader.save_lesson(
            ctx, class_id, title, body.subject, result.elapsed_seconds, result.payload
        )
    except Exception:
        _unsaved[class_id] = result
        raise
    return {"lesson": lesson.to_dict(), "elapsedSeconds": result.elapsed_seconds}
