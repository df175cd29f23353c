from fastapi import Header, Request

from notera.clients.auth_client import bearer_token
from notera.database import get_async_conn
from notera.services.observer import LessonObserver
from notera.services.processing import LessonProcessor
from notera.services.session import SessionContext, build_session
from notera.services.upload import LessonUploader


async def get_session_context(
    request: Request, authorization: str | None = Header(default=None)
) -> SessionContext:
    """Verify the bearer token and resolve the caller's viewer once per request."""
    token = bearer_token(authorization)
    conn = await get_async_conn()
    try:
        return await build_session(request.app.state.auth_client, conn, token)
    finally:
        await conn.close()


def get_uploader(request: Request) -> LessonUploader:
    state = request.app.state
    return LessonUploader(state.audio_store, state.dispatcher, state.events)


def get_observer(request: Request) -> LessonObserver:
    state = request.app.state
    return LessonObserver(state.audio_store, state.dispatcher, state.events)


def get_processor(request: Request) -> LessonProcessor:
    state = request.app.state
    return LessonProcessor(state.audio_store, state.gemini, state.events)
