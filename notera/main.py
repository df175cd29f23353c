import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from notera.clients import AuthClient, GeminiClient, ProcessingDispatcher
from notera.config import settings
from notera.database import init_db
from notera.errors import NoteraError
from notera.logging_utils import configure_logging
from notera.routes import audio, classes, functions, lessons, recording
from notera.services.events import LessonEventHub
from notera.services.storage import AudioStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and shared clients on startup; close clients on shutdown."""
    configure_logging(settings.log_level)
    await init_db()
    app.state.events = LessonEventHub()
    app.state.audio_store = AudioStore()
    app.state.auth_client = AuthClient()
    app.state.gemini = GeminiClient()
    app.state.dispatcher = ProcessingDispatcher()
    yield
    await app.state.dispatcher.aclose()
    await app.state.gemini.aclose()
    await app.state.auth_client.aclose()


app = FastAPI(
    title="notera",
    description="Lesson recording, transcription and summaries for classrooms",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(classes.router)
app.include_router(lessons.router)
app.include_router(recording.router)
app.include_router(audio.router)
app.include_router(functions.router)


@app.exception_handler(NoteraError)
async def _notera_error_handler(request: Request, exc: NoteraError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/healthz")
async def healthz() -> dict:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
