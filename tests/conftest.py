from __future__ import annotations

import asyncio
from pathlib import Path

import numpy as np
import pytest

from notera.clients.auth_client import AuthUser
from notera.config import settings
from notera.database import get_async_conn, init_db
from notera.errors import ProcessingDispatchError, Unauthorized
from notera.repositories.classes import ClassRepository
from notera.repositories.users import UserRoleRepository
from notera.services.session import SessionContext, StudentViewer, TeacherViewer
from notera.services.storage import AudioStore

TEACHER_ID = "teacher-1"
TEACHER_TOKEN = "token-teacher"
STUDENT_ID = "student-1"
STUDENT_TOKEN = "token-student"


# ------------------------------------------------------------------
# Fakes for the external collaborators
# ------------------------------------------------------------------


class FakeAuthClient:
    def __init__(self, users: dict[str, str] | None = None) -> None:
        self.users = users if users is not None else {
            TEACHER_TOKEN: TEACHER_ID,
            STUDENT_TOKEN: STUDENT_ID,
        }
        self.calls: list[str] = []

    async def get_user(self, token: str) -> AuthUser:
        self.calls.append(token)
        if token not in self.users:
            raise Unauthorized("Unauthorized - invalid token")
        return AuthUser(id=self.users[token])

    async def aclose(self) -> None:
        pass


class FakeGemini:
    """Returns (or raises) queued responses in order and records every call."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []
        self.before_return = None

    async def generate_from_audio(self, audio_base64, mime_type, prompt, **kwargs) -> str:
        self.calls.append(
            {"audio": audio_base64, "mime_type": mime_type, "prompt": prompt, **kwargs}
        )
        if self.before_return is not None:
            await self.before_return()
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        pass


class RecordingDispatcher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    async def dispatch(self, lesson_id: str, access_token: str) -> None:
        self.calls.append((lesson_id, access_token))
        if self.fail:
            raise ProcessingDispatchError("Could not reach the processing function")

    async def aclose(self) -> None:
        pass


class InlineDispatcher:
    """Runs the processor in-process, the way the function endpoint would."""

    def __init__(self, processor) -> None:
        self.processor = processor
        self.calls: list[str] = []

    async def dispatch(self, lesson_id: str, access_token: str) -> None:
        self.calls.append(lesson_id)
        try:
            await self.processor.process(lesson_id)
        except Exception:
            pass  # the function answers 500; the caller does not see it


class CollectingSubscriber:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def send_json(self, data) -> None:
        self.messages.append(data)

    def statuses(self) -> list[str]:
        return [
            m["lesson"]["status"] for m in self.messages if m["type"] == "lesson_updated"
        ]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStream:
    """Stands in for ``sounddevice.InputStream``; ``feed`` delivers blocks."""

    instances: list["FakeStream"] = []

    def __init__(self, *, samplerate, channels, dtype, blocksize, callback) -> None:
        self.samplerate = samplerate
        self.blocksize = blocksize
        self.callback = callback
        self.active = False
        self.closed = False
        FakeStream.instances.append(self)

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False

    def close(self) -> None:
        self.closed = True

    def feed(self, blocks: int = 1, value: float = 0.1, frames: int | None = None) -> None:
        """Deliver *blocks* blocks of *frames* samples (one second by default)."""
        frames = frames or self.blocksize or self.samplerate
        for _ in range(blocks):
            data = np.full((frames, 1), value, dtype=np.float32)
            self.callback(data, frames, None, None)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture()
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(settings, "database_path", str(tmp_path / "notera.db"))
    monkeypatch.setattr(settings, "audio_root", str(tmp_path / "audio"))
    asyncio.run(init_db())
    return tmp_path


@pytest.fixture()
def store(db: Path) -> AudioStore:
    return AudioStore(str(db / "audio"), secret="test-secret")


async def _seed_school() -> dict:
    conn = await get_async_conn()
    try:
        classes = ClassRepository(conn)
        organization = await classes.create_organization("Testskolan")
        await UserRoleRepository(conn).grant(TEACHER_ID, "teacher", organization.id)
        classroom = await classes.create(organization.id, TEACHER_ID, "Klass 9A")
        return {"organization": organization, "classroom": classroom}
    finally:
        await conn.close()


@pytest.fixture()
def school(db: Path) -> dict:
    return asyncio.run(_seed_school())


@pytest.fixture()
def teacher_ctx(school: dict) -> SessionContext:
    return SessionContext(
        user=AuthUser(TEACHER_ID),
        viewer=TeacherViewer(TEACHER_ID, school["organization"].id),
        access_token=TEACHER_TOKEN,
    )


@pytest.fixture()
def student_ctx(school: dict) -> SessionContext:
    return SessionContext(
        user=AuthUser(STUDENT_ID),
        viewer=StudentViewer(STUDENT_ID, frozenset({school["classroom"].id})),
        access_token=STUDENT_TOKEN,
    )


class Api:
    """A TestClient whose shared services are swapped for fakes."""

    def __init__(self, client, store: AudioStore) -> None:
        self.client = client
        self.state = client.app.state
        self.store = store

    def headers(self, token: str = TEACHER_TOKEN) -> dict:
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def api(school: dict, store: AudioStore):
    from fastapi.testclient import TestClient

    from notera.main import app
    from notera.routes import recording
    from notera.services.events import LessonEventHub

    recording._active.clear()
    recording._unsaved.clear()
    with TestClient(app) as client:
        app.state.events = LessonEventHub()
        app.state.audio_store = store
        app.state.auth_client = FakeAuthClient()
        app.state.gemini = FakeGemini()
        app.state.dispatcher = RecordingDispatcher()
        yield Api(client, store)
    recording._active.clear()
    recording._unsaved.clear()
