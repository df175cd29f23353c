import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import aiosqlite

from notera.errors import InvalidTransition, NotFound
from notera.models import Lesson, LessonStatus, can_transition

if TYPE_CHECKING:
    from notera.services.events import LessonEventHub

logger = logging.getLogger(__name__)

_SELECT_WITH_CLASS = """
SELECT lessons.*, classes.name AS class_name
FROM lessons LEFT JOIN classes ON classes.id = lessons.class_id
WHERE lessons.id = ?
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LessonRepository:
    """Reads and writes lesson rows and enforces the status state machine.

    Every status change is a single conditional UPDATE whose WHERE clause
    lists the source states allowed to reach the target state, so a write
    that lost a race simply matches no row.  Successful updates are pushed to
    the class's live subscribers when an event hub is attached.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        events: "LessonEventHub | None" = None,
    ) -> None:
        self.conn = conn
        self.events = events

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, lesson_id: str, *, with_class: bool = False) -> Lesson | None:
        if with_class:
            row = await self.conn.execute(_SELECT_WITH_CLASS, (lesson_id,))
        else:
            row = await self.conn.execute(
                "SELECT * FROM lessons WHERE id = ?", (lesson_id,)
            )
        found = await row.fetchone()
        return Lesson.from_row(found) if found else None

    async def require(self, lesson_id: str, *, with_class: bool = False) -> Lesson:
        lesson = await self.get(lesson_id, with_class=with_class)
        if lesson is None:
            raise NotFound(f"Lesson {lesson_id} not found")
        return lesson

    async def list_for_class(self, class_id: str) -> list[Lesson]:
        rows = await self.conn.execute(
            "SELECT * FROM lessons WHERE class_id = ? ORDER BY recorded_at DESC",
            (class_id,),
        )
        return [Lesson.from_row(row) for row in await rows.fetchall()]

    async def find_by_title(self, class_id: str, title: str) -> list[Lesson]:
        rows = await self.conn.execute(
            "SELECT * FROM lessons WHERE class_id = ? AND title = ?",
            (class_id, title),
        )
        return [Lesson.from_row(row) for row in await rows.fetchall()]

    # ------------------------------------------------------------------
    # Creation / deletion
    # ------------------------------------------------------------------

    async def create(
        self,
        class_id: str,
        title: str,
        subject: str | None,
        duration_seconds: int,
    ) -> Lesson:
        lesson_id = str(uuid.uuid4())
        now = _now()
        await self.conn.execute(
            """INSERT INTO lessons
               (id, class_id, title, subject, recorded_at, duration_seconds,
                audio_url, status, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?)""",
            (
                lesson_id,
                class_id,
                title,
                subject,
                now,
                duration_seconds,
                LessonStatus.RECORDING.value,
                now,
            ),
        )
        await self.conn.commit()
        return await self.require(lesson_id)

    async def delete(self, lesson_id: str) -> bool:
        lesson = await self.get(lesson_id)
        cursor = await self.conn.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))
        await self.conn.commit()
        deleted = cursor.rowcount > 0
        if deleted and lesson and self.events:
            await self.events.publish(
                lesson.class_id, {"type": "lesson_deleted", "lessonId": lesson_id}
            )
        return deleted

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------

    async def set_audio_url(self, lesson_id: str, key: str) -> bool:
        """Link the stored audio object. Only ever fills an empty reference."""
        cursor = await self.conn.execute(
            "UPDATE lessons SET audio_url = ? WHERE id = ? AND audio_url IS NULL",
            (key, lesson_id),
        )
        await self.conn.commit()
        changed = cursor.rowcount > 0
        if changed:
            await self._publish(lesson_id)
        return changed

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def claim_for_processing(self, lesson_id: str) -> str:
        """Move the lesson into ``processing`` and return a fresh processing token.

        Claims from ``recording`` or ``processing`` only; a lesson in ``error``
        must go through ``reopen_for_retry`` first.  Clears any
        transcription/summary so artefacts only exist in ``ready``.
        """
        token = secrets.token_hex(16)
        changed = await self._transition(
            lesson_id,
            LessonStatus.PROCESSING,
            fields={"processing_token": token, "transcription": None, "summary": None},
            sources=[LessonStatus.RECORDING, LessonStatus.PROCESSING],
        )
        if not changed:
            await self._raise_for_rejected(lesson_id, LessonStatus.PROCESSING)
        return token

    async def reopen_for_retry(self, lesson_id: str) -> str:
        """Operator retry: ``error -> processing`` only."""
        token = secrets.token_hex(16)
        changed = await self._transition(
            lesson_id,
            LessonStatus.PROCESSING,
            fields={"processing_token": token, "transcription": None, "summary": None},
            sources=[LessonStatus.ERROR],
        )
        if not changed:
            await self._raise_for_rejected(lesson_id, LessonStatus.PROCESSING)
        return token

    async def complete(
        self, lesson_id: str, token: str, transcription: str, summary: str
    ) -> bool:
        """Terminal success write; a no-op if another invocation took over."""
        return await self._transition(
            lesson_id,
            LessonStatus.READY,
            fields={
                "transcription": transcription,
                "summary": summary,
                "processing_token": None,
            },
            sources=[LessonStatus.PROCESSING],
            token=token,
        )

    async def fail(self, lesson_id: str, token: str) -> bool:
        return await self._transition(
            lesson_id,
            LessonStatus.ERROR,
            fields={"transcription": None, "summary": None},
            sources=[LessonStatus.PROCESSING],
            token=token,
        )

    async def mark_ready_without_content(self, lesson_id: str) -> bool:
        """Fallback used when processing could not be dispatched at all."""
        return await self._transition(
            lesson_id, LessonStatus.READY, sources=[LessonStatus.RECORDING]
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        lesson_id: str,
        target: LessonStatus,
        *,
        fields: dict | None = None,
        sources: list[LessonStatus] | None = None,
        token: str | None = None,
    ) -> bool:
        if sources is None:
            sources = [s for s in LessonStatus if can_transition(s, target)]
        for source in sources:
            if not can_transition(source, target):
                raise InvalidTransition(
                    f"Lessons cannot move from {source.value} to {target.value}"
                )

        assignments = {"status": target.value, "updated_at": _now(), **(fields or {})}
        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        placeholders = ", ".join("?" for _ in sources)
        sql = (
            f"UPDATE lessons SET {set_clause} "
            f"WHERE id = ? AND status IN ({placeholders})"
        )
        params = [*assignments.values(), lesson_id, *(s.value for s in sources)]
        if token is not None:
            sql += " AND processing_token = ?"
            params.append(token)

        cursor = await self.conn.execute(sql, params)
        await self.conn.commit()
        changed = cursor.rowcount > 0
        if changed:
            logger.debug("Lesson %s -> %s", lesson_id, target.value)
            await self._publish(lesson_id)
        return changed

    async def _raise_for_rejected(self, lesson_id: str, target: LessonStatus) -> None:
        lesson = await self.require(lesson_id)
        raise InvalidTransition(
            f"Lesson {lesson_id} cannot move from {lesson.status.value} to {target.value}"
        )

    async def _publish(self, lesson_id: str) -> None:
        if self.events is None:
            return
        lesson = await self.get(lesson_id)
        if lesson is not None:
            await self.events.publish(
                lesson.class_id, {"type": "lesson_updated", "lesson": lesson.to_dict()}
            )
