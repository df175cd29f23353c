import re
import secrets
import sqlite3
import string
import uuid

import aiosqlite

from notera.errors import ValidationError
from notera.models import Classroom, Organization

JOIN_CODE_LENGTH = 6
JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
_JOIN_CODE_RE = re.compile(rf"^[A-Z0-9]{{{JOIN_CODE_LENGTH}}}$")

# Join codes are random, so a collision is rare; give up after a few tries.
_MAX_CREATE_ATTEMPTS = 3


def generate_join_code() -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


def normalize_join_code(code: str) -> str:
    """Return the canonical upper-case form, rejecting malformed codes."""
    canonical = (code or "").strip().upper()
    if not _JOIN_CODE_RE.match(canonical):
        raise ValidationError(
            f"Join code must be {JOIN_CODE_LENGTH} letters or digits"
        )
    return canonical


class ClassRepository:
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def create_organization(self, name: str) -> Organization:
        if not name.strip():
            raise ValidationError("Organization name is required")
        org_id = str(uuid.uuid4())
        await self.conn.execute(
            "INSERT INTO organizations (id, name) VALUES (?, ?)", (org_id, name.strip())
        )
        await self.conn.commit()
        row = await self.conn.execute("SELECT * FROM organizations WHERE id = ?", (org_id,))
        return Organization(**dict(await row.fetchone()))

    async def create(self, organization_id: str, teacher_id: str, name: str) -> Classroom:
        if not name.strip():
            raise ValidationError("Class name is required")
        class_id = str(uuid.uuid4())
        for attempt in range(1, _MAX_CREATE_ATTEMPTS + 1):
            try:
                await self.conn.execute(
                    "INSERT INTO classes (id, organization_id, teacher_id, name, join_code) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (class_id, organization_id, teacher_id, name.strip(), generate_join_code()),
                )
                await self.conn.commit()
                break
            except sqlite3.IntegrityError as e:
                await self.conn.rollback()
                if "join_code" not in str(e) or attempt == _MAX_CREATE_ATTEMPTS:
                    raise
        return await self.get(class_id)

    async def get(self, class_id: str) -> Classroom | None:
        row = await self.conn.execute("SELECT * FROM classes WHERE id = ?", (class_id,))
        found = await row.fetchone()
        return Classroom(**dict(found)) if found else None

    async def get_by_join_code(self, code: str) -> Classroom | None:
        row = await self.conn.execute(
            "SELECT * FROM classes WHERE join_code = ?", (normalize_join_code(code),)
        )
        found = await row.fetchone()
        return Classroom(**dict(found)) if found else None

    async def add_member(self, class_id: str, student_id: str) -> None:
        await self.conn.execute(
            "INSERT OR IGNORE INTO class_members (class_id, student_id) VALUES (?, ?)",
            (class_id, student_id),
        )
        await self.conn.commit()

    async def member_class_ids(self, student_id: str) -> frozenset[str]:
        rows = await self.conn.execute(
            "SELECT class_id FROM class_members WHERE student_id = ?", (student_id,)
        )
        return frozenset(row["class_id"] for row in await rows.fetchall())
