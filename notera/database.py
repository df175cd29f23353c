import aiosqlite

from notera.config import settings

CREATE_ORGANIZATIONS = """
CREATE TABLE IF NOT EXISTS organizations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_CLASSES = """
CREATE TABLE IF NOT EXISTS classes (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    teacher_id TEXT NOT NULL,
    name TEXT NOT NULL,
    join_code TEXT NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (organization_id) REFERENCES organizations(id) ON DELETE CASCADE
)
"""

CREATE_CLASS_MEMBERS = """
CREATE TABLE IF NOT EXISTS class_members (
    class_id TEXT NOT NULL,
    student_id TEXT NOT NULL,
    joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (class_id, student_id),
    FOREIGN KEY (class_id) REFERENCES classes(id) ON DELETE CASCADE
)
"""

CREATE_USER_ROLES = """
CREATE TABLE IF NOT EXISTS user_roles (
    user_id TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin', 'teacher', 'student')),
    organization_id TEXT,
    PRIMARY KEY (user_id, role)
)
"""

CREATE_LESSONS = """
CREATE TABLE IF NOT EXISTS lessons (
    id TEXT PRIMARY KEY,
    class_id TEXT NOT NULL,
    title TEXT NOT NULL CHECK (length(trim(title)) > 0),
    subject TEXT,
    recorded_at TIMESTAMP NOT NULL,
    duration_seconds INTEGER NOT NULL DEFAULT 0 CHECK (duration_seconds >= 0),
    audio_url TEXT,
    transcription TEXT,
    summary TEXT,
    status TEXT NOT NULL DEFAULT 'recording'
        CHECK (status IN ('recording', 'processing', 'ready', 'error')),
    processing_token TEXT,
    updated_at TIMESTAMP NOT NULL,
    FOREIGN KEY (class_id) REFERENCES classes(id) ON DELETE CASCADE
)
"""

CREATE_LESSONS_INDEX = """
CREATE INDEX IF NOT EXISTS idx_lessons_class_recorded
    ON lessons (class_id, recorded_at DESC)
"""

_DDL = [
    CREATE_ORGANIZATIONS,
    CREATE_CLASSES,
    CREATE_CLASS_MEMBERS,
    CREATE_USER_ROLES,
    CREATE_LESSONS,
    CREATE_LESSONS_INDEX,
]


async def init_db() -> None:
    """Create all tables. Called once at server startup via FastAPI lifespan."""
    async with aiosqlite.connect(settings.database_path) as db:
        for stmt in _DDL:
            await db.execute(stmt)
        await db.commit()


async def get_async_conn() -> aiosqlite.Connection:
    """Async connection for route handlers and the processing function."""
    conn = await aiosqlite.connect(settings.database_path)
    await conn.execute("PRAGMA busy_timeout = 5000")
    await conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = aiosqlite.Row
    return conn
