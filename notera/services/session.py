"""Per-request identity: who is calling and what they may do.

The viewer is resolved once from the caller's roles and then asked
capability questions, so services never compare role strings themselves.
"""

from dataclasses import dataclass

import aiosqlite

from notera.clients.auth_client import AuthClient, AuthUser
from notera.errors import Forbidden
from notera.models import Classroom
from notera.repositories.classes import ClassRepository
from notera.repositories.users import UserRoleRepository


@dataclass(frozen=True)
class AdminViewer:
    user_id: str

    def can_manage_class(self, classroom: Classroom) -> bool:
        return True

    def can_view_class(self, classroom: Classroom) -> bool:
        return True

    def can_create_class(self) -> bool:
        return True


@dataclass(frozen=True)
class TeacherViewer:
    user_id: str
    organization_id: str | None = None

    def can_manage_class(self, classroom: Classroom) -> bool:
        return classroom.teacher_id == self.user_id

    def can_view_class(self, classroom: Classroom) -> bool:
        return self.can_manage_class(classroom)

    def can_create_class(self) -> bool:
        return True


@dataclass(frozen=True)
class StudentViewer:
    user_id: str
    class_ids: frozenset[str] = frozenset()

    def can_manage_class(self, classroom: Classroom) -> bool:
        return False

    def can_view_class(self, classroom: Classroom) -> bool:
        return classroom.id in self.class_ids

    def can_create_class(self) -> bool:
        return False


Viewer = AdminViewer | TeacherViewer | StudentViewer


@dataclass(frozen=True)
class SessionContext:
    user: AuthUser
    viewer: Viewer
    access_token: str


async def resolve_viewer(conn: aiosqlite.Connection, user_id: str) -> Viewer:
    """Pick the strongest role the user holds (admin > teacher > student)."""
    roles = await UserRoleRepository(conn).roles(user_id)
    if "admin" in roles:
        return AdminViewer(user_id)
    if "teacher" in roles:
        return TeacherViewer(user_id, roles["teacher"])
    return StudentViewer(user_id, await ClassRepository(conn).member_class_ids(user_id))


async def build_session(
    auth: AuthClient, conn: aiosqlite.Connection, token: str
) -> SessionContext:
    user = await auth.get_user(token)
    return SessionContext(user=user, viewer=await resolve_viewer(conn, user.id), access_token=token)


def require_class_access(ctx: SessionContext, classroom: Classroom, *, manage: bool) -> None:
    allowed = (
        ctx.viewer.can_manage_class(classroom)
        if manage
        else ctx.viewer.can_view_class(classroom)
    )
    if not allowed:
        raise Forbidden(f"No access to class {classroom.id}")
