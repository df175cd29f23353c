from fastapi import APIRouter, Depends
from pydantic import BaseModel

from notera.database import get_async_conn
from notera.deps import get_session_context
from notera.errors import Forbidden, NotFound, ValidationError
from notera.repositories.classes import ClassRepository
from notera.repositories.users import UserRoleRepository
from notera.services.session import AdminViewer, SessionContext, TeacherViewer

router = APIRouter(prefix="/api", tags=["classes"])


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class OrganizationCreate(BaseModel):
    name: str


class RoleGrant(BaseModel):
    user_id: str
    role: str
    organization_id: str | None = None


class ClassCreate(BaseModel):
    name: str
    organization_id: str | None = None


class JoinRequest(BaseModel):
    code: str


# ------------------------------------------------------------------
# Administration
# ------------------------------------------------------------------


@router.post("/organizations", status_code=201)
async def create_organization(
    body: OrganizationCreate, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    if not isinstance(ctx.viewer, AdminViewer):
        raise Forbidden("Only administrators can create organizations")
    conn = await get_async_conn()
    try:
        organization = await ClassRepository(conn).create_organization(body.name)
        return vars(organization)
    finally:
        await conn.close()


@router.post("/roles", status_code=201)
async def grant_role(
    body: RoleGrant, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    if not isinstance(ctx.viewer, AdminViewer):
        raise Forbidden("Only administrators can grant roles")
    conn = await get_async_conn()
    try:
        await UserRoleRepository(conn).grant(body.user_id, body.role, body.organization_id)
        return {"user_id": body.user_id, "role": body.role}
    finally:
        await conn.close()


# ------------------------------------------------------------------
# Classes
# ------------------------------------------------------------------


@router.post("/classes", status_code=201)
async def create_class(
    body: ClassCreate, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    viewer = ctx.viewer
    if not viewer.can_create_class():
        raise Forbidden("Only teachers can create classes")
    organization_id = body.organization_id
    if isinstance(viewer, TeacherViewer):
        organization_id = viewer.organization_id or organization_id
    if not organization_id:
        raise ValidationError("organization_id is required")

    conn = await get_async_conn()
    try:
        classroom = await ClassRepository(conn).create(organization_id, viewer.user_id, body.name)
        return vars(classroom)
    finally:
        await conn.close()


@router.get("/classes/join/{code}")
async def lookup_class(code: str) -> dict:
    """Public lookup used by the join page before the student signs in."""
    conn = await get_async_conn()
    try:
        classroom = await ClassRepository(conn).get_by_join_code(code)
    finally:
        await conn.close()
    if classroom is None:
        raise NotFound("No class matches that code")
    return {"id": classroom.id, "name": classroom.name, "join_code": classroom.join_code}


@router.post("/classes/join")
async def join_class(
    body: JoinRequest, ctx: SessionContext = Depends(get_session_context)
) -> dict:
    conn = await get_async_conn()
    try:
        classes = ClassRepository(conn)
        classroom = await classes.get_by_join_code(body.code)
        if classroom is None:
            raise NotFound("No class matches that code")
        await classes.add_member(classroom.id, ctx.user.id)
        roles = UserRoleRepository(conn)
        if not await roles.roles(ctx.user.id):
            await roles.grant(ctx.user.id, "student", classroom.organization_id)
        return {"class_id": classroom.id, "name": classroom.name}
    finally:
        await conn.close()
