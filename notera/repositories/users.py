import aiosqlite

from notera.errors import ValidationError

ROLES = ("admin", "teacher", "student")


class UserRoleRepository:
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def roles(self, user_id: str) -> dict[str, str | None]:
        """Return ``{role: organization_id}`` for every role the user holds."""
        rows = await self.conn.execute(
            "SELECT role, organization_id FROM user_roles WHERE user_id = ?", (user_id,)
        )
        return {row["role"]: row["organization_id"] for row in await rows.fetchall()}

    async def grant(
        self, user_id: str, role: str, organization_id: str | None = None
    ) -> None:
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        await self.conn.execute(
            "INSERT OR REPLACE INTO user_roles (user_id, role, organization_id) "
            "VALUES (?, ?, ?)",
            (user_id, role, organization_id),
        )
        await self.conn.commit()
