import logging
from dataclasses import dataclass

import httpx

from notera.config import settings
from notera.errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None = None


def bearer_token(header: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not header or not header.startswith("Bearer "):
        raise Unauthorized("Unauthorized - no token")
    token = header[len("Bearer "):].strip()
    if not token:
        raise Unauthorized("Unauthorized - no token")
    return token


class AuthClient:
    """Verifies access tokens against the hosted identity provider."""

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = (base_url or settings.auth_url).rstrip("/")
        self._anon_key = anon_key or settings.auth_anon_key
        self._client = http_client or httpx.AsyncClient(timeout=10.0)

    async def get_user(self, token: str) -> AuthUser:
        if not token:
            raise Unauthorized("Unauthorized - no token")
        try:
            resp = await self._client.get(
                f"{self._base_url}/user",
                headers={"apikey": self._anon_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Identity provider unreachable: %s", e)
            raise Unauthorized("Unauthorized - could not verify token") from e

        if resp.status_code != 200:
            logger.warning("Invalid token (%d): %s", resp.status_code, resp.text[:200])
            raise Unauthorized("Unauthorized - invalid token")
        data = resp.json()
        if not isinstance(data, dict) or not data.get("id"):
            raise Unauthorized("Unauthorized - invalid token")
        return AuthUser(id=str(data["id"]), email=data.get("email"))

    async def aclose(self) -> None:
        await self._client.aclose()
