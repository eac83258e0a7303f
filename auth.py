from typing import Optional

import httpx

from errors import AuthError, require
from settings import Settings


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SupabaseAuth:
    """Resolves a caller's bearer token to a user id through Supabase Auth."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http

    async def get_user_id(self, authorization: Optional[str]) -> Optional[str]:
        token = bearer_token(authorization)
        if not token:
            return None

        base = require(self.settings.supabase_url, "SUPABASE_URL").rstrip("/")
        anon_key = require(self.settings.supabase_anon_key, "SUPABASE_ANON_KEY")
        try:
            response = await self.http.get(
                f"{base}/auth/v1/user",
                headers={"apikey": anon_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            print(f"⚠️ Auth lookup failed: {e}")
            return None

        if response.status_code != 200:
            return None
        return (response.json() or {}).get("id")

    async def require_user(self, authorization: Optional[str]) -> str:
        user_id = await self.get_user_id(authorization)
        if not user_id:
            raise AuthError()
        return user_id
