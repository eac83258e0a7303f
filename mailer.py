from typing import List, Optional

import httpx

from settings import Settings


class ResendMailer:
    """Transactional email through the Resend HTTP API."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.api_key = settings.resend_api_key
        self.base_url = settings.resend_base_url.rstrip("/")
        self.http = http

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: List[str], subject: str, html: str,
                   sender: str = "KrishiOS <onboarding@resend.dev>") -> Optional[dict]:
        """Send one message. Returns Resend's JSON on success, None on any failure (logged)."""
        if not self.api_key:
            print("⚠️ RESEND_API_KEY is not configured; email not sent")
            return None
        try:
            response = await self.http.post(
                f"{self.base_url}/emails",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": sender, "to": to, "subject": subject, "html": html},
            )
        except httpx.HTTPError as e:
            print(f"❌ Resend request failed: {e}")
            return None
        if response.status_code >= 300:
            print(f"❌ Resend error: {response.status_code} {response.text[:200]}")
            return None
        return response.json()
