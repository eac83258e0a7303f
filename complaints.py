import asyncio
import html

from errors import ConfigurationError, InvalidRequest
from mailer import ResendMailer
from models import Complaint
from perf import sanitize_text
from settings import Settings


def complaint_email_html(name: str, email: str, phone: str, message: str) -> str:
    e = html.escape
    return f"""
<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #16a34a;">🌾 কৃষিOS - নতুন যোগাযোগ বার্তা</h2>
  <hr style="border: 1px solid #e5e7eb;" />
  <p><strong>নাম:</strong> {e(name or "N/A")}</p>
  <p><strong>ইমেইল:</strong> {e(email or "N/A")}</p>
  <p><strong>ফোন:</strong> {e(phone or "N/A")}</p>
  <hr style="border: 1px solid #e5e7eb;" />
  <h3>বার্তা:</h3>
  <p style="background: #f3f4f6; padding: 16px; border-radius: 8px; white-space: pre-wrap;">{e(message)}</p>
  <hr style="border: 1px solid #e5e7eb;" />
  <p style="color: #6b7280; font-size: 12px;">এই বার্তাটি কৃষিOS অ্যাপ থেকে পাঠানো হয়েছে।</p>
</div>
"""


class ComplaintDesk:
    def __init__(self, settings: Settings, mailer: ResendMailer, session_factory):
        self.settings = settings
        self.mailer = mailer
        self.session_factory = session_factory

    def _store(self, user_id: str, name: str, email: str, phone: str, message: str):
        with self.session_factory() as session:
            session.add(Complaint(user_id=user_id, name=name or "", email=email or None,
                                  phone=phone or None, message=message))
            session.commit()

    async def submit(self, user_id: str, name=None, email=None, phone=None, message=None) -> dict:
        if not self.mailer.configured:
            raise ConfigurationError("RESEND_API_KEY is not configured")

        message = sanitize_text(message, 5000)
        name = sanitize_text(name, 200)
        email = sanitize_text(email, 255)
        phone = sanitize_text(phone, 20)
        if not message:
            raise InvalidRequest("Message is required")

        await asyncio.to_thread(self._store, user_id, name, email, phone, message)

        result = await self.mailer.send(
            [self.settings.admin_email],
            f"🌾 নতুন অভিযোগ/যোগাযোগ - {html.escape(name or 'Unknown')}",
            complaint_email_html(name, email, phone, message),
        )
        print(f"✅ Complaint stored for {user_id}; notification {'sent' if result else 'not sent'}")
        return {"success": True}
