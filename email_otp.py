"""
Email one-time codes used during sign-up.

A code is six digits, valid for ten minutes, and at most three codes are
issued per address in any rolling minute. Sending a new code expires the
earlier unverified ones instead of deleting them, so the rate window can
still see them.
"""

import asyncio
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select, update

from errors import AdvisoryServiceError, InvalidRequest, RateLimitedError
from mailer import ResendMailer
from models import EmailOtp

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
OTP_TTL = timedelta(minutes=10)
RATE_WINDOW = timedelta(seconds=60)
MAX_SENDS_PER_WINDOW = 3


class EmailDeliveryError(AdvisoryServiceError):
    status_code = 500
    public_message = "Email delivery failed. Please try again later."


def generate_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def otp_email_html(code: str) -> str:
    return f"""
<div style="font-family:sans-serif;max-width:400px;margin:0 auto;padding:20px;text-align:center;">
  <h2 style="color:#16a34a;">🌾 কৃষিOS</h2>
  <p>আপনার ইমেইল যাচাই করতে নিচের কোডটি ব্যবহার করুন:</p>
  <div style="background:#f0fdf4;border:2px solid #16a34a;border-radius:12px;padding:20px;margin:20px 0;">
    <span style="font-size:32px;font-weight:bold;letter-spacing:8px;color:#16a34a;">{code}</span>
  </div>
  <p style="color:#666;font-size:14px;">এই কোডটি ১০ মিনিট পর্যন্ত বৈধ থাকবে।</p>
</div>
"""


class EmailOtpService:
    def __init__(self, session_factory, mailer: ResendMailer):
        self.session_factory = session_factory
        self.mailer = mailer

    def _issue(self, email: str, now: datetime) -> str:
        with self.session_factory() as session:
            recent = session.execute(
                select(func.count(EmailOtp.id))
                .where(EmailOtp.email == email, EmailOtp.created_at >= now - RATE_WINDOW)
            ).scalar_one()
            if recent >= MAX_SENDS_PER_WINDOW:
                raise RateLimitedError("Too many requests. Please wait a minute.")

            session.execute(
                update(EmailOtp)
                .where(EmailOtp.email == email, EmailOtp.verified.is_(False), EmailOtp.expires_at > now)
                .values(expires_at=now)
            )
            code = generate_code()
            session.add(EmailOtp(email=email, otp_code=code, verified=False,
                                 expires_at=now + OTP_TTL, created_at=now))
            session.commit()
            return code

    async def send(self, email, now: Optional[datetime] = None) -> dict:
        if not email or not isinstance(email, str):
            raise InvalidRequest("Email is required")
        email = email.strip()
        if len(email) > 255 or not EMAIL_PATTERN.match(email):
            raise InvalidRequest("Invalid email format")

        code = await asyncio.to_thread(self._issue, email, now or datetime.utcnow())

        sent = await self.mailer.send(
            [email], f"🔐 আপনার OTP কোড: {code}", otp_email_html(code),
            sender="কৃষিOS <onboarding@resend.dev>",
        )
        if sent is None:
            print(f"❌ [email-otp] Delivery failed for {email}; code stored but not sent")
            raise EmailDeliveryError()
        return {"success": True, "email_sent": True}

    def _verify(self, email: str, code: str, now: datetime) -> bool:
        with self.session_factory() as session:
            row = session.execute(
                select(EmailOtp).where(
                    EmailOtp.email == email,
                    EmailOtp.otp_code == code,
                    EmailOtp.verified.is_(False),
                    EmailOtp.expires_at >= now,
                ).order_by(EmailOtp.created_at.desc())
            ).scalars().first()
            if row is None:
                return False
            row.verified = True
            session.commit()
            return True

    async def verify(self, email, code, now: Optional[datetime] = None) -> bool:
        if not email or not code:
            raise InvalidRequest("Email and OTP code required")
        return await asyncio.to_thread(self._verify, str(email).strip(), str(code).strip(),
                                       now or datetime.utcnow())
