"""
Manual payment requests: the farmer pays by mobile money, then reports the
transaction here so an admin can confirm it and upgrade the plan.
"""

import asyncio
import html
import math
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from errors import InvalidRequest
from mailer import ResendMailer
from models import PaymentRequest, Profile
from perf import sanitize_text
from settings import Settings

DEFAULT_METHOD = "bkash"


def parse_amount(value) -> Optional[float]:
    """A non-negative number from JSON (or numeric text); None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidRequest("Invalid amount")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidRequest("Invalid amount")
    if amount < 0 or not math.isfinite(amount):
        raise InvalidRequest("Invalid amount")
    return amount


def _amount_text(amount: Optional[float]) -> str:
    if amount is None:
        return "N/A"
    return str(int(amount)) if amount == int(amount) else str(amount)


def payment_email_html(details: dict) -> str:
    cell = 'style="padding:8px;border:1px solid #ddd"'
    rows = [
        ("User", details["user_name"]),
        ("Email", details["user_email"]),
        ("Sender Mobile", details["sender_mobile"]),
        ("Profile Phone", details["user_phone"]),
        ("Plan", details["plan"]),
        ("Amount", f"৳{details['amount']}"),
        ("Method", details["payment_method"]),
        ("Transaction ID", details["transaction_id"]),
        ("Time", details["time"]),
    ]
    body = "\n".join(
        f"  <tr><td {cell}><strong>{label}</strong></td><td {cell}>{html.escape(str(value))}</td></tr>"
        for label, value in rows
    )
    return f"""
<h2>New Payment Request</h2>
<table style="border-collapse:collapse;width:100%">
{body}
</table>
"""


class PaymentDesk:
    def __init__(self, settings: Settings, mailer: ResendMailer, session_factory):
        self.settings = settings
        self.mailer = mailer
        self.session_factory = session_factory

    def _store(self, user_id: str, plan: str, transaction_id: str, amount: Optional[float],
               method: str) -> Optional[dict]:
        """Insert the pending request and return the caller's profile, if any."""
        with self.session_factory() as session:
            session.add(PaymentRequest(user_id=user_id, plan=plan, transaction_id=transaction_id,
                                       amount=amount, payment_method=method, status="pending"))
            session.commit()
            profile = session.execute(select(Profile).where(Profile.user_id == user_id)).scalars().first()
            return profile.as_dict() if profile else None

    async def submit(self, user_id: str, plan=None, transaction_id=None, amount=None,
                     payment_method=None, sender_mobile=None, now: Optional[datetime] = None) -> dict:
        plan = sanitize_text(plan, 50)
        transaction_id = sanitize_text(transaction_id, 100)
        method = sanitize_text(payment_method, 30) or DEFAULT_METHOD
        sender_mobile = sanitize_text(sender_mobile, 20)
        if not plan or not transaction_id:
            raise InvalidRequest("Plan and transaction ID are required")
        amount = parse_amount(amount)

        profile = await asyncio.to_thread(self._store, user_id, plan, transaction_id, amount, method) or {}
        details = {
            "user_name": profile.get("full_name") or "Unknown",
            "user_email": profile.get("email") or "N/A",
            "user_phone": profile.get("phone") or "N/A",
            "sender_mobile": sender_mobile or "N/A",
            "plan": plan,
            "amount": _amount_text(amount),
            "transaction_id": transaction_id,
            "payment_method": method,
            "time": (now or datetime.utcnow()).isoformat(),
        }
        print(f"✅ Payment request {transaction_id} stored for {user_id} ({plan}, ৳{details['amount']})")

        if not self.mailer.configured:
            print("⚠️ RESEND_API_KEY is not configured; admin not notified of payment")
        else:
            await self.mailer.send(
                [self.settings.admin_email],
                f"💳 New Payment: {plan} plan - ৳{details['amount']}",
                payment_email_html(details),
                sender="KrishiBot <onboarding@resend.dev>",
            )
        return {"success": True, "message": "Payment request submitted"}
