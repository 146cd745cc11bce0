"""
SendGrid mail sender

Posts single HTML messages to the v3 `/mail/send` endpoint. Delivery problems
come back as a SendResult instead of an exception.
"""
import logging
from typing import Optional
from dataclasses import dataclass

import httpx

from parcin.core.config import settings

logger = logging.getLogger(__name__)

SENDGRID_API = "https://api.sendgrid.com/v3"
ACCEPTED_STATUSES = (200, 202)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def build_mail_payload(
    sender: dict,
    to_email: str,
    subject: str,
    html: str,
    to_name: Optional[str] = None,
    reservation_id: Optional[str] = None,
) -> dict:
    recipient = {"email": to_email}
    if to_name:
        recipient["name"] = to_name

    personalization = {"to": [recipient]}
    if reservation_id:
        # Echoed back on SendGrid event webhooks
        personalization["custom_args"] = {"reservation_id": reservation_id}

    return {
        "personalizations": [personalization],
        "from": sender,
        "subject": subject,
        "content": [{"type": "text/html", "value": html}],
        "categories": ["reservation"],
    }


class SendGridProvider:

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = settings.SENDGRID_API_KEY if api_key is None else api_key
        self.sender = {
            "email": from_email or settings.SENDGRID_FROM_EMAIL,
            "name": from_name or settings.SENDGRID_FROM_NAME,
        }
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=SENDGRID_API, timeout=30.0)
        return self._client

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html: str,
        to_name: Optional[str] = None,
        reservation_id: Optional[str] = None,
    ) -> SendResult:
        if not self.configured:
            logger.warning(f"SENDGRID_API_KEY missing, '{subject}' to {to_email} dropped")
            return SendResult(success=False, error="Email not configured")

        payload = build_mail_payload(self.sender, to_email, subject, html, to_name, reservation_id)
        try:
            resp = await self._http().post(
                f"{SENDGRID_API}/mail/send",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid unreachable: {e}")
            return SendResult(success=False, error=str(e))

        if resp.status_code not in ACCEPTED_STATUSES:
            logger.error(f"SendGrid rejected mail ({resp.status_code}): {resp.text}")
            return SendResult(success=False, error=resp.text)

        return SendResult(success=True, message_id=resp.headers.get("X-Message-Id"))
