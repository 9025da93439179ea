from __future__ import annotations

import html
import logging
from typing import Any, Dict

from app.clients.mail import MailClient
from app.config import DEFAULT_DATE_PATTERN, Settings
from app.jobs.queue import InvalidMailPayload, MailHandler
from app.services.formatting import format_human_date

logger = logging.getLogger(__name__)

CANCELLATION_MAIL = "CancellationMail"

TEXT_TEMPLATE = (
    "Hello {provider},\n\n"
    "{user} canceled the appointment scheduled for {date}.\n"
    "The slot is available again for new bookings.\n"
)

HTML_TEMPLATE = (
    "<p>Hello <strong>{provider}</strong>,</p>"
    "<p><strong>{user}</strong> canceled the appointment scheduled for "
    "<strong>{date}</strong>.</p>"
    "<p>The slot is available again for new bookings.</p>"
)


class CancellationMail:
    """Tells a provider that one of their appointments was canceled."""

    key = CANCELLATION_MAIL

    def __init__(self, mail_client: MailClient, *, date_pattern: str = DEFAULT_DATE_PATTERN) -> None:
        self._mail = mail_client
        self._date_pattern = date_pattern

    async def handle(self, payload: Dict[str, Any]) -> None:
        try:
            appointment = payload["appointment"]
            provider = appointment["provider"]
            user = appointment["user"]
            context = {
                "provider": provider["name"],
                "user": user["name"],
                "date": format_human_date(appointment["date"], self._date_pattern),
            }
            if not provider["email"]:
                raise ValueError("provider has no email address")
            to = f"{provider['name']} <{provider['email']}>"
            text = TEXT_TEMPLATE.format(**context)
            body = HTML_TEMPLATE.format(**{name: html.escape(value) for name, value in context.items()})
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise InvalidMailPayload(f"Malformed {self.key} payload: {exc!r}", cause=exc) from exc

        logger.info("Sending cancellation mail for appointment %s", appointment.get("id"))
        await self._mail.send_mail(to=to, subject="Appointment canceled", text=text, html=body)


def build_mail_handlers(mail_client: MailClient, settings: Settings) -> Dict[str, MailHandler]:
    cancellation = CancellationMail(mail_client, date_pattern=settings.date_pattern)
    return {cancellation.key: cancellation.handle}
