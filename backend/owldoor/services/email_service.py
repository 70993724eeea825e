"""
Admin email alerts

Provider is picked by EMAIL_PROVIDER: "mailjet" (default) or "console", which
only logs the message and is what dev and tests use.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Type

from mailjet_rest import Client as MailjetClient

from ..logging_config import get_logger

logger = get_logger(__name__)

EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "mailjet")
DEFAULT_FROM_EMAIL = os.getenv("EMAIL_FROM", "noreply@owldoor.com")
DEFAULT_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "OwlDoor")
ADMIN_ALERT_EMAIL = os.getenv("ADMIN_ALERT_EMAIL", "admin@owldoor.com")


@dataclass
class EmailMessage:
    to_email: str
    subject: str
    body: str
    from_email: str = DEFAULT_FROM_EMAIL
    from_name: str = DEFAULT_FROM_NAME
    reply_to: Optional[str] = None


class EmailProvider(ABC):
    name = "base"

    @abstractmethod
    def send(self, message: EmailMessage) -> bool:
        pass


class MailjetProvider(EmailProvider):
    name = "mailjet"

    def __init__(self):
        api_key = os.getenv("MAILJET_API_KEY")
        api_secret = os.getenv("MAILJET_API_SECRET")
        if not api_key or not api_secret:
            raise ValueError("MAILJET_API_KEY and MAILJET_API_SECRET required")
        self.client = MailjetClient(auth=(api_key, api_secret), version="v3.1")

    def send(self, message: EmailMessage) -> bool:
        payload = {
            "From": {"Email": message.from_email, "Name": message.from_name},
            "To": [{"Email": message.to_email}],
            "Subject": message.subject,
            "TextPart": message.body,
        }
        if message.reply_to:
            payload["ReplyTo"] = {"Email": message.reply_to}

        result = self.client.send.create(data={"Messages": [payload]})
        if result.status_code != 200:
            logger.error(
                f"Mailjet rejected message: {result.json()}",
                extra={"action": "email_send_failed",
                       "extra_data": {"to_email": message.to_email, "status_code": result.status_code}},
            )
            return False
        return True


class ConsoleProvider(EmailProvider):
    name = "console"

    def send(self, message: EmailMessage) -> bool:
        preview = message.body if len(message.body) <= 200 else message.body[:200] + "..."
        logger.info(
            "Email (console provider)",
            extra={"action": "email_logged",
                   "extra_data": {"to_email": message.to_email, "subject": message.subject,
                                  "body_preview": preview}},
        )
        return True


PROVIDERS: Dict[str, Type[EmailProvider]] = {
    MailjetProvider.name: MailjetProvider,
    ConsoleProvider.name: ConsoleProvider,
}


def get_provider() -> EmailProvider:
    provider_cls = PROVIDERS.get(EMAIL_PROVIDER)
    if provider_cls is None:
        raise ValueError(f"Unknown EMAIL_PROVIDER: {EMAIL_PROVIDER}")
    return provider_cls()


def send_email(message: EmailMessage) -> bool:
    sent = get_provider().send(message)
    if sent:
        logger.info(
            "Email sent",
            extra={"action": "email_sent",
                   "extra_data": {"provider": EMAIL_PROVIDER, "to_email": message.to_email,
                                  "subject": message.subject}},
        )
    return sent


def send_rate_limit_alert(endpoint: str, identifier: str) -> bool:
    """Tell the admin inbox that a caller hit a rate limit. Never raises."""
    message = EmailMessage(
        to_email=ADMIN_ALERT_EMAIL,
        subject=f"[OwlDoor] Rate limit exceeded on {endpoint}",
        body=(
            f"Endpoint: {endpoint}\n"
            f"Caller: {identifier}\n\n"
            "Requests from this caller get HTTP 429 until the window resets.\n"
        ),
    )
    try:
        return send_email(message)
    except Exception as e:
        logger.error(f"Failed to send rate limit alert: {e}", exc_info=True,
                     extra={"action": "rate_limit_alert_failed"})
        return False
