"""
Resend email delivery for assessment invitations.

Delivery failures are reported back to the caller instead of raised, so an
invite stays valid (and its link usable) even when the email bounces.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import resend

from ...platform.brand import brand_email_from
from ...platform.config import settings
from .templates import assessment_invite_html, assessment_invite_text

logger = logging.getLogger(__name__)


@dataclass
class InviteEmail:
    to_email: str
    candidate_name: str
    company_name: str
    job_title: str
    assessment_title: str
    time_limit_minutes: int
    invite_url: str
    expires_on: Optional[str] = None


class InviteMailer(Protocol):
    def send_assessment_invite(self, message: InviteEmail) -> dict:
        """Return ``{"success": bool, "email_id": str, "error": str | None}``."""


class EmailService:
    """Service for sending transactional emails through Resend."""

    def __init__(self, api_key: str, from_email: str = brand_email_from()):
        resend.api_key = api_key
        self.from_email = from_email
        logger.info("EmailService initialised (from=%s)", self.from_email)

    def send_assessment_invite(self, message: InviteEmail) -> dict:
        logger.info(
            "Sending assessment invite to %s for '%s' at %s",
            message.to_email, message.job_title, message.company_name,
        )
        try:
            email = resend.Emails.send({
                "from": self.from_email,
                "to": [message.to_email],
                "subject": f"Assessment invitation: {message.job_title} at {message.company_name}",
                "html": assessment_invite_html(
                    candidate_name=message.candidate_name,
                    company_name=message.company_name,
                    job_title=message.job_title,
                    assessment_title=message.assessment_title,
                    time_limit_minutes=message.time_limit_minutes,
                    invite_url=message.invite_url,
                    expires_on=message.expires_on,
                ),
                "text": assessment_invite_text(
                    candidate_name=message.candidate_name,
                    company_name=message.company_name,
                    assessment_title=message.assessment_title,
                    time_limit_minutes=message.time_limit_minutes,
                    invite_url=message.invite_url,
                ),
            })
        except Exception as e:
            # resend raises its own error types plus transport errors
            logger.error("Failed to send assessment invite to %s: %s", message.to_email, str(e))
            return {"success": False, "email_id": "", "error": str(e)}

        email_id = email.get("id", "") if isinstance(email, dict) else str(email)
        logger.info("Assessment invite sent (email_id=%s, to=%s)", email_id, message.to_email)
        return {"success": True, "email_id": email_id, "error": None}


def build_invite_mailer() -> Optional[InviteMailer]:
    """Resend-backed mailer, or None when no API key is configured."""
    if not (settings.RESEND_API_KEY or "").strip():
        return None
    return EmailService(api_key=settings.RESEND_API_KEY, from_email=settings.EMAIL_FROM)
