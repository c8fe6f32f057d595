"""
Email Service

Renders and sends Care Circle notification emails.
Uses SMTP; when EMAIL_ENABLED is off the message is logged instead of sent.
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape
from typing import Callable, Dict, Optional, Tuple
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.enabled = settings.EMAIL_ENABLED

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email.

        Returns True if sent successfully, False otherwise.
        """
        if not self.enabled:
            logger.info(f"Email disabled, would send to {to_email}: {subject}")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            if self.smtp_username and self.smtp_password:
                server = smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=settings.NOTIFICATION_DISPATCH_TIMEOUT_S)
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
                server.quit()
            else:
                # Local development - just log
                logger.info(f"Would send email to {to_email}: {subject}")
                logger.debug(f"Content: {html_content[:200]}...")

            return True

        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return False

    # ------------------------------------------------------------------
    # Care Circle templates
    # ------------------------------------------------------------------

    def render(self, kind: str, context: Dict) -> Tuple[str, str, str]:
        """Return (subject, html, text) for a notification kind."""
        renderer = self._renderers().get(kind)
        if renderer is None:
            raise ValueError(f"Unknown notification kind: {kind}")
        return renderer(context)

    def send_care_circle(self, kind: str, to_email: str, context: Dict) -> bool:
        subject, html_content, text_content = self.render(kind, context)
        return self.send_email(to_email, subject, html_content, text_content)

    def _renderers(self) -> Dict[str, Callable[[Dict], Tuple[str, str, str]]]:
        return {
            "invite": self._render_invite,
            "accepted": self._render_accepted,
            "declined": self._render_declined,
            "revoked": self._render_revoked,
        }

    @staticmethod
    def _tier_sentence(tier: Optional[str]) -> str:
        if tier == "full":
            return "You will be able to see their mood history, check-in details and summaries."
        return "You will be able to see their mood summaries and trends."

    def _render_invite(self, context: Dict) -> Tuple[str, str, str]:
        patient_name = context.get("patient_name") or "Someone"
        invite_url = context.get("invite_url", "")
        expires_in_days = context.get("expires_in_days", settings.CARE_CIRCLE_INVITE_TTL_DAYS)
        tier_sentence = self._tier_sentence(context.get("sharing_tier"))

        subject = f"{patient_name} invited you to their Care Circle"
        html_content = "\n".join([
            f"<h2>Hi {escape(context.get('trusted_name') or 'there')},</h2>",
            f"<p><strong>{escape(patient_name)}</strong> has invited you to join their Care Circle.</p>",
            "<p>Care Circle lets someone you trust view your wellness data, "
            "so the people who care about you can stay connected and supportive.</p>",
            f"<p>{tier_sentence}</p>",
            f'<p><a href="{escape(invite_url)}">Accept invitation</a></p>',
            f"<p>This invitation expires in {expires_in_days} days.</p>",
        ])
        text_content = "\n".join([
            f"{patient_name} has invited you to join their Care Circle.",
            "",
            "Care Circle lets someone you trust view your wellness data.",
            tier_sentence,
            "",
            f"Accept here: {invite_url}",
            f"This invitation expires in {expires_in_days} days.",
        ])
        return subject, html_content, text_content

    def _render_accepted(self, context: Dict) -> Tuple[str, str, str]:
        trusted = context.get("trusted_name") or context.get("trusted_email") or "Someone"
        subject = f"{trusted} joined your Care Circle"
        html_content = "\n".join([
            f"<p><strong>{escape(trusted)}</strong> has accepted your Care Circle invitation.</p>",
            "<p>They can now view your wellness data based on the sharing settings you chose. "
            "You can change their access level or revoke access at any time.</p>",
        ])
        text_content = (
            f"{trusted} has accepted your Care Circle invitation.\n\n"
            "They can now view your wellness data based on the sharing settings you chose. "
            "You can change their access level or revoke access at any time."
        )
        return subject, html_content, text_content

    def _render_declined(self, context: Dict) -> Tuple[str, str, str]:
        trusted = context.get("trusted_name") or context.get("trusted_email") or "The person you invited"
        subject = "Care Circle invitation update"
        html_content = "\n".join([
            f"<p><strong>{escape(trusted)}</strong> has declined your Care Circle invitation.</p>",
            "<p>You can always invite someone else to your Care Circle.</p>",
        ])
        text_content = (
            f"{trusted} has declined your Care Circle invitation.\n\n"
            "You can always invite someone else to your Care Circle."
        )
        return subject, html_content, text_content

    def _render_revoked(self, context: Dict) -> Tuple[str, str, str]:
        other_party = context.get("other_party_name") or "Someone"
        if context.get("revoked_by") == "patient":
            subject = "Care Circle access has been removed"
            body = f"{other_party} has removed you from their Care Circle. You no longer have access to their wellness data."
        else:
            subject = f"{other_party} left your Care Circle"
            body = (
                f"{other_party} has left your Care Circle and no longer has access to your wellness data. "
                "You can invite others whenever you're ready."
            )
        return subject, f"<p>{escape(body)}</p>", body


# Singleton instance
email_service = EmailService()
