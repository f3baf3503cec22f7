"""
SMTP email delivery and the prescription notification message.
"""

from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Optional, Protocol

from medizo.config import Settings

logger = logging.getLogger(__name__)

PLACEHOLDER_USERS = {"your-email@gmail.com"}
PLACEHOLDER_PASSWORDS = {"your-email-password"}

_CARD_STYLE = (
    "font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; "
    "padding: 20px; border: 1px solid #ddd; border-radius: 5px;"
)
_BUTTON_STYLE = (
    "background-color: #3f51b5; color: white; padding: 10px 20px; "
    "text-decoration: none; border-radius: 4px; font-weight: bold;"
)
_FOOTER_TEXT = (
    "This is an automated message from the Healthcare Management System. "
    "Please do not reply to this email."
)


class MailerNotConfigured(RuntimeError):
    pass


class Mailer(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> None:
        ...


@dataclass
class SmtpMailer:
    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    use_tls: bool = True
    sender_name: str = "Healthcare Management System"
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailer":
        return cls(
            host=settings.email_host,
            port=settings.email_port,
            user=settings.email_user,
            password=settings.email_pass,
            use_tls=settings.email_use_tls,
            sender_name=settings.email_sender_name,
        )

    @property
    def configured(self) -> bool:
        return bool(
            self.user
            and self.password
            and self.user not in PLACEHOLDER_USERS
            and self.password not in PLACEHOLDER_PASSWORDS
        )

    def send(self, to: str, subject: str, html_body: str) -> None:
        if not self.configured:
            raise MailerNotConfigured(
                "Email credentials not configured. Set EMAIL_USER and EMAIL_PASS."
            )
        msg = EmailMessage()
        msg["From"] = f"{self.sender_name} <{self.user}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable email client.")
        msg.add_alternative(html_body, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            server.login(self.user, self.password)
            server.send_message(msg)


def _format_date(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value).strftime("%d %B %Y")
    except ValueError:
        return value


def render_prescription_notification(
    patient: dict, prescription: dict, doctor: dict, client_url: str
) -> str:
    view_url = f"{client_url.rstrip('/')}/prescriptions/{prescription['id']}"
    medications = prescription.get("medications") or []
    medication = prescription.get("medication") or ", ".join(
        m.get("name", "") for m in medications if isinstance(m, dict) and m.get("name")
    )
    dosage = prescription.get("dosage") or ", ".join(
        m.get("dosage", "") for m in medications if isinstance(m, dict) and m.get("dosage")
    )
    esc = html.escape
    return f"""
    <div style="{_CARD_STYLE}">
      <h2 style="color: #3f51b5;">New Prescription Available</h2>
      <p>Hello {esc(patient.get('firstName') or '')},</p>
      <p>Dr. {esc(doctor.get('lastName') or '')} has created a new prescription for you.</p>
      <div style="margin: 20px 0; padding: 15px; background-color: #f5f5f5; border-radius: 5px;">
        <p><strong>Date:</strong> {esc(_format_date(prescription.get('createdAt')))}</p>
        <p><strong>Medication:</strong> {esc(medication or '-')}</p>
        <p><strong>Dosage:</strong> {esc(dosage or '-')}</p>
      </div>
      <p>You can view and download your prescription by clicking the button below:</p>
      <div style="text-align: center; margin: 25px 0;">
        <a href="{esc(view_url)}" style="{_BUTTON_STYLE}">View Prescription</a>
      </div>
      <p>If you have any questions, please contact your doctor directly.</p>
      <hr style="border: none; border-top: 1px solid #ddd; margin: 20px 0;">
      <p style="font-size: 12px; color: #777;">{_FOOTER_TEXT}</p>
    </div>
    """


def send_prescription_notification(
    mailer: Mailer, patient: dict, prescription: dict, doctor: dict, client_url: str
) -> None:
    body = render_prescription_notification(patient, prescription, doctor, client_url)
    mailer.send(patient["email"], "New Prescription Available", body)
