"""
Email Service

Handles e-mails sent by the consent pipeline: application form links for
applicants and client-active alerts for supervisors. Delivery is best effort.
"""

import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from app.config import settings
from app.utils.security import sanitize_email_header

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "emails"


class EmailService:
    """Service for sending emails with template support"""

    def __init__(self):
        """Initialize email service with Jinja2 template engine"""
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_from = settings.smtp_from

    def _send_email(
        self,
        to_email: str | list[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """
        Send an email using SMTP.

        Args:
            to_email: Recipient email address(es)
            subject: Email subject
            html_body: HTML email body
            text_body: Plain text email body (optional)

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        if not self.smtp_host:
            logger.info(f"SMTP not configured; skipping e-mail '{subject}'")
            return False

        recipients = [to_email] if isinstance(to_email, str) else list(to_email)

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = sanitize_email_header(subject)
            msg["From"] = sanitize_email_header(self.smtp_from)
            msg["To"] = ", ".join(sanitize_email_header(r) for r in recipients)

            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email '{subject}': {e}")
            return False

    def render_application_form_link(
        self,
        client_name: str,
        link: str,
        access_code: str,
        expires_at: datetime,
    ) -> tuple[str, str]:
        """Render the HTML and plain-text bodies of the form link e-mail."""
        text_body = (
            f"Hello {client_name},\n\n"
            f"Please complete your financing application at:\n{link}\n\n"
            f"Your access code: {access_code}\n"
            f"The link is valid until {expires_at:%Y-%m-%d %H:%M} UTC.\n\n"
            f"Best regards,\nThe {settings.app_name} Team\n"
        )
        try:
            html_body = self.env.get_template("application_form_link.html").render(
                client_name=client_name,
                link=link,
                access_code=access_code,
                expires_at=expires_at,
                app_name=settings.app_name,
            )
        except TemplateError as e:
            logger.warning(f"Falling back to plain text form link e-mail: {e}")
            html_body = f"<html><body><pre>{text_body}</pre></body></html>"
        return html_body, text_body

    def send_application_form_link(
        self,
        to_email: str,
        client_name: str,
        link: str,
        access_code: str,
        expires_at: datetime,
    ) -> bool:
        """
        Send the application form link and access code to an applicant.

        Returns:
            bool: True if email sent successfully
        """
        html_body, text_body = self.render_application_form_link(client_name, link, access_code, expires_at)
        return self._send_email(
            to_email=to_email,
            subject=f"Your financing application - {settings.app_name}",
            html_body=html_body,
            text_body=text_body,
        )

    def send_client_active_alert(
        self,
        to_emails: list[str],
        lead_name: str,
        application_form_id: str,
        operator_id: str,
        attempted_action: str,
    ) -> bool:
        """
        Tell supervisors that an operator was blocked while the client was editing.

        Returns:
            bool: True if email sent successfully
        """
        if not to_emails:
            return False

        text_body = (
            f"Operator {operator_id} tried to {attempted_action} for {lead_name} "
            f"while the client was filling in application form {application_form_id}.\n"
        )
        try:
            html_body = self.env.get_template("client_active_alert.html").render(
                lead_name=lead_name,
                application_form_id=application_form_id,
                operator_id=operator_id,
                attempted_action=attempted_action,
                app_name=settings.app_name,
            )
        except TemplateError as e:
            logger.warning(f"Falling back to plain text client-active alert: {e}")
            html_body = f"<html><body><pre>{text_body}</pre></body></html>"

        return self._send_email(
            to_email=to_emails,
            subject=f"Client is editing the application - {settings.app_name}",
            html_body=html_body,
            text_body=text_body,
        )


# Singleton instance
email_service = EmailService()
