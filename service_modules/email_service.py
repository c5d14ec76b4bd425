"""
Email Service - handles sending emails via SMTP.
"""
import re
import smtplib
import ssl
import os
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape

logger = logging.getLogger("gym_app")


class EmailService:
    """Service for sending transactional emails via SMTP."""

    def __init__(self):
        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = os.getenv("SMTP_USER", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.from_email = os.getenv("SMTP_FROM_EMAIL", self.smtp_user)
        self.gym_name = os.getenv("GYM_NAME", "FitZone Gym")
        self.from_name = os.getenv("SMTP_FROM_NAME", self.gym_name)

    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    def send_email(self, to_email: str, subject: str, html_body: str) -> bool:
        if not self.is_configured():
            logger.warning("SMTP not configured, cannot send email")
            return False

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email

            # Plain text fallback
            text_body = html_body.replace("<br>", "\n").replace("</p>", "\n")
            text_body = re.sub(r"<[^>]+>", "", text_body)

            msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=20) as server:
                server.starttls(context=context)
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info(f"Email sent to {to_email}: {subject}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return False

    def _layout(self, greeting_name: str, body_html: str) -> str:
        return f"""
        <div style="max-width:480px;margin:0 auto;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;background:#1a1a2e;border-radius:16px;overflow:hidden;border:1px solid rgba(255,255,255,0.1);">
            <div style="background:linear-gradient(135deg,#f97316,#ea580c);padding:24px;text-align:center;">
                <h1 style="color:white;margin:0;font-size:24px;">{escape(self.gym_name)}</h1>
            </div>
            <div style="padding:32px 24px;">
                <p style="color:#e5e7eb;font-size:16px;margin:0 0 16px;">Hi <strong style="color:white;">{escape(greeting_name)}</strong>,</p>
                {body_html}
            </div>
        </div>
        """

    def send_verification_code_email(self, to_email: str, name: str, code: str) -> bool:
        subject = f"{self.gym_name} - Your verification code"
        body = f"""
                <p style="color:#9ca3af;font-size:14px;margin:0 0 24px;">
                    Use this code to verify your email address:
                </p>
                <div style="text-align:center;margin:24px 0;background:rgba(249,115,22,0.1);border:1px solid rgba(249,115,22,0.3);border-radius:12px;padding:16px;">
                    <p style="color:white;font-size:32px;font-weight:700;letter-spacing:8px;margin:0;">{code}</p>
                </div>
                <p style="color:#6b7280;font-size:12px;margin:24px 0 0;text-align:center;">
                    The code expires in 15 minutes. If you didn't sign up, you can ignore this email.
                </p>
        """
        return self.send_email(to_email, subject, self._layout(name, body))

    def send_password_reset_email(self, to_email: str, name: str, reset_url: str) -> bool:
        subject = f"{self.gym_name} - Reset Your Password"
        body = f"""
                <p style="color:#9ca3af;font-size:14px;margin:0 0 24px;">
                    We received a request to reset your password. Click the button below to create a new password.
                </p>
                <div style="text-align:center;margin:24px 0;">
                    <a href="{escape(reset_url)}" style="display:inline-block;background:linear-gradient(135deg,#f97316,#ea580c);color:white;text-decoration:none;padding:14px 32px;border-radius:12px;font-weight:600;font-size:16px;">
                        Reset Password
                    </a>
                </div>
                <p style="color:#6b7280;font-size:12px;margin:24px 0 0;text-align:center;">
                    This link expires in 15 minutes. If you didn't request this, you can safely ignore this email.
                </p>
        """
        return self.send_email(to_email, subject, self._layout(name, body))

    def send_inactivity_reminder_email(self, to_email: str, name: str, days_inactive: int) -> bool:
        subject = f"{self.gym_name} - We miss you!"
        body = f"""
                <p style="color:#9ca3af;font-size:14px;margin:0 0 24px;">
                    You haven't checked in for {days_inactive} days. Your membership is still active,
                    so come back and keep your streak going!
                </p>
        """
        return self.send_email(to_email, subject, self._layout(name, body))

    def send_custom_email(self, to_email: str, name: str, subject: str, message: str) -> bool:
        paragraphs = "".join(
            f'<p style="color:#9ca3af;font-size:14px;margin:0 0 16px;">{escape(line)}</p>'
            for line in message.splitlines() if line.strip()
        )
        return self.send_email(to_email, subject, self._layout(name, paragraphs))


# Singleton
_email_service = EmailService()

def get_email_service() -> EmailService:
    return _email_service
