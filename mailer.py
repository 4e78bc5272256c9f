"""Outbound email: SendGrid HTTP API when configured, SMTP otherwise, simulated when neither is set."""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import requests
from flask import current_app

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class Mailer:
    def __init__(self, sender=None, password=None, smtp_server="smtp.gmail.com", smtp_port=587,
                 sendgrid_api_key=None, sender_name="Client Portal"):
        self.sender = sender
        self.password = password
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.sendgrid_api_key = sendgrid_api_key
        self.sender_name = sender_name

    @classmethod
    def from_config(cls, config):
        return cls(
            sender=config.get("EMAIL_SENDER"),
            password=config.get("EMAIL_PASSWORD"),
            smtp_server=config.get("SMTP_SERVER") or "smtp.gmail.com",
            smtp_port=int(config.get("SMTP_PORT") or 587),
            sendgrid_api_key=config.get("SENDGRID_API_KEY"),
        )

    @property
    def configured(self) -> bool:
        return bool(self.sendgrid_api_key or (self.sender and self.password))

    def send(self, to, subject, body, html_body=""):
        """Send one message; returns "sent", "simulated" or "failed"."""
        logger.info(f"[EMAIL] Sending '{subject}' to {to}")

        if self.sendgrid_api_key:
            status = self._send_sendgrid(to, subject, body, html_body)
            if status == "sent" or not (self.sender and self.password):
                return status

        if not (self.sender and self.password):
            logger.warning(f"[EMAIL] No mail transport configured, simulated send to {to}")
            return "simulated"

        return self._send_smtp(to, subject, body, html_body)

    def _send_sendgrid(self, to, subject, body, html_body):
        content = [{"type": "text/plain", "value": body}]
        if html_body:
            content.append({"type": "text/html", "value": html_body})
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.sender or "no-reply@example.com", "name": self.sender_name},
            "subject": subject,
            "content": content,
        }
        try:
            response = requests.post(
                SENDGRID_URL,
                headers={"Authorization": f"Bearer {self.sendgrid_api_key}", "Content-Type": "application/json"},
                json=payload,
                timeout=10,
            )
        except requests.RequestException as e:
            logger.error(f"[EMAIL] SendGrid exception: {e}")
            return "failed"
        if response.status_code in (200, 202):
            logger.info(f"[EMAIL] Sent to {to} via SendGrid")
            return "sent"
        logger.error(f"[EMAIL] SendGrid error: {response.status_code} {response.text}")
        return "failed"

    def _send_smtp(self, to, subject, body, html_body):
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.sender_name} <{self.sender}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))
        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.sender, self.password)
                server.sendmail(self.sender, to, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"[EMAIL] SMTP error: {e}")
            return "failed"
        logger.info(f"[EMAIL] Sent to {to} via SMTP")
        return "sent"


def get_mailer() -> Mailer:
    return current_app.extensions["mailer"]
