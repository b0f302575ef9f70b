import smtplib
from email.mime.text import MIMEText
from typing import Dict, Optional

import requests
from loguru import logger

from app.core.config import Settings
from app.db.schema import NotificationChannel


class DeliveryError(Exception):
    """A single channel could not deliver a message."""


class ChannelSender:
    channel: NotificationChannel

    def send(self, destination: Optional[str], title: str, body: str) -> None:
        raise NotImplementedError


class EmailSender(ChannelSender):
    channel = NotificationChannel.EMAIL

    def __init__(self, host: str, port: int, username: str, password: str, sender: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def send(self, destination: Optional[str], title: str, body: str) -> None:
        if not self.host:
            raise DeliveryError("Email channel not configured")
        if not destination:
            raise DeliveryError("Missing email address")

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = title
        msg["From"] = self.sender
        msg["To"] = destination

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.username:
                    server.starttls()
                    server.login(self.username, self.password)
                server.sendmail(self.sender, [destination], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP error: {e}") from e


class WhatsAppSender(ChannelSender):
    """Text messages through the WhatsApp Cloud API."""
    channel = NotificationChannel.WHATSAPP

    def __init__(self, api_url: str, phone_id: str, token: str, timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.phone_id = phone_id
        self.token = token
        self.timeout = timeout

    def send(self, destination: Optional[str], title: str, body: str) -> None:
        if not (self.api_url and self.phone_id and self.token):
            raise DeliveryError("WhatsApp API not configured")
        if not destination:
            raise DeliveryError("Missing WhatsApp destination")

        try:
            response = requests.post(
                f"{self.api_url}/{self.phone_id}/messages",
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                json={
                    "messaging_product": "whatsapp",
                    "to": destination,
                    "type": "text",
                    "text": {"body": body},
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DeliveryError(f"WhatsApp request failed: {e}") from e

        if not response.ok:
            raise DeliveryError(response.text or "WhatsApp API error")


class LogOnlySender(ChannelSender):
    """Mock delivery: writes the message to the log and reports success."""

    def __init__(self, channel: NotificationChannel):
        self.channel = channel

    def send(self, destination: Optional[str], title: str, body: str) -> None:
        if not destination:
            raise DeliveryError(f"Missing {self.channel.value} destination")
        logger.info(f" [{self.channel.value.upper()}] {destination}: {title} | {body}")


def build_default_senders(settings: Settings) -> Dict[NotificationChannel, ChannelSender]:
    if settings.notification_mock:
        return {
            NotificationChannel.EMAIL: LogOnlySender(NotificationChannel.EMAIL),
            NotificationChannel.WHATSAPP: LogOnlySender(NotificationChannel.WHATSAPP),
        }

    return {
        NotificationChannel.EMAIL: EmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.smtp_sender,
        ),
        NotificationChannel.WHATSAPP: WhatsAppSender(
            api_url=settings.whatsapp_api_url,
            phone_id=settings.whatsapp_phone_id,
            token=settings.whatsapp_token,
            timeout=settings.whatsapp_timeout_seconds,
        ),
    }
