"""Email provider implementations used by the application."""
from __future__ import annotations

import json
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Dict, Optional
from urllib import error as urllib_error, request as urllib_request

from .config import EmailConfig

logger = logging.getLogger(__name__)

MAILERSEND_API_URL = "https://api.mailersend.com/v1/email"


class EmailDeliveryError(RuntimeError):
    """Raised when a provider rejects or cannot deliver a message."""


class EmailProvider:
    """Base provider for outbound email delivery."""

    name = "base"

    def __init__(self, *, from_email: str, from_name: str = "") -> None:
        self.from_email = from_email
        self.from_name = from_name

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> Optional[str]:
        """Deliver one message and return the provider message id when known."""
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.from_email}


class DevPrintProvider(EmailProvider):
    """Development provider that logs messages instead of sending them."""

    name = "dev"

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> Optional[str]:
        message_id = make_msgid(domain="dev.localhost")
        logger.info(
            "Dev email dispatch",
            extra={
                "email_recipient": to,
                "email_subject": subject,
                "email_sender": self.from_email,
                "email_message_id": message_id,
            },
        )
        return message_id


class SMTPProvider(EmailProvider):
    """Simple SMTP-based provider for production use."""

    name = "smtp"

    def __init__(
        self,
        *,
        from_email: str,
        from_name: str = "",
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(from_email=from_email, from_name=from_name)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, to: str, subject: str, html_body: str, text_body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = formataddr((self.from_name, self.from_email)) if self.from_name else self.from_email
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> Optional[str]:
        message = self._build_message(to, subject, html_body, text_body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
            if self.use_tls:
                client.starttls()
            if self.username and self.password:
                client.login(self.username, self.password)
            client.sendmail(self.from_email, [to], message.as_string())
        return message["Message-ID"]


class MailerSendProvider(EmailProvider):
    """Transactional delivery through the MailerSend HTTP API."""

    name = "mailersend"

    def __init__(self, *, from_email: str, from_name: str = "", api_key: str, timeout: float = 30.0) -> None:
        super().__init__(from_email=from_email, from_name=from_name)
        self.api_key = api_key
        self.timeout = timeout

    def _build_request(self, to: str, subject: str, html_body: str, text_body: str) -> urllib_request.Request:
        sender: Dict[str, str] = {"email": self.from_email}
        if self.from_name:
            sender["name"] = self.from_name
        payload = {
            "from": sender,
            "to": [{"email": to}],
            "subject": subject,
            "html": html_body,
            "text": text_body,
        }
        return urllib_request.Request(
            MAILERSEND_API_URL,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "X-Requested-With": "XMLHttpRequest",
            },
            method="POST",
        )

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> Optional[str]:
        request = self._build_request(to, subject, html_body, text_body)
        try:
            with urllib_request.urlopen(request, timeout=self.timeout) as response:
                return response.headers.get("X-Message-Id")
        except urllib_error.HTTPError as exc:
            raise EmailDeliveryError(f"MailerSend rejected message: HTTP {exc.code}") from exc
        except urllib_error.URLError as exc:
            raise EmailDeliveryError(f"MailerSend unreachable: {exc.reason}") from exc


def create_email_provider(config: EmailConfig) -> EmailProvider:
    provider = (config.provider_name or "dev").strip().lower()
    if provider == "smtp":
        return SMTPProvider(
            from_email=config.from_email,
            from_name=config.from_name,
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            use_tls=config.smtp_use_tls,
            timeout=config.smtp_timeout_seconds,
        )
    if provider == "mailersend":
        if not config.mailersend_api_key:
            logger.warning("MAILERSEND_API_KEY missing, falling back to dev email provider")
            return DevPrintProvider(from_email=config.from_email, from_name=config.from_name)
        return MailerSendProvider(
            from_email=config.from_email,
            from_name=config.from_name,
            api_key=config.mailersend_api_key,
        )
    return DevPrintProvider(from_email=config.from_email, from_name=config.from_name)


__all__ = [
    "DevPrintProvider",
    "EmailDeliveryError",
    "EmailProvider",
    "MailerSendProvider",
    "SMTPProvider",
    "create_email_provider",
]
