"""Outbound email for the billing-portal link.

Uses standard SMTP. A host of "localhost" is treated as a local relay
(plain connection, no auth); anything else requires STARTTLS and login.
The message body is a Jinja2 template rendered with ``from``, ``to`` and
``message`` variables.
"""

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Any, Optional

from jinja2 import BaseLoader, Environment, FileSystemLoader, PackageLoader, StrictUndefined, Template

from membersync.config.settings import AppConfig

logger = logging.getLogger(__name__)

PORTAL_SUBJECT = "Manage membership"
PORTAL_TEMPLATE = "portal_email.txt"


def _environment(loader: BaseLoader) -> Environment:
    return Environment(
        loader=loader,
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )


def load_template(path: Optional[Path] = None) -> Template:
    """Load the portal email template (bundled copy when path is None).

    The template is test-rendered with a sample context, so a reference to
    an unknown variable fails here rather than when the first email is sent.

    Raises:
        OSError: If the template cannot be found or read
        jinja2.TemplateError: If the template is invalid or uses unknown variables
    """
    if path is None:
        env = _environment(PackageLoader("membersync.notifications", "templates"))
        template = env.get_template(PORTAL_TEMPLATE)
    else:
        path = Path(path)
        env = _environment(FileSystemLoader(str(path.parent)))
        template = env.get_template(path.name)

    template.render(
        portal_context(
            from_name="Sender Name",
            from_email="sender@example.com",
            to_name="Member Name",
            to_email="member@example.com",
            portal_url="https://billing.stripe.com/",
        )
    )
    return template


def first_name(name: str) -> str:
    return name.split(" ")[0] if name else ""


def portal_context(
    from_name: str,
    from_email: str,
    to_name: str,
    to_email: str,
    portal_url: str,
) -> dict[str, Any]:
    return {
        "from": {"firstName": first_name(from_name), "email": from_email},
        "to": {"firstName": first_name(to_name), "email": to_email},
        "message": f"Go to following link to manage your membership.\n\n{portal_url}",
    }


def render_portal_message(
    template: Template,
    from_name: str,
    from_email: str,
    to_name: str,
    to_email: str,
    portal_url: str,
) -> str:
    return template.render(
        portal_context(from_name, from_email, to_name, to_email, portal_url)
    )


@dataclass
class Mailer:
    """Plain-text SMTP sender."""

    host: str
    port: int
    username: str = ""
    password: str = ""
    from_name: str = ""
    from_email: str = ""

    @classmethod
    def from_config(cls, config: AppConfig) -> "Mailer":
        return cls(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password.get_secret_value(),
            from_name=config.from_name,
            from_email=config.from_email,
        )

    @property
    def is_local(self) -> bool:
        return self.host == "localhost"

    def build_message(self, to_name: str, to_email: str, subject: str, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = formataddr((to_name, to_email))
        msg.set_content(text)
        return msg

    def send(self, msg: EmailMessage) -> None:
        """Send synchronously. Raises smtplib.SMTPException/OSError on failure."""
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if not self.is_local:
                server.starttls()
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info(f"Email '{msg['Subject']}' sent to {msg['To']}")

    async def send_text(self, to_name: str, to_email: str, subject: str, text: str) -> None:
        msg = self.build_message(to_name, to_email, subject, text)
        await asyncio.to_thread(self.send, msg)
