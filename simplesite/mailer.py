"""Outbound email."""
import smtplib
from email.message import Message
from typing import Protocol


class MailerError(Exception):
    """Raised when an email cannot be delivered."""


class Mailer(Protocol):
    @property
    def from_address(self) -> str: ...

    def send(self, to: list[str], message: Message) -> None: ...


class SMTPMailer:
    """Sends email through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        from_address: str = "noreply@localhost",
        username: str = "",
        password: str = "",
        starttls: bool = True,
    ):
        self.host = host
        self.port = port
        self._from_address = from_address
        self.username = username
        self.password = password
        self.starttls = starttls

    @property
    def from_address(self) -> str:
        return self._from_address

    def send(self, to: list[str], message: Message) -> None:
        try:
            with smtplib.SMTP(self.host, self.port) as server:
                if self.starttls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(message, from_addr=self.from_address, to_addrs=to)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailerError(f"failed to send email to {', '.join(to)}") from exc
