"""EZMime package initialization module.

This package composes MIME email messages (headers, plain-text and HTML
bodies, file attachments) into a byte stream ready for SMTP, and ships a
small SMTP sender to deliver them.

Modules:
    core (module): The `EzMessage` builder, `EzAttachment` and `EzSender`.
    mime (module): Low-level writers for headers, bodies and attachments.
    utils (module): Validation helpers for files, templates and configs.
    exceptions (module): Errors raised while building or sending.

Example:
    from ezmime import EzMessage, EzSender

    msg = EzMessage(from_addr="me@domain.com", from_name="Me")
    msg.subject = "Hello!"
    msg.add_to("recipient@domain.com")
    msg.add_html("<p>This is a test email.</p>")

    smtp = {"server": "smtp.domain.com", "port": 587}
    sender = {"email": "me@domain.com", "password": "secret"}
    EzSender(smtp, sender).send(msg)
"""

from .core import EzAttachment, EzMessage, EzSender
from .exceptions import AttachmentReadError, EzMimeError, MessageWriteError, TransportError

__all__ = [
    "EzAttachment",
    "EzMessage",
    "EzSender",
    "EzMimeError",
    "AttachmentReadError",
    "MessageWriteError",
    "TransportError",
]
