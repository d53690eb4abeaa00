"""Exceptions raised while building or sending a message."""


class EzMimeError(RuntimeError):
    """Base class for every error raised by ezmime."""


class AttachmentReadError(EzMimeError):
    """An attachment's content could not be read in full.

    Attributes:
        filename (str): Name of the attachment that failed.
    """

    def __init__(self, filename: str, reason: str):
        super().__init__(f"Failed to read attachment {filename!r}: {reason}")
        self.filename = filename


class MessageWriteError(EzMimeError):
    """The output sink rejected a write while the message was being built."""


class TransportError(EzMimeError):
    """Connecting or authenticating to the SMTP server failed."""
