"""Low-level MIME writers used by `EzMessage` to assemble a message.

Every writer appends to a caller-owned binary sink (anything with a
``write(bytes)`` method, usually an ``io.BytesIO``). Lines are CRLF
terminated and the multipart framing follows RFC 2046: the first part of a
section opens with ``--boundary``, every later part and the closing
delimiter are preceded by a CRLF that belongs to the delimiter, not to the
previous part's content.
"""

import logging
import re
from base64 import b64encode
from mimetypes import guess_type
from typing import BinaryIO, Iterable, List, Sequence, Tuple
from uuid import uuid4

from .exceptions import MessageWriteError

logger = logging.getLogger(__name__)

CRLF = "\r\n"
BASE64_LINE_LENGTH = 76
DEFAULT_CONTENT_TYPE = "application/octet-stream"

LINE_BREAKS = re.compile(r"\r?\n|\r")


def trim(value: str) -> str:
    """Removes line breaks so a value cannot start a new header line."""
    return LINE_BREAKS.sub("", value)


def new_boundary() -> str:
    """Returns a fresh random multipart boundary token (64 hex characters)."""
    return f"{uuid4().hex}{uuid4().hex}"


def _write(out: BinaryIO, data: str | bytes) -> None:
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        out.write(data)
    except (OSError, ValueError) as e:
        raise MessageWriteError(f"Failed to write message data: {e}") from e


class MultipartWriter:
    """Writes the parts of one multipart section into a shared sink.

    Example:
        section = MultipartWriter(buf, "b1")
        section.create_part([("Content-Type", "text/plain; charset=UTF-8")])
        section.write(b"Hello")
        section.close()
    """

    def __init__(self, out: BinaryIO, boundary: str):
        self.out = out
        self.boundary = boundary
        self.parts = 0

    def create_part(self, headers: Sequence[Tuple[str, str]]) -> None:
        """Opens a new part and writes its headers followed by a blank line.

        Args:
            headers (Sequence[tuple[str, str]]): Header names and values, in
                the order they should appear.
        """
        delimiter = f"--{self.boundary}{CRLF}"
        if self.parts:
            delimiter = CRLF + delimiter

        lines = "".join(f"{name}: {value}{CRLF}" for name, value in headers)
        _write(self.out, delimiter + lines + CRLF)
        self.parts += 1

    def write(self, data: str | bytes) -> None:
        """Appends content to the part opened last."""
        _write(self.out, data)

    def close(self) -> None:
        """Writes the closing delimiter of the section."""
        _write(self.out, f"{CRLF}--{self.boundary}--{CRLF}")


def from_header(from_addr: str, from_name: str) -> str:
    """Formats the From header line.

    Args:
        from_addr (str): Sender address, may be empty.
        from_name (str): Display name, may be empty.

    Returns:
        str: ``From: Name <address>`` when a name is set, otherwise
        ``From: address``, always CRLF terminated.
    """
    if from_name:
        return f"From: {trim(from_name)} <{trim(from_addr)}>{CRLF}"
    return f"From: {trim(from_addr)}{CRLF}"


def write_headers(
    out: BinaryIO,
    from_addr: str,
    from_name: str,
    to_addrs: Sequence[str],
    subject: str,
    reply_to: str,
    cc_addrs: Sequence[str] = (),
) -> None:
    """Writes the envelope headers in their fixed order.

    Order is From, Mime-Version, Reply-To (only when set), Subject, one To
    line per recipient and one Cc line per carbon-copy recipient. An empty
    recipient list still produces a single empty ``To:`` line. Line breaks
    inside values are dropped.
    """
    lines = [from_header(from_addr, from_name), f"Mime-Version: 1.0{CRLF}"]

    if reply_to:
        lines.append(f"Reply-To: {trim(reply_to)}{CRLF}")

    lines.append(f"Subject: {trim(subject)}{CRLF}")

    for addr in to_addrs or [""]:
        lines.append(f"To: {trim(addr)}{CRLF}")
    for addr in cc_addrs:
        lines.append(f"Cc: {trim(addr)}{CRLF}")

    _write(out, "".join(lines))


def write_body(out: BinaryIO, plain: bytes, html: bytes, boundary: str) -> None:
    """Writes the plain and HTML bodies as a multipart/alternative section.

    Plain text always comes first so that clients able to render HTML pick
    the last, richer part. Empty variants are skipped entirely; with both
    empty only the closing delimiter is written.

    Args:
        out (BinaryIO): Output sink.
        plain (bytes): Plain-text body.
        html (bytes): HTML body.
        boundary (str): Boundary of the alternative section.

    Raises:
        MessageWriteError: If the sink rejects a write.
    """
    alternative = MultipartWriter(out, boundary)

    for content, subtype in ((plain, "plain"), (html, "html")):
        if not content:
            continue
        alternative.create_part([("Content-Type", f"text/{subtype}; charset=UTF-8")])
        alternative.write(bytes(content))

    alternative.close()


def encode_base64(data: bytes) -> bytes:
    """Base64 encodes `data`, wrapped at 76 characters with CRLF line breaks."""
    encoded = b64encode(data)
    lines = [
        encoded[i:i + BASE64_LINE_LENGTH]
        for i in range(0, len(encoded), BASE64_LINE_LENGTH)
    ]
    return b"\r\n".join(lines)


def guess_content_type(filename: str, content_type: str | None = None) -> str:
    """Picks the Content-Type for an attachment.

    An explicit `content_type` wins, then a guess from the file extension,
    then ``application/octet-stream``.
    """
    if content_type:
        return content_type
    mime_type, _ = guess_type(filename)
    return mime_type or DEFAULT_CONTENT_TYPE


def write_attachments(mixed: MultipartWriter, attachments: Iterable) -> None:
    """Writes each attachment as a base64 part of the mixed section.

    Each attachment must expose ``filename``, ``content_type`` and a
    ``read()`` method returning its full content. Sources are read once, in
    order.

    Raises:
        AttachmentReadError: If an attachment cannot be read.
        MessageWriteError: If the sink rejects a write.
    """
    for attachment in attachments:
        data = attachment.read()
        filename = trim(attachment.filename)
        headers: List[Tuple[str, str]] = [
            ("Content-Disposition", f"attachment; filename={filename}"),
            ("Content-Transfer-Encoding", "base64"),
            (
                "Content-Type",
                f'{trim(guess_content_type(filename, attachment.content_type))}; name="{filename}"',
            ),
        ]
        mixed.create_part(headers)
        mixed.write(encode_base64(data))
        logger.debug("Encoded attachment %s (%d bytes)", filename, len(data))
