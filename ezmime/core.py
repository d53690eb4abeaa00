import logging
from copy import copy
from io import BytesIO
from os.path import basename
from smtplib import SMTP, SMTP_SSL, SMTPException, SMTPRecipientsRefused
from typing import BinaryIO, Callable, Dict, List, Union

from jinja2 import Template  # type: ignore

from .exceptions import AttachmentReadError, TransportError
from .mime import MultipartWriter, new_boundary, write_attachments, write_body, write_headers
from .utils import validate_path, validate_protocol_config, validate_sender, validate_template

logger = logging.getLogger(__name__)

MAX_BOUNDARY_DRAWS = 3


class EzAttachment:
    """A named binary payload attached to an `EzMessage`.

    The content is either raw bytes, a readable binary source (anything with
    a ``read()`` method) or a path on disk opened only when the message is
    built. Sources are read to exhaustion once; a consumed stream yields no
    further data.
    """

    def __init__(
        self,
        filename: str,
        content: Union[bytes, BinaryIO, None] = None,
        content_type: str | None = None,
        path: str | None = None,
    ):
        if not isinstance(filename, str) or not filename:
            raise ValueError("Attachment filename must be a non-empty string.")
        if content is None and path is None:
            raise ValueError("Attachment requires either content or a path.")
        if content is not None and not isinstance(content, (bytes, bytearray)) and not hasattr(content, "read"):
            raise ValueError("Attachment content must be bytes or a readable binary source.")

        self.filename = filename
        self.content = content
        self.content_type = content_type
        self.path = path

    def read(self) -> bytes:
        """Reads the whole attachment content.

        Returns:
            bytes: The raw attachment data.

        Raises:
            AttachmentReadError: If the source fails or does not yield bytes.
        """
        try:
            if self.path is not None:
                with open(self.path, "rb") as f:
                    data = f.read()
            elif isinstance(self.content, (bytes, bytearray)):
                data = bytes(self.content)
            else:
                data = self.content.read()
        except (OSError, ValueError) as e:
            raise AttachmentReadError(self.filename, str(e)) from e

        if not isinstance(data, (bytes, bytearray)):
            raise AttachmentReadError(self.filename, "content source did not return bytes")
        return bytes(data)

    def __repr__(self) -> str:
        return f"<EzAttachment filename={self.filename!r} content_type={self.content_type!r}>"


class EzMessage:
    """Composes a MIME message with text, HTML and file attachments.

    Fields are plain attributes; bodies and attachments are added through
    methods. The finished message is a ``multipart/mixed`` envelope holding
    a ``multipart/alternative`` section (plain text, then HTML) followed by
    one base64 part per attachment.

    Example:
        msg = EzMessage(from_addr="me@domain.com", from_name="Me")
        msg.subject = "Monthly report"
        msg.add_to("boss@domain.com")
        msg.add_plain("Report attached.")
        msg.add_html("<p>Report attached.</p>")
        msg.attach_file("reports/monthly.pdf")
        raw = msg.build_mime()
    """

    def __init__(
        self,
        from_addr: str = "",
        from_name: str = "",
        subject: str = "",
        reply_to: str = "",
        boundary_factory: Callable[[], str] = new_boundary,
    ):
        self.from_addr = from_addr
        self.from_name = from_name
        self.subject = subject
        self.reply_to = reply_to

        self.to_addrs: List[str] = []
        self.cc_addrs: List[str] = []
        self.bcc_addrs: List[str] = []

        self.plain = bytearray()
        self.html = bytearray()
        self.attachments: List[EzAttachment] = []

        self.boundary_factory = boundary_factory

    def add_to(self, *addrs: str) -> None:
        """Appends recipients to the To header, keeping their order."""
        self.to_addrs.extend(addrs)

    def add_cc(self, *addrs: str) -> None:
        """Appends carbon-copy recipients."""
        self.cc_addrs.extend(addrs)

    def add_bcc(self, *addrs: str) -> None:
        """Appends blind recipients. They only reach the SMTP envelope."""
        self.bcc_addrs.extend(addrs)

    def recipients(self) -> List[str]:
        """Returns every non-empty envelope recipient: To, then Cc, then Bcc."""
        return [addr for addr in self.to_addrs + self.cc_addrs + self.bcc_addrs if addr]

    @staticmethod
    def _to_bytes(content: Union[str, bytes]) -> bytes:
        if isinstance(content, str):
            return content.encode("utf-8")
        if isinstance(content, (bytes, bytearray)):
            return bytes(content)
        raise ValueError("Body content must be a string or bytes.")

    def add_plain(self, text: Union[str, bytes]) -> None:
        """Appends content to the plain-text body.

        Args:
            text (str | bytes): Text to append. Strings are UTF-8 encoded.

        Raises:
            ValueError: If `text` is neither a string nor bytes.
        """
        self.plain.extend(self._to_bytes(text))

    def add_html(self, html: Union[str, bytes]) -> None:
        """Appends content to the HTML body.

        Raises:
            ValueError: If `html` is neither a string nor bytes.

        Example:
            add_html("<p>Hello, this is a test message.</p>")
        """
        self.html.extend(self._to_bytes(html))

    def _render(self, file: str, **variables) -> str:
        validate_template(file)

        with open(file, "r", encoding="utf-8") as f:
            return Template(f.read()).render(**variables)

    def use_template(self, file: str, **variables) -> None:
        """Renders a Jinja2 template file into the HTML body.

        Args:
            file (str): Path to the template file.
            **variables: Values for the template placeholders.

        Raises:
            ValueError: If the file is not a valid template.
            FileNotFoundError: If the file does not exist.

        Example:
            use_template("templates/welcome.html", name="John", version="1.0.0")
        """
        self.add_html(self._render(file, **variables))

    def use_plain_template(self, file: str, **variables) -> None:
        """Renders a Jinja2 template file into the plain-text body."""
        self.add_plain(self._render(file, **variables))

    def attach(self, filename: str, content: Union[bytes, BinaryIO], content_type: str | None = None) -> None:
        """Attaches in-memory data or a readable binary stream.

        Args:
            filename (str): Name shown to the recipient.
            content (bytes | BinaryIO): Raw bytes or a source read once at build time.
            content_type (str, optional): MIME type; guessed from `filename` when omitted.

        Raises:
            ValueError: If `filename` is empty or `content` is neither bytes nor readable.
        """
        self.attachments.append(EzAttachment(filename, content, content_type))

    def attach_file(self, path: str, content_type: str | None = None) -> None:
        """Attaches a file from disk. The file is read when the message is built.

        Raises:
            ValueError: If the path is invalid.
            FileNotFoundError: If the file does not exist.

        Example:
            attach_file("reports/monthly_report.pdf")
        """
        validate_path(path)
        self.attachments.append(EzAttachment(basename(path), content_type=content_type, path=path))

    def clear_body(self) -> None:
        """Empties both body buffers, keeping headers and attachments."""
        self.plain = bytearray()
        self.html = bytearray()

    def clear_attachments(self) -> None:
        """Removes all attachments."""
        self.attachments = []

    def has_attachments(self) -> bool:
        return bool(self.attachments)

    def _new_boundaries(self, mixed: str | None = None, alt: str | None = None) -> tuple[str, str]:
        if mixed is None:
            mixed = self.boundary_factory()
        if alt is None:
            for _ in range(MAX_BOUNDARY_DRAWS):
                alt = self.boundary_factory()
                if alt != mixed:
                    break
            else:
                alt = f"alt-{mixed}"
        return mixed, alt

    def write_to(self, out: BinaryIO, mixed_boundary: str | None = None, alt_boundary: str | None = None) -> None:
        """Writes the complete message into a binary sink.

        Headers come first, then the mixed section: the alternative body
        part followed by every attachment. Nothing is rolled back on error;
        the caller discards whatever reached `out`.

        Args:
            out (BinaryIO): Caller-owned sink with a ``write(bytes)`` method.
            mixed_boundary (str, optional): Boundary of the outer section.
            alt_boundary (str, optional): Boundary of the body section.
                Either boundary left out is drawn from `boundary_factory`.

        Raises:
            AttachmentReadError: If an attachment cannot be read.
            MessageWriteError: If `out` rejects a write.
        """
        mixed_boundary, alt_boundary = self._new_boundaries(mixed_boundary, alt_boundary)

        write_headers(
            out,
            self.from_addr,
            self.from_name,
            self.to_addrs,
            self.subject,
            self.reply_to,
            self.cc_addrs,
        )
        mixed = MultipartWriter(out, mixed_boundary)
        mixed.write(f'Content-Type: multipart/mixed;\r\n\tboundary="{mixed_boundary}"; charset=UTF-8\r\n\r\n')

        mixed.create_part([("Content-Type", f'multipart/alternative;\r\n\tboundary="{alt_boundary}"')])
        write_body(out, self.plain, self.html, alt_boundary)

        write_attachments(mixed, self.attachments)
        mixed.close()

        logger.debug(
            "Built message %r with %d recipient(s) and %d attachment(s)",
            self.subject,
            len(self.recipients()),
            len(self.attachments),
        )

    def build_mime_with_boundaries(self, mixed_boundary: str, alt_boundary: str) -> bytes:
        """Builds the message using fixed boundary tokens.

        Identical fields and boundaries always give byte-identical output.
        """
        buf = BytesIO()
        self.write_to(buf, mixed_boundary, alt_boundary)
        return buf.getvalue()

    def build_mime(self) -> bytes:
        """Builds the message with freshly generated boundaries.

        Returns:
            bytes: The finished message, ready for an SMTP transaction.
        """
        mixed, alt = self._new_boundaries()
        return self.build_mime_with_boundaries(mixed, alt)

    as_bytes = build_mime

    def __bytes__(self) -> bytes:
        return self.build_mime()

    def __repr__(self) -> str:
        return (
            f"<EzMessage from={self.from_addr!r} subject={self.subject!r} "
            f"recipients={len(self.recipients())} attachments={len(self.attachments)}>"
        )


class EzSender:
    """Delivers `EzMessage` instances through an SMTP server.

    Example:
        smtp = {"server": "smtp.domain.com", "port": 587}
        sender = {"email": "me@domain.com", "password": "secret"}
        ez = EzSender(smtp, sender)
        result = ez.send(msg)
    """

    def __init__(self, smtp: dict, sender: dict, timeout: int = 30):
        """Initializes the EzSender instance with SMTP and sender credentials.

        Args:
            smtp (dict): SMTP configuration with keys:
                - `server` (str): SMTP server hostname or IP.
                - `port` (int): 465 for implicit TLS, anything else uses STARTTLS.
            sender (dict): Sender credentials with keys:
                - `email` (str): Sender email address.
                - `password` (str): Sender email password.
            timeout (int, optional): Socket timeout in seconds.

        Raises:
            ValueError: If either dict is malformed.
        """
        validate_protocol_config(smtp)
        validate_sender(sender)

        self.smtp_server = smtp["server"]
        self.smtp_port = smtp["port"]

        self.sender_email = sender["email"]
        self.sender_password = sender["password"]

        self.timeout = timeout

    def _connect(self) -> Union[SMTP, SMTP_SSL]:
        """Opens an authenticated SMTP connection."""
        if self.smtp_port == 465:
            smtp = SMTP_SSL(self.smtp_server, self.smtp_port, timeout=self.timeout)
        else:
            smtp = SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout)

        try:
            if self.smtp_port != 465:
                smtp.starttls()
            smtp.login(self.sender_email, self.sender_password)
        except Exception:
            smtp.close()
            raise
        return smtp

    def send(self, message: EzMessage) -> dict:
        """Builds `message` and sends it in a single SMTP transaction.

        A message without a From address is sent as the configured sender;
        `message` itself is left untouched.

        Args:
            message (EzMessage): The message to deliver.

        Returns:
            dict: Summary of the delivery:
                - `"sent"` (list): Accepted recipient addresses.
                - `"failed"` (dict): Refused addresses with the server reply.

        Raises:
            ValueError: If the message has no recipients.
            AttachmentReadError: If an attachment cannot be read.
            TransportError: If connecting, authenticating or sending fails.
        """
        recipients = message.recipients()
        if not recipients:
            raise ValueError("Message has no recipients.")

        if not message.from_addr:
            message = copy(message)
            message.from_addr = self.sender_email
        payload = message.build_mime()

        try:
            with self._connect() as smtp:
                refused = smtp.sendmail(message.from_addr, recipients, payload)
        except SMTPRecipientsRefused as e:
            refused = e.recipients
        except (SMTPException, OSError) as e:
            raise TransportError(f"Failed to send message through the SMTP server: {e}") from e

        sent: List[str] = []
        failed: Dict[str, str] = {}
        for recipient in recipients:
            if recipient in refused:
                code, reply = refused[recipient]
                if isinstance(reply, bytes):
                    reply = reply.decode("utf-8", errors="replace")
                failed[recipient] = f"{code} {reply}"
            else:
                sent.append(recipient)

        logger.info("Sent %r to %d of %d recipient(s)", message.subject, len(sent), len(recipients))
        return {"sent": sent, "failed": failed}
