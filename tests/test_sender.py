from smtplib import SMTPAuthenticationError, SMTPNotSupportedError, SMTPRecipientsRefused

import pytest

import ezmime.core
from ezmime import EzMessage, EzSender, TransportError

SMTP_CONFIG = {"server": "smtp.example.com", "port": 587}
SENDER = {"email": "no-reply@example.com", "password": "secret"}


class FakeSMTP:
    instances = []
    refused = {}
    login_error = None
    starttls_error = None
    send_error = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.tls = False
        self.logged_in = None
        self.sent = None
        self.closed = False
        FakeSMTP.instances.append(self)

    def starttls(self):
        if self.starttls_error:
            raise self.starttls_error
        self.tls = True

    def login(self, user, password):
        if self.login_error:
            raise self.login_error
        self.logged_in = (user, password)

    def sendmail(self, from_addr, to_addrs, msg):
        if self.send_error:
            raise self.send_error
        self.sent = (from_addr, to_addrs, msg)
        return dict(self.refused)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeSMTPSSL(FakeSMTP):
    pass


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.refused = {}
    FakeSMTP.login_error = None
    FakeSMTP.starttls_error = None
    FakeSMTP.send_error = None
    monkeypatch.setattr(ezmime.core, "SMTP", FakeSMTP)
    monkeypatch.setattr(ezmime.core, "SMTP_SSL", FakeSMTPSSL)
    return FakeSMTP


@pytest.fixture
def message():
    msg = EzMessage(from_addr="dom@example.com", from_name="Dom", subject="Hello")
    msg.add_to("one@example.com", "two@example.com")
    msg.add_bcc("hidden@example.com")
    msg.add_plain("Hi!")
    return msg


def test_send_with_starttls(fake_smtp, message):
    result = EzSender(SMTP_CONFIG, SENDER).send(message)

    conn = fake_smtp.instances[0]
    assert isinstance(conn, FakeSMTP) and not isinstance(conn, FakeSMTPSSL)
    assert (conn.host, conn.port, conn.timeout) == ("smtp.example.com", 587, 30)
    assert conn.tls
    assert conn.logged_in == ("no-reply@example.com", "secret")
    assert conn.closed

    from_addr, to_addrs, payload = conn.sent
    assert from_addr == "dom@example.com"
    assert to_addrs == ["one@example.com", "two@example.com", "hidden@example.com"]
    assert payload.startswith(b"From: Dom <dom@example.com>\r\n")
    assert b"hidden@example.com" not in payload

    assert result == {"sent": to_addrs, "failed": {}}


def test_send_with_implicit_tls(fake_smtp, message):
    EzSender({"server": "smtp.example.com", "port": 465}, SENDER).send(message)

    conn = fake_smtp.instances[0]
    assert isinstance(conn, FakeSMTPSSL)
    assert not conn.tls


def test_send_reports_refused_recipients(fake_smtp, message):
    fake_smtp.refused = {"two@example.com": (550, b"User unknown")}

    result = EzSender(SMTP_CONFIG, SENDER).send(message)

    assert result["sent"] == ["one@example.com", "hidden@example.com"]
    assert result["failed"] == {"two@example.com": "550 User unknown"}


def test_send_all_recipients_refused(fake_smtp, message):
    fake_smtp.send_error = SMTPRecipientsRefused({addr: (550, b"Rejected") for addr in message.recipients()})

    result = EzSender(SMTP_CONFIG, SENDER).send(message)

    assert result["sent"] == []
    assert set(result["failed"]) == set(message.recipients())


def test_send_login_failure(fake_smtp, message):
    fake_smtp.login_error = SMTPAuthenticationError(535, b"Bad credentials")

    with pytest.raises(TransportError) as exc:
        EzSender(SMTP_CONFIG, SENDER).send(message)
    assert isinstance(exc.value.__cause__, SMTPAuthenticationError)
    assert fake_smtp.instances[0].closed


def test_send_starttls_failure_closes_connection(fake_smtp, message):
    fake_smtp.starttls_error = SMTPNotSupportedError("STARTTLS extension not supported by server.")

    with pytest.raises(TransportError):
        EzSender(SMTP_CONFIG, SENDER).send(message)
    assert fake_smtp.instances[0].closed
    assert fake_smtp.instances[0].logged_in is None


def test_send_connection_failure(monkeypatch, message):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(ezmime.core, "SMTP", refuse)

    with pytest.raises(TransportError):
        EzSender(SMTP_CONFIG, SENDER).send(message)


def test_send_defaults_from_address(fake_smtp):
    msg = EzMessage(subject="No sender")
    msg.add_to("one@example.com")

    EzSender(SMTP_CONFIG, SENDER).send(msg)

    from_addr, _, payload = fake_smtp.instances[0].sent
    assert from_addr == "no-reply@example.com"
    assert payload.startswith(b"From: no-reply@example.com\r\n")
    assert msg.from_addr == ""


def test_send_without_recipients(fake_smtp):
    with pytest.raises(ValueError):
        EzSender(SMTP_CONFIG, SENDER).send(EzMessage())
    assert fake_smtp.instances == []


@pytest.mark.parametrize(
    "smtp, sender",
    [
        ({"server": "", "port": 587}, SENDER),
        ({"server": "smtp.example.com", "port": "587"}, SENDER),
        (SMTP_CONFIG, {"email": "no-reply@example.com"}),
        ("smtp.example.com", SENDER),
    ],
)
def test_invalid_configuration(smtp, sender):
    with pytest.raises(ValueError):
        EzSender(smtp, sender)
