import smtplib

import pytest

from leadmailer.database.models import SenderAccount
from leadmailer.email import transport as transport_module
from leadmailer.email.transport import SmtpTransport, build_message
from leadmailer.errors import DispatchError


def account(**kwargs):
    values = {"name": "primary", "host": "smtp.example.net", "port": 587, "encryption": "tls",
              "username": "alex", "password": "secret", "from_address": "alex@acme.test", "from_name": "Alex"}
    values.update(kwargs)
    return SenderAccount(**values)


class RecordingSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.calls = []
        RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("quit")
        return False

    def ehlo(self):
        self.calls.append("ehlo")

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username))

    def sendmail(self, from_addr, to_addrs, message):
        if to_addrs == ["nobody@example.com"]:
            raise smtplib.SMTPRecipientsRefused({"nobody@example.com": (550, b"no such user")})
        self.calls.append(("sendmail", from_addr, tuple(to_addrs)))


@pytest.fixture
def fake_smtp(monkeypatch):
    RecordingSMTP.instances = []
    monkeypatch.setattr(transport_module.smtplib, "SMTP", RecordingSMTP)
    return RecordingSMTP


def test_build_message_headers():
    msg = build_message(account(), "jane@example.com", "Hello", "Body text", preheader="Quick idea")

    assert msg["From"] == "Alex <alex@acme.test>"
    assert msg["To"] == "jane@example.com"
    assert msg["Subject"] == "Hello"
    assert msg["X-Preheader"] == "Quick idea"
    assert not msg.is_multipart()


def test_build_message_with_html_alternative():
    msg = build_message(account(from_name=None), "jane@example.com", "Hello", "Body", html_body="<p>Body</p>")

    assert msg["From"] == "alex@acme.test"
    assert msg["X-Preheader"] is None
    assert [part.get_content_type() for part in msg.get_payload()] == ["text/plain", "text/html"]


def test_send_uses_starttls_and_login(fake_smtp):
    SmtpTransport(timeout=5).send(account(), "jane@example.com", "Hello", "Body")

    server = fake_smtp.instances[0]
    assert (server.host, server.port, server.timeout) == ("smtp.example.net", 587, 5)
    assert server.calls[:3] == ["ehlo", "starttls", "ehlo"]
    assert ("login", "alex") in server.calls
    assert ("sendmail", "alex@acme.test", ("jane@example.com",)) in server.calls


def test_refused_recipient_is_a_bounce(fake_smtp):
    with pytest.raises(DispatchError) as excinfo:
        SmtpTransport().send(account(), "nobody@example.com", "Hello", "Body")

    assert excinfo.value.bounced
    assert str(excinfo.value).startswith("Recipients refused")


def test_connection_failure_is_reported(monkeypatch):
    def refuse_connection(host, port, timeout=None):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(transport_module.smtplib, "SMTP", refuse_connection)

    with pytest.raises(DispatchError, match="Connection to smtp.example.net:587 failed") as excinfo:
        SmtpTransport().send(account(), "jane@example.com", "Hello", "Body")
    assert not excinfo.value.bounced
