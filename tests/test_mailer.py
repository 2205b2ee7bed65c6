"""
Tests for SMTP delivery
"""

import smtplib

import pytest

import mailer
from mailer import MailSendError, SmtpMailer


class FakeSMTP:
    instances = []

    def __init__(self, host, port, context=None, timeout=None):
        self.host = host
        self.port = port
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg):
        if FakeSMTP.fail_with:
            raise FakeSMTP.fail_with
        self.messages.append(msg)


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP


def make_mailer(**kwargs):
    options = dict(host="smtp.example.com", port=465, username="me@example.com", password="secret")
    options.update(kwargs)
    return SmtpMailer(**options)


def test_send_returns_message_id(fake_smtp):
    message_id = make_mailer().send("ada@example.com", "Offer letter", "<p>Hi</p>")

    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port) == ("smtp.example.com", 465)
    assert smtp.logged_in == ("me@example.com", "secret")
    msg = smtp.messages[0]
    assert msg["To"] == "ada@example.com"
    assert msg["Subject"] == "Offer letter"
    assert msg["From"] == "iSpy <me@example.com>"
    assert msg["Message-ID"] == message_id
    assert message_id.endswith("@example.com>")
    assert msg.get_payload()[0].get_content_type() == "text/html"


def test_send_without_credentials():
    with pytest.raises(MailSendError):
        make_mailer(password="").send("ada@example.com", "Hi", "<p>Hi</p>")


def test_smtp_error_is_wrapped(fake_smtp):
    fake_smtp.fail_with = smtplib.SMTPRecipientsRefused({"ada@example.com": (550, b"no such user")})
    with pytest.raises(MailSendError):
        make_mailer().send("ada@example.com", "Hi", "<p>Hi</p>")


def test_connection_error_is_wrapped(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", refuse)
    with pytest.raises(MailSendError):
        make_mailer().send("ada@example.com", "Hi", "<p>Hi</p>")
