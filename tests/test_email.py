import asyncio
import smtplib

import pytest

from config import settings
from core.email import EmailService, wrap_in_template
from core.errors import EmailError


def run(coro):
    return asyncio.run(coro)


class FakeSMTP:
    sent = []
    fail = False

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.logged_in = None
        self.tls = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.logged_in = user

    def send_message(self, msg):
        if FakeSMTP.fail:
            raise smtplib.SMTPServerDisconnected("connection lost")
        FakeSMTP.sent.append((self, msg))


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "SMTP_PORT", 587)
    monkeypatch.setattr(settings, "SMTP_USER", "mailer@example.com")
    monkeypatch.setattr(settings, "SMTP_FROM", "")
    return FakeSMTP


def test_disabled_without_smtp_host(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "")
    service = EmailService()
    assert service.enabled is False
    assert run(service.send_email("a@example.com", "Hi", "Hello")) is False


def test_send_email_over_starttls(smtp):
    assert run(EmailService().send_email("owner@example.com", "Subject", "Body")) is True
    conn, msg = smtp.sent[0]
    assert conn.tls is True
    assert conn.logged_in == "mailer@example.com"
    assert msg["To"] == "owner@example.com"
    assert msg["From"] == "DeedChain <mailer@example.com>"
    assert msg.get_body(preferencelist=("html",)) is not None


def test_smtp_failure_raises_email_error(smtp):
    smtp.fail = True
    with pytest.raises(EmailError):
        run(EmailService().send_email("owner@example.com", "Subject", "Body"))


def test_verification_notifications(smtp):
    service = EmailService()
    run(service.send_verification_notification("owner@example.com", "Plot 7", True))
    run(service.send_verification_notification("owner@example.com", "Plot 7", False))
    run(service.send_verification_notification(None, "Plot 7", True))

    subjects = [msg["Subject"] for _, msg in smtp.sent]
    assert subjects == [
        "Property Verification Approved - DeedChain",
        "Property Verification Update - DeedChain",
    ]
    assert '"Plot 7"' in smtp.sent[0][1].get_body(preferencelist=("plain",)).get_content()


def test_transfer_notifications(smtp):
    service = EmailService()
    run(service.send_transfer_notification("buyer@example.com", "Plot 7", True))
    run(service.send_transfer_notification("seller@example.com", "Plot 7", False))
    assert [msg["Subject"] for _, msg in smtp.sent] == [
        "Property Transfer Received - DeedChain",
        "Property Transfer Completed - DeedChain",
    ]


def test_admin_alert_needs_admin_email(smtp, monkeypatch):
    service = EmailService()
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "")
    run(service.send_admin_alert("Queue stuck", "details"))
    assert smtp.sent == []

    monkeypatch.setattr(settings, "ADMIN_EMAIL", "ops@example.com")
    run(service.send_admin_alert("Queue stuck", "details"))
    assert smtp.sent[0][1]["Subject"] == "ADMIN: Queue stuck"
    assert smtp.sent[0][1]["To"] == "ops@example.com"


def test_template_escapes_content():
    html = wrap_in_template("Hi", "<script>alert(1)</script>")
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
