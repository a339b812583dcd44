"""Unit tests for auth/notifier.py -- SMTP delivery and failure classification.

smtplib.SMTP is replaced with a recording fake so no socket is opened.
"""

import smtplib

import pytest

from auth.errors import DeliveryFailed, OperationTimeout
from auth.notifier import LogNotifier, SmtpNotifier


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []
    fail_on: str | None = None
    error: Exception | None = None

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.calls: list[str] = []
        self.messages = []
        _FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def _step(self, name):
        self.calls.append(name)
        if _FakeSMTP.fail_on == name:
            raise _FakeSMTP.error

    def starttls(self):
        self._step("starttls")

    def login(self, username, password):
        self._step("login")

    def send_message(self, msg):
        self._step("send_message")
        self.messages.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch):
    _FakeSMTP.instances = []
    _FakeSMTP.fail_on = None
    _FakeSMTP.error = None
    monkeypatch.setattr(smtplib, "SMTP", _FakeSMTP)
    return _FakeSMTP


@pytest.fixture
def smtp_notifier():
    return SmtpNotifier(host="smtp.example.com", username="u", password="p", timeout=3.0, sender="auth@example.com")


def test_sends_code(fake_smtp, smtp_notifier):
    smtp_notifier.send_otp_email("a@x.com", "123456")
    server = fake_smtp.instances[0]
    assert (server.host, server.port, server.timeout) == ("smtp.example.com", 587, 3.0)
    assert server.calls == ["starttls", "login", "send_message"]
    msg = server.messages[0]
    assert msg["To"] == "a@x.com"
    assert msg["From"] == "auth@example.com"
    assert "123456" in msg.get_content()


def test_no_tls_no_login(fake_smtp):
    SmtpNotifier(host="localhost", port=25, use_tls=False).send_otp_email("a@x.com", "123456")
    assert fake_smtp.instances[0].calls == ["send_message"]


def test_smtp_error_is_delivery_failed(fake_smtp, smtp_notifier):
    fake_smtp.fail_on = "send_message"
    fake_smtp.error = smtplib.SMTPRecipientsRefused({"a@x.com": (550, b"no")})
    with pytest.raises(DeliveryFailed):
        smtp_notifier.send_otp_email("a@x.com", "123456")


def test_connection_refused_is_delivery_failed(fake_smtp, smtp_notifier):
    fake_smtp.fail_on = "starttls"
    fake_smtp.error = ConnectionRefusedError()
    with pytest.raises(DeliveryFailed):
        smtp_notifier.send_otp_email("a@x.com", "123456")


def test_timeout_is_operation_timeout(fake_smtp, smtp_notifier):
    fake_smtp.fail_on = "login"
    fake_smtp.error = TimeoutError("timed out")
    with pytest.raises(OperationTimeout):
        smtp_notifier.send_otp_email("a@x.com", "123456")


def test_log_notifier_logs_code(caplog):
    with caplog.at_level("WARNING", logger="credcore.notifier"):
        LogNotifier().send_otp_email("a@x.com", "654321")
    assert "654321" in caplog.text
