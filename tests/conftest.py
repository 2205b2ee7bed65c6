# tests/conftest.py
"""Shared fixtures: a throwaway SQLite store and a Flask test app."""

from datetime import datetime, timezone

import pytest

from mailer import MailSendError
from server import create_app
from storage import Storage

T0 = datetime(2025, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeMailer:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, recipient, subject, html):
        if self.fail:
            raise MailSendError("connection refused")
        self.sent.append((recipient, subject, html))
        return f"<msg-{len(self.sent)}@example.com>"


class FakeSummarizer:
    def __init__(self):
        self.calls = []

    def generate(self, emails):
        self.calls.append(emails)
        return {
            "title": "Weekly digest",
            "content": "Two emails waiting for a reply.",
            "priority": "urgent",
            "keyPoints": ["Reply to Ada", "Book the interview"],
        }


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def storage(tmp_path):
    store = Storage(str(tmp_path / "tracking.db"))
    store.init_db()
    return store


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def app(storage, mailer, summarizer):
    app = create_app(
        config={"TESTING": True, "TRACK_IN_BACKGROUND": False, "PUBLIC_BASE_URL": "https://track.example.com"},
        storage=storage,
        mailer=mailer,
        summarizer=summarizer,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sent_email(storage, t0):
    return storage.create_email(
        "ada@example.com", "Offer letter", "<p>Hello</p>", "pixel-1", sent_at=t0
    )
