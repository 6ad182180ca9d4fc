import shutil
import tempfile

import pytest

from mailhub.config import Config
from mailhub.conversation_store import ConversationStore


@pytest.fixture
def temp_config_dir():
    """Create a temporary config directory for tests"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def test_config(temp_config_dir, monkeypatch):
    """Create a test config instance"""
    monkeypatch.delenv("MAILHUB_DB", raising=False)
    monkeypatch.delenv("MAILHUB_OPERATOR_ADDRESS", raising=False)
    return Config(config_dir=temp_config_dir)


@pytest.fixture
def store(test_config):
    """Conversation store inside the test config's data dir"""
    return ConversationStore.from_config(test_config)


@pytest.fixture
def xdg_home(tmp_path, monkeypatch):
    """Point every XDG directory at tmp_path so Config() is isolated (CLI tests)"""
    for name in ("XDG_CONFIG_HOME", "XDG_DATA_HOME", "XDG_STATE_HOME", "XDG_CACHE_HOME"):
        monkeypatch.setenv(name, str(tmp_path / name.lower()))
    monkeypatch.delenv("MAILHUB_DB", raising=False)
    monkeypatch.delenv("MAILHUB_OPERATOR_ADDRESS", raising=False)
    return tmp_path


def make_email(
    message_id: str | None = "<m1@example.com>",
    subject: str = "Order question",
    from_addr: str = "Customer <customer@example.com>",
    to_addr: str = "support@shop.example",
    date: str | None = "Mon, 3 Mar 2025 10:00:00 +0000",
    in_reply_to: str | None = None,
    references: str | None = None,
    body: str = "Where is my order?",
) -> str:
    """Build a minimal RFC 5322 message"""
    headers = [f"From: {from_addr}", f"To: {to_addr}", f"Subject: {subject}"]
    if date is not None:
        headers.append(f"Date: {date}")
    if message_id is not None:
        headers.append(f"Message-ID: {message_id}")
    if in_reply_to is not None:
        headers.append(f"In-Reply-To: {in_reply_to}")
    if references is not None:
        headers.append(f"References: {references}")
    headers.append("Content-Type: text/plain; charset=utf-8")
    return "\n".join(headers) + "\n\n" + body + "\n"


@pytest.fixture
def email_factory():
    return make_email


@pytest.fixture
def sample_email_with_attachment():
    """Sample email with attachment"""
    return """From: sender@company.com
To: support@shop.example
Subject: Damaged item photos
Date: Tue, 4 Mar 2025 10:00:00 +0000
Message-ID: <photos123@company.com>
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="boundary123"

--boundary123
Content-Type: text/plain

Please find the photos attached.

--boundary123
Content-Type: application/pdf
Content-Disposition: attachment; filename="receipt.pdf"
Content-Transfer-Encoding: base64

JVBERi0xLjQKJeLjz9MKCg==

--boundary123--
"""


@pytest.fixture
def sample_html_email():
    return """From: shop@shop.example
To: customer@example.com
Subject: Your return label
Date: Wed, 5 Mar 2025 09:30:00 +0000
Message-ID: <label1@shop.example>
MIME-Version: 1.0
Content-Type: multipart/alternative; boundary="alt"

--alt
Content-Type: text/plain; charset=utf-8

Your label is ready.

--alt
Content-Type: text/html; charset=utf-8

<html><head><title>x</title></head><body><p onclick="steal()">Your <strong>label</strong> is ready.</p><script>alert(1)</script><a href="javascript:alert(1)">click</a><font color="red">red</font></body></html>

--alt--
"""

