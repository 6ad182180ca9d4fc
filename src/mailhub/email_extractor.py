# ABOUTME: Parses raw RFC 5322 messages into the fields needed for threading and storage
# ABOUTME: Extracts threading headers, addresses, dates, bodies (sanitized HTML) and attachments
import email
import logging
from email import policy
from email.message import EmailMessage
from email.utils import getaddresses, parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any

from bs4 import BeautifulSoup

from mailhub.exceptions import EmailParsingError
from mailhub.utils import truncate_string

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "(No subject)"
MAX_SUBJECT_LENGTH = 500
MAX_HEADER_LENGTH = 4000

ALLOWED_TAGS = {
    "p", "br", "strong", "em", "a", "img", "div", "span", "h1", "h2", "h3",
    "ul", "ol", "li", "table", "tr", "td", "th", "blockquote",
}
ALLOWED_ATTRS = {"href", "src", "alt", "class", "style"}
# Removed together with their content rather than unwrapped
DROPPED_TAGS = ["script", "style", "iframe", "object", "embed", "link", "meta", "head", "title"]


def sanitize_html(html_content: str) -> str:
    """Reduce HTML to a small allow-list of tags and attributes.

    Args:
        html_content: Raw HTML body

    Returns:
        Sanitized HTML, empty string when nothing visible remains
    """
    if not html_content or not html_content.strip():
        return ""

    soup = BeautifulSoup(html_content, "html.parser")

    for tag in soup.find_all(DROPPED_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue

        for attr in list(tag.attrs):
            if attr not in ALLOWED_ATTRS:
                del tag[attr]
            elif attr in ("href", "src"):
                value = str(tag[attr]).strip().lower()
                if value.startswith(("javascript:", "vbscript:", "data:text/html")):
                    del tag[attr]

    return str(soup).strip()


class EmailExtractor:
    def __init__(self, max_email_size_mb: int = 25):
        self.max_email_size_mb = max_email_size_mb
        self.max_email_size = max_email_size_mb * 1024 * 1024  # Convert to bytes

    @classmethod
    def from_config(cls, config) -> "EmailExtractor":
        return cls(config.settings["security"].get("max_email_size_mb", 25))

    def extract(self, raw: bytes | str) -> dict[str, Any]:
        """Extract threading headers and content from a raw message.

        Raises:
            EmailParsingError: If the message is too large or cannot be parsed
        """
        if len(raw) > self.max_email_size:
            raise EmailParsingError(
                f"Email too large: {len(raw) / 1024 / 1024:.1f}MB "
                f"(max: {self.max_email_size_mb}MB)",
                recovery_hint="Raise security.max_email_size_mb to import it",
            )

        try:
            if isinstance(raw, bytes):
                msg = email.message_from_bytes(raw, policy=policy.default)
            else:
                msg = email.message_from_string(raw, policy=policy.default)
        except Exception as e:
            raise EmailParsingError(
                f"Failed to parse email: {e}",
                recovery_hint="Check if the email format is valid",
            ) from e

        if not msg.keys():
            raise EmailParsingError(
                "Message has no headers",
                recovery_hint="Check that the file is an RFC 5322 message (.eml)",
            )

        text, html = self._extract_bodies(msg)
        attachments = self._extract_attachments(msg)

        return {
            "message_id": self._header(msg, "message-id"),
            "in_reply_to": self._header(msg, "in-reply-to"),
            "references": self._header(msg, "references"),
            "from_email": self._first_address(msg, "from"),
            "to_email": self._first_address(msg, "to"),
            "subject": self._clean_subject(self._header(msg, "subject")),
            "date": self._parse_date(self._header(msg, "date")),
            "text": text,
            "html": sanitize_html(html),
            "attachments": attachments,
        }

    def _header(self, msg: EmailMessage, name: str) -> str:
        try:
            value = msg.get(name)
        except Exception as e:
            logger.warning(f"Unreadable {name} header: {e}")
            return ""
        if value is None:
            return ""
        # Unfold continuation lines
        value = " ".join(str(value).split())
        return truncate_string(value, MAX_HEADER_LENGTH, suffix="")

    def _first_address(self, msg: EmailMessage, name: str) -> str:
        raw = self._header(msg, name)
        if not raw:
            return ""
        for _, address in getaddresses([raw]):
            if address and "@" in address:
                return address.strip().lower()
        return ""

    def _clean_subject(self, subject: str) -> str:
        subject = subject.replace("\n", " ").replace("\r", " ").strip()
        if not subject:
            return DEFAULT_SUBJECT
        return truncate_string(subject, MAX_SUBJECT_LENGTH)

    def _parse_date(self, value: str) -> datetime | None:
        if not value:
            return None
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            logger.warning(f"Unparseable Date header: {value!r}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _decode_part(self, part: EmailMessage) -> str:
        try:
            return part.get_content()
        except (LookupError, UnicodeError, KeyError) as e:
            logger.warning(f"Falling back to raw decode of {part.get_content_type()}: {e}")
            payload = part.get_payload(decode=True) or b""
            return payload.decode("utf-8", "ignore")

    def _extract_bodies(self, msg: EmailMessage) -> tuple[str, str]:
        """Return (text, html) bodies, either may be empty."""
        text = ""
        html = ""

        plain_part = msg.get_body(preferencelist=("plain",))
        if plain_part is not None:
            text = self._decode_part(plain_part).replace("\x00", "")

        html_part = msg.get_body(preferencelist=("html",))
        if html_part is not None:
            html = self._decode_part(html_part).replace("\x00", "")

        return text, html

    def _extract_attachments(self, msg: EmailMessage) -> list[dict[str, Any]]:
        """Attachment metadata (content is not stored)."""
        attachments = []
        if not msg.is_multipart():
            return attachments

        for part in msg.iter_attachments():
            filename = part.get_filename()
            if not filename:
                continue
            payload = part.get_payload(decode=True) or b""
            attachments.append(
                {
                    "filename": filename,
                    "content_type": part.get_content_type(),
                    "size": len(payload),
                }
            )

        return attachments
