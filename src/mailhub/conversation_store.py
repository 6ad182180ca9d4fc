# ABOUTME: SQLite storage for conversations (threads) and their messages
# ABOUTME: Unique thread keys and message-ids make creation and insertion idempotent
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mailhub.exceptions import DataError

logger = logging.getLogger(__name__)

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so that SQL string comparison orders by time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def from_db_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


@dataclass
class ConversationRecord:
    """A stored conversation, keyed by the canonical id of its root message."""
    id: int
    thread_key: str
    subject: str
    customer_email: str
    status: str = "open"
    is_unread: bool = True
    has_attachment: bool = False
    last_activity: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ConversationRecord":
        return cls(
            id=row["id"],
            thread_key=row["thread_key"],
            subject=row["subject"],
            customer_email=row["customer_email"],
            status=row["status"],
            is_unread=bool(row["is_unread"]),
            has_attachment=bool(row["has_attachment"]),
            last_activity=from_db_timestamp(row["last_activity"]),
            created_at=from_db_timestamp(row["created_at"]),
        )


@dataclass
class MessageRecord:
    """A stored email belonging to exactly one conversation."""
    message_id: str
    conversation_id: int
    from_email: str
    to_email: str
    subject: str
    body: str
    sent_at: datetime
    is_html: bool = False
    is_outbound: bool = False
    attachments: list[dict[str, Any]] = field(default_factory=list)
    id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MessageRecord":
        return cls(
            id=row["id"],
            message_id=row["message_id"],
            conversation_id=row["conversation_id"],
            from_email=row["from_email"],
            to_email=row["to_email"],
            subject=row["subject"],
            body=row["body"],
            sent_at=from_db_timestamp(row["sent_at"]),
            is_html=bool(row["is_html"]),
            is_outbound=bool(row["is_outbound"]),
            attachments=json.loads(row["attachments"] or "[]"),
        )


class ConversationStore:
    """
    Persist conversations and messages.

    Both tables carry a UNIQUE natural key (thread_key, message_id), so
    creating a conversation is insert-if-absent followed by a fetch, and a
    message can never be stored twice.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    @classmethod
    def from_config(cls, config) -> "ConversationStore":
        return cls(config.get_database_path())

    def _init_database(self):
        """Create database and schema if not exists"""
        with self.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS email_threads (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    thread_key TEXT NOT NULL UNIQUE,
                    subject TEXT,
                    customer_email TEXT,
                    status TEXT NOT NULL DEFAULT 'open',
                    is_unread INTEGER NOT NULL DEFAULT 1,
                    has_attachment INTEGER NOT NULL DEFAULT 0,
                    last_activity TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS email_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL UNIQUE,
                    conversation_id INTEGER NOT NULL REFERENCES email_threads(id),
                    from_email TEXT NOT NULL,
                    to_email TEXT NOT NULL,
                    subject TEXT,
                    body TEXT,
                    is_html INTEGER NOT NULL DEFAULT 0,
                    is_outbound INTEGER NOT NULL DEFAULT 0,
                    attachments TEXT,
                    sent_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_threads_last_activity "
                "ON email_threads(last_activity)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
                "ON email_messages(conversation_id)"
            )
            conn.commit()
            logger.debug(f"Conversation database initialized at {self.db_path}")

    @contextmanager
    def get_connection(self):
        """Get database connection with proper error handling."""
        conn = None
        try:
            conn = sqlite3.connect(str(self.db_path))
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise DataError(
                f"Database operation failed: {e}",
                recovery_hint=f"Check that {self.db_path} is writable and not corrupted",
            ) from e
        finally:
            if conn:
                conn.close()

    def find_by_key(self, key: str) -> ConversationRecord | None:
        """Look up a conversation by its canonical key."""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM email_threads WHERE thread_key = ?", (key,)
            ).fetchone()
        return ConversationRecord.from_row(row) if row else None

    def get_conversation(self, conversation_id: int) -> ConversationRecord | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM email_threads WHERE id = ?", (conversation_id,)
            ).fetchone()
        return ConversationRecord.from_row(row) if row else None

    def get_or_create_conversation(
        self,
        key: str,
        subject: str,
        customer_email: str,
        last_activity: datetime,
        has_attachment: bool = False,
        is_unread: bool = True,
    ) -> tuple[ConversationRecord, bool]:
        """
        Create the conversation for key unless one already exists.

        Args:
            key: Canonical thread key
            subject: Subject of the seeding message
            customer_email: Address of the customer side of the conversation
            last_activity: Timestamp of the seeding message
            has_attachment: Whether the seeding message has attachments
            is_unread: Initial unread flag

        Returns:
            (conversation, created) - created is False when another writer
            got there first
        """
        now = to_db_timestamp(datetime.now(timezone.utc))
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO email_threads
                (thread_key, subject, customer_email, status, is_unread,
                 has_attachment, last_activity, created_at)
                VALUES (?, ?, ?, 'open', ?, ?, ?, ?)
                """,
                (
                    key,
                    subject,
                    customer_email,
                    int(is_unread),
                    int(has_attachment),
                    to_db_timestamp(last_activity),
                    now,
                ),
            )
            created = cursor.rowcount == 1
            conn.commit()
            row = conn.execute(
                "SELECT * FROM email_threads WHERE thread_key = ?", (key,)
            ).fetchone()

        if created:
            logger.debug(f"Created conversation {key}")
        else:
            logger.debug(f"Conversation {key} already existed")
        return ConversationRecord.from_row(row), created

    def advance_last_activity(self, conversation_id: int, timestamp: datetime) -> bool:
        """Move last_activity forward to timestamp; never moves it back.

        Returns:
            True if the conversation was updated
        """
        value = to_db_timestamp(timestamp)
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE email_threads SET last_activity = ?
                WHERE id = ? AND (last_activity IS NULL OR last_activity < ?)
                """,
                (value, conversation_id, value),
            )
            conn.commit()
            return cursor.rowcount == 1

    def mark_has_attachment(self, conversation_id: int) -> None:
        with self.get_connection() as conn:
            conn.execute(
                "UPDATE email_threads SET has_attachment = 1 WHERE id = ?", (conversation_id,)
            )
            conn.commit()

    def has_message(self, message_id: str) -> bool:
        with self.get_connection() as conn:
            result = conn.execute(
                "SELECT COUNT(*) as count FROM email_messages WHERE message_id = ?",
                (message_id,),
            )
            return result.fetchone()["count"] > 0

    def add_message(self, message: MessageRecord) -> bool:
        """
        Store a message.

        Returns:
            False if a message with the same message_id is already stored
        """
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO email_messages
                (message_id, conversation_id, from_email, to_email, subject, body,
                 is_html, is_outbound, attachments, sent_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.message_id,
                    message.conversation_id,
                    message.from_email,
                    message.to_email,
                    message.subject,
                    message.body,
                    int(message.is_html),
                    int(message.is_outbound),
                    json.dumps(message.attachments),
                    to_db_timestamp(message.sent_at),
                    to_db_timestamp(datetime.now(timezone.utc)),
                ),
            )
            conn.commit()
            inserted = cursor.rowcount == 1
            if inserted:
                message.id = cursor.lastrowid
            else:
                logger.debug(f"Message {message.message_id} already stored")
            return inserted

    def list_conversations(
        self, limit: int = 50, status: str | None = None
    ) -> list[ConversationRecord]:
        """Most recently active conversations first."""
        query = "SELECT * FROM email_threads"
        params: list[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY last_activity DESC, id DESC LIMIT ?"
        params.append(limit)

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [ConversationRecord.from_row(row) for row in rows]

    def get_messages(self, conversation_id: int) -> list[MessageRecord]:
        """Messages of a conversation in chronological order."""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM email_messages
                WHERE conversation_id = ?
                ORDER BY sent_at ASC, id ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [MessageRecord.from_row(row) for row in rows]

    def count_messages(self, conversation_id: int) -> int:
        with self.get_connection() as conn:
            result = conn.execute(
                "SELECT COUNT(*) as count FROM email_messages WHERE conversation_id = ?",
                (conversation_id,),
            )
            return result.fetchone()["count"]

    def get_statistics(self) -> dict[str, Any]:
        """
        Get statistics about stored conversations.

        Returns:
            Dict with conversation and message totals, split by direction
        """
        with self.get_connection() as conn:
            conversations = conn.execute(
                "SELECT COUNT(*) as count FROM email_threads"
            ).fetchone()["count"]
            row = conn.execute(
                """
                SELECT COUNT(*) as total,
                       COALESCE(SUM(is_outbound), 0) as outbound
                FROM email_messages
                """
            ).fetchone()
            by_status = {
                r["status"]: r["count"]
                for r in conn.execute(
                    "SELECT status, COUNT(*) as count FROM email_threads GROUP BY status"
                ).fetchall()
            }

        return {
            "conversations": conversations,
            "messages": row["total"],
            "inbound": row["total"] - row["outbound"],
            "outbound": row["outbound"],
            "by_status": by_status,
        }

    def clear(self) -> None:
        """Delete every message and conversation."""
        with self.get_connection() as conn:
            conn.execute("DELETE FROM email_messages")
            conn.execute("DELETE FROM email_threads")
            conn.commit()
        logger.info("Cleared all conversations and messages")
