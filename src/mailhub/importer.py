# ABOUTME: Batch import of .eml files into the conversation store
# ABOUTME: Extracts headers, resolves each message's conversation, and records messages in order
"""Import received or sent mail from a directory of .eml files."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path

from mailhub.config import Config
from mailhub.conversation_store import ConversationStore, MessageRecord
from mailhub.email_extractor import EmailExtractor
from mailhub.exceptions import EmailParsingError, MissingIdentifierError
from mailhub.thread_resolver import MessageHeaders, normalize_message_id, resolve_thread

logger = logging.getLogger(__name__)

# Outcomes of importing a single message
IMPORTED = "imported"
DUPLICATE = "duplicate"
TOO_OLD = "too_old"


@dataclass
class ImportOutcome:
    status: str
    message_id: str
    conversation_key: str | None = None
    new_conversation: bool = False
    conversation_updated: bool = False


@dataclass
class ImportStats:
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    conversations_created: int = 0
    conversations_updated: int = 0
    messages_created: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def record(self, outcome: ImportOutcome) -> None:
        if outcome.status != IMPORTED:
            self.skipped += 1
            return
        self.imported += 1
        self.messages_created += 1
        if outcome.new_conversation:
            self.conversations_created += 1
        elif outcome.conversation_updated:
            self.conversations_updated += 1


def fallback_message_id(source_name: str, outbound: bool = False) -> str:
    """Stable identifier for a message that has no Message-ID header."""
    suffix = "sent" if outbound else "import"
    return f"{Path(source_name).name}@{suffix}"


class EmailImporter:
    """
    Import .eml files one message at a time.

    Messages are processed sequentially: resolving message N may depend on
    the conversation created for message N-1.
    """

    def __init__(
        self,
        config: Config,
        store: ConversationStore | None = None,
        extractor: EmailExtractor | None = None,
    ):
        self.config = config
        self.store = store or ConversationStore.from_config(config)
        self.extractor = extractor or EmailExtractor.from_config(config)
        self.batch_size = config.settings["import"].get("batch_size", 20)
        self.operator_address = config.settings["import"].get("operator_address", "")

    def find_email_files(self, directory: str | Path) -> list[Path]:
        directory_path = Path(directory).expanduser()
        return sorted(
            p for p in directory_path.iterdir() if p.is_file() and p.suffix.lower() == ".eml"
        )

    def import_directory(
        self,
        directory: str | Path,
        outbound: bool = False,
        since: date | None = None,
        dry_run: bool = False,
    ) -> ImportStats:
        """
        Import every .eml file in directory.

        Args:
            directory: Directory containing .eml files (not searched recursively)
            outbound: True for the operator's sent mail
            since: Skip messages dated before this day (default: import.start_date)
            dry_run: Parse and resolve only, nothing is written

        Returns:
            ImportStats for the run

        Raises:
            DataError: If the conversation store fails; the batch is aborted
        """
        if since is None:
            since = self.config.get_start_date()

        files = self.find_email_files(directory)
        direction = "sent" if outbound else "received"
        logger.info(f"Found {len(files)} {direction} .eml files in {directory}")

        stats = ImportStats()
        total_batches = (len(files) + self.batch_size - 1) // self.batch_size

        for start in range(0, len(files), self.batch_size):
            batch = files[start : start + self.batch_size]
            batch_num = start // self.batch_size + 1
            logger.info(f"Processing batch {batch_num}/{total_batches} ({len(batch)} files)")

            for email_file in batch:
                try:
                    raw = email_file.read_bytes()
                    if dry_run:
                        outcome = self.preview_message(raw, email_file.name, outbound, since)
                    else:
                        outcome = self.import_message(raw, email_file.name, outbound, since)
                except (EmailParsingError, MissingIdentifierError, OSError) as e:
                    stats.errors += 1
                    stats.failures.append((email_file.name, str(e)))
                    logger.error(f"Error processing {email_file.name}: {e}")
                    continue

                stats.record(outcome)
                if outcome.status == IMPORTED and stats.imported % 50 == 0:
                    logger.info(f"Imported {stats.imported} emails...")

        logger.info(
            f"Import complete: {stats.imported} imported, "
            f"{stats.conversations_created} conversations created, "
            f"{stats.skipped} skipped, {stats.errors} errors"
        )
        return stats

    def _prepare(self, raw: bytes | str, source_name: str, outbound: bool) -> dict:
        data = self.extractor.extract(raw)
        if not normalize_message_id(data["message_id"]):
            data["message_id"] = fallback_message_id(source_name, outbound)
            logger.debug(f"{source_name} has no Message-ID, using {data['message_id']}")
        return data

    def _is_too_old(self, data: dict, since: date | None) -> bool:
        sent = data["date"]
        return bool(since and sent and sent.astimezone(timezone.utc).date() < since)

    def preview_message(
        self,
        raw: bytes | str,
        source_name: str,
        outbound: bool = False,
        since: date | None = None,
    ) -> ImportOutcome:
        """Resolve a message without writing anything."""
        data = self._prepare(raw, source_name, outbound)
        message_id = normalize_message_id(data["message_id"])

        if self._is_too_old(data, since):
            return ImportOutcome(TOO_OLD, message_id)
        if self.store.has_message(message_id):
            return ImportOutcome(DUPLICATE, message_id)

        resolution = resolve_thread(self._headers(data), self.store.find_by_key, data["date"])
        return ImportOutcome(
            IMPORTED,
            message_id,
            conversation_key=resolution.conversation_key,
            new_conversation=resolution.is_new_conversation,
        )

    def import_message(
        self,
        raw: bytes | str,
        source_name: str,
        outbound: bool = False,
        since: date | None = None,
    ) -> ImportOutcome:
        """
        Import one raw message.

        Args:
            raw: Message source
            source_name: File name, used for the fallback Message-ID
            outbound: True if the operator sent this message
            since: Skip the message if dated before this day

        Returns:
            ImportOutcome describing what happened
        """
        data = self._prepare(raw, source_name, outbound)
        message_id = normalize_message_id(data["message_id"])

        if self._is_too_old(data, since):
            logger.debug(f"Skipping {message_id}: dated {data['date']:%Y-%m-%d}")
            return ImportOutcome(TOO_OLD, message_id)

        if self.store.has_message(message_id):
            logger.debug(f"Skipping {message_id}: already imported")
            return ImportOutcome(DUPLICATE, message_id)

        sent_at = data["date"] or datetime.now(timezone.utc)
        has_attachment = bool(data["attachments"])
        from_email = data["from_email"]
        if outbound and not from_email:
            from_email = self.operator_address
        # The customer is the sender of received mail and the recipient of sent mail
        customer_email = data["to_email"] if outbound else data["from_email"]

        resolution = resolve_thread(self._headers(data), self.store.find_by_key, sent_at)

        if resolution.is_new_conversation:
            conversation, created = self.store.get_or_create_conversation(
                resolution.conversation_key,
                subject=data["subject"],
                customer_email=customer_email,
                last_activity=sent_at,
                has_attachment=has_attachment,
                is_unread=False,
            )
        else:
            conversation = self.store.find_by_key(resolution.conversation_key)
            created = False

        html = data["html"]
        inserted = self.store.add_message(
            MessageRecord(
                message_id=message_id,
                conversation_id=conversation.id,
                from_email=from_email,
                to_email=data["to_email"],
                subject=data["subject"],
                body=html or data["text"],
                is_html=bool(html),
                is_outbound=outbound,
                attachments=data["attachments"],
                sent_at=sent_at,
            )
        )
        if not inserted:
            return ImportOutcome(DUPLICATE, message_id, conversation.thread_key)

        updated = False
        if not created:
            # Undated mail is stored with the import time but never counts as activity
            if data["date"] is not None:
                updated = self.store.advance_last_activity(conversation.id, data["date"])
            if has_attachment and not conversation.has_attachment:
                self.store.mark_has_attachment(conversation.id)
            logger.debug(f"{message_id} joined conversation {conversation.thread_key}")
        else:
            logger.debug(f"{message_id} started conversation {conversation.thread_key}")

        return ImportOutcome(
            IMPORTED,
            message_id,
            conversation_key=conversation.thread_key,
            new_conversation=created,
            conversation_updated=updated,
        )

    def _headers(self, data: dict) -> MessageHeaders:
        return MessageHeaders(
            message_id=data["message_id"],
            in_reply_to=data["in_reply_to"] or None,
            references=data["references"] or None,
        )
