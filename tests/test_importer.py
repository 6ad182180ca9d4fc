"""Test importing .eml directories into conversations."""

from datetime import date, datetime, timezone

import pytest

from mailhub.conversation_store import ConversationStore
from mailhub.exceptions import DataError
from mailhub.importer import (
    DUPLICATE,
    IMPORTED,
    TOO_OLD,
    EmailImporter,
    ImportStats,
    fallback_message_id,
)


@pytest.fixture
def importer(test_config, store):
    return EmailImporter(test_config, store=store)


@pytest.fixture
def inbox(tmp_path):
    directory = tmp_path / "emails"
    directory.mkdir()
    return directory


def thread_of_three(email_factory):
    return {
        "001.eml": email_factory(
            message_id="<m1@x>", date="Mon, 3 Mar 2025 10:00:00 +0000"
        ),
        "002.eml": email_factory(
            message_id="<m2@x>",
            subject="Re: Order question",
            in_reply_to="<m1@x>",
            references="<m1@x>",
            date="Tue, 4 Mar 2025 10:00:00 +0000",
        ),
        "003.eml": email_factory(
            message_id="<m3@x>",
            subject="Re: Order question",
            in_reply_to="<m2@x>",
            references="<m1@x> <m2@x>",
            date="Wed, 5 Mar 2025 10:00:00 +0000",
        ),
    }


class TestImportMessage:
    def test_new_message_creates_conversation(self, importer, store, email_factory):
        outcome = importer.import_message(email_factory(), "001.eml")

        assert outcome.status == IMPORTED
        assert outcome.conversation_key == "m1@example.com"
        assert outcome.new_conversation is True

        conversation = store.find_by_key("m1@example.com")
        assert conversation.subject == "Order question"
        assert conversation.customer_email == "customer@example.com"
        assert conversation.is_unread is False
        messages = store.get_messages(conversation.id)
        assert len(messages) == 1
        assert messages[0].message_id == "m1@example.com"
        assert messages[0].is_outbound is False
        assert messages[0].is_html is False

    def test_reply_joins_conversation_and_advances_activity(self, importer, store, email_factory):
        importer.import_message(email_factory(message_id="<m1@x>"), "001.eml")
        outcome = importer.import_message(
            email_factory(
                message_id="<m2@x>",
                in_reply_to="<m1@x>",
                date="Thu, 6 Mar 2025 12:00:00 +0000",
            ),
            "002.eml",
        )

        assert outcome.conversation_key == "m1@x"
        assert outcome.new_conversation is False
        assert outcome.conversation_updated is True
        assert store.find_by_key("m1@x").last_activity == datetime(
            2025, 3, 6, 12, 0, tzinfo=timezone.utc
        )

    def test_older_reply_does_not_regress_activity(self, importer, store, email_factory):
        importer.import_message(
            email_factory(message_id="<m1@x>", date="Thu, 6 Mar 2025 12:00:00 +0000"), "a.eml"
        )
        outcome = importer.import_message(
            email_factory(
                message_id="<m0@x>", references="<m1@x>", date="Mon, 3 Mar 2025 10:00:00 +0000"
            ),
            "b.eml",
        )

        assert outcome.conversation_updated is False
        assert store.find_by_key("m1@x").last_activity == datetime(
            2025, 3, 6, 12, 0, tzinfo=timezone.utc
        )

    def test_undated_reply_does_not_advance_activity(self, importer, store, email_factory):
        importer.import_message(email_factory(message_id="<m1@x>"), "001.eml")
        outcome = importer.import_message(
            email_factory(message_id="<m2@x>", in_reply_to="<m1@x>", date=None), "002.eml"
        )

        assert outcome.status == IMPORTED
        assert outcome.conversation_key == "m1@x"
        assert outcome.conversation_updated is False
        conversation = store.find_by_key("m1@x")
        assert conversation.last_activity == datetime(2025, 3, 3, 10, 0, tzinfo=timezone.utc)
        assert store.count_messages(conversation.id) == 2

    def test_conversation_untouched_when_message_insert_loses_race(
        self, importer, store, email_factory, monkeypatch
    ):
        importer.import_message(email_factory(message_id="<m1@x>"), "001.eml")
        monkeypatch.setattr(store, "add_message", lambda message: False)

        outcome = importer.import_message(
            email_factory(
                message_id="<m2@x>",
                in_reply_to="<m1@x>",
                date="Thu, 6 Mar 2025 12:00:00 +0000",
            ),
            "002.eml",
        )

        assert outcome.status == DUPLICATE
        assert store.find_by_key("m1@x").last_activity == datetime(
            2025, 3, 3, 10, 0, tzinfo=timezone.utc
        )

    def test_duplicate_message_skipped(self, importer, store, email_factory):
        importer.import_message(email_factory(), "001.eml")
        outcome = importer.import_message(email_factory(), "copy-of-001.eml")

        assert outcome.status == DUPLICATE
        conversation = store.find_by_key("m1@example.com")
        assert store.count_messages(conversation.id) == 1

    def test_bracketless_message_id_is_same_message(self, importer, email_factory):
        importer.import_message(email_factory(message_id="<m1@x>"), "a.eml")
        outcome = importer.import_message(email_factory(message_id="m1@x"), "b.eml")
        assert outcome.status == DUPLICATE

    def test_message_before_start_date_skipped(self, importer, store, email_factory):
        outcome = importer.import_message(
            email_factory(date="Tue, 31 Dec 2024 23:00:00 +0000"),
            "old.eml",
            since=date(2025, 1, 1),
        )

        assert outcome.status == TOO_OLD
        assert store.find_by_key("m1@example.com") is None

    def test_missing_message_id_uses_file_name(self, importer, store, email_factory):
        outcome = importer.import_message(email_factory(message_id=None), "inbox-42.eml")

        assert outcome.message_id == "inbox-42.eml@import"
        assert store.find_by_key("inbox-42.eml@import") is not None

    def test_outbound_message(self, test_config, store, email_factory):
        test_config.settings["import"]["operator_address"] = "support@shop.example"
        importer = EmailImporter(test_config, store=store)

        outcome = importer.import_message(
            email_factory(
                message_id="<s1@shop.example>",
                from_addr="",
                to_addr="customer@example.com",
            ),
            "sent.eml",
            outbound=True,
        )

        conversation = store.find_by_key(outcome.conversation_key)
        assert conversation.customer_email == "customer@example.com"
        message = store.get_messages(conversation.id)[0]
        assert message.is_outbound is True
        assert message.from_email == "support@shop.example"

    def test_sent_reply_joins_customer_thread(self, importer, store, email_factory):
        importer.import_message(email_factory(message_id="<m1@x>"), "in.eml")
        outcome = importer.import_message(
            email_factory(
                message_id="<reply@shop.example>",
                from_addr="support@shop.example",
                to_addr="customer@example.com",
                in_reply_to="<m1@x>",
                references="<m1@x>",
                date="Tue, 4 Mar 2025 10:00:00 +0000",
            ),
            "out.eml",
            outbound=True,
        )

        assert outcome.conversation_key == "m1@x"
        messages = store.get_messages(store.find_by_key("m1@x").id)
        assert [m.is_outbound for m in messages] == [False, True]

    def test_attachment_marks_conversation(self, importer, store, email_factory, sample_email_with_attachment):
        importer.import_message(email_factory(message_id="<photos-root@company.com>"), "a.eml")
        reply = sample_email_with_attachment.replace(
            "Message-ID: <photos123@company.com>",
            "Message-ID: <photos123@company.com>\nIn-Reply-To: <photos-root@company.com>",
        )
        importer.import_message(reply, "b.eml")

        conversation = store.find_by_key("photos-root@company.com")
        assert conversation.has_attachment is True
        messages = store.get_messages(conversation.id)
        assert messages[1].attachments[0]["filename"] == "receipt.pdf"

    def test_html_body_stored_sanitized(self, importer, store, sample_html_email):
        importer.import_message(sample_html_email, "html.eml")

        message = store.get_messages(store.find_by_key("label1@shop.example").id)[0]
        assert message.is_html is True
        assert "<strong>label</strong>" in message.body
        assert "<script" not in message.body

    def test_lookup_failure_propagates(self, importer, email_factory, monkeypatch):
        def broken(key):
            raise DataError("Database operation failed: disk I/O error")

        monkeypatch.setattr(importer.store, "find_by_key", broken)
        with pytest.raises(DataError):
            importer.import_message(email_factory(), "001.eml")


class TestImportDirectory:
    def test_three_message_thread(self, importer, store, inbox, email_factory):
        for name, content in thread_of_three(email_factory).items():
            (inbox / name).write_text(content)

        stats = importer.import_directory(inbox)

        assert stats.imported == 3
        assert stats.conversations_created == 1
        assert stats.conversations_updated == 2
        assert stats.messages_created == 3
        assert stats.errors == 0
        conversation = store.find_by_key("m1@x")
        assert [m.message_id for m in store.get_messages(conversation.id)] == [
            "m1@x",
            "m2@x",
            "m3@x",
        ]
        assert len(store.list_conversations()) == 1

    def test_reimport_is_idempotent(self, importer, store, inbox, email_factory):
        for name, content in thread_of_three(email_factory).items():
            (inbox / name).write_text(content)

        importer.import_directory(inbox)
        stats = importer.import_directory(inbox)

        assert stats.imported == 0
        assert stats.skipped == 3
        assert store.get_statistics()["conversations"] == 1
        assert store.get_statistics()["messages"] == 3

    def test_unrelated_messages_get_own_conversations(self, importer, store, inbox, email_factory):
        (inbox / "a.eml").write_text(email_factory(message_id="<one@x>"))
        (inbox / "b.eml").write_text(email_factory(message_id="<two@y>"))

        stats = importer.import_directory(inbox)

        assert stats.conversations_created == 2
        assert store.find_by_key("one@x") is not None
        assert store.find_by_key("two@y") is not None

    def test_only_eml_files(self, importer, inbox, email_factory):
        (inbox / "a.eml").write_text(email_factory(message_id="<one@x>"))
        (inbox / "B.EML").write_text(email_factory(message_id="<two@x>"))
        (inbox / "notes.txt").write_text("not an email")
        (inbox / "sub").mkdir()

        assert [p.name for p in importer.find_email_files(inbox)] == ["B.EML", "a.eml"]

    def test_start_date_from_config(self, test_config, store, inbox, email_factory):
        test_config.settings["import"]["start_date"] = "2025-03-04"
        importer = EmailImporter(test_config, store=store)
        for name, content in thread_of_three(email_factory).items():
            (inbox / name).write_text(content)

        stats = importer.import_directory(inbox)

        assert stats.imported == 2
        assert stats.skipped == 1
        # m1 was never stored, so m2 seeds the conversation via its own id
        assert store.find_by_key("m2@x") is not None

    def test_explicit_since_overrides_config(self, importer, inbox, email_factory):
        for name, content in thread_of_three(email_factory).items():
            (inbox / name).write_text(content)

        stats = importer.import_directory(inbox, since=date(2025, 3, 5))

        assert stats.imported == 1
        assert stats.skipped == 2

    def test_parse_errors_counted_and_batch_continues(self, test_config, store, inbox, email_factory):
        test_config.settings["security"]["max_email_size_mb"] = 1
        importer = EmailImporter(test_config, store=store)
        (inbox / "001.eml").write_text(email_factory(message_id="<ok@x>"))
        (inbox / "002.eml").write_text(email_factory(message_id="<big@x>", body="x" * (1024 * 1024 + 1)))
        (inbox / "003.eml").write_text("")

        stats = importer.import_directory(inbox)

        assert stats.imported == 1
        assert stats.errors == 2
        assert [name for name, _ in stats.failures] == ["002.eml", "003.eml"]

    def test_storage_failure_aborts_batch(self, importer, inbox, email_factory, monkeypatch):
        (inbox / "001.eml").write_text(email_factory(message_id="<one@x>"))
        (inbox / "002.eml").write_text(email_factory(message_id="<two@x>"))
        calls = []

        def broken(key):
            calls.append(key)
            raise DataError("Database operation failed: database is locked")

        monkeypatch.setattr(importer.store, "find_by_key", broken)
        with pytest.raises(DataError):
            importer.import_directory(inbox)
        assert calls == ["one@x"]

    def test_fallback_ids_keep_file_extension(self, importer, store, inbox, email_factory):
        (inbox / "a.eml").write_text(email_factory(message_id=None))
        (inbox / "a.EML").write_text(email_factory(message_id=None))

        stats = importer.import_directory(inbox)

        assert stats.imported == 2
        assert store.find_by_key("a.eml@import") is not None
        assert store.find_by_key("a.EML@import") is not None

    def test_batches_cover_all_files(self, test_config, store, inbox, email_factory):
        test_config.settings["import"]["batch_size"] = 2
        importer = EmailImporter(test_config, store=store)
        for i in range(5):
            (inbox / f"{i:03}.eml").write_text(email_factory(message_id=f"<m{i}@x>"))

        assert importer.import_directory(inbox).imported == 5

    def test_dry_run_writes_nothing(self, importer, store, inbox, email_factory):
        for name, content in thread_of_three(email_factory).items():
            (inbox / name).write_text(content)

        stats = importer.import_directory(inbox, dry_run=True)

        assert stats.imported == 3
        assert store.get_statistics()["messages"] == 0
        assert store.get_statistics()["conversations"] == 0

    def test_sent_directory(self, importer, store, inbox, email_factory):
        (inbox / "s.eml").write_text(
            email_factory(message_id=None, from_addr="support@shop.example", to_addr="c@example.com")
        )

        stats = importer.import_directory(inbox, outbound=True)

        assert stats.imported == 1
        conversation = store.find_by_key("s.eml@sent")
        assert conversation.customer_email == "c@example.com"


class TestHelpers:
    def test_fallback_message_id(self):
        assert fallback_message_id("inbox/abc.eml") == "abc.eml@import"
        assert fallback_message_id("abc.eml", outbound=True) == "abc.eml@sent"

    def test_stats_record(self):
        from mailhub.importer import ImportOutcome

        stats = ImportStats()
        stats.record(ImportOutcome(IMPORTED, "a@x", "a@x", new_conversation=True))
        stats.record(ImportOutcome(IMPORTED, "b@x", "a@x", conversation_updated=True))
        stats.record(ImportOutcome(DUPLICATE, "b@x"))
        stats.record(ImportOutcome(TOO_OLD, "c@x"))

        assert stats.imported == 2
        assert stats.conversations_created == 1
        assert stats.conversations_updated == 1
        assert stats.skipped == 2

    def test_store_from_config_used_by_default(self, test_config):
        importer = EmailImporter(test_config)
        assert isinstance(importer.store, ConversationStore)
        assert importer.store.db_path == test_config.get_database_path()
