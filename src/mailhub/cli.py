# ABOUTME: Command-line interface for mailhub email conversation import
# ABOUTME: Provides commands for importing .eml files, browsing conversations, and maintenance
"""mailhub command-line interface"""

import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console

from mailhub.config import Config
from mailhub.conversation_store import ConversationStore
from mailhub.exceptions import MailhubError
from mailhub.importer import EmailImporter
from mailhub.logging_config import setup_logging
from mailhub.thread_resolver import (
    MessageHeaders,
    build_candidates,
    normalize_message_id,
    resolve_thread,
)
from mailhub.tui import (
    display_conversation,
    display_conversation_list,
    display_import_summary,
    display_resolution,
)

logger = logging.getLogger(__name__)


def _fail(error: MailhubError) -> None:
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", default=None, help="Also log to this file in the state log dir")
def cli(debug, log_file):
    """mailhub - Email conversation threading for a customer-operations hub"""
    # Load environment from .env if present (MAILHUB_DB, MAILHUB_OPERATOR_ADDRESS)
    load_dotenv()

    log_level = "DEBUG" if debug else "INFO"
    setup_logging(log_level, log_file=log_file)


@cli.command(name="import")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--sent", is_flag=True, help="Files are sent mail (stored as outbound)")
@click.option(
    "--since",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Skip mail before this date (default: import.start_date from config)",
)
@click.option("--dry-run", is_flag=True, help="Resolve conversations without storing anything")
def import_command(directory, sent, since, dry_run):
    """Import .eml files from DIRECTORY into conversations

    Example:
        mailhub import data/emails
        mailhub import data/emails_send --sent
    """
    config = Config()
    console = Console()

    try:
        importer = EmailImporter(config)
        files = importer.find_email_files(directory)
        if not files:
            click.echo(f"No .eml files found in {directory}")
            return

        if dry_run:
            click.echo("DRY RUN MODE - nothing will be stored\n")

        stats = importer.import_directory(
            directory,
            outbound=sent,
            since=since.date() if since else None,
            dry_run=dry_run,
        )
    except MailhubError as e:
        _fail(e)

    display_import_summary(console, stats, outbound=sent)


@cli.command()
@click.option("--limit", default=None, type=int, help="Maximum conversations to list")
@click.option("--status", default=None, help="Only conversations with this status")
def threads(limit, status):
    """List conversations, most recent activity first"""
    config = Config()
    if limit is None:
        limit = config.settings["ui"]["list_limit"]

    try:
        store = ConversationStore.from_config(config)
        conversations = store.list_conversations(limit=limit, status=status)
        counts = {c.id: store.count_messages(c.id) for c in conversations}
    except MailhubError as e:
        _fail(e)

    display_conversation_list(Console(), conversations, counts)


@cli.command()
@click.argument("thread_key")
@click.option("--full", is_flag=True, help="Show complete message bodies")
def show(thread_key, full):
    """Show all messages of the conversation THREAD_KEY"""
    config = Config()

    try:
        store = ConversationStore.from_config(config)
        conversation = store.find_by_key(normalize_message_id(thread_key))
        if conversation is None:
            click.echo(f"No conversation with key {thread_key}", err=True)
            sys.exit(1)
        messages = store.get_messages(conversation.id)
    except MailhubError as e:
        _fail(e)

    max_lines = None if full else config.settings["ui"]["max_preview_lines"]
    display_conversation(Console(), conversation, messages, max_preview_lines=max_lines)


@cli.command()
@click.option("--message-id", required=True, help="Message-ID header value")
@click.option("--in-reply-to", default=None, help="In-Reply-To header value")
@click.option("--references", default=None, help="References header value")
def resolve(message_id, in_reply_to, references):
    """Show which conversation a message would join (read-only)"""
    config = Config()
    headers = MessageHeaders(message_id, in_reply_to=in_reply_to, references=references)

    try:
        store = ConversationStore.from_config(config)
        resolution = resolve_thread(headers, store.find_by_key)
    except MailhubError as e:
        _fail(e)

    candidates = build_candidates(message_id, in_reply_to, references)
    display_resolution(Console(), candidates, resolution)


@cli.command()
def stats():
    """Show conversation and message totals"""
    config = Config()

    try:
        store = ConversationStore.from_config(config)
        statistics = store.get_statistics()
    except MailhubError as e:
        _fail(e)

    click.echo(f"Database: {store.db_path}")
    click.echo(f"Conversations: {statistics['conversations']}")
    for status, count in sorted(statistics["by_status"].items()):
        click.echo(f"  {status}: {count}")
    click.echo(f"Messages: {statistics['messages']}")
    click.echo(f"  inbound: {statistics['inbound']}")
    click.echo(f"  outbound: {statistics['outbound']}")


@cli.command()
def backup():
    """Copy the conversation database into the backups directory"""
    config = Config()
    db_path = config.get_database_path()
    if not db_path.exists():
        click.echo(f"No database at {db_path}", err=True)
        sys.exit(1)

    backup_path = config.backup_file(db_path)
    click.echo(f"✓ Backed up {db_path} to {backup_path}")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def clear(yes):
    """Delete all conversations and messages (a backup is made first)"""
    config = Config()
    db_path = config.get_database_path()

    if not yes and not click.confirm(f"Delete all conversations in {db_path}?", default=False):
        click.echo("Cancelled")
        return

    try:
        store = ConversationStore.from_config(config)
        backup_path = config.backup_file(db_path)
        store.clear()
    except MailhubError as e:
        _fail(e)

    click.echo(f"✓ Cleared conversations (backup: {backup_path})")


def main():
    cli()


if __name__ == "__main__":
    main()
