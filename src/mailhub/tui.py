# ABOUTME: Rich terminal output for mailhub commands.
"""Rich terminal output for mailhub commands."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from mailhub.content_renderer import render_email_body
from mailhub.conversation_store import ConversationRecord, MessageRecord
from mailhub.importer import ImportStats
from mailhub.thread_resolver import ThreadResolution


def format_size(size_bytes: int) -> str:
    """Format file size in human readable form."""
    if size_bytes < 1024:
        return f"{size_bytes}B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes // 1024}KB"
    else:
        return f"{size_bytes // (1024 * 1024)}MB"


def format_attachment_indicator(attachments: list[dict]) -> str:
    """One line per attachment, each prefixed with 📎."""
    if not attachments:
        return ""

    lines = []
    for att in attachments:
        filename = att.get('filename', 'unknown')
        size = att.get('size', 0)
        size_str = f" ({format_size(size)})" if size else ''
        lines.append(f"📎 {filename}{size_str}")

    return '\n'.join(lines)


def display_conversation_list(
    console: Console,
    conversations: list[ConversationRecord],
    message_counts: dict[int, int],
) -> None:
    """Table of conversations, most recent activity first."""
    if not conversations:
        console.print("No conversations found", style="dim")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Thread key", overflow="fold")
    table.add_column("Subject")
    table.add_column("Customer")
    table.add_column("Msgs", justify="right")
    table.add_column("Last activity")
    table.add_column("Status")

    for conversation in conversations:
        last = conversation.last_activity
        subject = conversation.subject or ""
        if conversation.has_attachment:
            subject = f"📎 {subject}"
        table.add_row(
            Text(conversation.thread_key),
            Text(subject),
            Text(conversation.customer_email or ""),
            str(message_counts.get(conversation.id, 0)),
            last.strftime("%Y-%m-%d %H:%M") if last else "",
            conversation.status,
        )

    console.print(table)


def display_conversation(
    console: Console,
    conversation: ConversationRecord,
    messages: list[MessageRecord],
    max_preview_lines: int | None = 8,
) -> None:
    """Show a conversation header followed by one panel per message.

    Args:
        console: Rich console to write to
        conversation: The conversation to show
        messages: Its messages in chronological order
        max_preview_lines: Max body lines per message, None for everything
    """
    header = f"━━━ {conversation.subject} ({len(messages)} messages) "
    header += "━" * max(0, 60 - len(header))
    console.print(header, style="bold blue", markup=False)
    console.print(f"Thread: {conversation.thread_key}", style="dim", markup=False)
    if conversation.customer_email:
        console.print(f"Customer: {conversation.customer_email}", markup=False)
    console.print()

    for position, message in enumerate(messages, 1):
        direction = "→ sent" if message.is_outbound else "← received"
        title = f"{position}/{len(messages)} {direction} {message.sent_at:%Y-%m-%d %H:%M}"
        body = render_email_body(message.body or "", message.is_html, max_lines=max_preview_lines)
        content = f"From: {message.from_email}\nTo: {message.to_email}\n\n{body}"
        attachments = format_attachment_indicator(message.attachments)
        if attachments:
            content += f"\n\n{attachments}"
        console.print(
            Panel(
                Text(content),
                title=title,
                title_align="left",
                border_style="green" if message.is_outbound else "blue",
            )
        )


def display_import_summary(console: Console, stats: ImportStats, outbound: bool = False) -> None:
    label = "sent emails" if outbound else "emails"
    console.print()
    console.print("📊 Import complete", style="bold")
    console.print(f"   ✅ Imported: {stats.imported} {label}")
    console.print(f"   📁 Conversations created: {stats.conversations_created}")
    console.print(f"   🔗 Conversations updated: {stats.conversations_updated}")
    console.print(f"   💬 Messages created: {stats.messages_created}")
    console.print(f"   ⏭️  Skipped: {stats.skipped} (duplicates or before start date)")
    console.print(f"   ❌ Errors: {stats.errors}")
    for filename, error in stats.failures:
        console.print(f"      {filename}: {error}", style="red", markup=False)


def display_resolution(
    console: Console, candidates: list[str], resolution: ThreadResolution
) -> None:
    console.print("Candidates (in lookup order):", style="bold")
    for position, candidate in enumerate(candidates, 1):
        marker = "✓" if candidate == resolution.conversation_key else " "
        console.print(f"  {marker} {position}. {candidate}", markup=False)

    if resolution.is_new_conversation:
        console.print(f"New conversation: {resolution.conversation_key}", style="yellow", markup=False)
    else:
        console.print(
            f"Existing conversation: {resolution.conversation_key}", style="green", markup=False
        )
