# ABOUTME: Email content rendering - converts stored HTML bodies to text and handles truncation.
"""Email content rendering - converts stored HTML bodies to text and handles truncation."""

import html2text


def render_email_body(body: str, is_html: bool, max_lines: int | None = 8) -> str:
    """Convert a stored message body to displayable text.

    Args:
        body: Message body as stored (sanitized HTML or plain text)
        is_html: Whether the body is HTML
        max_lines: Maximum lines to show, None for the full body

    Returns:
        Rendered text, truncated with indicator if needed
    """
    if is_html:
        h = html2text.HTML2Text()
        h.ignore_links = False
        h.ignore_images = True
        h.body_width = 80
        text = h.handle(body)
    else:
        text = body

    lines = text.strip().split('\n')

    if max_lines is not None and len(lines) > max_lines:
        preview = '\n'.join(lines[:max_lines])
        preview += f'\n[...{len(lines) - max_lines} more lines, use --full]'
        return preview

    return '\n'.join(lines)
