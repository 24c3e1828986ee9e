"""Message rendering helpers.

``render_markdown_to_html`` is a deliberately small markdown subset
(fenced code, inline code, bold, italic, line breaks) over HTML-escaped
input. It is a pure function of the text, so rendering the same message
twice yields identical output.
"""

import html
import re
from datetime import datetime

_FENCED = re.compile(r"```(\w+)?\n(.*?)```", re.DOTALL)
_INLINE_CODE = re.compile(r"`([^`\n]+)`")
_BOLD = re.compile(r"\*\*(.+?)\*\*")
_ITALIC = re.compile(r"\*(.+?)\*")
_PLACEHOLDER = re.compile(r"\x00(\d+)\x00")


def render_markdown_to_html(text: str) -> str:
    """Render chat text to safe HTML."""
    protected = []

    def _protect(markup: str) -> str:
        protected.append(markup)
        return "\x00%d\x00" % (len(protected) - 1)

    out = html.escape(text.replace("\x00", ""), quote=False)
    out = _FENCED.sub(
        lambda m: _protect('<pre class="code-block"><code>%s</code></pre>' % m.group(2)), out
    )
    out = _INLINE_CODE.sub(lambda m: _protect('<code class="inline-code">%s</code>' % m.group(1)), out)
    out = _BOLD.sub(r"<strong>\1</strong>", out)
    out = _ITALIC.sub(r"<em>\1</em>", out)
    out = out.replace("\n", "<br/>")
    return _PLACEHOLDER.sub(lambda m: protected[int(m.group(1))], out)


def format_timestamp(iso: str) -> str:
    """Format an ISO-8601 instant as local ``HH:MM``; unparseable input is returned as is."""
    try:
        moment = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return iso
    return moment.astimezone().strftime("%H:%M")


def render_transcript(messages) -> str:
    """Render a sequence of ChatMessage as a standalone HTML page."""
    rows = []
    for message in messages:
        role = message.role.value
        rows.append(
            '<div class="message %s"><div class="meta">%s &middot; %s</div>'
            '<div class="content">%s</div></div>'
            % (role, role, html.escape(format_timestamp(message.timestamp)), render_markdown_to_html(message.content))
        )
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\"><title>Chat transcript</title></head>\n"
        "<body>\n%s\n</body></html>\n" % "\n".join(rows)
    )
