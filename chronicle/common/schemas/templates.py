"""
Prompt Text Templates

Renders composed context and conversation history into the numbered text the
language model sees. The [n] numbering rendered here is the single source of
truth for mapping citation markers back to entries.
"""

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .conversation import Message
    from .rag import ContextEntry


CONTEXT_ENTRY_TEMPLATE = """[{number}] Date: {date} | Title: {title} | Tags: {tags}
{snippet}
"""


def render_context_block(context: List["ContextEntry"]) -> str:
    """Render context entries as a numbered reference list, [1] first."""
    if not context:
        return "(no journal entries)"

    blocks = []
    for number, entry in enumerate(context, 1):
        blocks.append(CONTEXT_ENTRY_TEMPLATE.format(
            number=number,
            date=entry.entry_date.strftime("%Y-%m-%d"),
            title=entry.title or "Untitled",
            tags=", ".join(entry.tags) if entry.tags else "none",
            snippet=entry.snippet.strip(),
        ))
    return "\n".join(blocks)


def render_history(messages: List["Message"], max_chars: int = 600) -> str:
    """Render prior turns oldest first, each message clipped to max_chars."""
    if not messages:
        return ""

    lines = []
    for message in messages:
        content = message.content.strip()
        if len(content) > max_chars:
            content = content[:max_chars].rsplit(" ", 1)[0] + " ..."
        lines.append(f"{message.role.value.capitalize()}: {content}")
    return "\n".join(lines)
