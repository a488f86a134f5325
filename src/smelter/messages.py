"""Mail bead bodies: a ``---`` frontmatter header followed by free text."""

from __future__ import annotations

FRONTMATTER_DELIMITER = "---"
MESSAGE_LABEL = "sm:message"
UNREAD_LABEL = "sm:unread"


def _format_value(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, list | tuple):
        return "[" + ", ".join(str(item) for item in value) + "]"
    return str(value)


def render_mail(metadata: dict[str, object], body: str) -> str:
    """Render a mail description.

    Example:
        >>> print(render_mail({"from": "smelter", "to": ["mayor"]}, "hi"), end="")
        ---
        from: smelter
        to: [mayor]
        ---
        <BLANKLINE>
        hi
    """
    lines = [FRONTMATTER_DELIMITER]
    lines.extend(f"{key}: {_format_value(value)}" for key, value in metadata.items())
    lines.append(FRONTMATTER_DELIMITER)
    lines.append("")
    text = body.rstrip("\n")
    if text:
        lines.append(text)
    return "\n".join(lines).rstrip("\n") + "\n"

