"""
Notification message templates and rendering.
"""

import re
from typing import Dict

PREVIEW_MAX_LENGTH = 50

MESSAGE_TEMPLATES: Dict[str, str] = {
    "new_message": (
        "🔔 *New message!*\n\n"
        "Hi {name},\n"
        "You just received an anonymous message on SecretMe.\n\n"
        "💬 *Message:* {preview}\n\n"
        "🔗 Open SecretMe to read it: {url}"
    ),
    "reply": (
        "💌 *Your message got a reply!*\n\n"
        "Hi {name},\n"
        "Someone replied to a message you sent on SecretMe.\n\n"
        "💬 *Reply:* {preview}\n\n"
        "🔗 Read it here: {url}"
    ),
    "test": (
        "✅ *Notifications connected!*\n\n"
        "Hi {name}!\n\n"
        "This is a test notification from SecretMe. "
        "You will be notified here when you receive new messages."
    ),
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def truncate_preview(text: str, limit: int = PREVIEW_MAX_LENGTH) -> str:
    """Truncate a message preview to at most `limit` characters."""
    text = text or ""
    return text if len(text) <= limit else text[:limit]


def format_message(template_name: str, data: Dict[str, str]) -> str:
    """
    Render a named template.

    Placeholders without a value are left empty rather than raising,
    since payloads come from older queue rows as well.

    Raises:
        KeyError: if the template does not exist
    """
    template = MESSAGE_TEMPLATES[template_name]
    return _PLACEHOLDER.sub(lambda m: str(data.get(m.group(1)) or ""), template)
