"""Convert stored conversation history to chat message format."""

from __future__ import annotations

import json
from typing import Any, Sequence

from volt_bot.storage.models import ConversationMessage


def build_messages(history: Sequence[ConversationMessage], text: str) -> list[dict[str, Any]]:
    """Render history as alternating user/assistant turns followed by ``text``.

    The assistant turn is the structured response that was sent back, so the
    model can resolve follow-ups such as "make that 200 metres".
    """
    messages: list[dict[str, Any]] = []
    for record in history:
        messages.append({"role": "user", "content": record.user_query})
        if record.structured_response is not None:
            content = json.dumps(record.structured_response, ensure_ascii=False, default=str)
        else:
            content = "(no structured response)"
        messages.append({"role": "assistant", "content": content})
    messages.append({"role": "user", "content": text})
    return messages
