"""Interactive card rendering for markdown replies."""

from __future__ import annotations

import json

STREAMING_CURSOR = " ▌"


def mention_markup(user_id: str) -> str:
    return f"<at id={user_id}></at>"


def render_markdown(text: str, mention_id: str | None = None, streaming: bool = False) -> str:
    """Markdown body of the card: optional mention prefix, optional trailing cursor."""
    content = text
    if mention_id and mention_id.strip():
        content = f"{mention_markup(mention_id)} {text}"
    if streaming:
        content += STREAMING_CURSOR
    return content


def render_card(text: str, mention_id: str | None = None, streaming: bool = False) -> str:
    """JSON-encoded interactive card holding one markdown element."""
    card = {
        "config": {
            "wide_screen_mode": True,
            "enable_forward": True,
        },
        "elements": [
            {
                "tag": "markdown",
                "content": render_markdown(text, mention_id, streaming),
            },
        ],
    }
    return json.dumps(card, ensure_ascii=False)
