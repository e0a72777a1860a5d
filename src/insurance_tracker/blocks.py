"""Small Block Kit builders shared by pages and result cards."""

from __future__ import annotations

from insurance_tracker.errors import InsuranceError

NEXT_ACTION = "insurance_list_next"
PREV_ACTION = "insurance_list_prev"


def header(text: str) -> dict:
    return {"type": "header", "text": {"type": "plain_text", "text": text[:150], "emoji": True}}


def section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def fields(pairs: list[tuple[str, str]]) -> dict:
    return {
        "type": "section",
        "fields": [{"type": "mrkdwn", "text": f"*{name}*\n{value}"} for name, value in pairs[:10]],
    }


def context(text: str) -> dict:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def card(
    title: str,
    description: str | None = None,
    pairs: list[tuple[str, str]] | None = None,
    footer: str | None = None,
) -> list[dict]:
    """A titled result card, the Block Kit stand-in for an embed."""
    blocks = [header(title)]
    if description:
        blocks.append(section(description))
    if pairs:
        blocks.append(fields(pairs))
    if footer:
        blocks.append(context(footer))
    return blocks


def failure_card(exc: InsuranceError) -> list[dict]:
    return card(exc.title, str(exc), exc.fields, exc.footer)


def nav_buttons(session: str, with_previous: bool) -> dict:
    elements = []
    if with_previous:
        elements.append(
            {
                "type": "button",
                "action_id": PREV_ACTION,
                "text": {"type": "plain_text", "text": "Previous Page"},
                "value": session,
            }
        )
    elements.append(
        {
            "type": "button",
            "action_id": NEXT_ACTION,
            "text": {"type": "plain_text", "text": "Next Page"},
            "style": "primary",
            "value": session,
        }
    )
    return {"type": "actions", "block_id": "insurance_list_nav", "elements": elements}
