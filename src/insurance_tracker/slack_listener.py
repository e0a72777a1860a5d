"""Slack connection using Socket Mode.

Connects to Slack via the bolt framework, converts raw channel messages into
SlackMessage instances for the mention collector, and resolves the display
names recorded against insurance entries.
"""

from __future__ import annotations

import collections
import logging
import os
import re

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler
from slack_sdk.errors import SlackApiError

from insurance_tracker.models import SlackMessage

logger = logging.getLogger(__name__)

# Event subtypes that never answer a "mention the recipient" prompt.
_IGNORED_SUBTYPES = frozenset({
    "channel_join",
    "channel_leave",
    "channel_topic",
    "channel_purpose",
    "group_join",
    "group_leave",
    "message_changed",
    "message_deleted",
    "thread_broadcast",
})

# <@U123> or <@U123|name>
_MENTION_RE = re.compile(r"<@([UW][A-Z0-9]+)(?:\|[^>]*)?>")


class SlackListener:
    """Wraps a Slack Bolt ``App`` with Socket Mode for real-time events.

    Responsibilities
    ----------------
    * Connects to Slack and retrieves the bot's own user ID.
    * Converts raw ``message`` event dicts into :class:`SlackMessage` objects
      listing the users they mention.
    * De-duplicates events using a bounded deque.
    * Caches user display names in memory.
    """

    def __init__(self) -> None:
        bot_token = os.environ["SLACK_BOT_TOKEN"]
        app_token = os.environ["SLACK_APP_TOKEN"]

        self._app = App(token=bot_token)
        self._handler = SocketModeHandler(self._app, app_token)

        # The bot itself is never a valid DM target.
        auth_response = self._app.client.auth_test()
        self._bot_user_id: str = auth_response["user_id"]
        logger.info("Bot user ID resolved: %s", self._bot_user_id)

        self._seen_events: collections.deque[str] = collections.deque(maxlen=1000)

        # Display names rarely change; no TTL.
        self._user_cache: dict[str, str] = {}

    # -- public properties / helpers -----------------------------------------

    @property
    def bot_user_id(self) -> str:
        """The Slack user ID of the bot itself."""
        return self._bot_user_id

    @property
    def app(self) -> App:
        """The underlying ``slack_bolt.App`` instance."""
        return self._app

    def resolve_user(self, user_id: str, client=None) -> str:
        """Return a human-readable user name, using cache when possible."""
        if user_id in self._user_cache:
            return self._user_cache[user_id]

        logger.debug("User cache miss for %s", user_id)
        client = client or self._app.client

        try:
            info = client.users_info(user=user_id)
            profile = info["user"].get("profile", {})
            name = (
                profile.get("display_name")
                or profile.get("real_name")
                or info["user"].get("real_name")
                or user_id
            )
        except SlackApiError:
            logger.warning("Failed to resolve user name for %s; using ID", user_id)
            name = user_id

        self._user_cache[user_id] = name
        return name

    def discard_message(self, msg: SlackMessage, client=None) -> bool:
        """Best-effort removal of a collected prompt reply. Never raises."""
        if not msg.ts:
            return False
        client = client or self._app.client
        try:
            client.chat_delete(channel=msg.channel_id, ts=msg.ts)
        except SlackApiError as exc:
            logger.debug("Could not delete message %s in %s: %s", msg.ts, msg.channel_id, exc)
            return False
        return True

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the Socket Mode handler (blocking)."""
        logger.info("Starting Socket Mode handler")
        self._handler.start()

    def close(self) -> None:
        """Shut down the Socket Mode handler gracefully."""
        logger.info("Closing Socket Mode handler")
        self._handler.close()

    # -- event parsing -------------------------------------------------------

    def parse_event(self, event: dict) -> SlackMessage | None:
        """Convert a raw Slack ``message`` event into a :class:`SlackMessage`.

        Returns ``None`` when the event should be silently dropped (duplicate,
        irrelevant subtype, bot author, or missing required fields).
        """
        event_id = event.get("client_msg_id") or event.get("ts")
        if event_id is None:
            logger.debug("Event has no client_msg_id or ts; dropping")
            return None

        if event_id in self._seen_events:
            logger.debug("Duplicate event %s; dropping", event_id)
            return None

        self._seen_events.append(event_id)

        subtype = event.get("subtype")
        if subtype is not None and subtype in _IGNORED_SUBTYPES:
            logger.debug("Ignored subtype %s; dropping", subtype)
            return None

        # Bots cannot answer an operator prompt.
        if event.get("bot_id") is not None or subtype == "bot_message":
            logger.debug("Bot message %s; dropping", event_id)
            return None

        channel_id = event.get("channel")
        sender_id = event.get("user")
        if not channel_id or not sender_id:
            logger.debug("Event missing 'channel' or 'user'; dropping")
            return None

        text = event.get("text", "")
        mentions: list[str] = []
        for user_id in _MENTION_RE.findall(text):
            if user_id in (sender_id, self._bot_user_id) or user_id in mentions:
                continue
            mentions.append(user_id)

        return SlackMessage(
            channel_id=channel_id,
            sender_id=sender_id,
            ts=event.get("ts"),
            mentions=mentions,
        )
