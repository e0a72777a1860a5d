"""Tests for the Slack connection / message parser."""

from unittest.mock import MagicMock, patch

import pytest
from slack_sdk.errors import SlackApiError

from insurance_tracker.models import SlackMessage
from insurance_tracker.slack_listener import SlackListener

BOT_USER_ID = "U_BOT_123"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_client():
    """Return a mock Slack ``WebClient`` with standard stubs."""
    client = MagicMock()
    client.users_info.return_value = {
        "user": {
            "profile": {"display_name": "Alice", "real_name": "Alice Smith"},
            "real_name": "Alice Smith",
        },
    }
    return client


def _make_event(**overrides) -> dict:
    """Return a minimal valid message event dict, with overrides."""
    base = {
        "type": "message",
        "channel": "C_CHAN_1",
        "user": "U_ALICE",
        "text": "send it to <@U_BOB>",
        "ts": "1700000000.000001",
    }
    base.update(overrides)
    return base


@pytest.fixture()
def listener():
    """Create a ``SlackListener`` with Slack API calls fully mocked."""
    with (
        patch("insurance_tracker.slack_listener.App") as MockApp,
        patch("insurance_tracker.slack_listener.SocketModeHandler"),
        patch.dict(
            "os.environ",
            {"SLACK_BOT_TOKEN": "xoxb-fake", "SLACK_APP_TOKEN": "xapp-fake"},
        ),
    ):
        mock_app_instance = MockApp.return_value
        mock_app_instance.client.auth_test.return_value = {
            "user_id": BOT_USER_ID,
        }
        sl = SlackListener()
    return sl


# ---------------------------------------------------------------------------
# Basic event parsing
# ---------------------------------------------------------------------------


class TestParseEvent:
    def test_basic_event(self, listener):
        msg = listener.parse_event(_make_event())

        assert msg is not None
        assert msg.channel_id == "C_CHAN_1"
        assert msg.sender_id == "U_ALICE"
        assert msg.ts == "1700000000.000001"
        assert msg.mentions == ["U_BOB"]

    def test_no_user_lookup_per_message(self, listener):
        listener.parse_event(_make_event(ts="1700000000.000001"))
        listener.parse_event(_make_event(ts="1700000000.000002", user="U_CAROL"))
        listener.app.client.users_info.assert_not_called()

    def test_missing_text_defaults_empty(self, listener):
        event = _make_event()
        del event["text"]

        msg = listener.parse_event(event)

        assert msg is not None
        assert msg.mentions == []


# ---------------------------------------------------------------------------
# Mention extraction
# ---------------------------------------------------------------------------


class TestMentions:
    def test_labelled_mention(self, listener):
        msg = listener.parse_event(_make_event(text="<@U_BOB|bob> please"))
        assert msg.mentions == ["U_BOB"]

    def test_order_preserved_and_deduplicated(self, listener):
        text = "<@U_CAROL> and <@U_BOB> and <@U_CAROL> again"
        msg = listener.parse_event(_make_event(text=text))
        assert msg.mentions == ["U_CAROL", "U_BOB"]

    def test_self_mention_excluded(self, listener):
        msg = listener.parse_event(_make_event(text="<@U_ALICE>"))
        assert msg.mentions == []

    def test_bot_mention_excluded(self, listener):
        text = f"<@{BOT_USER_ID}> <@U_BOB>"
        msg = listener.parse_event(_make_event(text=text))
        assert msg.mentions == ["U_BOB"]

    def test_group_and_channel_tokens_ignored(self, listener):
        text = "<!subteam^S123> <#C999|general> <!here>"
        msg = listener.parse_event(_make_event(text=text))
        assert msg.mentions == []


# ---------------------------------------------------------------------------
# Dropped events
# ---------------------------------------------------------------------------


class TestDroppedEvents:
    def test_bot_message_dropped(self, listener):
        msg = listener.parse_event(_make_event(bot_id="B_BOT_1"))
        assert msg is None

    def test_bot_message_subtype_dropped(self, listener):
        event = _make_event(subtype="bot_message")
        event.pop("user")
        assert listener.parse_event(event) is None

    @pytest.mark.parametrize(
        "subtype",
        ["channel_join", "channel_leave", "message_changed", "message_deleted"],
    )
    def test_irrelevant_subtype_dropped(self, listener, subtype):
        event = _make_event(subtype=subtype, ts=f"1700000001.{len(subtype):06d}")
        assert listener.parse_event(event) is None

    def test_missing_user_returns_none(self, listener):
        event = _make_event()
        del event["user"]
        assert listener.parse_event(event) is None

    def test_missing_channel_returns_none(self, listener):
        event = _make_event()
        del event["channel"]
        assert listener.parse_event(event) is None

    def test_missing_ts_and_client_msg_id_returns_none(self, listener):
        event = _make_event()
        del event["ts"]
        assert listener.parse_event(event) is None


class TestDeduplication:
    def test_duplicate_by_ts(self, listener):
        event = _make_event(ts="1700000000.999999")

        assert listener.parse_event(event) is not None
        assert listener.parse_event(event) is None

    def test_duplicate_by_client_msg_id(self, listener):
        event = _make_event(client_msg_id="msg-abc-123")

        assert listener.parse_event(event) is not None
        assert listener.parse_event(event) is None


# ---------------------------------------------------------------------------
# User names
# ---------------------------------------------------------------------------


class TestResolveUser:
    def test_users_info_called_once(self, listener):
        client = _make_client()
        assert listener.resolve_user("U_ALICE", client) == "Alice"
        assert listener.resolve_user("U_ALICE", client) == "Alice"

        client.users_info.assert_called_once_with(user="U_ALICE")

    def test_falls_back_to_real_name(self, listener):
        client = _make_client()
        client.users_info.return_value = {
            "user": {"profile": {"display_name": "", "real_name": "Charlie Root"}},
        }
        assert listener.resolve_user("U_CHARLIE", client) == "Charlie Root"

    def test_api_failure_falls_back_to_id(self, listener):
        client = _make_client()
        client.users_info.side_effect = SlackApiError("boom", {"ok": False, "error": "user_not_found"})
        assert listener.resolve_user("U_GHOST", client) == "U_GHOST"

    def test_defaults_to_app_client(self, listener):
        listener.app.client.users_info.return_value = {
            "user": {"profile": {"display_name": "Dana"}},
        }
        assert listener.resolve_user("U_DANA") == "Dana"


class TestDiscardMessage:
    def _msg(self, ts="1700000000.000001"):
        return SlackMessage(channel_id="C_CHAN_1", sender_id="U_ALICE", ts=ts)

    def test_deletes_by_channel_and_ts(self, listener):
        client = _make_client()
        assert listener.discard_message(self._msg(), client) is True
        client.chat_delete.assert_called_once_with(channel="C_CHAN_1", ts="1700000000.000001")

    def test_failure_is_ignored(self, listener):
        client = _make_client()
        client.chat_delete.side_effect = SlackApiError("nope", {"ok": False, "error": "cant_delete_message"})
        assert listener.discard_message(self._msg(), client) is False

    def test_without_ts_does_nothing(self, listener):
        client = _make_client()
        assert listener.discard_message(self._msg(ts=None), client) is False
        client.chat_delete.assert_not_called()


# ---------------------------------------------------------------------------
# Construction and lifecycle
# ---------------------------------------------------------------------------


class TestSlackListenerInit:
    def test_bot_user_id_set(self, listener):
        assert listener.bot_user_id == BOT_USER_ID

    def test_missing_env_vars_raises(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(KeyError):
                SlackListener()


class TestLifecycle:
    def test_start_delegates(self, listener):
        listener._handler = MagicMock()
        listener.start()
        listener._handler.start.assert_called_once()

    def test_close_delegates(self, listener):
        listener._handler = MagicMock()
        listener.close()
        listener._handler.close.assert_called_once()
