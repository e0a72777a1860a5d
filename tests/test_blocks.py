"""Tests for the Block Kit builders."""

from insurance_tracker import blocks
from insurance_tracker.errors import NotFound


class TestCard:
    def test_title_only(self):
        assert blocks.card("DONE") == [blocks.header("DONE")]

    def test_full_card_order(self):
        card = blocks.card("DONE", "desc", [("Name", "Swift")], "foot")
        assert [b["type"] for b in card] == ["header", "section", "section", "context"]
        assert card[2]["fields"][0]["text"] == "*Name*\nSwift"
        assert card[3]["elements"][0]["text"] == "foot"

    def test_header_truncated(self):
        assert len(blocks.header("x" * 200)["text"]["text"]) == 150

    def test_fields_capped_at_ten(self):
        pairs = [(str(i), str(i)) for i in range(12)]
        assert len(blocks.fields(pairs)["fields"]) == 10


class TestFailureCard:
    def test_uses_error_metadata(self):
        card = blocks.failure_card(NotFound("MH01-1"))
        assert card[0]["text"]["text"] == "❌ RECORD NOT FOUND"
        assert card[1]["text"]["text"] == "No insurance found for:\n*MH01-1*"
        assert card[-1]["elements"][0]["text"] == "Check plate number or register new vehicle"


class TestNavButtons:
    def test_first_page_has_next_only(self):
        nav = blocks.nav_buttons("sess", with_previous=False)
        assert nav["type"] == "actions"
        assert [e["action_id"] for e in nav["elements"]] == [blocks.NEXT_ACTION]

    def test_later_pages_have_both(self):
        nav = blocks.nav_buttons("sess", with_previous=True)
        assert [e["action_id"] for e in nav["elements"]] == [blocks.PREV_ACTION, blocks.NEXT_ACTION]
        assert {e["value"] for e in nav["elements"]} == {"sess"}
