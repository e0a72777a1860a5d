"""Tests for the SQLAlchemy-backed record store."""

from datetime import datetime, timedelta, timezone

import pytest

from insurance_tracker.errors import DuplicatePlate, NotFound, ValidationError
from insurance_tracker.store import RecordStore, validate_plate

NOW = datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store():
    s = RecordStore("sqlite://")
    s.init_schema()
    yield s
    s.close()


def add(store, plate="MH01-AB-1234", name="Swift Dzire", days=30, by="alice"):
    return store.create(name, plate, NOW + timedelta(days=days), by)


# ── Plate validation ──────────────────────────────────────────────


class TestValidatePlate:
    @pytest.mark.parametrize("plate", ["MH01-AB-1234", "ab", "KA05MN9999", "A-1", "123456789012345"])
    def test_accepts(self, plate):
        validate_plate(plate)

    @pytest.mark.parametrize("plate", ["", "A", "MH01 AB 1234", "MH01_AB", "1234567890123456", "KA#01"])
    def test_rejects(self, plate):
        with pytest.raises(ValidationError) as exc_info:
            validate_plate(plate)
        assert ("Example", "MH01-AB-1234") in exc_info.value.fields

    def test_rejection_echoes_input(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_plate("MH 01")
        assert ("Your Input", "MH 01") in exc_info.value.fields


# ── Create / read ─────────────────────────────────────────────────


class TestCreate:
    def test_returns_persisted_record(self, store):
        record = add(store)

        assert record.id is not None
        assert record.vehicle_name == "Swift Dzire"
        assert record.plate_id == "MH01-AB-1234"
        assert record.expiry_at == NOW + timedelta(days=30)
        assert record.registered_by == "alice"
        assert record.updated_at is not None

    def test_name_is_stripped(self, store):
        record = store.create("  Innova  ", "KA05-1", NOW, "bob")
        assert record.vehicle_name == "Innova"

    def test_duplicate_plate_rejected(self, store):
        add(store)
        with pytest.raises(DuplicatePlate) as exc_info:
            add(store, name="Other Car")
        assert exc_info.value.plate_id == "MH01-AB-1234"
        assert len(store.list_all()) == 1

    def test_invalid_plate_rejected(self, store):
        with pytest.raises(ValidationError):
            add(store, plate="BAD PLATE")
        assert store.list_all() == []

    @pytest.mark.parametrize("name", ["", "   "])
    def test_empty_name_rejected(self, store, name):
        with pytest.raises(ValidationError):
            store.create(name, "KA05-1", NOW, "bob")


class TestFindByPlate:
    def test_found(self, store):
        add(store)
        record = store.find_by_plate("MH01-AB-1234")
        assert record.vehicle_name == "Swift Dzire"
        assert record.expiry_at.tzinfo is not None

    def test_missing(self, store):
        with pytest.raises(NotFound) as exc_info:
            store.find_by_plate("NOPE-1")
        assert exc_info.value.plate_id == "NOPE-1"


class TestSearch:
    def test_matches_name_case_insensitive(self, store):
        add(store, plate="P1", name="Swift Dzire")
        add(store, plate="P2", name="Innova")
        assert [r.plate_id for r in store.search("swift")] == ["P1"]

    def test_matches_plate(self, store):
        add(store, plate="MH01-AB-1234", name="Swift")
        add(store, plate="KA05-ZZ-1", name="Innova")
        assert [r.plate_id for r in store.search("ka05")] == ["KA05-ZZ-1"]

    def test_ordered_by_expiry(self, store):
        add(store, plate="LATE", name="Car late", days=40)
        add(store, plate="SOON", name="Car soon", days=2)
        assert [r.plate_id for r in store.search("car")] == ["SOON", "LATE"]

    def test_empty_query_returns_everything_up_to_limit(self, store):
        for i in range(5):
            add(store, plate=f"P{i}", name=f"Car {i}", days=i)
        assert len(store.search("")) == 5
        assert len(store.search("", limit=3)) == 3

    def test_wildcards_are_literal(self, store):
        add(store, plate="P1", name="Swift")
        assert store.search("%") == []
        assert store.search("_") == []


# ── Update / delete ───────────────────────────────────────────────


class TestUpdate:
    def test_sets_new_expiry_and_touches_updated_at(self, store):
        original = add(store)
        new_expiry = NOW + timedelta(days=60)

        updated = store.update("MH01-AB-1234", new_expiry)

        assert updated.expiry_at == new_expiry
        assert updated.updated_at >= original.updated_at
        assert store.find_by_plate("MH01-AB-1234").expiry_at == new_expiry

    def test_missing(self, store):
        with pytest.raises(NotFound):
            store.update("NOPE-1", NOW)


class TestDelete:
    def test_returns_removed_record(self, store):
        add(store)
        removed = store.delete("MH01-AB-1234")

        assert removed.vehicle_name == "Swift Dzire"
        with pytest.raises(NotFound):
            store.find_by_plate("MH01-AB-1234")

    def test_missing(self, store):
        with pytest.raises(NotFound):
            store.delete("NOPE-1")


class TestListAll:
    def test_insertion_order_by_default(self, store):
        add(store, plate="FIRST", days=30)
        add(store, plate="SECOND", days=1)
        assert [r.plate_id for r in store.list_all()] == ["FIRST", "SECOND"]

    def test_sorted_by_expiry(self, store):
        add(store, plate="FIRST", days=30)
        add(store, plate="SECOND", days=1)
        add(store, plate="THIRD", days=30)
        assert [r.plate_id for r in store.list_all(sort_by_expiry=True)] == ["SECOND", "FIRST", "THIRD"]

    def test_empty(self, store):
        assert store.list_all() == []


class TestPing:
    def test_ping_succeeds(self, store):
        store.ping()
