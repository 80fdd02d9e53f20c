"""Tests for the JSONL and Supabase record stores."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from divemetrics.config.settings import StoreConfig
from divemetrics.pipeline.models import NormalizedMetrics
from divemetrics.pipeline.store import (
    JsonlRecordStore,
    StoreError,
    SupabaseRecordStore,
    build_store,
)
from divemetrics.validation.validator import correct_record, validate

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(depth=30.0):
    return validate(
        NormalizedMetrics(source_image_id="img-1", max_depth_meters=depth, dive_time_seconds=173),
        now=NOW,
    )


class TestJsonlRecordStore:
    def test_save_and_load(self, tmp_path):
        store = JsonlRecordStore(tmp_path)
        record = _record()
        store.save(record, "diver_1")

        loaded = store.load("diver_1")
        assert loaded == [record]
        assert (tmp_path / "users" / "diver_1" / "records.jsonl").exists()

    def test_unknown_user_has_no_records(self, tmp_path):
        assert JsonlRecordStore(tmp_path).load("nobody") == []
        assert not (tmp_path / "users").exists()

    def test_corrections_hide_superseded_records(self, tmp_path):
        store = JsonlRecordStore(tmp_path)
        original = _record(depth=500.0)
        corrected = correct_record(original, now=NOW, max_depth_meters=50.0)
        store.save(original, "diver_1")
        store.save(corrected, "diver_1")

        assert store.load("diver_1") == [corrected]
        assert store.load("diver_1", include_superseded=True) == [original, corrected]
        assert store.get("diver_1", original.record_id) == original
        assert store.history("diver_1", corrected.record_id) == [corrected, original]

    def test_rejects_path_like_user_id(self, tmp_path):
        store = JsonlRecordStore(tmp_path)
        with pytest.raises(ValueError):
            store.save(_record(), "../escape")

    def test_write_failure_raises_store_error(self, tmp_path):
        blocker = tmp_path / "users"
        blocker.write_text("not a directory")
        with pytest.raises(StoreError):
            JsonlRecordStore(tmp_path).save(_record(), "diver_1")


class _FakeQuery:
    def __init__(self, table):
        self.table = table
        self.filters = {}

    def insert(self, row):
        if self.table.fail:
            raise RuntimeError("connection reset")
        self.table.rows.append(row)
        return self

    def select(self, _columns):
        return self

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def order(self, _column):
        return self

    def limit(self, _count):
        return self

    def execute(self):
        rows = [
            row
            for row in self.table.rows
            if all(row.get(key) == value for key, value in self.filters.items())
        ]
        return SimpleNamespace(data=rows)


class _FakeSupabase:
    def __init__(self, fail=False):
        self.rows = []
        self.fail = fail
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return _FakeQuery(self)


class TestSupabaseRecordStore:
    def test_insert_row(self):
        client = _FakeSupabase()
        record = _record()
        SupabaseRecordStore(client).save(record, "diver_1")

        assert client.tables == ["dive_metric_records"]
        row = client.rows[0]
        assert row["user_id"] == "diver_1"
        assert row["record_id"] == record.record_id
        assert row["max_depth_meters"] == 30.0
        assert row["dive_time_formatted"] == "2:53"

    def test_round_trip(self):
        client = _FakeSupabase()
        store = SupabaseRecordStore(client)
        record = _record()
        store.save(record, "diver_1")

        assert store.load("diver_1") == [record]
        assert store.get("diver_1", record.record_id) == record
        assert store.get("diver_2", record.record_id) is None

    def test_insert_failure_raises_store_error(self):
        with pytest.raises(StoreError):
            SupabaseRecordStore(_FakeSupabase(fail=True)).save(_record(), "diver_1")


def test_build_store(tmp_path):
    assert build_store(StoreConfig(backend="none")) is None
    assert isinstance(build_store(StoreConfig(backend="jsonl", data_dir=tmp_path)), JsonlRecordStore)
    with pytest.raises(ValueError):
        build_store(StoreConfig(backend="supabase", supabase_url="", supabase_key=""))
