"""Record stores: persistence collaborators for validated dive records.

Records are append-only. A correction is saved as a new row whose
`supersedes` points at the row it replaces; nothing is updated in place.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Protocol

from divemetrics.config.settings import StoreConfig
from divemetrics.pipeline.models import ValidatedDiveMetricRecord
from divemetrics.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

_USER_ID_RX = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class StoreError(Exception):
    """Raised when a record could not be written or read back."""


def validate_user_id(user_id: str) -> str:
    if not _USER_ID_RX.match(user_id or ""):
        raise ValueError("user_id must be 1-128 characters of letters, digits, '_' or '-'")
    return user_id


class RecordStore(Protocol):
    def save(self, record: ValidatedDiveMetricRecord, user_id: str) -> None: ...

    def load(self, user_id: str) -> list[ValidatedDiveMetricRecord]: ...

    def get(self, user_id: str, record_id: str) -> ValidatedDiveMetricRecord | None: ...


def _current(records: list[ValidatedDiveMetricRecord]) -> list[ValidatedDiveMetricRecord]:
    """Drop records that a later correction supersedes."""
    superseded = {r.supersedes for r in records if r.supersedes}
    return [r for r in records if r.record_id not in superseded]


class JsonlRecordStore:
    """Append-only JSONL files, one per user: <data_dir>/users/<user_id>/records.jsonl."""

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    def _path(self, user_id: str) -> Path:
        return self._data_dir / "users" / validate_user_id(user_id) / "records.jsonl"

    def save(self, record: ValidatedDiveMetricRecord, user_id: str) -> None:
        path = self._path(user_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
        except OSError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.STORE_WRITE_FAILED,
                message=str(exc),
                suppressed=False,
                source_image_id=record.source_image_id,
                details={"store": "jsonl", "record_id": record.record_id},
            )
            raise StoreError(f"Could not persist record {record.record_id}") from exc

    def load(self, user_id: str, include_superseded: bool = False) -> list[ValidatedDiveMetricRecord]:
        """Records for `user_id` in write order."""
        path = self._path(user_id)
        records = []
        if path.exists():
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        records.append(ValidatedDiveMetricRecord.model_validate_json(line))
        return records if include_superseded else _current(records)

    def get(self, user_id: str, record_id: str) -> ValidatedDiveMetricRecord | None:
        for record in self.load(user_id, include_superseded=True):
            if record.record_id == record_id:
                return record
        return None

    def history(self, user_id: str, record_id: str) -> list[ValidatedDiveMetricRecord]:
        """The correction chain ending at `record_id`, newest first."""
        by_id = {r.record_id: r for r in self.load(user_id, include_superseded=True)}
        chain = []
        current = by_id.get(record_id)
        while current is not None and current not in chain:
            chain.append(current)
            current = by_id.get(current.supersedes) if current.supersedes else None
        return chain


class SupabaseRecordStore:
    """Rows in a Supabase table through an injected `supabase.Client`."""

    def __init__(self, client: Any, table: str = "dive_metric_records") -> None:
        self._client = client
        self._table = table

    def save(self, record: ValidatedDiveMetricRecord, user_id: str) -> None:
        row = {**record.model_dump(mode="json"), "user_id": validate_user_id(user_id)}
        try:
            self._client.table(self._table).insert(row).execute()
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.STORE_WRITE_FAILED,
                message=str(exc),
                suppressed=False,
                source_image_id=record.source_image_id,
                details={"store": "supabase", "record_id": record.record_id},
            )
            raise StoreError(f"Could not persist record {record.record_id}") from exc

    def load(self, user_id: str, include_superseded: bool = False) -> list[ValidatedDiveMetricRecord]:
        result = (
            self._client.table(self._table)
            .select("*")
            .eq("user_id", validate_user_id(user_id))
            .order("created_at")
            .execute()
        )
        records = [ValidatedDiveMetricRecord.model_validate(row) for row in result.data or []]
        return records if include_superseded else _current(records)

    def get(self, user_id: str, record_id: str) -> ValidatedDiveMetricRecord | None:
        result = (
            self._client.table(self._table)
            .select("*")
            .eq("user_id", validate_user_id(user_id))
            .eq("record_id", record_id)
            .limit(1)
            .execute()
        )
        rows = result.data or []
        return ValidatedDiveMetricRecord.model_validate(rows[0]) if rows else None


def build_store(config: StoreConfig) -> RecordStore | None:
    """Construct the configured store; None when persistence is disabled."""
    if config.backend == "none":
        return None
    if config.backend == "supabase":
        from supabase import create_client

        if not config.supabase_url or not config.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        return SupabaseRecordStore(
            create_client(config.supabase_url, config.supabase_key),
            table=config.supabase_table,
        )
    return JsonlRecordStore(config.data_dir)
