"""Persistent token-usage ledger.

The ledger lives in ``.avc/token-history.json``::

    {
      "version": "1.0",
      "lastUpdated": "...",
      "totals":      {"daily": {...}, "weekly": {...}, "monthly": {...}, "allTime": {...}},
      "<ceremony>":  {"daily": {...}, "weekly": {...}, "monthly": {...}, "allTime": {...}}
    }

Every :meth:`UsageLedger.add_execution` re-reads the file, applies the
increment to the global and ceremony scopes and writes the whole document
back through a temp file and ``os.replace``.  There is no ``await`` between
the read and the write, so concurrent coroutines in one process cannot
interleave an update.  Two processes writing the same file can still race.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from ceremony_engine.core.usage.models import UsageRecord, UsageWindow
from ceremony_engine.utils.exceptions import UsageLedgerCorruptError
from ceremony_engine.utils.file_utils import atomic_write_json
from ceremony_engine.utils.logging import get_logger

logger = get_logger("usage.ledger")

LEDGER_VERSION = "1.0"
RESERVED_KEYS = frozenset({"version", "lastUpdated", "totals"})

DAILY_RETENTION_DAYS = 31
WEEKLY_RETENTION_DAYS = 84
MONTHLY_RETENTION_MONTHS = 12


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def date_key(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d")


def week_key(ts: datetime) -> str:
    year, week, _ = ts.isocalendar()
    return f"{year}-W{week:02d}"


def month_key(ts: datetime) -> str:
    return ts.strftime("%Y-%m")


def _empty_scope() -> dict[str, Any]:
    return {
        "daily": {},
        "weekly": {},
        "monthly": {},
        "allTime": {"input": 0, "output": 0, "total": 0, "executions": 0},
    }


class UsageLedger:
    """Append-only token accounting backed by a JSON file.

    Parameters
    ----------
    path:
        Location of the history document.
    clock:
        Returns the current UTC time.  Drives default timestamps, window
        lookups and retention.
    """

    def __init__(self, path: str | Path, clock: Callable[[], datetime] | None = None):
        self.path = Path(path)
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_execution(
        self,
        ceremony: str,
        input_tokens: int,
        output_tokens: int,
        *,
        at: datetime | None = None,
    ) -> UsageRecord:
        """Record one completed call and persist the updated document."""
        if ceremony in RESERVED_KEYS:
            raise ValueError(f"{ceremony!r} is reserved and cannot be used as a ceremony name")

        ts = at or self._clock()
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        ts = ts.astimezone(timezone.utc)

        record = UsageRecord(
            ceremony=ceremony,
            timestamp=ts,
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
        )

        data = self._load()
        timestamp = _iso(ts)
        self._apply(data["totals"], record, timestamp)
        self._apply(data.setdefault(ceremony, _empty_scope()), record, timestamp)
        self._prune(data)
        data["lastUpdated"] = _iso(self._clock())
        atomic_write_json(self.path, data)

        logger.debug(
            "usage_recorded",
            ceremony=ceremony,
            input_tokens=record.input_tokens,
            output_tokens=record.output_tokens,
        )
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_totals_today(self) -> UsageWindow:
        return self._window("totals", "daily", "date", date_key(self._clock()))

    def get_totals_this_week(self) -> UsageWindow:
        return self._window("totals", "weekly", "week", week_key(self._clock()))

    def get_totals_this_month(self) -> UsageWindow:
        return self._window("totals", "monthly", "month", month_key(self._clock()))

    def get_totals_all_time(self) -> UsageWindow:
        return self._all_time("totals")

    def get_ceremony_today(self, ceremony: str) -> UsageWindow:
        return self._window(ceremony, "daily", "date", date_key(self._clock()))

    def get_ceremony_this_week(self, ceremony: str) -> UsageWindow:
        return self._window(ceremony, "weekly", "week", week_key(self._clock()))

    def get_ceremony_this_month(self, ceremony: str) -> UsageWindow:
        return self._window(ceremony, "monthly", "month", month_key(self._clock()))

    def get_ceremony_all_time(self, ceremony: str) -> UsageWindow:
        return self._all_time(ceremony)

    def get_ceremony_types(self) -> list[str]:
        return [key for key in self._load() if key not in RESERVED_KEYS]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {
                "version": LEDGER_VERSION,
                "lastUpdated": _iso(self._clock()),
                "totals": _empty_scope(),
            }

        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error("usage_ledger_corrupt", path=str(self.path), error=str(exc))
            raise UsageLedgerCorruptError(str(self.path), str(exc)) from exc

        if not isinstance(data, dict) or not isinstance(data.get("totals"), dict):
            logger.error("usage_ledger_corrupt", path=str(self.path), error="missing totals")
            raise UsageLedgerCorruptError(str(self.path), "missing 'totals' section")

        for key, scope in data.items():
            if key in ("version", "lastUpdated"):
                continue
            if not isinstance(scope, dict) or not isinstance(scope.get("allTime"), dict):
                raise UsageLedgerCorruptError(str(self.path), f"scope {key!r} is malformed")
            for window in ("daily", "weekly", "monthly"):
                scope.setdefault(window, {})
        return data

    @staticmethod
    def _apply(scope: dict[str, Any], record: UsageRecord, timestamp: str) -> None:
        buckets = (
            ("daily", "date", date_key(record.timestamp)),
            ("weekly", "week", week_key(record.timestamp)),
            ("monthly", "month", month_key(record.timestamp)),
        )
        for window, label, key in buckets:
            bucket = scope[window].setdefault(
                key, {label: key, "input": 0, "output": 0, "total": 0, "executions": 0}
            )
            UsageLedger._increment(bucket, record)

        all_time = scope["allTime"]
        UsageLedger._increment(all_time, record)
        first = all_time.get("firstExecution")
        if not first or timestamp < first:
            all_time["firstExecution"] = timestamp
        last = all_time.get("lastExecution")
        if not last or timestamp > last:
            all_time["lastExecution"] = timestamp

    @staticmethod
    def _increment(bucket: dict[str, Any], record: UsageRecord) -> None:
        bucket["input"] = bucket.get("input", 0) + record.input_tokens
        bucket["output"] = bucket.get("output", 0) + record.output_tokens
        bucket["total"] = bucket.get("total", 0) + record.total_tokens
        bucket["executions"] = bucket.get("executions", 0) + 1

    def _prune(self, data: dict[str, Any]) -> None:
        """Drop rolling-window buckets that fell out of retention."""
        today = self._clock().astimezone(timezone.utc).date()
        daily_cutoff = today - timedelta(days=DAILY_RETENTION_DAYS)
        weekly_cutoff = today - timedelta(days=WEEKLY_RETENTION_DAYS)
        month_index = today.year * 12 + today.month - 1
        monthly_cutoff = month_index - MONTHLY_RETENTION_MONTHS

        for key, scope in data.items():
            if key in ("version", "lastUpdated"):
                continue
            scope["daily"] = {
                k: v for k, v in scope["daily"].items() if _parse_day(k) >= daily_cutoff
            }
            scope["weekly"] = {
                k: v for k, v in scope["weekly"].items() if _parse_week(k) >= weekly_cutoff
            }
            scope["monthly"] = {
                k: v for k, v in scope["monthly"].items() if _parse_month(k) > monthly_cutoff
            }

    def _window(self, scope_key: str, window: str, label: str, key: str) -> UsageWindow:
        scope = self._load().get(scope_key) or _empty_scope()
        bucket = scope[window].get(key)
        if bucket is None:
            return UsageWindow(**{label: key})
        return UsageWindow.model_validate(bucket)

    def _all_time(self, scope_key: str) -> UsageWindow:
        scope = self._load().get(scope_key) or _empty_scope()
        return UsageWindow.model_validate(scope["allTime"])


def _parse_day(key: str) -> date:
    try:
        return date.fromisoformat(key)
    except ValueError:
        return date.min


def _parse_week(key: str) -> date:
    try:
        year, week = key.split("-W")
        return date.fromisocalendar(int(year), int(week), 1)
    except ValueError:
        return date.min


def _parse_month(key: str) -> int:
    try:
        year, month = key.split("-")
        return int(year) * 12 + int(month) - 1
    except ValueError:
        return -1
