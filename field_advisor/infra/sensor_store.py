"""Time-ordered sensor history per farmer."""

from __future__ import annotations

import json
import sqlite3
from datetime import timedelta, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from ..schemas import SensorSample, SensorSnapshot, utcnow
from .config import get_config


class SensorStore:
    def append(self, farmer_id: str, sample: SensorSample) -> None:
        raise NotImplementedError

    def history(self, farmer_id: str, days: int) -> List[SensorSample]:
        """Samples from the last ``days`` days, oldest first."""
        raise NotImplementedError

    def latest(self, farmer_id: str) -> Optional[SensorSnapshot]:
        raise NotImplementedError


def _aware(sample: SensorSample) -> SensorSample:
    if sample.timestamp.tzinfo is None:
        return sample.model_copy(
            update={"timestamp": sample.timestamp.replace(tzinfo=timezone.utc)}
        )
    return sample


class MemorySensorStore(SensorStore):
    def __init__(self, ttl_days: int = 30) -> None:
        self._ttl_days = max(0, int(ttl_days))
        self._items: Dict[str, List[SensorSample]] = {}
        self._lock = Lock()

    def append(self, farmer_id: str, sample: SensorSample) -> None:
        sample = _aware(sample)
        with self._lock:
            samples = self._items.setdefault(farmer_id, [])
            samples.append(sample)
            samples.sort(key=lambda item: item.timestamp)
            if self._ttl_days > 0:
                cutoff = utcnow() - timedelta(days=self._ttl_days)
                self._items[farmer_id] = [
                    item for item in samples if item.timestamp >= cutoff
                ]

    def history(self, farmer_id: str, days: int) -> List[SensorSample]:
        cutoff = utcnow() - timedelta(days=days)
        with self._lock:
            samples = list(self._items.get(farmer_id, []))
        return [item for item in samples if item.timestamp >= cutoff]

    def latest(self, farmer_id: str) -> Optional[SensorSnapshot]:
        with self._lock:
            samples = self._items.get(farmer_id) or []
            last = samples[-1] if samples else None
        return last.to_snapshot() if last else None


class SqliteSensorStore(SensorStore):
    def __init__(self, path: Path, ttl_days: int = 30) -> None:
        self._path = path
        self._ttl_days = max(0, int(ttl_days))
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._path)

    def _init_db(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS sensor_samples ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "farmer_id TEXT NOT NULL, "
                "recorded_at REAL NOT NULL, "
                "payload TEXT NOT NULL)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sensor_samples_farmer_time "
                "ON sensor_samples (farmer_id, recorded_at)"
            )

    def append(self, farmer_id: str, sample: SensorSample) -> None:
        sample = _aware(sample)
        payload_json = json.dumps(
            sample.model_dump(mode="json"), ensure_ascii=True, default=str
        )
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO sensor_samples (farmer_id, recorded_at, payload) "
                "VALUES (?, ?, ?)",
                (farmer_id, sample.timestamp.timestamp(), payload_json),
            )
            if self._ttl_days > 0:
                cutoff = (utcnow() - timedelta(days=self._ttl_days)).timestamp()
                conn.execute(
                    "DELETE FROM sensor_samples WHERE recorded_at < ?",
                    (cutoff,),
                )

    def history(self, farmer_id: str, days: int) -> List[SensorSample]:
        cutoff = (utcnow() - timedelta(days=days)).timestamp()
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT payload FROM sensor_samples "
                "WHERE farmer_id = ? AND recorded_at >= ? "
                "ORDER BY recorded_at ASC, id ASC",
                (farmer_id, cutoff),
            ).fetchall()
        return [SensorSample.model_validate_json(row[0]) for row in rows]

    def latest(self, farmer_id: str) -> Optional[SensorSnapshot]:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM sensor_samples WHERE farmer_id = ? "
                "ORDER BY recorded_at DESC, id DESC LIMIT 1",
                (farmer_id,),
            ).fetchone()
        if not row:
            return None
        return SensorSample.model_validate_json(row[0]).to_snapshot()


def _default_path(filename: str) -> Path:
    root = Path(__file__).resolve().parents[2]
    return root / ".cache" / filename


def build_sensor_store() -> SensorStore:
    cfg = get_config()
    if cfg.sensor_store == "sqlite":
        path = (
            Path(cfg.sensor_store_path)
            if cfg.sensor_store_path
            else _default_path("sensors.sqlite3")
        )
        return SqliteSensorStore(path=path, ttl_days=cfg.sensor_history_ttl_days)
    return MemorySensorStore(ttl_days=cfg.sensor_history_ttl_days)


@lru_cache(maxsize=1)
def get_sensor_store() -> SensorStore:
    return build_sensor_store()
