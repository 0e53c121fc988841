"""Farmer behavioral profiles; every write is a serialized read-modify-write."""

from __future__ import annotations

import sqlite3
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional

from ..schemas import ActionRecord, FarmerProfile
from .config import get_config


ProfileMutation = Callable[[FarmerProfile], None]


class FarmerProfileStore:
    def get(self, farmer_id: str) -> Optional[FarmerProfile]:
        raise NotImplementedError

    def _mutate(self, farmer_id: str, mutation: ProfileMutation) -> FarmerProfile:
        """Load (or create), apply ``mutation`` and save as one atomic step."""
        raise NotImplementedError

    def get_or_create(self, farmer_id: str) -> FarmerProfile:
        profile = self.get(farmer_id)
        if profile is not None:
            return profile
        return self._mutate(farmer_id, lambda _profile: None)

    def increment_query_type(
        self, farmer_id: str, query_type: str, crop: Optional[str] = None
    ) -> FarmerProfile:
        return self._mutate(
            farmer_id, lambda profile: profile.record_query(query_type, crop)
        )

    def add_successful_action(self, farmer_id: str, action: ActionRecord) -> FarmerProfile:
        return self._mutate(farmer_id, lambda profile: profile.record_success(action))

    def add_failed_action(self, farmer_id: str, action: ActionRecord) -> FarmerProfile:
        return self._mutate(farmer_id, lambda profile: profile.record_failure(action))

    def update_satisfaction(self, farmer_id: str, positive: bool) -> FarmerProfile:
        return self._mutate(
            farmer_id, lambda profile: profile.record_satisfaction(positive)
        )


class MemoryFarmerProfileStore(FarmerProfileStore):
    def __init__(self) -> None:
        self._items: Dict[str, FarmerProfile] = {}
        self._lock = Lock()

    def get(self, farmer_id: str) -> Optional[FarmerProfile]:
        with self._lock:
            profile = self._items.get(farmer_id)
        return profile.model_copy(deep=True) if profile else None

    def _mutate(self, farmer_id: str, mutation: ProfileMutation) -> FarmerProfile:
        with self._lock:
            current = self._items.get(farmer_id)
            profile = (
                current.model_copy(deep=True)
                if current
                else FarmerProfile(farmer_id=farmer_id)
            )
            mutation(profile)
            self._items[farmer_id] = profile
        return profile.model_copy(deep=True)


class SqliteFarmerProfileStore(FarmerProfileStore):
    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._path, timeout=10, isolation_level=None)

    def _init_db(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS farmer_profiles ("
                "farmer_id TEXT PRIMARY KEY, "
                "updated_at REAL NOT NULL, "
                "payload TEXT NOT NULL)"
            )
        finally:
            conn.close()

    def get(self, farmer_id: str) -> Optional[FarmerProfile]:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT payload FROM farmer_profiles WHERE farmer_id = ?",
                    (farmer_id,),
                ).fetchone()
            finally:
                conn.close()
        if not row:
            return None
        return FarmerProfile.model_validate_json(row[0])

    def _mutate(self, farmer_id: str, mutation: ProfileMutation) -> FarmerProfile:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT payload FROM farmer_profiles WHERE farmer_id = ?",
                    (farmer_id,),
                ).fetchone()
                profile = (
                    FarmerProfile.model_validate_json(row[0])
                    if row
                    else FarmerProfile(farmer_id=farmer_id)
                )
                mutation(profile)
                conn.execute(
                    "INSERT INTO farmer_profiles (farmer_id, updated_at, payload) "
                    "VALUES (?, ?, ?) "
                    "ON CONFLICT(farmer_id) DO UPDATE SET "
                    "updated_at = excluded.updated_at, "
                    "payload = excluded.payload",
                    (
                        farmer_id,
                        profile.updated_at.timestamp(),
                        profile.model_dump_json(),
                    ),
                )
                conn.execute("COMMIT")
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()
        return profile


def build_profile_store() -> FarmerProfileStore:
    cfg = get_config()
    if cfg.profile_store == "sqlite":
        if cfg.profile_store_path:
            path = Path(cfg.profile_store_path)
        else:
            root = Path(__file__).resolve().parents[2]
            path = root / ".cache" / "profiles.sqlite3"
        return SqliteFarmerProfileStore(path=path)
    return MemoryFarmerProfileStore()


@lru_cache(maxsize=1)
def get_profile_store() -> FarmerProfileStore:
    return build_profile_store()
