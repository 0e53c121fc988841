"""Stored conversation records with a fixed retention window."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from ..domain.enums import QueryType
from ..schemas import ConversationRecord, utcnow
from .config import get_config


class ConversationStore:
    def create(self, record: ConversationRecord) -> str:
        raise NotImplementedError

    def get(self, conversation_id: str) -> Optional[ConversationRecord]:
        raise NotImplementedError

    def update(self, record: ConversationRecord) -> None:
        raise NotImplementedError

    def recent(self, farmer_id: str, days: int, limit: int) -> List[ConversationRecord]:
        """Newest first, within the last ``days`` days."""
        raise NotImplementedError

    def similar(
        self, farmer_id: str, query_type: QueryType, limit: int
    ) -> List[ConversationRecord]:
        """Successful conversations of the same query type, newest first."""
        raise NotImplementedError

    def successful_actions(self, farmer_id: str, limit: int) -> List[ConversationRecord]:
        raise NotImplementedError


def _as_type(query_type: object) -> str:
    return QueryType.coerce(query_type).value


class MemoryConversationStore(ConversationStore):
    def __init__(self, ttl_days: int = 30) -> None:
        self._ttl_days = max(0, int(ttl_days))
        self._items: Dict[str, ConversationRecord] = {}
        self._lock = Lock()

    def _purge(self) -> None:
        if self._ttl_days <= 0:
            return
        cutoff = utcnow() - timedelta(days=self._ttl_days)
        expired = [key for key, item in self._items.items() if item.created_at < cutoff]
        for key in expired:
            self._items.pop(key, None)

    def _farmer_items(self, farmer_id: str) -> List[ConversationRecord]:
        with self._lock:
            self._purge()
            items = [item for item in self._items.values() if item.farmer_id == farmer_id]
        return sorted(items, key=lambda item: item.created_at, reverse=True)

    def create(self, record: ConversationRecord) -> str:
        with self._lock:
            self._items[record.conversation_id] = record.model_copy(deep=True)
            self._purge()
        return record.conversation_id

    def get(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            self._purge()
            item = self._items.get(conversation_id)
        return item.model_copy(deep=True) if item else None

    def update(self, record: ConversationRecord) -> None:
        with self._lock:
            if record.conversation_id in self._items:
                self._items[record.conversation_id] = record.model_copy(deep=True)

    def recent(self, farmer_id: str, days: int, limit: int) -> List[ConversationRecord]:
        cutoff = utcnow() - timedelta(days=days)
        items = [item for item in self._farmer_items(farmer_id) if item.created_at >= cutoff]
        return items[:limit]

    def similar(
        self, farmer_id: str, query_type: QueryType, limit: int
    ) -> List[ConversationRecord]:
        wanted = _as_type(query_type)
        items = [
            item
            for item in self._farmer_items(farmer_id)
            if item.query_type.value == wanted and item.was_successful is True
        ]
        return items[:limit]

    def successful_actions(self, farmer_id: str, limit: int) -> List[ConversationRecord]:
        items = [
            item
            for item in self._farmer_items(farmer_id)
            if item.was_successful is True and item.action_taken is not None
        ]
        return items[:limit]


class SqliteConversationStore(ConversationStore):
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
                "CREATE TABLE IF NOT EXISTS conversations ("
                "conversation_id TEXT PRIMARY KEY, "
                "farmer_id TEXT NOT NULL, "
                "query_type TEXT NOT NULL, "
                "created_at REAL NOT NULL, "
                "was_successful INTEGER, "
                "action_taken TEXT, "
                "payload TEXT NOT NULL)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_conversations_farmer_created "
                "ON conversations (farmer_id, created_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_conversations_farmer_type "
                "ON conversations (farmer_id, query_type)"
            )

    def _cutoff(self) -> float:
        return (utcnow() - timedelta(days=self._ttl_days)).timestamp()

    @staticmethod
    def _row_values(record: ConversationRecord) -> tuple:
        success = None if record.was_successful is None else int(record.was_successful)
        action = record.action_taken.value if record.action_taken else None
        return (
            record.farmer_id,
            record.query_type.value,
            record.created_at.timestamp(),
            success,
            action,
            record.model_dump_json(),
        )

    def create(self, record: ConversationRecord) -> str:
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT INTO conversations (conversation_id, farmer_id, query_type, "
                "created_at, was_successful, action_taken, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (record.conversation_id, *self._row_values(record)),
            )
            if self._ttl_days > 0:
                conn.execute(
                    "DELETE FROM conversations WHERE created_at < ?",
                    (self._cutoff(),),
                )
        return record.conversation_id

    def get(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT payload, created_at FROM conversations WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        if not row:
            return None
        payload_json, created_at = row
        if self._ttl_days > 0 and created_at < self._cutoff():
            return None
        return ConversationRecord.model_validate_json(payload_json)

    def update(self, record: ConversationRecord) -> None:
        _, _, _, success, action, payload = self._row_values(record)
        with self._lock, self._connect() as conn:
            conn.execute(
                "UPDATE conversations SET was_successful = ?, action_taken = ?, "
                "payload = ? WHERE conversation_id = ?",
                (success, action, payload, record.conversation_id),
            )

    def _select(self, sql: str, params: tuple) -> List[ConversationRecord]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [ConversationRecord.model_validate_json(row[0]) for row in rows]

    def recent(self, farmer_id: str, days: int, limit: int) -> List[ConversationRecord]:
        since = (utcnow() - timedelta(days=days)).timestamp()
        if self._ttl_days > 0:
            since = max(since, self._cutoff())
        return self._select(
            "SELECT payload FROM conversations WHERE farmer_id = ? AND created_at >= ? "
            "ORDER BY created_at DESC LIMIT ?",
            (farmer_id, since, limit),
        )

    def similar(
        self, farmer_id: str, query_type: QueryType, limit: int
    ) -> List[ConversationRecord]:
        since = self._cutoff() if self._ttl_days > 0 else 0.0
        return self._select(
            "SELECT payload FROM conversations WHERE farmer_id = ? AND query_type = ? "
            "AND was_successful = 1 AND created_at >= ? "
            "ORDER BY created_at DESC LIMIT ?",
            (farmer_id, _as_type(query_type), since, limit),
        )

    def successful_actions(self, farmer_id: str, limit: int) -> List[ConversationRecord]:
        since = self._cutoff() if self._ttl_days > 0 else 0.0
        return self._select(
            "SELECT payload FROM conversations WHERE farmer_id = ? "
            "AND was_successful = 1 AND action_taken IS NOT NULL AND created_at >= ? "
            "ORDER BY created_at DESC LIMIT ?",
            (farmer_id, since, limit),
        )


def days_ago(moment: datetime) -> int:
    return max(0, int((utcnow() - moment).total_seconds() // 86400))


def build_conversation_store() -> ConversationStore:
    cfg = get_config()
    if cfg.conversation_store == "sqlite":
        if cfg.conversation_store_path:
            path = Path(cfg.conversation_store_path)
        else:
            root = Path(__file__).resolve().parents[2]
            path = root / ".cache" / "conversations.sqlite3"
        return SqliteConversationStore(path=path, ttl_days=cfg.conversation_ttl_days)
    return MemoryConversationStore(ttl_days=cfg.conversation_ttl_days)


@lru_cache(maxsize=1)
def get_conversation_store() -> ConversationStore:
    return build_conversation_store()
