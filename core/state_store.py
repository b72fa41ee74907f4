from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Collection, Dict, Iterator, List, Optional

from core.database import _DB_PATH, get_connection
from core.models import MediaType, OverlayState, parse_timestamp
from utils.logger import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "media_id",
    "title",
    "collection_id",
    "media_type",
    "library_section_id",
    "poster_path",
    "backup_path",
    "overlay_applied",
    "overlay_text",
    "last_known_expiration",
    "last_checked",
    "is_child",
    "parent_id",
    "label_exists",
)


class OverlayStateStore:
    """
    SQLite-backed record of overlay status, one row per Plex media id.
    Not safe for concurrent writers; only one reconciliation may run at a time.
    """

    def __init__(self, db_path: Path | str = _DB_PATH):
        self.db_path = Path(db_path)
        with self._connect():
            pass

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(get_connection(self.db_path)) as conn:
            with conn:
                yield conn

    def upsert(self, state: OverlayState) -> None:
        if state.overlay_applied and not (state.poster_path and state.backup_path):
            raise ValueError(f"Applied overlay for {state.media_id} must record poster and backup paths")
        if state.is_child and state.parent_id is None:
            raise ValueError(f"Child item {state.media_id} has no parent id")

        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ",\n            ".join(f"{col} = excluded.{col}" for col in _COLUMNS[1:])
        sql = f"""
        INSERT INTO overlay_state ({", ".join(_COLUMNS)})
        VALUES ({placeholders})
        ON CONFLICT(media_id) DO UPDATE SET
            {updates}
        """
        with self._connect() as conn:
            conn.execute(sql, self._to_row(state))

    def get(self, media_id: int) -> Optional[OverlayState]:
        sql = "SELECT * FROM overlay_state WHERE media_id = ?"
        with self._connect() as conn:
            row = conn.execute(sql, (media_id,)).fetchone()
            return self._from_row(row) if row else None

    def all(self) -> List[OverlayState]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM overlay_state ORDER BY media_id").fetchall()
            return [self._from_row(r) for r in rows]

    def applied(self) -> List[OverlayState]:
        sql = "SELECT * FROM overlay_state WHERE overlay_applied = 1 ORDER BY media_id"
        with self._connect() as conn:
            rows = conn.execute(sql).fetchall()
            return [self._from_row(r) for r in rows]

    def remove(self, media_id: int) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM overlay_state WHERE media_id = ?", (media_id,))

    def pending_restores(self, current_ids: Collection[int]) -> List[OverlayState]:
        """
        Applied overlays whose item is no longer in Maintainerr.
        An item is still tracked if it, or any ancestor recorded in the store, is present.
        """
        current = set(current_ids)
        by_id: Dict[int, OverlayState] = {s.media_id: s for s in self.all()}
        return [
            state
            for state in by_id.values()
            if state.overlay_applied and not self._is_tracked(state, current, by_id)
        ]

    @staticmethod
    def _is_tracked(state: OverlayState, current: set, by_id: Dict[int, OverlayState]) -> bool:
        seen = set()
        node: Optional[OverlayState] = state
        while node is not None and node.media_id not in seen:
            if node.media_id in current:
                return True
            seen.add(node.media_id)
            if node.parent_id is None:
                return False
            if node.parent_id in current:
                return True
            node = by_id.get(node.parent_id)
        return False

    @staticmethod
    def _to_row(state: OverlayState) -> tuple:
        return (
            state.media_id,
            state.title or "",
            state.collection_id,
            int(state.media_type) if state.media_type is not None else None,
            state.library_section_id,
            state.poster_path or "",
            state.backup_path or "",
            1 if state.overlay_applied else 0,
            state.overlay_text,
            _format_ts(state.last_known_expiration),
            _format_ts(state.last_checked),
            1 if state.is_child else 0,
            state.parent_id,
            1 if state.label_exists else 0,
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> OverlayState:
        return OverlayState(
            media_id=row["media_id"],
            title=row["title"],
            collection_id=row["collection_id"],
            media_type=MediaType.from_value(row["media_type"]),
            library_section_id=row["library_section_id"],
            poster_path=row["poster_path"],
            backup_path=row["backup_path"],
            overlay_applied=bool(row["overlay_applied"]),
            overlay_text=row["overlay_text"],
            last_known_expiration=_parse_ts(row["last_known_expiration"]),
            last_checked=_parse_ts(row["last_checked"]),
            is_child=bool(row["is_child"]),
            parent_id=row["parent_id"],
            label_exists=bool(row["label_exists"]),
        )


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None
