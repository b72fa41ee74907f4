import sqlite3
from pathlib import Path

_DB_PATH = Path("data/overlay_state.sqlite")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS overlay_state (
    media_id               INTEGER   PRIMARY KEY,     -- Plex ratingKey
    title                  TEXT      NOT NULL DEFAULT '',
    collection_id          INTEGER,                   -- Maintainerr collection id
    media_type             INTEGER,                   -- 1 movie, 2 show, 3 season, 4 episode
    library_section_id     INTEGER,
    poster_path            TEXT      NOT NULL DEFAULT '',
    backup_path            TEXT      NOT NULL DEFAULT '',
    overlay_applied        INTEGER   NOT NULL DEFAULT 0,
    overlay_text           TEXT,
    last_known_expiration  TEXT,
    last_checked           TEXT,
    is_child               INTEGER   NOT NULL DEFAULT 0,
    parent_id              INTEGER,
    label_exists           INTEGER   NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_overlay_state_applied
  ON overlay_state(overlay_applied);
"""


def get_connection(db_path: Path | str = _DB_PATH) -> sqlite3.Connection:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    _ensure_schema(conn)
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    with conn:
        conn.executescript(_SCHEMA)
