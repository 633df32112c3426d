"""
Conversation database schema -- SQLite tables for conversations and responses.

Usage:
    initialize_schema(db_path)  # Creates tables if they don't exist
    get_connection(db_path)     # Returns a connection with WAL mode enabled

All tables use TEXT primary keys (UUIDs) and TEXT timestamps (ISO format).
*_json columns hold serialized lists.
"""

import json
import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/conversations.db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    raw_input TEXT NOT NULL DEFAULT '',
    augmented_prompt TEXT NOT NULL,
    topic_type TEXT NOT NULL,
    framework TEXT NOT NULL,
    models_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_created
    ON conversations(created_at);

-- One row per (conversation, round, model); never updated
CREATE TABLE IF NOT EXISTS responses (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    round INTEGER NOT NULL CHECK (round IN (1, 2)),
    model TEXT NOT NULL,
    content TEXT NOT NULL,
    sources_json TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_responses_triple
    ON responses(conversation_id, round, model);
"""


def get_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Get a SQLite connection with WAL mode and foreign keys enabled."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def initialize_schema(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Create conversation tables if they don't exist."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        logger.info(f"[ConversationSchema] Initialized at {db_path}")
    finally:
        conn.close()


def dict_from_row(row: sqlite3.Row) -> dict:
    """Convert a sqlite3.Row to a plain dict, parsing *_json fields (NULL -> None)."""
    d = dict(row)
    for key in list(d.keys()):
        if not key.endswith("_json"):
            continue
        raw = d.pop(key)
        name = key[: -len("_json")]
        if raw is None:
            d[name] = None
            continue
        try:
            d[name] = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[ConversationSchema] Unparseable {key} column, treating as empty")
            d[name] = []
    return d
