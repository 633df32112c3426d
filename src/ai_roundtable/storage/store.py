"""
ConversationStore -- Persists conversations and their round responses.

Each model task in a round writes its own row under a fresh id, so
concurrent writers never contend for the same record. The UNIQUE index on
(conversation_id, round, model) turns a second write for the same triple
into DuplicateResponseError.

Usage:
    store = ConversationStore(settings.db_path)
    conv = store.create_conversation(Conversation(augmented_prompt="...", models=["claude", "gpt"]))
    store.add_response(ConversationResponse(conversation_id=conv.id, round=1, model="claude", content="..."))
    full = store.get_conversation(conv.id)
"""

import json
import logging
import sqlite3
from pathlib import Path

from ..llm.client import Source
from .models import Conversation, ConversationResponse, ConversationSummary
from .schema import DEFAULT_DB_PATH, dict_from_row, get_connection, initialize_schema

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20


class DuplicateResponseError(ValueError):
    """A response for this (conversation, round, model) already exists."""

    pass


class ConversationStore:
    """SQLite-backed conversation and response storage."""

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self._db_path = db_path
        initialize_schema(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def create_conversation(self, conversation: Conversation) -> Conversation:
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """INSERT INTO conversations
                   (id, created_at, raw_input, augmented_prompt, topic_type,
                    framework, models_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    conversation.id,
                    conversation.created_at,
                    conversation.raw_input,
                    conversation.augmented_prompt,
                    conversation.topic_type,
                    conversation.framework,
                    json.dumps(conversation.models),
                ),
            )
            conn.commit()
            logger.info(
                f"[ConversationStore] Created {conversation.id} "
                f"({conversation.topic_type}, {len(conversation.models)} models)"
            )
            return conversation
        finally:
            conn.close()

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Load a conversation with its responses, or None if not found."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                return None
            conversation = self._row_to_conversation(dict_from_row(row))
            rows = conn.execute(
                "SELECT * FROM responses WHERE conversation_id = ? ORDER BY round",
                (conversation_id,),
            ).fetchall()
        finally:
            conn.close()

        order = {model: i for i, model in enumerate(conversation.models)}
        responses = [self._row_to_response(dict_from_row(r)) for r in rows]
        conversation.responses = sorted(
            responses, key=lambda r: (r.round, order.get(r.model, len(order)), r.model)
        )
        return conversation

    def list_conversations(self, limit: int = DEFAULT_LIST_LIMIT) -> list[ConversationSummary]:
        """Newest conversations first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """SELECT id, created_at, raw_input, topic_type FROM conversations
                   ORDER BY created_at DESC LIMIT ?""",
                (limit,),
            ).fetchall()
            return [
                ConversationSummary(
                    id=r["id"],
                    created_at=r["created_at"],
                    raw_input=r["raw_input"],
                    topic_type=r["topic_type"],
                )
                for r in rows
            ]
        finally:
            conn.close()

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its responses. Returns False if not found."""
        conn = get_connection(self._db_path)
        try:
            exists = conn.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if exists is None:
                return False
            conn.execute("DELETE FROM responses WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            conn.commit()
            logger.info(f"[ConversationStore] Deleted {conversation_id}")
            return True
        finally:
            conn.close()

    def add_response(self, response: ConversationResponse) -> ConversationResponse:
        """
        Persist one model's answer for one round.

        Raises:
            DuplicateResponseError: if the (conversation, round, model) triple exists.
        """
        sources_json = (
            json.dumps([s.to_dict() for s in response.sources])
            if response.sources
            else None
        )
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """INSERT INTO responses
                   (id, conversation_id, round, model, content, sources_json)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    response.id,
                    response.conversation_id,
                    response.round,
                    response.model,
                    response.content,
                    sources_json,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateResponseError(
                    f"Round {response.round} response from {response.model} "
                    f"already exists for {response.conversation_id}"
                ) from e
            raise
        finally:
            conn.close()

        logger.debug(
            f"[ConversationStore] Saved round {response.round} response "
            f"from {response.model} ({len(response.content)} chars)"
        )
        return response

    def get_response(
        self, conversation_id: str, round_number: int, model: str
    ) -> ConversationResponse | None:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                """SELECT * FROM responses
                   WHERE conversation_id = ? AND round = ? AND model = ?""",
                (conversation_id, round_number, model),
            ).fetchone()
            return self._row_to_response(dict_from_row(row)) if row else None
        finally:
            conn.close()

    def get_round_responses(
        self, conversation_id: str, round_number: int
    ) -> list[ConversationResponse]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM responses WHERE conversation_id = ? AND round = ?",
                (conversation_id, round_number),
            ).fetchall()
            return [self._row_to_response(dict_from_row(r)) for r in rows]
        finally:
            conn.close()

    @staticmethod
    def _row_to_conversation(d: dict) -> Conversation:
        return Conversation(
            id=d["id"],
            created_at=d["created_at"],
            raw_input=d["raw_input"],
            augmented_prompt=d["augmented_prompt"],
            topic_type=d["topic_type"],
            framework=d["framework"],
            models=d.get("models") or [],
        )

    @staticmethod
    def _row_to_response(d: dict) -> ConversationResponse:
        raw_sources = d.get("sources")
        sources = (
            [Source(url=s.get("url", ""), title=s.get("title", "")) for s in raw_sources]
            if raw_sources
            else None
        )
        return ConversationResponse(
            id=d["id"],
            conversation_id=d["conversation_id"],
            round=d["round"],
            model=d["model"],
            content=d["content"],
            sources=sources,
        )
