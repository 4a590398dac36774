"""SQLite-backed durable message store."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from ambient_inbox.exceptions import MessageNotFoundError, StoreError
from ambient_inbox.messages.models import Bucket, Message, MessageStatus
from ambient_inbox.store.base import BaseMessageStore, Mutation, preserve_immutable

logger = logging.getLogger(__name__)

# AUTOINCREMENT keeps ids from being reused after rows are deleted.
SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    sender_display_name TEXT NOT NULL,
    original_content TEXT NOT NULL,
    veiled_content TEXT,
    bucket TEXT,
    generated_responses TEXT NOT NULL DEFAULT '[]',
    selected_response TEXT,
    status TEXT NOT NULL DEFAULT 'RECEIVED',
    retry_count INTEGER NOT NULL DEFAULT 0,
    snoozed_until INTEGER NOT NULL DEFAULT 0,
    thread_key TEXT,
    context_tag TEXT,
    user_interacted INTEGER NOT NULL DEFAULT 0,
    timestamp INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages (timestamp DESC);
"""


class SQLiteMessageStore(BaseMessageStore):
    """Message table in a SQLite database file.

    A single connection is shared across threads and serialized by the
    store lock.
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        super().__init__()
        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except (sqlite3.OperationalError, sqlite3.DatabaseError) as e:
            raise StoreError(f"Failed to open message database at {db_path}: {e}") from e

    def insert(
        self,
        source: str,
        sender_display_name: str,
        original_content: str,
        timestamp: int,
        thread_key: str | None = None,
        context_tag: str | None = None,
    ) -> Message:
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """
                    INSERT INTO messages (
                        source, sender_display_name, original_content,
                        status, timestamp, thread_key, context_tag
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        source,
                        sender_display_name,
                        original_content,
                        MessageStatus.RECEIVED.value,
                        timestamp,
                        thread_key,
                        context_tag,
                    ),
                )
                self._conn.commit()
            except sqlite3.DatabaseError as e:
                self._conn.rollback()
                raise StoreError(f"Failed to insert message: {e}") from e
            message = self._get_locked(cursor.lastrowid)
            self._publish()
            return message

    def get(self, message_id: int) -> Message | None:
        with self._lock:
            return self._get_locked(message_id)

    def list_all(self) -> list[Message]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM messages ORDER BY timestamp DESC, id ASC"
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def update(self, message_id: int, mutate: Mutation) -> Message:
        with self._lock:
            current = self._get_locked(message_id)
            if current is None:
                raise MessageNotFoundError(message_id)
            updated = preserve_immutable(current, mutate(current))
            try:
                self._conn.execute(
                    """
                    UPDATE messages SET
                        veiled_content = ?,
                        bucket = ?,
                        generated_responses = ?,
                        selected_response = ?,
                        status = ?,
                        retry_count = ?,
                        snoozed_until = ?,
                        thread_key = ?,
                        context_tag = ?,
                        user_interacted = ?
                    WHERE id = ?
                    """,
                    (
                        updated.veiled_content,
                        updated.bucket.value if updated.bucket else None,
                        json.dumps(list(updated.generated_responses)),
                        updated.selected_response,
                        updated.status.value,
                        updated.retry_count,
                        updated.snoozed_until,
                        updated.thread_key,
                        updated.context_tag,
                        int(updated.user_interacted),
                        message_id,
                    ),
                )
                self._conn.commit()
            except sqlite3.DatabaseError as e:
                self._conn.rollback()
                raise StoreError(f"Failed to update message {message_id}: {e}") from e
            self._publish()
            return updated

    def clear(self) -> None:
        with self._lock:
            try:
                self._conn.execute("DELETE FROM messages")
                self._conn.commit()
            except sqlite3.DatabaseError as e:
                self._conn.rollback()
                raise StoreError(f"Failed to clear messages: {e}") from e
            self._publish()

    def close(self) -> None:
        super().close()
        with self._lock:
            self._conn.close()

    def _get_locked(self, message_id: int) -> Message | None:
        row = self._conn.execute(
            "SELECT * FROM messages WHERE id = ?", (message_id,)
        ).fetchone()
        return _row_to_message(row) if row else None


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        source=row["source"],
        sender_display_name=row["sender_display_name"],
        original_content=row["original_content"],
        timestamp=row["timestamp"],
        status=_decode_status(row["id"], row["status"]),
        veiled_content=row["veiled_content"],
        bucket=_decode_bucket(row["id"], row["bucket"]),
        generated_responses=_decode_responses(row["id"], row["generated_responses"]),
        selected_response=row["selected_response"],
        retry_count=max(0, row["retry_count"] or 0),
        snoozed_until=row["snoozed_until"] or 0,
        thread_key=row["thread_key"],
        context_tag=row["context_tag"],
        user_interacted=bool(row["user_interacted"]),
    )


def _decode_responses(message_id: int, raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Message {message_id}: undecodable generated_responses, using empty list")
        return ()
    if not isinstance(value, list):
        logger.warning(f"Message {message_id}: generated_responses is not a list, using empty list")
        return ()
    return tuple(str(item) for item in value)


def _decode_bucket(message_id: int, raw: str | None) -> Bucket | None:
    if raw is None:
        return None
    bucket = Bucket.parse(raw)
    if bucket is Bucket.UNKNOWN and raw != Bucket.UNKNOWN.value:
        logger.warning(f"Message {message_id}: unknown bucket {raw!r}, using UNKNOWN")
    return bucket


def _decode_status(message_id: int, raw: str | None) -> MessageStatus:
    try:
        return MessageStatus(raw)
    except ValueError:
        # Never hand an unrecognised record to the engine.
        logger.warning(f"Message {message_id}: unknown status {raw!r}, treating as FAILED")
        return MessageStatus.FAILED
