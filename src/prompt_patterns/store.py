"""SQLite store for embedded transcript messages, checkpoints and candidates."""

import json
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Self

from prompt_patterns.embedding import deserialize_vector, serialize_vector
from prompt_patterns.logging import get_logger
from prompt_patterns.models import (
    EmbeddedMessage,
    IndexCheckpoint,
    MessageVector,
    RepeatCandidate,
)

logger = get_logger("store")

_MESSAGE_COLUMNS = "id, session_id, message_uuid, message_type, content, embedding, repo_path, timestamp"
_CANDIDATE_COLUMNS = (
    "id, original_message_id, content, repo_path, repeat_count, "
    "last_seen_at, avg_similarity, dismissed, dismissed_at, repo_paths"
)


class StoreError(Exception):
    """Base class for message store failures."""


class StoreOpenError(StoreError):
    """The database file could not be opened."""


class StorePrepareError(StoreError):
    """The schema could not be created or migrated."""


class StoreExecuteError(StoreError):
    """A query or update failed."""


class StoreInsertError(StoreError):
    """A message could not be inserted."""


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MessageStore:
    """Durable table of embedded messages.

    Also holds per-file index checkpoints and the repeat candidates
    tracked by the online repeat tracker. The connection is shared across
    threads and serialized with a lock.
    """

    def __init__(self, db_path: Path) -> None:
        """Open (creating if needed) the store at db_path.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.

        Raises:
            StoreOpenError: If the database cannot be opened
            StorePrepareError: If the schema cannot be created
        """
        self._db_path = db_path
        self._lock = threading.RLock()
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
        except (OSError, sqlite3.Error) as exc:
            raise StoreOpenError(f"Cannot open {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    @property
    def database_path(self) -> Path:
        return self._db_path

    def ensure_schema(self) -> None:
        """Create tables and indices if they don't exist."""
        try:
            with self._lock:
                self._conn.execute("PRAGMA journal_mode = WAL")
                self._conn.executescript("""
                    CREATE TABLE IF NOT EXISTS indexed_messages (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id TEXT NOT NULL,
                        message_uuid TEXT NOT NULL,
                        message_type TEXT NOT NULL,
                        content TEXT NOT NULL,
                        embedding BLOB NOT NULL,
                        repo_path TEXT NOT NULL,
                        timestamp TEXT NOT NULL,
                        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE(session_id, message_uuid)
                    );

                    CREATE TABLE IF NOT EXISTS index_state (
                        session_file TEXT PRIMARY KEY,
                        last_indexed_at TEXT NOT NULL,
                        file_hash TEXT NOT NULL,
                        message_count INTEGER NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS repeat_candidates (
                        id TEXT PRIMARY KEY,
                        original_message_id INTEGER NOT NULL,
                        content TEXT NOT NULL,
                        repo_path TEXT NOT NULL,
                        repeat_count INTEGER NOT NULL,
                        last_seen_at TEXT NOT NULL,
                        avg_similarity REAL NOT NULL,
                        dismissed INTEGER NOT NULL DEFAULT 0,
                        dismissed_at TEXT,
                        repo_paths TEXT NOT NULL DEFAULT '[]'
                    );

                    CREATE TABLE IF NOT EXISTS notification_state (
                        id INTEGER PRIMARY KEY CHECK (id = 1),
                        reset_date TEXT NOT NULL,
                        sent_count INTEGER NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_session ON indexed_messages(session_id);
                    CREATE INDEX IF NOT EXISTS idx_repo ON indexed_messages(repo_path);
                    CREATE INDEX IF NOT EXISTS idx_type ON indexed_messages(message_type);
                """)
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StorePrepareError(f"Cannot prepare schema in {self._db_path}: {exc}") from exc

    # Messages

    def upsert_message(
        self,
        session_id: str,
        message_uuid: str,
        role: str,
        content: str,
        embedding: list[float],
        repo_path: str,
        timestamp: datetime,
    ) -> int:
        """Insert a message, or overwrite the row with the same identity.

        The row id of an existing (session_id, message_uuid) pair is kept.

        Returns:
            The store-assigned message id

        Raises:
            StoreInsertError: If the row cannot be written
        """
        params = (
            session_id,
            message_uuid,
            role,
            content,
            serialize_vector(embedding),
            repo_path,
            _format_ts(timestamp),
        )
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO indexed_messages
                        (session_id, message_uuid, message_type, content, embedding, repo_path, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(session_id, message_uuid) DO UPDATE SET
                        message_type = excluded.message_type,
                        content = excluded.content,
                        embedding = excluded.embedding,
                        repo_path = excluded.repo_path,
                        timestamp = excluded.timestamp
                    """,
                    params,
                )
                row = self._conn.execute(
                    "SELECT id FROM indexed_messages WHERE session_id = ? AND message_uuid = ?",
                    (session_id, message_uuid),
                ).fetchone()
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreInsertError(
                f"Cannot insert message session={session_id} uuid={message_uuid}: {exc}"
            ) from exc

        if row is None:
            raise StoreInsertError(f"Message vanished after insert: session={session_id} uuid={message_uuid}")
        return int(row["id"])

    def get_message(self, message_id: int) -> EmbeddedMessage | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM indexed_messages WHERE id = ?",
                (message_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_message(row)

    def get_messages_by_ids(self, ids: list[int]) -> list[EmbeddedMessage]:
        """Fetch messages by id. Result order is unspecified."""
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM indexed_messages WHERE id IN ({placeholders})",
                list(ids),
            ).fetchall()

        messages = []
        for row in rows:
            message = self._row_to_message(row)
            if message is not None:
                messages.append(message)
        return messages

    def get_all_embeddings(self) -> list[tuple[int, list[float]]]:
        """All (id, embedding) pairs, for similarity search."""
        with self._lock:
            rows = self._conn.execute("SELECT id, embedding FROM indexed_messages").fetchall()

        results = []
        for row in rows:
            embedding = deserialize_vector(row["embedding"])
            if embedding is not None:
                results.append((int(row["id"]), embedding))
        return results

    def get_user_message_embeddings(self) -> list[MessageVector]:
        """All user-message embeddings with metadata, ordered by id."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, session_id, repo_path, timestamp, embedding
                FROM indexed_messages
                WHERE message_type = 'user'
                ORDER BY id
                """
            ).fetchall()

        results = []
        for row in rows:
            embedding = deserialize_vector(row["embedding"])
            if embedding is None:
                continue
            results.append(
                MessageVector(
                    id=int(row["id"]),
                    session_id=row["session_id"],
                    repo_path=row["repo_path"],
                    timestamp=_parse_ts(row["timestamp"]) or datetime.now(timezone.utc),
                    embedding=embedding,
                )
            )
        return results

    def get_message_count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS n FROM indexed_messages").fetchone()
        return int(row["n"])

    def get_message_uuids_for_session(self, session_id: str) -> set[str]:
        """Message uuids already stored for a session."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT message_uuid FROM indexed_messages WHERE session_id = ?",
                    (session_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot read messages for session={session_id}: {exc}") from exc
        return {row["message_uuid"] for row in rows}

    def delete_messages_except(self, session_id: str, keep_uuids: set[str]) -> int:
        """Delete the messages of a session whose uuid is not in keep_uuids.

        Returns:
            Number of rows deleted

        Raises:
            StoreExecuteError: If the delete fails
        """
        stale = self.get_message_uuids_for_session(session_id) - keep_uuids
        if not stale:
            return 0

        try:
            with self._lock:
                self._conn.executemany(
                    "DELETE FROM indexed_messages WHERE session_id = ? AND message_uuid = ?",
                    [(session_id, uuid) for uuid in sorted(stale)],
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot delete stale messages for session={session_id}: {exc}") from exc
        return len(stale)

    # Checkpoints

    def get_checkpoint(self, source_file: str) -> IndexCheckpoint | None:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT session_file, last_indexed_at, file_hash, message_count
                FROM index_state
                WHERE session_file = ?
                """,
                (source_file,),
            ).fetchone()
        if row is None:
            return None
        return IndexCheckpoint(
            source_file=row["session_file"],
            file_hash=row["file_hash"],
            message_count=int(row["message_count"]),
            last_indexed_at=_parse_ts(row["last_indexed_at"]) or datetime.now(timezone.utc),
        )

    def needs_indexing(self, source_file: str, current_hash: str) -> bool:
        """True unless the stored checkpoint hash equals current_hash."""
        checkpoint = self.get_checkpoint(source_file)
        return checkpoint is None or checkpoint.file_hash != current_hash

    def mark_session_indexed(self, source_file: str, file_hash: str, message_count: int) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO index_state
                        (session_file, last_indexed_at, file_hash, message_count)
                    VALUES (?, ?, ?, ?)
                    """,
                    (source_file, _format_ts(datetime.now(timezone.utc)), file_hash, message_count),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot write checkpoint for {source_file}: {exc}") from exc

    def get_indexed_session_count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS n FROM index_state").fetchone()
        return int(row["n"])

    # Repeat candidates

    def get_all_repeat_candidates(self) -> list[RepeatCandidate]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_CANDIDATE_COLUMNS}
                FROM repeat_candidates
                ORDER BY last_seen_at
                """
            ).fetchall()

        return [self._row_to_candidate(row) for row in rows]

    def get_repeat_candidate(self, candidate_id: str) -> RepeatCandidate | None:
        """Read one candidate, or None if it was deleted.

        Raises:
            StoreExecuteError: If the query fails
        """
        try:
            with self._lock:
                row = self._conn.execute(
                    f"SELECT {_CANDIDATE_COLUMNS} FROM repeat_candidates WHERE id = ?",
                    (candidate_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot read candidate id={candidate_id}: {exc}") from exc
        if row is None:
            return None
        return self._row_to_candidate(row)

    def save_repeat_candidate(self, candidate: RepeatCandidate) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO repeat_candidates
                        (id, original_message_id, content, repo_path, repeat_count,
                         last_seen_at, avg_similarity, dismissed, dismissed_at, repo_paths)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        candidate.id,
                        candidate.original_message_id,
                        candidate.content,
                        candidate.repo_path,
                        candidate.repeat_count,
                        _format_ts(candidate.last_seen_at),
                        candidate.avg_similarity,
                        int(candidate.dismissed),
                        _format_ts(candidate.dismissed_at) if candidate.dismissed_at else None,
                        json.dumps(candidate.repo_paths),
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot save candidate id={candidate.id}: {exc}") from exc

    def delete_repeat_candidate(self, candidate_id: str) -> None:
        try:
            with self._lock:
                self._conn.execute("DELETE FROM repeat_candidates WHERE id = ?", (candidate_id,))
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot delete candidate id={candidate_id}: {exc}") from exc

    # Notification counter

    def get_notification_state(self) -> tuple[date, int] | None:
        """The day the suggestion counter belongs to and its value."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT reset_date, sent_count FROM notification_state WHERE id = 1"
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot read notification state: {exc}") from exc
        if row is None:
            return None
        try:
            day = date.fromisoformat(row["reset_date"])
        except ValueError:
            return None
        return day, int(row["sent_count"])

    def save_notification_state(self, day: date, sent_count: int) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO notification_state (id, reset_date, sent_count)
                    VALUES (1, ?, ?)
                    """,
                    (day.isoformat(), sent_count),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreExecuteError(f"Cannot save notification state: {exc}") from exc

    # Helpers

    def _row_to_candidate(self, row: sqlite3.Row) -> RepeatCandidate:
        return RepeatCandidate(
            id=row["id"],
            original_message_id=int(row["original_message_id"]),
            content=row["content"],
            repo_path=row["repo_path"],
            repeat_count=int(row["repeat_count"]),
            last_seen_at=_parse_ts(row["last_seen_at"]) or datetime.now(timezone.utc),
            avg_similarity=float(row["avg_similarity"]),
            dismissed=bool(row["dismissed"]),
            dismissed_at=_parse_ts(row["dismissed_at"]),
            repo_paths=json.loads(row["repo_paths"] or "[]"),
        )

    def _row_to_message(self, row: sqlite3.Row) -> EmbeddedMessage | None:
        embedding = deserialize_vector(row["embedding"])
        if embedding is None:
            logger.debug("Skipping message with malformed embedding: id=%s", row["id"])
            return None
        return EmbeddedMessage(
            id=int(row["id"]),
            session_id=row["session_id"],
            message_uuid=row["message_uuid"],
            role=row["message_type"],
            content=row["content"],
            embedding=embedding,
            repo_path=row["repo_path"],
            timestamp=_parse_ts(row["timestamp"]) or datetime.now(timezone.utc),
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
