import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from telegram_vanish_bot.domain.errors import StoreError
from telegram_vanish_bot.domain.retention import (
    CandidateMessage,
    RetentionPolicy,
    StatsUpdate,
    validate_ttl,
)

logger = logging.getLogger(__name__)


class SqlitePolicyStore:
    """Retention policies, cumulative stats and the per-chat message journal.

    The Bot API offers no way to read chat history, so every message the bot
    sees in a tracked chat is journaled here and paged back by the gateway.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path).expanduser().resolve()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"cannot create state directory: {exc}") from exc
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open {self._db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS retention_policies (
                    channel_id TEXT PRIMARY KEY,
                    guild_id TEXT NOT NULL,
                    ttl_seconds INTEGER NOT NULL CHECK (ttl_seconds > 0),
                    messages_deleted INTEGER NOT NULL DEFAULT 0,
                    last_deletion_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_retention_policies_guild
                ON retention_policies (guild_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS message_journal (
                    channel_id TEXT NOT NULL,
                    message_id INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    pinned INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (channel_id, message_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sweep_lease (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    owner TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
                """
            )

    # Policies

    def list_active_policies(self, guild_id: Optional[str] = None) -> List[RetentionPolicy]:
        with self._session() as conn:
            if guild_id:
                rows = conn.execute(
                    "SELECT * FROM retention_policies WHERE guild_id = ? ORDER BY created_at, channel_id",
                    (str(guild_id),),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM retention_policies ORDER BY created_at, channel_id"
                ).fetchall()
        logger.debug(
            "found %d retention policies%s",
            len(rows),
            f" for guild {guild_id}" if guild_id else "",
        )
        return [_row_to_policy(r) for r in rows]

    def get_policy(self, channel_id: str) -> Optional[RetentionPolicy]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM retention_policies WHERE channel_id = ?",
                (str(channel_id),),
            ).fetchone()
        return _row_to_policy(row) if row else None

    def set_policy(self, channel_id: str, guild_id: str, ttl_seconds: int) -> RetentionPolicy:
        ttl = validate_ttl(ttl_seconds)
        now = _utc_now()
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO retention_policies
                    (channel_id, guild_id, ttl_seconds, messages_deleted, last_deletion_at, created_at, updated_at)
                VALUES (?, ?, ?, 0, NULL, ?, ?)
                ON CONFLICT(channel_id) DO UPDATE SET
                    guild_id = excluded.guild_id,
                    ttl_seconds = excluded.ttl_seconds,
                    updated_at = excluded.updated_at
                """,
                (str(channel_id), str(guild_id), ttl, now, now),
            )
            row = conn.execute(
                "SELECT * FROM retention_policies WHERE channel_id = ?",
                (str(channel_id),),
            ).fetchone()
        logger.info("retention policy set channel=%s ttl=%ss", channel_id, ttl)
        return _row_to_policy(row)

    def remove_policy(self, channel_id: str) -> bool:
        with self._session() as conn:
            cur = conn.execute(
                "DELETE FROM retention_policies WHERE channel_id = ?",
                (str(channel_id),),
            )
            conn.execute("DELETE FROM message_journal WHERE channel_id = ?", (str(channel_id),))
        removed = cur.rowcount > 0
        if removed:
            logger.info("retention policy removed channel=%s", channel_id)
        return removed

    def increment_stats(self, channel_id: str, deleted_count: int) -> Optional[StatsUpdate]:
        count = int(deleted_count)
        if count < 0:
            raise ValueError("deleted_count cannot be negative")
        now = _utc_now()
        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE retention_policies
                SET messages_deleted = messages_deleted + ?,
                    last_deletion_at = ?,
                    updated_at = ?
                WHERE channel_id = ?
                """,
                (count, now, now, str(channel_id)),
            )
            if cur.rowcount == 0:
                logger.warning("no retention policy for channel=%s, stats not updated", channel_id)
                return None
            row = conn.execute(
                "SELECT messages_deleted, last_deletion_at FROM retention_policies WHERE channel_id = ?",
                (str(channel_id),),
            ).fetchone()
        return StatsUpdate(
            messages_deleted=int(row["messages_deleted"]),
            last_deletion_at=_parse_dt(row["last_deletion_at"]),
        )

    # Sweep lease

    def acquire_sweep_lease(self, owner: str, ttl_sec: int) -> bool:
        """Take or renew the single sweep lease; False while another owner holds it."""
        now = datetime.now(timezone.utc)
        expires_at = (now + timedelta(seconds=max(1, int(ttl_sec)))).isoformat()
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT owner, expires_at FROM sweep_lease WHERE id = 1").fetchone()
            if row is not None and row["owner"] != owner and _parse_dt(row["expires_at"]) > now:
                logger.info("sweep lease held by %s until %s", row["owner"], row["expires_at"])
                return False
            conn.execute(
                """
                INSERT INTO sweep_lease (id, owner, expires_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET owner = excluded.owner, expires_at = excluded.expires_at
                """,
                (owner, expires_at),
            )
        return True

    def release_sweep_lease(self, owner: str) -> bool:
        with self._session() as conn:
            cur = conn.execute("DELETE FROM sweep_lease WHERE id = 1 AND owner = ?", (owner,))
        return cur.rowcount > 0

    # Message journal

    def record_message(
        self,
        channel_id: str,
        message_id: int,
        created_at: datetime,
        pinned: bool = False,
    ) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO message_journal (channel_id, message_id, created_at, pinned)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(channel_id, message_id) DO UPDATE SET
                    pinned = MAX(message_journal.pinned, excluded.pinned)
                """,
                (str(channel_id), int(message_id), _to_iso(created_at), 1 if pinned else 0),
            )

    def mark_pinned(self, channel_id: str, message_id: int, pinned: bool = True) -> bool:
        with self._session() as conn:
            cur = conn.execute(
                "UPDATE message_journal SET pinned = ? WHERE channel_id = ? AND message_id = ?",
                (1 if pinned else 0, str(channel_id), int(message_id)),
            )
        return cur.rowcount > 0

    def list_messages_before(
        self,
        channel_id: str,
        before_id: Optional[int],
        limit: int,
    ) -> List[CandidateMessage]:
        safe_limit = max(1, int(limit))
        with self._session() as conn:
            if before_id is None:
                rows = conn.execute(
                    """
                    SELECT message_id, created_at, pinned FROM message_journal
                    WHERE channel_id = ?
                    ORDER BY message_id DESC LIMIT ?
                    """,
                    (str(channel_id), safe_limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT message_id, created_at, pinned FROM message_journal
                    WHERE channel_id = ? AND message_id < ?
                    ORDER BY message_id DESC LIMIT ?
                    """,
                    (str(channel_id), int(before_id), safe_limit),
                ).fetchall()
        return [
            CandidateMessage(
                id=str(r["message_id"]),
                created_at=_parse_dt(r["created_at"]),
                pinned=bool(r["pinned"]),
            )
            for r in rows
        ]

    def get_message_times(self, channel_id: str, message_ids: Sequence[int]) -> dict:
        ids = [int(m) for m in message_ids]
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT message_id, created_at FROM message_journal WHERE channel_id = ? AND message_id IN ({placeholders})",
                (str(channel_id), *ids),
            ).fetchall()
        return {int(r["message_id"]): _parse_dt(r["created_at"]) for r in rows}

    def forget_messages(self, channel_id: str, message_ids: Sequence[int]) -> int:
        ids = [int(m) for m in message_ids]
        if not ids:
            return 0
        with self._session() as conn:
            cur = conn.executemany(
                "DELETE FROM message_journal WHERE channel_id = ? AND message_id = ?",
                [(str(channel_id), m) for m in ids],
            )
        return max(0, cur.rowcount)

    def journal_size(self, channel_id: Optional[str] = None) -> int:
        with self._session() as conn:
            if channel_id is None:
                row = conn.execute("SELECT COUNT(*) AS c FROM message_journal").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS c FROM message_journal WHERE channel_id = ?",
                    (str(channel_id),),
                ).fetchone()
        return int(row["c"])


def _parse_dt(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _row_to_policy(row: sqlite3.Row) -> RetentionPolicy:
    return RetentionPolicy(
        channel_id=row["channel_id"],
        guild_id=row["guild_id"],
        ttl_seconds=int(row["ttl_seconds"]),
        messages_deleted=int(row["messages_deleted"] or 0),
        last_deletion_at=_parse_dt(row["last_deletion_at"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
