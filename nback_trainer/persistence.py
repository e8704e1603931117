from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .clock import Clock, WallClock
from .config import NBackConfig, Settings
from .results import SessionRecord
from .session import InterruptedSession

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_RECORD_COLUMNS = (
    "id",
    "timestamp",
    "n_level",
    "total_trials",
    "scored_trials",
    "position_hits",
    "position_misses",
    "position_false_alarms",
    "position_correct_rejections",
    "position_accuracy",
    "audio_hits",
    "audio_misses",
    "audio_false_alarms",
    "audio_correct_rejections",
    "audio_accuracy",
    "combined_accuracy",
    "avg_reaction_time_ms",
    "adaptive_enabled",
    "completed",
)


@dataclass(frozen=True, slots=True)
class StorageInfo:
    bytes_in_use: int
    session_count: int


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session_record (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                timestamp REAL NOT NULL,
                n_level INTEGER NOT NULL,
                total_trials INTEGER NOT NULL,
                scored_trials INTEGER NOT NULL,
                position_hits INTEGER NOT NULL,
                position_misses INTEGER NOT NULL,
                position_false_alarms INTEGER NOT NULL,
                position_correct_rejections INTEGER NOT NULL,
                position_accuracy INTEGER NOT NULL,
                audio_hits INTEGER NOT NULL,
                audio_misses INTEGER NOT NULL,
                audio_false_alarms INTEGER NOT NULL,
                audio_correct_rejections INTEGER NOT NULL,
                audio_accuracy INTEGER NOT NULL,
                combined_accuracy INTEGER NOT NULL,
                avg_reaction_time_ms INTEGER NOT NULL,
                adaptive_enabled INTEGER NOT NULL,
                completed INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS setting (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS interrupted_session (
                slot INTEGER PRIMARY KEY CHECK (slot = 1),
                interrupted_at REAL NOT NULL,
                payload TEXT NOT NULL
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SessionStore:
    """SQLite-backed store for session history, settings and the recovery snapshot.

    Failures are logged and swallowed: reads fall back to empty/default values
    and writes are dropped. Nothing here is retried.
    """

    def __init__(
        self,
        path: Path,
        *,
        config: NBackConfig | None = None,
        wall_clock: Clock | None = None,
    ) -> None:
        self._path = Path(path)
        self._cfg = config or NBackConfig()
        self._wall_clock = wall_clock or WallClock()

    @classmethod
    def default_path(cls) -> Path:
        return Path.home() / ".nback_trainer.sqlite3"

    @property
    def path(self) -> Path:
        return self._path

    # -- sessions ----------------------------------------------------------

    def load_sessions(self) -> list[SessionRecord]:
        """All stored records, newest first."""

        cols = ", ".join(_RECORD_COLUMNS)
        try:
            conn = open_db(self._path)
            try:
                rows = conn.execute(f"SELECT {cols} FROM session_record ORDER BY seq DESC").fetchall()
            finally:
                conn.close()
            return [SessionRecord.from_dict(dict(zip(_RECORD_COLUMNS, row))) for row in rows]
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("Failed to load sessions: %s", exc)
            return []

    def save_session(self, record: SessionRecord) -> None:
        data = record.to_dict()
        data["adaptive_enabled"] = 1 if record.adaptive_enabled else 0
        data["completed"] = 1 if record.completed else 0
        cols = ", ".join(_RECORD_COLUMNS)
        marks = ", ".join("?" for _ in _RECORD_COLUMNS)
        try:
            conn = open_db(self._path)
            try:
                with conn:
                    conn.execute(
                        f"INSERT OR REPLACE INTO session_record({cols}) VALUES ({marks})",
                        tuple(data[c] for c in _RECORD_COLUMNS),
                    )
                    conn.execute(
                        """
                        DELETE FROM session_record WHERE seq NOT IN (
                            SELECT seq FROM session_record ORDER BY seq DESC LIMIT ?
                        )
                        """,
                        (int(self._cfg.max_sessions_stored),),
                    )
                self._cleanup_if_needed(conn)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to save session %s: %s", record.id, exc)

    def _cleanup_if_needed(self, conn: sqlite3.Connection) -> None:
        """Drop the oldest records while over the byte cap, keeping a minimum history."""

        if _bytes_in_use(conn) <= self._cfg.max_storage_bytes:
            return
        while True:
            count = int(conn.execute("SELECT COUNT(*) FROM session_record").fetchone()[0])
            if count <= self._cfg.min_sessions_kept:
                break
            with conn:
                conn.execute("DELETE FROM session_record WHERE seq = (SELECT MIN(seq) FROM session_record)")
            if _bytes_in_use(conn) < self._cfg.target_storage_bytes:
                break
        logger.info("Session history trimmed to fit storage limit")

    # -- settings ----------------------------------------------------------

    def load_settings(self) -> Settings:
        try:
            conn = open_db(self._path)
            try:
                rows = conn.execute("SELECT key, value FROM setting").fetchall()
            finally:
                conn.close()
            stored = {str(k): json.loads(v) for k, v in rows}
            return Settings().merged(stored)
        except (sqlite3.Error, ValueError, TypeError) as exc:
            logger.warning("Failed to load settings: %s", exc)
            return Settings()

    def save_settings(self, partial: Mapping[str, Any]) -> Settings:
        """Merge ``partial`` into the stored settings and return the result."""

        updated = self.load_settings().merged(partial)
        try:
            conn = open_db(self._path)
            try:
                with conn:
                    for key, value in updated.to_dict().items():
                        conn.execute(
                            "INSERT OR REPLACE INTO setting(key, value) VALUES (?, ?)",
                            (key, json.dumps(value)),
                        )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to save settings: %s", exc)
        return updated

    # -- interrupted session -----------------------------------------------

    def load_interrupted_snapshot(self, *, now: float | None = None) -> InterruptedSession | None:
        """Return the recovery snapshot, or None when absent, stale or unreadable.

        Stale and unreadable snapshots are cleared.
        """

        try:
            conn = open_db(self._path)
            try:
                row = conn.execute("SELECT interrupted_at, payload FROM interrupted_session WHERE slot = 1").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to load interrupted session: %s", exc)
            return None
        if row is None:
            return None

        current = self._wall_clock.now() if now is None else float(now)
        if current - float(row[0]) > self._cfg.recovery_window_s:
            logger.info("Discarding interrupted session older than recovery window")
            self.clear_interrupted_snapshot()
            return None

        try:
            return InterruptedSession.from_dict(json.loads(row[1]))
        except ValueError as exc:
            logger.warning("Discarding unreadable interrupted session: %s", exc)
            self.clear_interrupted_snapshot()
            return None

    def save_interrupted_snapshot(self, record: InterruptedSession) -> None:
        try:
            conn = open_db(self._path)
            try:
                with conn:
                    conn.execute(
                        "INSERT OR REPLACE INTO interrupted_session(slot, interrupted_at, payload) VALUES (1, ?, ?)",
                        (float(record.interrupted_at), json.dumps(record.to_dict())),
                    )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to save interrupted session: %s", exc)

    def clear_interrupted_snapshot(self) -> None:
        try:
            conn = open_db(self._path)
            try:
                with conn:
                    conn.execute("DELETE FROM interrupted_session")
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to clear interrupted session: %s", exc)

    # -- maintenance -------------------------------------------------------

    def storage_info(self) -> StorageInfo:
        try:
            conn = open_db(self._path)
            try:
                count = int(conn.execute("SELECT COUNT(*) FROM session_record").fetchone()[0])
                return StorageInfo(bytes_in_use=_bytes_in_use(conn), session_count=count)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to read storage info: %s", exc)
            return StorageInfo(bytes_in_use=0, session_count=0)

    def clear_all_data(self) -> None:
        try:
            conn = open_db(self._path)
            try:
                with conn:
                    conn.execute("DELETE FROM session_record")
                    conn.execute("DELETE FROM setting")
                    conn.execute("DELETE FROM interrupted_session")
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Failed to clear data: %s", exc)


def _bytes_in_use(conn: sqlite3.Connection) -> int:
    page_size = int(conn.execute("PRAGMA page_size;").fetchone()[0])
    page_count = int(conn.execute("PRAGMA page_count;").fetchone()[0])
    free = int(conn.execute("PRAGMA freelist_count;").fetchone()[0])
    return (page_count - free) * page_size
