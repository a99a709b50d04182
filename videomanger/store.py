"""SQLite persistence for directories, videos, tags, settings and watch history."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from videomanger.models import Directory, Tag, Video, WatchRecord


class StoreError(Exception):
    """Raised when a storage operation fails."""


class NotFoundError(StoreError):
    """Raised when a requested record does not exist."""


# Each migration is a version name and the statements it runs, in order.
_MIGRATIONS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "001_initial",
        (
            """CREATE TABLE directories (
                id   INTEGER PRIMARY KEY AUTOINCREMENT,
                path TEXT NOT NULL UNIQUE
            )""",
            """CREATE TABLE tags (
                id   INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            )""",
            """CREATE TABLE videos (
                id             INTEGER PRIMARY KEY AUTOINCREMENT,
                filename       TEXT NOT NULL,
                directory_id   INTEGER REFERENCES directories(id) ON DELETE SET NULL,
                directory_path TEXT NOT NULL DEFAULT '',
                display_name   TEXT NOT NULL DEFAULT '',
                rating         INTEGER NOT NULL DEFAULT 0,
                UNIQUE (filename, directory_path)
            )""",
            """CREATE TABLE video_tags (
                video_id INTEGER NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
                tag_id   INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
                PRIMARY KEY (video_id, tag_id)
            )""",
        ),
    ),
    (
        "002_settings",
        (
            """CREATE TABLE settings (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )""",
        ),
    ),
    (
        "003_watch_history",
        (
            """CREATE TABLE watch_history (
                video_id   INTEGER PRIMARY KEY REFERENCES videos(id) ON DELETE CASCADE,
                position   REAL NOT NULL DEFAULT 0,
                watched_at TEXT NOT NULL
            )""",
        ),
    ),
)

_VIDEO_COLUMNS = "id, filename, directory_id, directory_path, display_name, rating"
_TITLE_ORDER = "COALESCE(NULLIF(display_name, ''), filename)"


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply every pending migration in version order, each in its own transaction."""
    try:
        conn.execute(
            """CREATE TABLE IF NOT EXISTS schema_migrations (
                version    TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT (datetime('now'))
            )"""
        )
        conn.commit()
    except sqlite3.Error as exc:
        raise StoreError(f"create schema_migrations: {exc}") from exc

    for version, statements in sorted(_MIGRATIONS):
        try:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM schema_migrations WHERE version = ?", (version,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"check migration {version}: {exc}") from exc
        if count:
            continue
        _apply_migration(conn, version, statements)


def _apply_migration(
    conn: sqlite3.Connection, version: str, statements: Sequence[str]
) -> None:
    if conn.in_transaction:
        conn.commit()
    try:
        conn.execute("BEGIN")
    except sqlite3.Error as exc:
        raise StoreError(f"begin tx for migration {version}: {exc}") from exc
    try:
        for statement in statements:
            conn.execute(statement)
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreError(f"apply migration {version}: {exc}") from exc
    try:
        conn.execute("INSERT INTO schema_migrations (version) VALUES (?)", (version,))
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreError(f"record migration {version}: {exc}") from exc
    try:
        conn.commit()
    except sqlite3.Error as exc:
        raise StoreError(f"commit migration {version}: {exc}") from exc


def list_migrations(conn: sqlite3.Connection) -> list[str]:
    """Return the applied migration versions in version order."""
    try:
        rows = conn.execute(
            "SELECT version FROM schema_migrations ORDER BY version"
        ).fetchall()
    except sqlite3.Error as exc:
        raise StoreError(str(exc)) from exc
    return [version for (version,) in rows]


def _video_from_row(row: Sequence) -> Video:
    video_id, filename, directory_id, directory_path, display_name, rating = row
    return Video(
        id=video_id,
        filename=filename,
        directory_id=directory_id or 0,
        directory_path=directory_path,
        display_name=display_name,
        rating=rating,
    )


class SQLiteStore:
    """A video library stored in a SQLite database."""

    def __init__(self, path: str) -> None:
        try:
            conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        except sqlite3.Error as exc:
            raise StoreError(f"open {path}: {exc}") from exc
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            run_migrations(conn)
        except sqlite3.Error as exc:
            conn.close()
            raise StoreError(str(exc)) from exc
        except StoreError:
            conn.close()
            raise
        self._conn = conn
        self._lock = threading.RLock()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SQLiteStore:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    def _videos(self, sql: str, params: Sequence = ()) -> list[Video]:
        with self._db() as conn:
            return [_video_from_row(row) for row in conn.execute(sql, params)]

    # --- Directories ---

    def add_directory(self, path: str) -> Directory:
        with self._db() as conn:
            cursor = conn.execute("INSERT INTO directories (path) VALUES (?)", (path,))
            return Directory(id=cursor.lastrowid, path=path)

    def get_directory(self, directory_id: int) -> Directory:
        with self._db() as conn:
            row = conn.execute(
                "SELECT id, path FROM directories WHERE id = ?", (directory_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"directory {directory_id} not found")
        return Directory(*row)

    def list_directories(self) -> list[Directory]:
        with self._db() as conn:
            rows = conn.execute("SELECT id, path FROM directories ORDER BY path")
            return [Directory(*row) for row in rows]

    def delete_directory(self, directory_id: int) -> None:
        with self._db() as conn:
            conn.execute("DELETE FROM directories WHERE id = ?", (directory_id,))

    # --- Videos ---

    def upsert_video(self, directory_id: int, directory_path: str, filename: str) -> Video:
        with self._db() as conn:
            conn.execute(
                """INSERT INTO videos (filename, directory_id, directory_path)
                   VALUES (?, ?, ?)
                   ON CONFLICT (filename, directory_path)
                       DO UPDATE SET directory_id = excluded.directory_id""",
                (filename, directory_id, directory_path),
            )
            row = conn.execute(
                f"SELECT {_VIDEO_COLUMNS} FROM videos "
                "WHERE filename = ? AND directory_path = ?",
                (filename, directory_path),
            ).fetchone()
        if row is None:
            raise StoreError(f"upsert video {filename}: row missing after insert")
        return _video_from_row(row)

    def list_videos(self) -> list[Video]:
        return self._videos(f"SELECT {_VIDEO_COLUMNS} FROM videos ORDER BY {_TITLE_ORDER}")

    def list_videos_by_tag(self, tag_id: int) -> list[Video]:
        return self._videos(
            """SELECT v.id, v.filename, v.directory_id, v.directory_path,
                      v.display_name, v.rating
               FROM videos v
               JOIN video_tags vt ON v.id = vt.video_id
               WHERE vt.tag_id = ?
               ORDER BY COALESCE(NULLIF(v.display_name, ''), v.filename)""",
            (tag_id,),
        )

    def list_videos_by_directory(self, directory_id: int) -> list[Video]:
        return self._videos(
            f"SELECT {_VIDEO_COLUMNS} FROM videos WHERE directory_id = ? ORDER BY filename",
            (directory_id,),
        )

    def get_video(self, video_id: int) -> Video:
        with self._db() as conn:
            row = conn.execute(
                f"SELECT {_VIDEO_COLUMNS} FROM videos WHERE id = ?", (video_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"video {video_id} not found")
        return _video_from_row(row)

    def update_video_name(self, video_id: int, name: str) -> None:
        with self._db() as conn:
            conn.execute(
                "UPDATE videos SET display_name = ? WHERE id = ?", (name, video_id)
            )

    def set_video_rating(self, video_id: int, rating: int) -> None:
        with self._db() as conn:
            conn.execute("UPDATE videos SET rating = ? WHERE id = ?", (rating, video_id))

    def delete_video(self, video_id: int) -> None:
        with self._db() as conn:
            conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))

    def search_videos(self, query: str) -> list[Video]:
        return self._videos(
            f"SELECT {_VIDEO_COLUMNS} FROM videos "
            f"WHERE LOWER({_TITLE_ORDER}) LIKE LOWER(?) "
            f"ORDER BY {_TITLE_ORDER}",
            (f"%{query}%",),
        )

    def list_videos_by_rating(self) -> list[Video]:
        return self._videos(
            f"SELECT {_VIDEO_COLUMNS} FROM videos ORDER BY rating DESC, {_TITLE_ORDER}"
        )

    # --- Settings ---

    def get_setting(self, key: str) -> str:
        """Return the stored value, or '' if the setting is unset."""
        with self._db() as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else ""

    def set_setting(self, key: str, value: str) -> None:
        with self._db() as conn:
            conn.execute(
                """INSERT INTO settings (key, value) VALUES (?, ?)
                   ON CONFLICT (key) DO UPDATE SET value = excluded.value""",
                (key, value),
            )

    # --- Watch history ---

    def record_watch(self, video_id: int, position: float) -> None:
        with self._db() as conn:
            conn.execute(
                """INSERT INTO watch_history (video_id, position, watched_at)
                   VALUES (?, ?, datetime('now'))
                   ON CONFLICT (video_id) DO UPDATE SET
                       position   = excluded.position,
                       watched_at = excluded.watched_at""",
                (video_id, position),
            )

    def get_watch(self, video_id: int) -> WatchRecord:
        with self._db() as conn:
            row = conn.execute(
                "SELECT video_id, position, watched_at FROM watch_history WHERE video_id = ?",
                (video_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"no watch record for video {video_id}")
        return WatchRecord(video_id=row[0], position=float(row[1]), watched_at=row[2])

    def list_watched_ids(self) -> set[int]:
        with self._db() as conn:
            return {vid for (vid,) in conn.execute("SELECT video_id FROM watch_history")}

    # --- Tags ---

    def upsert_tag(self, name: str) -> Tag:
        with self._db() as conn:
            conn.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (name,))
            row = conn.execute(
                "SELECT id, name FROM tags WHERE name = ?", (name,)
            ).fetchone()
        if row is None:
            raise StoreError(f"upsert tag {name}: row missing after insert")
        return Tag(*row)

    def list_tags(self) -> list[Tag]:
        with self._db() as conn:
            return [Tag(*row) for row in conn.execute("SELECT id, name FROM tags ORDER BY name")]

    def tag_video(self, video_id: int, tag_id: int) -> None:
        with self._db() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO video_tags (video_id, tag_id) VALUES (?, ?)",
                (video_id, tag_id),
            )

    def untag_video(self, video_id: int, tag_id: int) -> None:
        with self._db() as conn:
            conn.execute(
                "DELETE FROM video_tags WHERE video_id = ? AND tag_id = ?",
                (video_id, tag_id),
            )

    def list_tags_by_video(self, video_id: int) -> list[Tag]:
        with self._db() as conn:
            rows = conn.execute(
                """SELECT t.id, t.name FROM tags t
                   JOIN video_tags vt ON t.id = vt.tag_id
                   WHERE vt.video_id = ?
                   ORDER BY t.name""",
                (video_id,),
            )
            return [Tag(*row) for row in rows]