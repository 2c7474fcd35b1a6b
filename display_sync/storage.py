import contextlib
import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .models import MediaCatalogEntry, OrderItem

logger = logging.getLogger(__name__)

SQL_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL DEFAULT 'student',
    first_name TEXT,
    last_name TEXT,
    preferred_name TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS media (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    file_path TEXT NOT NULL,
    file_type TEXT NOT NULL CHECK (file_type IN ('image', 'video')),
    duration REAL,
    display_order INTEGER,
    user_id INTEGER NOT NULL REFERENCES users(id),
    status TEXT NOT NULL DEFAULT 'pending',
    metadata TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    approved_at TEXT,
    approved_by INTEGER,
    archived_at TEXT,
    archived_by INTEGER
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT,
    updated_by INTEGER
);
"""

DEFAULT_SETTINGS = {
    "auto_approve": "false",
    "default_image_duration": "10",
    "auto_archive_days": "0",
}

APPROVED_MEDIA_QUERY = """
SELECT
    m.id, m.title, m.description, m.file_path, m.file_type,
    m.duration, m.display_order, m.created_at, m.approved_at, m.metadata,
    u.username AS uploaded_by,
    COALESCE(u.preferred_name, u.first_name) || ' ' || u.last_name AS full_name
FROM media m
JOIN users u ON m.user_id = u.id
WHERE m.status = 'approved'
ORDER BY
    CASE WHEN m.display_order IS NULL THEN 1 ELSE 0 END,
    m.display_order ASC,
    m.approved_at DESC
"""

class StorageError(Exception):
    """Raised when the media database cannot be read or written."""

def to_sql_time(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(SQL_TIME_FORMAT)

class MediaStore:
    """SQLite-backed media, user and settings tables."""

    def __init__(self, path: str):
        self.path = Path(path)

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            connection = sqlite3.connect(self.path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.path}: {e}") from e
        connection.row_factory = sqlite3.Row
        try:
            with connection:
                yield connection
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            connection.close()

    def initialize(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            for key, value in DEFAULT_SETTINGS.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value, updated_at) VALUES (?, ?, datetime('now'))",
                    (key, value)
                )
            if conn.execute("SELECT 1 FROM users WHERE username = ?", ("admin",)).fetchone() is None:
                conn.execute(
                    "INSERT INTO users (username, role, first_name, last_name) VALUES (?, 'admin', ?, ?)",
                    ("admin", "Display", "Admin")
                )
                logger.info("Created default admin user")
        logger.info(f"Database ready at {self.path}")

    # Reads used by the scheduler

    def list_approved_media(self) -> List[MediaCatalogEntry]:
        with self._connect() as conn:
            rows = conn.execute(APPROVED_MEDIA_QUERY).fetchall()
        return [self._to_entry(row) for row in rows]

    def count_approved(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM media WHERE status = 'approved'").fetchone()
        return int(row[0])

    def _to_entry(self, row: sqlite3.Row) -> MediaCatalogEntry:
        metadata: Dict[str, Any] = {}
        if row["metadata"]:
            try:
                metadata = json.loads(row["metadata"])
            except ValueError as e:
                logger.warning(f"Ignoring malformed metadata for media {row['id']}: {e}")
        return MediaCatalogEntry(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            file_type=row["file_type"],
            duration_seconds=row["duration"],
            display_order=row["display_order"],
            approved_at=row["approved_at"],
            created_at=row["created_at"],
            file_url=f"/uploads/{os.path.basename(row['file_path'])}",
            uploaded_by=row["uploaded_by"],
            full_name=row["full_name"],
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def set_media_duration(self, media_id: int, seconds: float) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE media SET duration = ? WHERE id = ?", (seconds, media_id))
        return cursor.rowcount > 0

    # Settings

    def get_setting(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str, updated_by: Optional[int] = None):
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at, updated_by)
                VALUES (?, ?, datetime('now'), ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at,
                    updated_by = excluded.updated_by
                """,
                (key, str(value), updated_by)
            )

    # Archiving

    def pick_admin_id(self) -> Optional[int]:
        with self._connect() as conn:
            row = conn.execute("SELECT id FROM users WHERE role = 'admin' ORDER BY id LIMIT 1").fetchone()
        return row["id"] if row else None

    def archive_older_than(self, cutoff: datetime, admin_id: int) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE media
                SET status = 'archived', archived_at = datetime('now'), archived_by = ?
                WHERE status = 'approved' AND approved_at < ?
                """,
                (admin_id, to_sql_time(cutoff))
            )
        return cursor.rowcount

    # Moderation and content management

    def add_user(self, username: str, role: str = "student", first_name: Optional[str] = None,
                 last_name: Optional[str] = None, preferred_name: Optional[str] = None) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO users (username, role, first_name, last_name, preferred_name) VALUES (?, ?, ?, ?, ?)",
                (username, role, first_name, last_name, preferred_name)
            )
        return cursor.lastrowid

    def add_media(self, title: str, file_path: str, file_type: str, user_id: int,
                  description: Optional[str] = None, duration: Optional[float] = None,
                  status: str = "pending", display_order: Optional[int] = None,
                  approved_at: Optional[datetime] = None, approved_by: Optional[int] = None,
                  metadata: Optional[Dict[str, Any]] = None) -> int:
        if status == "approved" and approved_at is None:
            approved_at = datetime.now(timezone.utc)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO media (
                    title, description, file_path, file_type, duration, display_order,
                    user_id, status, metadata, approved_at, approved_by
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title, description, file_path, file_type, duration, display_order,
                    user_id, status, json.dumps(metadata) if metadata is not None else None,
                    to_sql_time(approved_at) if approved_at else None, approved_by,
                )
            )
        return cursor.lastrowid

    def approve_media(self, media_id: int, approved_by: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE media
                SET status = 'approved', approved_at = datetime('now'), approved_by = ?
                WHERE id = ? AND status = 'pending'
                """,
                (approved_by, media_id)
            )
        return cursor.rowcount > 0

    def reject_media(self, media_id: int, rejected_by: int) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT file_path FROM media WHERE id = ? AND status = 'pending'", (media_id,)
            ).fetchone()
            if row is None:
                return False
            conn.execute(
                """
                UPDATE media
                SET status = 'rejected', approved_at = datetime('now'), approved_by = ?
                WHERE id = ?
                """,
                (rejected_by, media_id)
            )
        self._remove_file(row["file_path"])
        return True

    def delete_media(self, media_id: int) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT file_path FROM media WHERE id = ?", (media_id,)).fetchone()
            if row is None:
                return False
            conn.execute("DELETE FROM media WHERE id = ?", (media_id,))
        self._remove_file(row["file_path"])
        return True

    def update_media_order(self, items: List[OrderItem]):
        # Single transaction, rolled back as a whole on failure
        with self._connect() as conn:
            conn.executemany(
                "UPDATE media SET display_order = ? WHERE id = ?",
                [(item.display_order, item.id) for item in items]
            )

    def update_media(self, media_id: int, fields: Dict[str, Any]) -> bool:
        columns = {"title", "description", "duration", "metadata"}
        updates = {k: v for k, v in fields.items() if k in columns}
        if not updates:
            raise ValueError("No fields to update")
        if isinstance(updates.get("metadata"), dict):
            updates["metadata"] = json.dumps(updates["metadata"])
        assignments = ", ".join(f"{column} = ?" for column in updates)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE media SET {assignments} WHERE id = ?",
                (*updates.values(), media_id)
            )
        return cursor.rowcount > 0

    def _remove_file(self, file_path: str):
        try:
            os.remove(file_path)
        except OSError as e:
            logger.error(f"Error deleting file {file_path}: {e}")
