"""SQLite generation store for cached resources.

Resources live in named generations. Readers never look generations up by
name: they follow the ``active_generation_id`` pointer kept in the
``_metadata`` table, so a staging generation stays invisible until
``commit_generation`` flips the pointer. The commit deletes every other
generation, renames the staging one to the canonical cache name and moves
the pointer inside a single transaction.
"""

import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path

from .models import ResourceEntry
from .version import DEFAULT_INSTALLED_VERSION

logger = logging.getLogger(__name__)

ACTIVE_POINTER_KEY = "active_generation_id"
INSTALLED_VERSION_KEY = "installed_version"

# Marker embedded in the names of generations under construction.
TEMP_TAG = "-temp-"


class StoreError(Exception):
    """Raised when a store operation fails."""

    pass


class GenerationNotFoundError(StoreError):
    """Raised when writing into a generation that does not exist (anymore)."""

    pass


def init_db(db_path: str) -> sqlite3.Connection:
    """Initialize the store database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Database connection with WAL mode enabled.

    Raises:
        StoreError: If database initialization fails.
    """
    try:
        parent_dir = Path(db_path).parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS generations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                label TEXT,
                created_at TEXT NOT NULL,
                committed_at TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                generation_id INTEGER NOT NULL,
                resource_id TEXT NOT NULL,
                body BLOB NOT NULL,
                status_code INTEGER NOT NULL,
                content_type TEXT,
                etag TEXT,
                last_modified TEXT,
                content_length INTEGER NOT NULL,
                stored_at TEXT NOT NULL,
                PRIMARY KEY (generation_id, resource_id)
            )
        """)

        # Pointer records (active generation), kept apart from generation data
        conn.execute("""
            CREATE TABLE IF NOT EXISTS _metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        # Durable scalar settings (installed version marker)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise StoreError(f"Failed to initialize store: {e}")
    except OSError as e:
        raise StoreError(f"Failed to create store directory: {e}")


def _row_to_entry(row: sqlite3.Row) -> ResourceEntry:
    return ResourceEntry(
        resource_id=row["resource_id"],
        body=bytes(row["body"]),
        status_code=row["status_code"],
        content_type=row["content_type"],
        etag=row["etag"],
        last_modified=row["last_modified"],
        content_length=row["content_length"],
        stored_at=datetime.fromisoformat(row["stored_at"]),
    )


class GenerationStore:
    """Thread-safe access to cache generations stored in SQLite.

    All operations are serialized behind one re-entrant lock, mirroring
    SQLite's single-writer model.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    @classmethod
    def open(cls, db_path: str) -> "GenerationStore":
        """Open (creating if needed) the store at db_path."""
        return cls(init_db(db_path))

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    def _generation_id(self, name: str) -> int | None:
        row = self._conn.execute("SELECT id FROM generations WHERE name = ?", (name,)).fetchone()
        return row["id"] if row else None

    def create_generation(self, name: str, label: str | None = None) -> None:
        """Create an empty generation.

        Raises:
            StoreError: If the name is taken or the insert fails.
        """
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT INTO generations (name, label, created_at) VALUES (?, ?, ?)",
                    (name, label, datetime.now(UTC).isoformat()),
                )
                self._conn.commit()
        except sqlite3.IntegrityError:
            raise StoreError(f"Generation '{name}' already exists")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to create generation '{name}': {e}")

    def list_generations(self) -> list[str]:
        """Return the names of all generations, oldest first."""
        try:
            with self._lock:
                rows = self._conn.execute("SELECT name FROM generations ORDER BY id").fetchall()
            return [row["name"] for row in rows]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list generations: {e}")

    def has_generation(self, name: str) -> bool:
        try:
            with self._lock:
                return self._generation_id(name) is not None
        except sqlite3.Error as e:
            raise StoreError(f"Failed to look up generation '{name}': {e}")

    def delete_generation(self, name: str) -> bool:
        """Delete a generation and its entries.

        Deleting a generation that is already gone is not an error.

        Returns:
            True if a generation was deleted, False if it did not exist.
        """
        try:
            with self._lock:
                generation_id = self._generation_id(name)
                if generation_id is None:
                    return False
                self._conn.execute("DELETE FROM entries WHERE generation_id = ?", (generation_id,))
                self._conn.execute("DELETE FROM generations WHERE id = ?", (generation_id,))
                self._conn.execute(
                    "DELETE FROM _metadata WHERE key = ? AND value = ?",
                    (ACTIVE_POINTER_KEY, str(generation_id)),
                )
                self._conn.commit()
                return True
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"Failed to delete generation '{name}': {e}")

    def delete_temporary_generations(self) -> list[str]:
        """Delete every generation carrying the temporary tag."""
        deleted = []
        for name in self.list_generations():
            if TEMP_TAG in name and self.delete_generation(name):
                deleted.append(name)
        return deleted

    def prune(self) -> list[str]:
        """Delete every generation except the active one.

        Returns:
            Names of the deleted generations.
        """
        with self._lock:
            active = self.active_generation()
            deleted = []
            for name in self.list_generations():
                if name != active and self.delete_generation(name):
                    deleted.append(name)
            return deleted

    def purge(self) -> int:
        """Delete all generations and the active pointer.

        Returns:
            Number of generations deleted.
        """
        try:
            with self._lock:
                count = self._conn.execute("SELECT COUNT(*) FROM generations").fetchone()[0]
                self._conn.execute("DELETE FROM entries")
                self._conn.execute("DELETE FROM generations")
                self._conn.execute("DELETE FROM _metadata WHERE key = ?", (ACTIVE_POINTER_KEY,))
                self._conn.commit()
                return count
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"Failed to purge store: {e}")

    def commit_generation(self, staging: str, canonical: str) -> list[str]:
        """Publish a staging generation as the active one.

        In one transaction: every other generation is deleted, the staging
        generation is renamed to ``canonical`` and the active pointer is moved
        to it. Readers observe either the old active generation or the new
        one, never both and never none.

        Returns:
            Names of the generations that were deleted.

        Raises:
            GenerationNotFoundError: If the staging generation no longer exists.
            StoreError: If the transaction fails (nothing is changed).
        """
        with self._lock:
            try:
                generation_id = self._generation_id(staging)
                if generation_id is None:
                    raise GenerationNotFoundError(f"Staging generation '{staging}' not found")

                rows = self._conn.execute(
                    "SELECT name FROM generations WHERE id != ? ORDER BY id", (generation_id,)
                ).fetchall()
                deleted = [row["name"] for row in rows]

                self._conn.execute("DELETE FROM entries WHERE generation_id != ?", (generation_id,))
                self._conn.execute("DELETE FROM generations WHERE id != ?", (generation_id,))
                self._conn.execute(
                    "UPDATE generations SET name = ?, committed_at = ? WHERE id = ?",
                    (canonical, datetime.now(UTC).isoformat(), generation_id),
                )
                self._conn.execute(
                    "INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)",
                    (ACTIVE_POINTER_KEY, str(generation_id)),
                )
                self._conn.commit()
                return deleted
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StoreError(f"Failed to commit generation '{staging}': {e}")

    def active_generation(self) -> str | None:
        """Return the name of the active generation, or None if there is none."""
        try:
            with self._lock:
                row = self._conn.execute(
                    """
                    SELECT g.name FROM _metadata m
                    JOIN generations g ON g.id = CAST(m.value AS INTEGER)
                    WHERE m.key = ?
                    """,
                    (ACTIVE_POINTER_KEY,),
                ).fetchone()
            return row["name"] if row else None
        except sqlite3.Error as e:
            raise StoreError(f"Failed to resolve active generation: {e}")

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def put(self, generation: str, entry: ResourceEntry) -> None:
        """Store an entry in a generation, replacing any entry with the same id.

        Raises:
            GenerationNotFoundError: If the generation does not exist.
            StoreError: If the write fails.
        """
        try:
            with self._lock:
                generation_id = self._generation_id(generation)
                if generation_id is None:
                    raise GenerationNotFoundError(f"Generation '{generation}' not found")
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO entries
                    (generation_id, resource_id, body, status_code, content_type, etag, last_modified,
                     content_length, stored_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        generation_id,
                        entry.resource_id,
                        sqlite3.Binary(entry.body),
                        entry.status_code,
                        entry.content_type,
                        entry.etag,
                        entry.last_modified,
                        len(entry.body),
                        entry.stored_at.isoformat(),
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"Failed to store '{entry.resource_id}' in '{generation}': {e}")

    def get(self, generation: str, resource_id: str) -> ResourceEntry | None:
        """Return the entry stored under resource_id, or None."""
        try:
            with self._lock:
                row = self._conn.execute(
                    """
                    SELECT e.* FROM entries e
                    JOIN generations g ON g.id = e.generation_id
                    WHERE g.name = ? AND e.resource_id = ?
                    """,
                    (generation, resource_id),
                ).fetchone()
            return _row_to_entry(row) if row else None
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read '{resource_id}' from '{generation}': {e}")

    def delete(self, generation: str, resource_id: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        try:
            with self._lock:
                generation_id = self._generation_id(generation)
                if generation_id is None:
                    return False
                cursor = self._conn.execute(
                    "DELETE FROM entries WHERE generation_id = ? AND resource_id = ?",
                    (generation_id, resource_id),
                )
                self._conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"Failed to delete '{resource_id}' from '{generation}': {e}")

    def keys(self, generation: str) -> list[str]:
        """Return the resource ids stored in a generation, in insertion order."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT e.resource_id FROM entries e
                    JOIN generations g ON g.id = e.generation_id
                    WHERE g.name = ?
                    ORDER BY e.rowid
                    """,
                    (generation,),
                ).fetchall()
            return [row["resource_id"] for row in rows]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list entries of '{generation}': {e}")

    def count(self, generation: str) -> int:
        return len(self.keys(generation))

    def copy_entry(self, source: str, target: str, resource_id: str) -> None:
        """Copy one entry between generations without reading it into memory.

        Raises:
            GenerationNotFoundError: If either generation or the entry is missing.
            StoreError: If the copy fails.
        """
        try:
            with self._lock:
                source_id = self._generation_id(source)
                target_id = self._generation_id(target)
                if source_id is None or target_id is None:
                    raise GenerationNotFoundError(f"Cannot copy '{resource_id}': '{source}' or '{target}' is gone")
                cursor = self._conn.execute(
                    """
                    INSERT OR REPLACE INTO entries
                    (generation_id, resource_id, body, status_code, content_type, etag, last_modified,
                     content_length, stored_at)
                    SELECT ?, resource_id, body, status_code, content_type, etag, last_modified,
                           content_length, stored_at
                    FROM entries WHERE generation_id = ? AND resource_id = ?
                    """,
                    (target_id, source_id, resource_id),
                )
                if cursor.rowcount == 0:
                    self._conn.rollback()
                    raise GenerationNotFoundError(f"Entry '{resource_id}' not found in '{source}'")
                self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"Failed to copy '{resource_id}' from '{source}' to '{target}': {e}")

    # ------------------------------------------------------------------
    # Active generation shortcuts used by the read path
    # ------------------------------------------------------------------

    def match(self, resource_id: str) -> ResourceEntry | None:
        """Look up resource_id in the active generation.

        Pointer resolution and entry read happen under the same lock, so a
        concurrent commit cannot interleave between them.
        """
        with self._lock:
            active = self.active_generation()
            if active is None:
                return None
            return self.get(active, resource_id)

    def put_active(self, entry: ResourceEntry) -> bool:
        """Store an entry in the active generation.

        Returns:
            True if stored, False if no generation is active.
        """
        with self._lock:
            active = self.active_generation()
            if active is None:
                return False
            self.put(active, entry)
            return True

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        try:
            with self._lock:
                row = self._conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else default
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read setting '{key}': {e}")

    def set_setting(self, key: str, value: str) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    (key, value),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"Failed to write setting '{key}': {e}")

    def installed_version(self) -> str:
        """Return the installed version marker ("1.0.0" if never recorded or unreadable)."""
        try:
            return self.get_setting(INSTALLED_VERSION_KEY) or DEFAULT_INSTALLED_VERSION
        except StoreError as e:
            logger.warning("Could not read installed version: %s", e)
            return DEFAULT_INSTALLED_VERSION

    def save_installed_version(self, version: str) -> None:
        self.set_setting(INSTALLED_VERSION_KEY, version)
