"""
Progress log storage using SQLite.

Persists what agents did, per project:
- projects: created implicitly the first time an entry is written
- log_entries: immutable work records with a lazily filled summary
- entry_tags: normalized entry-to-tag pairs for tag filtering

The JSON ``tags`` column on log_entries is a denormalized copy kept for
display and for stores written before entry_tags existed. It is always
rebuilt from entry_tags on write and never edited directly.
"""

import json
import logging
import secrets
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .errors import (
    EntryExistsError,
    ProjectNotFoundError,
    StorageError,
    ValidationError,
    log_error,
)

logger = logging.getLogger(__name__)

ID_LENGTH = 12
DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100

# Keeps IN (...) lists well under SQLite's host parameter limit
_TAG_FETCH_CHUNK = 500


def generate_id() -> str:
    """Return a new 12 character URL-safe identifier."""
    return secrets.token_urlsafe(9)


def format_timestamp(value: datetime) -> str:
    """Format as UTC ISO-8601 with milliseconds and a trailing ``Z``.

    Every stored timestamp uses this exact shape so that plain string
    comparison orders them chronologically. Naive datetimes are UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    # strftime %Y does not zero-pad years below 1000 on every platform
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}.{value.microsecond // 1000:03d}Z"
    )


def utc_now() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def normalize_timestamp(value: str) -> str:
    """Convert any accepted ISO-8601 string to the stored timestamp format.

    Accepts date-only values (``2025-01-15``), explicit offsets and the
    ``Z`` designator. Raises ValueError for anything else.
    """
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        return format_timestamp(datetime.fromisoformat(text))
    except (ValueError, OverflowError):
        # OverflowError: the UTC conversion falls outside years 1-9999
        raise ValueError(f"Invalid ISO 8601 timestamp: {value!r}") from None


def normalize_tags(tags: Optional[Iterable[str]]) -> list[str]:
    """Deduplicate tags and put them in lexical order."""
    return sorted(set(tags or []))


@dataclass
class Project:
    """A project that log entries belong to."""
    project_id: str
    name: str
    created_at: str

    def to_dict(self) -> dict:
        return {
            "projectId": self.project_id,
            "name": self.name,
            "createdAt": self.created_at,
        }


@dataclass
class LogEntry:
    """A record of completed work. Only ``summary`` ever changes."""
    id: str
    project_id: str
    title: str
    content: str
    created_at: str
    tags: list[str] = field(default_factory=list)
    agent_id: Optional[str] = None
    summary: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "createdAt": self.created_at,
            "tags": self.tags,
            "agentId": self.agent_id,
        }

    def to_index(self) -> "EntryIndex":
        """Return the lightweight view used by search results."""
        return EntryIndex(
            id=self.id,
            project_id=self.project_id,
            title=self.title,
            created_at=self.created_at,
            tags=list(self.tags),
        )


@dataclass
class EntryIndex:
    """Search result view of an entry: no content, no summary."""
    id: str
    project_id: str
    title: str
    created_at: str
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "createdAt": self.created_at,
            "tags": self.tags,
        }


@dataclass
class SearchResult:
    """One page of matches plus the number of matches before the limit."""
    entries: list[EntryIndex]
    total: int

    def to_dict(self) -> dict:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "total": self.total,
        }


class ProgressStore:
    """SQLite-based progress log storage with a normalized tag index."""

    SCHEMA_VERSION = 2  # Bump when schema changes

    def __init__(self, db_path: Optional[str | Path] = None):
        """
        Open (and if needed create and migrate) the progress database.

        Args:
            db_path: Path to SQLite database. Defaults to ~/.agent-progress/data.db
        """
        if db_path is None:
            db_path = Path.home() / ".agent-progress" / "data.db"
        elif isinstance(db_path, str):
            db_path = Path(db_path).expanduser()

        self.db_path = db_path
        self._lock = threading.RLock()

        try:
            # The log may hold private work notes
            self.db_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            # isolation_level=None: transactions are opened explicitly
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=5.0,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.execute("PRAGMA foreign_keys=ON")
        except (OSError, sqlite3.Error) as e:
            log_error(e, "database", operation="open", db_path=str(self.db_path))
            raise StorageError(
                f"Failed to open database: {e}", operation="open", db_path=str(self.db_path)
            ) from e

        self._run_migrations()

    # -------------------------------------------------------------------------
    # Connection helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block inside one transaction, rolling back on any error."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise

    @contextmanager
    def _operation(self, operation: str, **context: Any) -> Iterator[None]:
        """Translate driver errors into StorageError carrying diagnostics."""
        try:
            yield
        except sqlite3.Error as e:
            log_error(e, "database", operation=operation, **context)
            raise StorageError(f"Failed to {operation}: {e}", operation=operation, **context) from e

    # -------------------------------------------------------------------------
    # Schema and migrations
    # -------------------------------------------------------------------------

    def _run_migrations(self) -> None:
        """Bring the schema up to SCHEMA_VERSION.

        Each step takes the write lock and re-reads the version before
        doing anything, so processes starting together against the same
        file apply every step exactly once.
        """
        steps = [
            (1, self._migrate_v1),
            (2, self._migrate_v2_tag_index),
        ]
        with self._operation("migrate schema", db_path=str(self.db_path)):
            with self._lock:
                self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY
                    )
                """)
            for version, step in steps:
                with self._transaction(immediate=True) as conn:
                    if self._current_version(conn) >= version:
                        continue
                    step(conn)
                    conn.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (version,))
                logger.info(f"Schema migration v{version} complete")

    @staticmethod
    def _current_version(conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row and row[0] else 0

    def _migrate_v1(self, conn: sqlite3.Connection) -> None:
        """Migration v1: projects and log entries."""
        logger.info("Running migration v1: creating projects and log_entries")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                project_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS log_entries (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                summary TEXT,
                created_at TEXT NOT NULL,
                tags TEXT,
                agent_id TEXT,
                FOREIGN KEY (project_id) REFERENCES projects(project_id)
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_project ON log_entries(project_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_created ON log_entries(created_at DESC)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_title ON log_entries(title)")

    def _migrate_v2_tag_index(self, conn: sqlite3.Connection) -> None:
        """Migration v2: build entry_tags and backfill it from the JSON column."""
        logger.info("Running migration v2: building normalized tag index")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS entry_tags (
                entry_id TEXT NOT NULL,
                tag TEXT NOT NULL,
                PRIMARY KEY (entry_id, tag),
                FOREIGN KEY (entry_id) REFERENCES log_entries(id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_entry_tags_tag ON entry_tags(tag)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_entry_tags_entry ON entry_tags(entry_id)")

        rows = conn.execute("""
            SELECT id, tags FROM log_entries
            WHERE tags IS NOT NULL AND tags != '' AND tags != '[]'
        """).fetchall()

        migrated = 0
        for row in rows:
            try:
                tags = json.loads(row["tags"])
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping unreadable tags for entry {row['id']}: {e}")
                continue
            if not isinstance(tags, list):
                logger.warning(f"Skipping non-list tags for entry {row['id']}")
                continue

            tags = normalize_tags(t for t in tags if isinstance(t, str) and t)
            if not tags:
                continue
            self._insert_tags(conn, row["id"], tags)
            self._rebuild_inline_tags(conn, row["id"])
            migrated += 1

        logger.info(f"Migrated tags for {migrated} entries to entry_tags")

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    def ensure_project(self, project_id: str, name: Optional[str] = None) -> None:
        """Create the project if absent. Repeat calls are no-ops."""
        with self._operation("ensure project exists", project_id=project_id):
            with self._lock:
                self._conn.execute(
                    "INSERT OR IGNORE INTO projects (project_id, name, created_at) VALUES (?, ?, ?)",
                    (project_id, name or project_id, utc_now()),
                )

    def project_exists(self, project_id: str) -> bool:
        with self._operation("check project existence", project_id=project_id):
            with self._lock:
                row = self._conn.execute(
                    "SELECT 1 FROM projects WHERE project_id = ? LIMIT 1", (project_id,)
                ).fetchone()
        return row is not None

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._operation("get project", project_id=project_id):
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM projects WHERE project_id = ?", (project_id,)
                ).fetchone()
        if row is None:
            return None
        return Project(project_id=row["project_id"], name=row["name"], created_at=row["created_at"])

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def create_entry(
        self,
        project_id: str,
        title: str,
        content: str,
        tags: Optional[list[str]] = None,
        agent_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> LogEntry:
        """
        Store a new log entry, creating its project if needed.

        Args:
            project_id: Owning project
            title: Short label
            content: Full body text
            tags: Optional tags; duplicates are dropped
            agent_id: Optional producer identifier
            entry_id: Used verbatim when exactly 12 characters, otherwise generated
            created_at: ISO-8601 creation time (default: now)

        Returns:
            The stored entry, with a null summary

        Raises:
            EntryExistsError: entry_id is already taken
            StorageError: any other database failure
        """
        if not entry_id or len(entry_id) != ID_LENGTH:
            entry_id = generate_id()

        if created_at is None:
            created_at = utc_now()
        else:
            try:
                created_at = normalize_timestamp(created_at)
            except ValueError as e:
                raise ValidationError("createdAt", str(e)) from e

        tags = normalize_tags(tags)
        context = {"project_id": project_id, "entry_id": entry_id}

        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO projects (project_id, name, created_at) VALUES (?, ?, ?)",
                    (project_id, project_id, utc_now()),
                )
                conn.execute("""
                    INSERT INTO log_entries (id, project_id, title, content, summary, created_at, tags, agent_id)
                    VALUES (?, ?, ?, ?, NULL, ?, '[]', ?)
                """, (entry_id, project_id, title, content, created_at, agent_id))
                self._insert_tags(conn, entry_id, tags)
                tags = self._rebuild_inline_tags(conn, entry_id)
        except sqlite3.IntegrityError as e:
            log_error(e, "database", operation="create entry", **context)
            if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                raise EntryExistsError(
                    f"Entry with ID already exists: {entry_id}", operation="create entry", **context
                ) from e
            raise StorageError(f"Failed to create entry: {e}", operation="create entry", **context) from e
        except sqlite3.Error as e:
            log_error(e, "database", operation="create entry", **context)
            raise StorageError(f"Failed to create entry: {e}", operation="create entry", **context) from e

        logger.info(f"Logged entry {entry_id} in {project_id}: {title}")

        return LogEntry(
            id=entry_id,
            project_id=project_id,
            title=title,
            content=content,
            created_at=created_at,
            tags=tags,
            agent_id=agent_id,
            summary=None,
        )

    def get_entry(self, project_id: str, entry_id: str) -> Optional[LogEntry]:
        """Get an entry by project and ID. Returns None when absent."""
        with self._operation("get entry", project_id=project_id, entry_id=entry_id):
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM log_entries WHERE project_id = ? AND id = ?",
                    (project_id, entry_id),
                ).fetchone()
                if row is None:
                    return None
                tags = self._select_tags(self._conn, entry_id)
        return self._row_to_entry(row, tags)

    def update_summary(self, entry_id: str, summary: str) -> bool:
        """Set an entry's summary. Returns False if no entry matched."""
        with self._operation("update summary", entry_id=entry_id):
            with self._lock:
                cursor = self._conn.execute(
                    "UPDATE log_entries SET summary = ? WHERE id = ?", (summary, entry_id)
                )
        return cursor.rowcount > 0

    def count_entries(self, project_id: Optional[str] = None) -> int:
        """Get entry count, optionally for one project."""
        query = "SELECT COUNT(*) FROM log_entries"
        params: list[Any] = []
        if project_id is not None:
            query += " WHERE project_id = ?"
            params.append(project_id)

        with self._operation("count entries", project_id=project_id):
            with self._lock:
                return self._conn.execute(query, params).fetchone()[0]

    # -------------------------------------------------------------------------
    # Tag index
    # -------------------------------------------------------------------------

    def add_tags(self, entry_id: str, tags: list[str]) -> None:
        """Add tags to an entry. Tags already present are ignored."""
        with self._operation("add tags", entry_id=entry_id):
            with self._transaction() as conn:
                self._insert_tags(conn, entry_id, normalize_tags(tags))
                self._rebuild_inline_tags(conn, entry_id)

    def get_tags(self, entry_id: str) -> list[str]:
        """Get an entry's tags in lexical order."""
        with self._operation("get tags", entry_id=entry_id):
            with self._lock:
                return self._select_tags(self._conn, entry_id)

    def search_by_tags(self, project_id: str, tags: list[str]) -> list[LogEntry]:
        """
        Get every entry in a project carrying all of the given tags.

        Entries may carry additional tags. Results are newest first.
        """
        where, params = self._build_filters(project_id, tags=tags)
        with self._operation("search by tags", project_id=project_id, tags=tags):
            with self._transaction() as conn:
                rows = conn.execute(f"""
                    SELECT le.* FROM log_entries le
                    WHERE {where}
                    ORDER BY le.created_at DESC, le.rowid DESC
                """, params).fetchall()
                tags_by_entry = self._select_tags_for(conn, [row["id"] for row in rows])

        return [self._row_to_entry(row, tags_by_entry.get(row["id"], [])) for row in rows]

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def search(
        self,
        project_id: str,
        query: Optional[str] = None,
        tags: Optional[list[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> SearchResult:
        """
        Search entries in one project.

        All supplied filters must hold at once.

        Args:
            project_id: Project to search (must exist)
            query: Case-insensitive substring of the title
            tags: Entries must carry every one of these tags
            start_date: Inclusive lower bound on creation time (ISO-8601)
            end_date: Inclusive upper bound on creation time (ISO-8601)
            limit: Maximum entries returned (1-100)

        Returns:
            Newest-first page of matches and the total match count

        Raises:
            ProjectNotFoundError: The project was never created
            ValidationError: Bad limit or date
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_SEARCH_LIMIT:
            raise ValidationError("limit", f"must be an integer between 1 and {MAX_SEARCH_LIMIT}")

        bounds = {}
        for name, value in (("startDate", start_date), ("endDate", end_date)):
            if value is None:
                bounds[name] = None
                continue
            try:
                bounds[name] = normalize_timestamp(value)
            except ValueError as e:
                raise ValidationError(name, str(e)) from e

        if not self.project_exists(project_id):
            raise ProjectNotFoundError(project_id)

        where, params = self._build_filters(
            project_id,
            query=query,
            tags=tags,
            start_date=bounds["startDate"],
            end_date=bounds["endDate"],
        )

        with self._operation("search entries", project_id=project_id):
            with self._transaction() as conn:
                total = conn.execute(
                    f"SELECT COUNT(*) FROM log_entries le WHERE {where}", params
                ).fetchone()[0]
                rows = conn.execute(f"""
                    SELECT le.id, le.project_id, le.title, le.created_at
                    FROM log_entries le
                    WHERE {where}
                    ORDER BY le.created_at DESC, le.rowid DESC
                    LIMIT ?
                """, [*params, limit]).fetchall()
                tags_by_entry = self._select_tags_for(conn, [row["id"] for row in rows])

        entries = [
            EntryIndex(
                id=row["id"],
                project_id=row["project_id"],
                title=row["title"],
                created_at=row["created_at"],
                tags=tags_by_entry.get(row["id"], []),
            )
            for row in rows
        ]
        logger.debug(f"Search in {project_id} matched {total}, returning {len(entries)}")
        return SearchResult(entries=entries, total=total)

    @staticmethod
    def _build_filters(
        project_id: str,
        query: Optional[str] = None,
        tags: Optional[list[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> tuple[str, list[Any]]:
        """Build the WHERE clause shared by count and page queries."""
        clauses = ["le.project_id = ?"]
        params: list[Any] = [project_id]

        if query:
            # instr keeps % and _ in the query literal
            clauses.append("instr(lower(le.title), lower(?)) > 0")
            params.append(query)

        if start_date:
            clauses.append("le.created_at >= ?")
            params.append(start_date)

        if end_date:
            clauses.append("le.created_at <= ?")
            params.append(end_date)

        for tag in normalize_tags(tags):
            clauses.append(
                "EXISTS (SELECT 1 FROM entry_tags et WHERE et.entry_id = le.id AND et.tag = ?)"
            )
            params.append(tag)

        return " AND ".join(clauses), params

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _insert_tags(conn: sqlite3.Connection, entry_id: str, tags: list[str]) -> None:
        conn.executemany(
            "INSERT OR IGNORE INTO entry_tags (entry_id, tag) VALUES (?, ?)",
            [(entry_id, tag) for tag in tags],
        )

    @staticmethod
    def _select_tags(conn: sqlite3.Connection, entry_id: str) -> list[str]:
        rows = conn.execute(
            "SELECT tag FROM entry_tags WHERE entry_id = ? ORDER BY tag", (entry_id,)
        ).fetchall()
        return [row["tag"] for row in rows]

    @staticmethod
    def _select_tags_for(conn: sqlite3.Connection, entry_ids: list[str]) -> dict[str, list[str]]:
        tags_by_entry: dict[str, list[str]] = {}
        for start in range(0, len(entry_ids), _TAG_FETCH_CHUNK):
            chunk = entry_ids[start:start + _TAG_FETCH_CHUNK]
            placeholders = ",".join("?" * len(chunk))
            rows = conn.execute(
                f"SELECT entry_id, tag FROM entry_tags WHERE entry_id IN ({placeholders}) ORDER BY tag",
                chunk,
            ).fetchall()
            for row in rows:
                tags_by_entry.setdefault(row["entry_id"], []).append(row["tag"])
        return tags_by_entry

    def _rebuild_inline_tags(self, conn: sqlite3.Connection, entry_id: str) -> list[str]:
        """Rewrite the JSON tags column from entry_tags and return the tags."""
        tags = self._select_tags(conn, entry_id)
        conn.execute("UPDATE log_entries SET tags = ? WHERE id = ?", (json.dumps(tags), entry_id))
        return tags

    @staticmethod
    def _row_to_entry(row: sqlite3.Row, tags: list[str]) -> LogEntry:
        """Convert database row to LogEntry."""
        return LogEntry(
            id=row["id"],
            project_id=row["project_id"],
            title=row["title"],
            content=row["content"],
            created_at=row["created_at"],
            tags=tags,
            agent_id=row["agent_id"],
            summary=row["summary"],
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error as e:
                log_error(e, "system", operation="close")
