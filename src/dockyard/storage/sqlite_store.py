"""SQLite record store with WAL mode."""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

from dockyard.errors import AlreadyExists, StoreUnavailable
from dockyard.models.project import utc_now
from dockyard.storage.base import StorageBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Column whitelist for merge-patches; id and created_at are immutable
_ALLOWED_COLUMNS: set[str] = {
    "name",
    "status",
    "repo_url",
    "owner",
    "owner_login",
    "domain",
    "is_public",
    "autodeploy",
    "env_vars",
    "build_errors",
    "missing_env_vars",
    "deployment_logs",
    "last_callback_status",
    "attempt",
    "updated_at",
    "last_deployed",
}

_JSON_FIELDS = ["env_vars", "build_errors", "missing_env_vars"]


def _validate_update_keys(updates: dict[str, Any]) -> dict[str, Any]:
    """Filter update dict to only allowed column names."""
    filtered = {k: v for k, v in updates.items() if k in _ALLOWED_COLUMNS}
    rejected = set(updates.keys()) - _ALLOWED_COLUMNS - {"id"}
    if rejected:
        logger.warning("Rejected invalid column names for projects: %s", rejected)
    return filtered


def _store_errors(
    func: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Surface driver failures as StoreUnavailable."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except aiosqlite.Error as e:
            logger.error("Record store %s failed: %s", func.__name__, e)
            raise StoreUnavailable(f"Record store unavailable: {e}") from e

    return wrapper


class SQLiteStore(StorageBackend):
    """SQLite-based record store with WAL mode."""

    def __init__(self, db_path: Path, *, wal_mode: bool = True) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(str(self.db_path))
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Cannot open record store at {self.db_path}") from e
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")

        await self._db.executescript(_load_sql("dockyard.sql"))
        await self._db.commit()
        logger.info("Initialized SQLite store at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreUnavailable("Store not initialized. Call initialize() first.")
        return self._db

    # --- Project operations ---

    @_store_errors
    async def insert_project(self, project: dict[str, Any]) -> dict[str, Any]:
        try:
            await self.db.execute(
                """INSERT INTO projects (id, name, status, repo_url, owner, owner_login,
                   domain, is_public, autodeploy, env_vars, build_errors,
                   missing_env_vars, deployment_logs, last_callback_status, attempt,
                   created_at, updated_at, last_deployed)
                   VALUES (:id, :name, :status, :repo_url, :owner, :owner_login,
                   :domain, :is_public, :autodeploy, :env_vars, :build_errors,
                   :missing_env_vars, :deployment_logs, :last_callback_status, :attempt,
                   :created_at, :updated_at, :last_deployed)""",
                _serialize_json_fields(project, _JSON_FIELDS),
            )
        except aiosqlite.IntegrityError as e:
            await self.db.rollback()
            raise AlreadyExists(f"Project already exists: {project['id']}") from e
        await self.db.commit()
        return project

    @_store_errors
    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    @_store_errors
    async def update_project(
        self,
        project_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> dict[str, Any] | None:
        updates = _validate_update_keys(updates)
        if not updates:
            return await self.get_project(project_id)

        updates["updated_at"] = utc_now()
        updates = _serialize_json_fields(updates, _JSON_FIELDS)
        set_clauses = []
        values: list[Any] = []
        for key, value in updates.items():
            set_clauses.append(f"{key} = ?")
            values.append(value)

        query = f"UPDATE projects SET {', '.join(set_clauses)} WHERE id = ?"
        values.append(project_id)
        if expected_status is not None:
            query += " AND status = ?"
            values.append(expected_status)

        cursor = await self.db.execute(query, values)
        await self.db.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get_project(project_id)

    @_store_errors
    async def delete_project(self, project_id: str) -> bool:
        cursor = await self.db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        await self.db.commit()
        return cursor.rowcount > 0

    @_store_errors
    async def find_by_repo_url(self, repo_url: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM projects WHERE repo_url = ? ORDER BY created_at",
            (repo_url,),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    @_store_errors
    async def list_projects(self, *, owner: str | None = None) -> list[dict[str, Any]]:
        if owner:
            cursor = await self.db.execute(
                "SELECT * FROM projects WHERE owner = ? ORDER BY created_at DESC",
                (owner,),
            )
        else:
            cursor = await self.db.execute("SELECT * FROM projects ORDER BY created_at DESC")
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    # --- User operations ---

    @_store_errors
    async def upsert_user(
        self,
        email: str,
        *,
        login: str | None = None,
        role: str | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        now = utc_now()
        await self.db.execute(
            """INSERT INTO users (email, login, role, access_token, created_at)
               VALUES (?, ?, COALESCE(?, 'user'), ?, ?)
               ON CONFLICT(email) DO UPDATE SET
                   login = COALESCE(excluded.login, users.login),
                   role = COALESCE(?, users.role),
                   access_token = COALESCE(excluded.access_token, users.access_token),
                   updated_at = ?""",
            (email, login, role, access_token, now, role, now),
        )
        await self.db.commit()
        user = await self.get_user(email)
        if user is None:
            raise StoreUnavailable(f"User {email} missing after upsert")
        return user

    @_store_errors
    async def get_user(self, email: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM users WHERE email = ?", (email,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    @_store_errors
    async def get_user_by_login(self, login: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            "SELECT * FROM users WHERE login = ? LIMIT 1", (login,)
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    # --- Activity log ---

    @_store_errors
    async def log_activity(self, entry: dict[str, Any]) -> None:
        await self.db.execute(
            """INSERT INTO activity_log (id, project_id, event_type, actor,
               description, created_at)
               VALUES (:id, :project_id, :event_type, :actor,
               :description, :created_at)""",
            entry,
        )
        await self.db.commit()

    @_store_errors
    async def get_activity_log(
        self, *, project_id: str | None = None, limit: int = 20
    ) -> list[dict[str, Any]]:
        if project_id:
            cursor = await self.db.execute(
                "SELECT * FROM activity_log WHERE project_id = ?"
                " ORDER BY created_at DESC LIMIT ?",
                (project_id, limit),
            )
        else:
            cursor = await self.db.execute(
                "SELECT * FROM activity_log ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    # --- Stats ---

    @_store_errors
    async def get_stats(self) -> dict[str, Any]:
        cursor = await self.db.execute(
            "SELECT status, COUNT(*) AS count FROM projects GROUP BY status"
        )
        rows = await cursor.fetchall()
        by_status = {row["status"]: row["count"] for row in rows}

        cursor = await self.db.execute("SELECT COUNT(*) FROM users")
        row = await cursor.fetchone()
        user_count = row[0] if row else 0

        return {
            "projects": sum(by_status.values()),
            "by_status": by_status,
            "users": user_count,
            "db_path": str(self.db_path),
        }


# --- Helpers ---


def _load_sql(filename: str) -> str:
    """Load SQL file from the schema package."""
    schema_dir = Path(__file__).parent.parent / "schema"
    return (schema_dir / filename).read_text()


def _row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
    """Convert an aiosqlite Row to a dict, deserializing JSON fields."""
    d = dict(row)
    for key in _JSON_FIELDS:
        if key in d and isinstance(d[key], str):
            try:
                d[key] = json.loads(d[key])
            except (json.JSONDecodeError, TypeError):
                d[key] = []
    for key in ("is_public", "autodeploy"):
        if key in d and d[key] is not None:
            d[key] = bool(d[key])
    return d


def _serialize_json_fields(data: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    """Serialize dict/list fields to JSON strings for SQLite storage."""
    result = dict(data)
    for field in fields:
        if field in result and not isinstance(result[field], str) and result[field] is not None:
            result[field] = json.dumps(result[field])
    return result
