from __future__ import annotations

import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Generic, Mapping, TypeVar

from pydantic import BaseModel

from .errors import AlreadyExistsError, ConflictError, NotFoundError
from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path(db_path: str | None = None) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount created by
    Docker for a missing file), the DB file is placed inside it.
    """
    p = os.path.abspath(db_path or settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "grr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect(db_path: str | None = None) -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str | None = None) -> None:
    """Create tables if they do not exist."""
    with connect(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS resources (
              kind TEXT NOT NULL,
              namespace TEXT NOT NULL,
              name TEXT NOT NULL,
              resource_version INTEGER NOT NULL,
              body TEXT NOT NULL, -- JSON
              updated_at TEXT NOT NULL,
              PRIMARY KEY (kind, namespace, name)
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              reason TEXT NOT NULL,
              kind TEXT,
              namespace TEXT,
              object_name TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(
    level: str,
    reason: str,
    message: str,
    kind: str | None = None,
    namespace: str | None = None,
    object_name: str | None = None,
    db_path: str | None = None,
) -> None:
    with connect(db_path) as conn:
        conn.execute(
            "INSERT INTO events (ts, level, reason, kind, namespace, object_name, message) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), reason, kind, namespace, object_name, message),
        )


def latest_events(limit: int = 100, db_path: str | None = None) -> list[dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


M = TypeVar("M", bound=BaseModel)


class ResourceStore(Generic[M]):
    """SQLite-backed store for one resource kind.

    Bodies are stored as JSON. `update` is optimistic: the caller's
    `metadata.resource_version` must match the stored one.
    """

    def __init__(self, kind: str, model: type[M], db_path: str | None = None):
        self.kind = kind
        self.model = model
        self.db_path = db_path

    def _load(self, row: sqlite3.Row) -> M:
        obj = self.model.model_validate_json(row["body"])
        obj.metadata.resource_version = int(row["resource_version"])
        return obj

    def get(self, namespace: str, name: str) -> M:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM resources WHERE kind=? AND namespace=? AND name=?",
                (self.kind, namespace, name),
            ).fetchone()
        if row is None:
            raise NotFoundError(self.kind, namespace, name)
        return self._load(row)

    def list(self, namespace: str, selector: Mapping[str, str] | None = None) -> list[M]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM resources WHERE kind=? AND namespace=? ORDER BY name",
                (self.kind, namespace),
            ).fetchall()
        out = [self._load(r) for r in rows]
        if selector:
            out = [o for o in out if all(o.metadata.labels.get(k) == v for k, v in selector.items())]
        return out

    def create(self, obj: M) -> M:
        created = obj.model_copy(deep=True)
        created.metadata.uid = created.metadata.uid or str(uuid.uuid4())
        created.metadata.resource_version = 1
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO resources (kind, namespace, name, resource_version, body, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.kind,
                        created.metadata.namespace,
                        created.metadata.name,
                        1,
                        created.model_dump_json(),
                        utc_now(),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise AlreadyExistsError(
                f"{self.kind} {created.metadata.namespace}/{created.metadata.name} already exists"
            ) from e
        return created

    def update(self, obj: M) -> M:
        meta = obj.metadata
        updated = obj.model_copy(deep=True)
        updated.metadata.resource_version = meta.resource_version + 1
        with connect(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE resources SET resource_version=?, body=?, updated_at=?
                WHERE kind=? AND namespace=? AND name=? AND resource_version=?
                """,
                (
                    updated.metadata.resource_version,
                    updated.model_dump_json(),
                    utc_now(),
                    self.kind,
                    meta.namespace,
                    meta.name,
                    meta.resource_version,
                ),
            )
            if cur.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM resources WHERE kind=? AND namespace=? AND name=?",
                    (self.kind, meta.namespace, meta.name),
                ).fetchone()
                if exists is None:
                    raise NotFoundError(self.kind, meta.namespace, meta.name)
                raise ConflictError(
                    f"{self.kind} {meta.namespace}/{meta.name} was modified; resource_version "
                    f"{meta.resource_version} is stale"
                )
        return updated

    def delete(self, namespace: str, name: str) -> None:
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM resources WHERE kind=? AND namespace=? AND name=?",
                (self.kind, namespace, name),
            )
            if cur.rowcount == 0:
                raise NotFoundError(self.kind, namespace, name)
