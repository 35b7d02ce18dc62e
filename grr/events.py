from __future__ import annotations

import sqlite3
from typing import Any, Protocol

from . import db
from .logs import get_logger

log = get_logger(__name__)

NORMAL = "Normal"
WARNING = "Warning"


class EventSink(Protocol):
    def emit(self, obj: Any, severity: str, reason: str, message: str) -> None: ...


class EventRecorder:
    """Records human-readable events about a route into the events table.

    Recording is best effort; a failure never changes the outcome of a pass.
    """

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path

    def emit(self, obj: Any, severity: str, reason: str, message: str) -> None:
        meta = getattr(obj, "metadata", None)
        try:
            db.log_event(
                "WARN" if severity == WARNING else "INFO",
                reason,
                message,
                kind=getattr(obj, "kind", None),
                namespace=getattr(meta, "namespace", None),
                object_name=getattr(meta, "name", None),
                db_path=self.db_path,
            )
        except sqlite3.Error as e:
            log.warning("event_record_failed", reason=reason, event_message=message, error=str(e))
