"""Durable persistence for task plans.

Plans are stored either as a delimited JSON block embedded in an opaque
document (an issue body, a markdown file) or as a single SQLite row.  In both
cases a write replaces the whole plan in one operation.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Protocol

from pydantic import ValidationError

from ..errors import PlanFormatError
from ..utils.slug import slugify
from .schema import TaskPlan, utc_now
from .store import validate_plan

LOGGER = logging.getLogger(__name__)

TASK_OPEN_TAG = "<ao-do-not-edit-task-plan>"
TASK_CLOSE_TAG = "</ao-do-not-edit-task-plan>"
DETAILS_OPEN_TAG = "<details>"
DETAILS_CLOSE_TAG = "</details>"
AGENT_CONTEXT_SUMMARY = "<summary>Agent Context</summary>"


# ------------------------------------------------------------ serialisation
_JSON_MARKUP_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026"}


def render_plan(plan: TaskPlan) -> str:
    """Serialise ``plan`` as indented JSON.

    Markup characters are written as JSON unicode escapes, so no text held in
    the plan can close the block it is embedded in.
    """
    text = json.dumps(plan.model_dump(mode="json"), indent=2)
    for char, escape in _JSON_MARKUP_ESCAPES.items():
        text = text.replace(char, escape)
    return text


def parse_plan(payload: str) -> TaskPlan:
    """Parse JSON produced by :func:`render_plan` and check plan invariants."""
    try:
        plan = TaskPlan.model_validate_json(payload.strip())
    except ValidationError as error:
        raise PlanFormatError(f"Invalid task plan payload: {error}") from error
    return validate_plan(plan)


def render_plan_block(plan: TaskPlan) -> str:
    """Return the tagged block that carries ``plan`` inside a document."""
    return f"{TASK_OPEN_TAG}\n{render_plan(plan)}\n{TASK_CLOSE_TAG}"


def _locate_block(document: str) -> Optional[tuple[int, int]]:
    """Return ``(start, end)`` of the first block; a stray closing tag is ignored."""
    start = document.find(TASK_OPEN_TAG)
    if start == -1:
        return None
    end = document.find(TASK_CLOSE_TAG, start + len(TASK_OPEN_TAG))
    if end == -1:
        raise PlanFormatError("Document contains an unbalanced task plan block.")
    return start, end


def extract_plan(document: str) -> Optional[TaskPlan]:
    """Return the plan embedded in ``document`` or ``None`` when there is none."""
    span = _locate_block(document)
    if span is None:
        return None
    start, end = span
    return parse_plan(document[start + len(TASK_OPEN_TAG) : end])


def embed_plan(document: str, plan: TaskPlan) -> str:
    """Write ``plan`` into ``document``, keeping all surrounding text verbatim.

    A document without a block gets one appended inside a collapsed
    ``<details>`` section.
    """
    span = _locate_block(document)
    if span is None:
        return (
            f"{document}\n\n{DETAILS_OPEN_TAG}\n{AGENT_CONTEXT_SUMMARY}\n\n"
            f"{render_plan_block(plan)}\n\n{DETAILS_CLOSE_TAG}"
        )
    start, end = span
    before = document[:start]
    after = document[end + len(TASK_CLOSE_TAG) :]
    return f"{before}{render_plan_block(plan)}{after}"


# ---------------------------------------------------------------- protocols
class DurablePlanStore(Protocol):
    """Persistence boundary for task plans keyed by an opaque reference."""

    def read_plan(self, ref: str) -> Optional[TaskPlan]:
        ...

    def write_plan(self, ref: str, plan: TaskPlan) -> None:
        ...


class DocumentHost(Protocol):
    """Storage for opaque documents that may carry an embedded plan."""

    def get_document(self, ref: str) -> Optional[str]:
        ...

    def put_document(self, ref: str, body: str) -> None:
        ...


# ------------------------------------------------------------ document store
class FileDocumentHost:
    """Documents stored as markdown files under a directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, ref: str) -> Path:
        return self.root / f"{slugify(ref, fallback='plan')}.md"

    def get_document(self, ref: str) -> Optional[str]:
        path = self._path(ref)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def put_document(self, ref: str, body: str) -> None:
        path = self._path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(dir=path.parent, prefix=".plan-", suffix=".tmp")
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                stream.write(body)
            os.replace(temp_name, path)
        except OSError:
            Path(temp_name).unlink(missing_ok=True)
            raise


class DocumentPlanStore:
    """Keep plans embedded inside documents served by a :class:`DocumentHost`."""

    def __init__(self, host: DocumentHost) -> None:
        self._host = host
        self._lock = threading.Lock()

    def read_plan(self, ref: str) -> Optional[TaskPlan]:
        document = self._host.get_document(ref)
        if document is None:
            return None
        return extract_plan(document)

    def write_plan(self, ref: str, plan: TaskPlan) -> None:
        with self._lock:
            document = self._host.get_document(ref) or ""
            self._host.put_document(ref, embed_plan(document, plan))
        LOGGER.info("Persisted task plan to document %s", ref)


# -------------------------------------------------------------- sqlite store
class SqlitePlanStore:
    """SQLite-backed plan persistence, one row per plan reference."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path).resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = self._open_connection()
        self._bootstrap()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SqlitePlanStore":
        paths = config.get("paths") or {}
        db_path = paths.get("db_path")
        if db_path:
            return cls(Path(db_path))
        data_path = paths.get("data") or "data"
        return cls(Path(data_path) / "ao.sqlite")

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "SqlitePlanStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
        connection.row_factory = sqlite3.Row
        return connection

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Plan store is closed.")
        return self._conn

    def _bootstrap(self) -> None:
        self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS task_plans (
                ref TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._connection
                self._connection.commit()
            except Exception:
                self._connection.rollback()
                raise

    def read_plan(self, ref: str) -> Optional[TaskPlan]:
        with self._lock:
            row = self._connection.execute(
                "SELECT payload FROM task_plans WHERE ref = ?", (ref,)
            ).fetchone()
        if not row:
            return None
        return parse_plan(row["payload"])

    def write_plan(self, ref: str, plan: TaskPlan) -> None:
        with self._transaction() as connection:
            connection.execute(
                """
                INSERT INTO task_plans (ref, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(ref) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (ref, render_plan(plan), utc_now().isoformat()),
            )
        LOGGER.info("Persisted task plan %s", ref)

    def list_refs(self) -> List[str]:
        with self._lock:
            rows = self._connection.execute("SELECT ref FROM task_plans ORDER BY ref").fetchall()
        return [row["ref"] for row in rows]


__all__ = [
    "DocumentHost",
    "DocumentPlanStore",
    "DurablePlanStore",
    "FileDocumentHost",
    "SqlitePlanStore",
    "TASK_CLOSE_TAG",
    "TASK_OPEN_TAG",
    "embed_plan",
    "extract_plan",
    "parse_plan",
    "render_plan",
    "render_plan_block",
]
