import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiosqlite

from core.entities import (
    Digest,
    Event,
    FileChange,
    ImpactAssessment,
    Perspective,
    ResourceRecord,
    Summary,
    WorkBreakdownEntry,
)
from core.periods import now_ms

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


def _row_to_resource(row) -> ResourceRecord:
    return ResourceRecord(
        id=row["id"],
        owner_tenant_id=row["owner_tenant_id"],
        full_name=row["full_name"],
        installation_id=row["installation_id"],
        is_active=bool(row["is_active"]),
        model_tier=row["model_tier"],
    )


def _row_to_event(row) -> Event:
    changes = _loads(row["file_changes"])
    return Event(
        id=row["id"],
        resource_id=row["resource_id"],
        kind=row["kind"],
        payload=_loads(row["payload"]) or {},
        actor=row["actor"],
        occurred_at=row["occurred_at"],
        status=row["status"],
        file_changes=[FileChange.from_dict(c) for c in changes] if changes is not None else None,
        error_message=row["error_message"],
        created_at=row["created_at"],
    )


def _row_to_digest(row) -> Digest:
    impact = _loads(row["impact"])
    return Digest(
        id=row["id"],
        resource_id=row["resource_id"],
        event_id=row["event_id"],
        title=row["title"],
        narrative=row["narrative"],
        category=row["category"],
        rationale=row["rationale"],
        contributors=_loads(row["contributors"]) or [],
        created_at=row["created_at"],
        metadata=_loads(row["metadata"]) or {},
        perspectives=[Perspective(**p) for p in _loads(row["perspectives"]) or []],
        impact=ImpactAssessment(**impact) if impact else None,
        model_label=row["model_label"],
    )


def _row_to_summary(row) -> Summary:
    breakdown = _loads(row["work_breakdown"]) or {}
    return Summary(
        id=row["id"],
        resource_id=row["resource_id"],
        granularity=row["granularity"],
        period_start=row["period_start"],
        headline=row["headline"],
        accomplishments=row["accomplishments"],
        key_features=_loads(row["key_features"]) or [],
        work_breakdown={k: WorkBreakdownEntry(**v) for k, v in breakdown.items()},
        total_items=row["total_items"],
        included_digest_ids=_loads(row["included_digest_ids"]) or [],
        state=row["state"],
        version=row["version"],
        created_at=row["created_at"],
        last_updated_at=row["last_updated_at"],
    )


def breakdown_to_json(breakdown: Dict[str, WorkBreakdownEntry]) -> Dict[str, Dict[str, int]]:
    return {k: asdict(v) for k, v in breakdown.items()}


# Columns a summary write may touch, with their serializers
_SUMMARY_FIELDS = {
    "headline": lambda v: v,
    "accomplishments": lambda v: v,
    "key_features": _dumps,
    "work_breakdown": lambda v: _dumps(breakdown_to_json(v)),
    "total_items": lambda v: v,
    "included_digest_ids": _dumps,
}


def _summary_assignments(fields: Dict[str, Any]) -> Tuple[List[str], List[Any]]:
    columns, params = [], []
    for name, value in fields.items():
        if name not in _SUMMARY_FIELDS:
            raise ValueError(f"Unknown summary field: {name}")
        columns.append(f"{name} = ?")
        params.append(_SUMMARY_FIELDS[name](value))
    return columns, params


class Database:
    """
    aiosqlite-backed document store for resources, events, digests,
    summaries and the content cache. Every table is keyed by resource id.
    """

    def __init__(self, path: str):
        self.path = path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> int:
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def init_tables(self) -> None:
        """Initialize database tables."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS resources (
                    id TEXT PRIMARY KEY,
                    owner_tenant_id TEXT NOT NULL,
                    full_name TEXT NOT NULL,
                    installation_id INTEGER,
                    is_active BOOLEAN DEFAULT 1,
                    model_tier TEXT NOT NULL DEFAULT 'quality',
                    created_at INTEGER NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    resource_id TEXT NOT NULL REFERENCES resources(id),
                    kind TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    occurred_at INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    file_changes TEXT,
                    error_message TEXT,
                    processed_at INTEGER,
                    created_at INTEGER NOT NULL
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_resource_time ON events(resource_id, occurred_at)
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_resource_status ON events(resource_id, status)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS digests (
                    id TEXT PRIMARY KEY,
                    resource_id TEXT NOT NULL REFERENCES resources(id),
                    event_id TEXT NOT NULL UNIQUE REFERENCES events(id),
                    title TEXT NOT NULL,
                    narrative TEXT NOT NULL,
                    category TEXT NOT NULL,
                    rationale TEXT NOT NULL,
                    contributors TEXT NOT NULL,
                    metadata TEXT,
                    perspectives TEXT,
                    impact TEXT,
                    model_label TEXT,
                    created_at INTEGER NOT NULL
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_digests_resource_time ON digests(resource_id, created_at)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS summaries (
                    id TEXT PRIMARY KEY,
                    resource_id TEXT NOT NULL REFERENCES resources(id),
                    granularity TEXT NOT NULL,
                    period_start INTEGER NOT NULL,
                    headline TEXT NOT NULL,
                    accomplishments TEXT NOT NULL,
                    key_features TEXT NOT NULL,
                    work_breakdown TEXT NOT NULL,
                    total_items INTEGER NOT NULL,
                    included_digest_ids TEXT NOT NULL,
                    state TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL,
                    last_updated_at INTEGER NOT NULL,
                    UNIQUE (resource_id, granularity, period_start)
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    resource_id TEXT NOT NULL,
                    value TEXT NOT NULL,
                    expires_at INTEGER NOT NULL
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_cache_entries_resource ON cache_entries(resource_id)
            """)
            await conn.commit()
            logger.info("Database tables initialized")

    # ----------------------------
    # Resources
    # ----------------------------
    async def add_resource(self, resource: ResourceRecord) -> ResourceRecord:
        await self.execute(
            """
            INSERT INTO resources
            (id, owner_tenant_id, full_name, installation_id, is_active, model_tier, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (resource.id, resource.owner_tenant_id, resource.full_name, resource.installation_id,
             resource.is_active, resource.model_tier, now_ms()),
        )
        return resource

    async def get_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        row = await self.fetchone("SELECT * FROM resources WHERE id = ?", (resource_id,))
        return _row_to_resource(row) if row else None

    async def list_active_resources(self) -> List[ResourceRecord]:
        rows = await self.fetchall("SELECT * FROM resources WHERE is_active = 1 ORDER BY created_at")
        return [_row_to_resource(row) for row in rows]

    # ----------------------------
    # Events
    # ----------------------------
    async def add_event(self, event: Event) -> Event:
        await self.execute(
            """
            INSERT INTO events
            (id, resource_id, kind, payload, actor, occurred_at, status, file_changes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id, event.resource_id, event.kind, _dumps(event.payload), event.actor,
                event.occurred_at, event.status,
                _dumps([asdict(c) for c in event.file_changes]) if event.file_changes is not None else None,
                event.created_at or now_ms(),
            ),
        )
        return event

    async def get_event(self, event_id: str) -> Optional[Event]:
        row = await self.fetchone("SELECT * FROM events WHERE id = ?", (event_id,))
        return _row_to_event(row) if row else None

    async def update_event_status(
        self,
        event_id: str,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        processed_at = now_ms() if status in ("completed", "failed", "skipped") else None
        await self.execute(
            "UPDATE events SET status = ?, error_message = ?, processed_at = ? WHERE id = ?",
            (status, error_message, processed_at, event_id),
        )

    async def update_event_file_changes(self, event_id: str, changes: List[FileChange]) -> None:
        await self.execute(
            "UPDATE events SET file_changes = ? WHERE id = ?",
            (_dumps([asdict(c) for c in changes]), event_id),
        )

    async def list_events_by_status(self, status: str, limit: int = 50) -> List[Event]:
        rows = await self.fetchall(
            "SELECT * FROM events WHERE status = ? ORDER BY occurred_at LIMIT ?",
            (status, limit),
        )
        return [_row_to_event(row) for row in rows]

    # ----------------------------
    # Digests
    # ----------------------------
    async def add_digest(self, digest: Digest) -> Digest:
        """
        Insert a digest. At most one digest exists per event: if one is
        already stored the existing record is returned instead.
        """
        async with self.connect() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO digests
                (id, resource_id, event_id, title, narrative, category, rationale,
                 contributors, metadata, perspectives, impact, model_label, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    digest.id, digest.resource_id, digest.event_id, digest.title, digest.narrative,
                    digest.category, digest.rationale, _dumps(digest.contributors),
                    _dumps(digest.metadata), _dumps([asdict(p) for p in digest.perspectives]),
                    _dumps(asdict(digest.impact)) if digest.impact else None,
                    digest.model_label, digest.created_at,
                ),
            )
            await conn.commit()
            inserted = cursor.rowcount == 1

        if inserted:
            return digest

        existing = await self.get_digest_for_event(digest.event_id)
        logger.info(f"Digest already exists for event {digest.event_id}, keeping {existing.id}")
        return existing

    async def get_digest(self, digest_id: str) -> Optional[Digest]:
        row = await self.fetchone("SELECT * FROM digests WHERE id = ?", (digest_id,))
        return _row_to_digest(row) if row else None

    async def get_digest_for_event(self, event_id: str) -> Optional[Digest]:
        row = await self.fetchone("SELECT * FROM digests WHERE event_id = ?", (event_id,))
        return _row_to_digest(row) if row else None

    async def get_digests(self, resource_id: str, digest_ids: List[str]) -> List[Digest]:
        """Fetch digests by id, scoped to one resource, in the order given."""
        if not digest_ids:
            return []
        placeholders = ", ".join("?" for _ in digest_ids)
        rows = await self.fetchall(
            f"SELECT * FROM digests WHERE resource_id = ? AND id IN ({placeholders})",
            (resource_id, *digest_ids),
        )
        by_id = {row["id"]: _row_to_digest(row) for row in rows}
        return [by_id[d] for d in digest_ids if d in by_id]

    async def get_digests_in_range(self, resource_id: str, start_ms: int, end_ms: int) -> List[Digest]:
        """Digests with start <= created_at < end, oldest first."""
        rows = await self.fetchall(
            """SELECT * FROM digests
               WHERE resource_id = ? AND created_at >= ? AND created_at < ?
               ORDER BY created_at, id""",
            (resource_id, start_ms, end_ms),
        )
        return [_row_to_digest(row) for row in rows]

    async def count_digests_in_range(self, resource_id: str, start_ms: int, end_ms: int) -> int:
        row = await self.fetchone(
            "SELECT COUNT(*) FROM digests WHERE resource_id = ? AND created_at >= ? AND created_at < ?",
            (resource_id, start_ms, end_ms),
        )
        return row[0]

    # ----------------------------
    # Summaries
    # ----------------------------
    async def get_summary(self, resource_id: str, granularity: str, period_start: int) -> Optional[Summary]:
        row = await self.fetchone(
            "SELECT * FROM summaries WHERE resource_id = ? AND granularity = ? AND period_start = ?",
            (resource_id, granularity, period_start),
        )
        return _row_to_summary(row) if row else None

    async def get_summary_by_id(self, summary_id: str) -> Optional[Summary]:
        row = await self.fetchone("SELECT * FROM summaries WHERE id = ?", (summary_id,))
        return _row_to_summary(row) if row else None

    async def create_streaming_summary(
        self,
        resource_id: str,
        granularity: str,
        period_start: int,
        included_digest_ids: List[str],
        headline: str = "Generating summary...",
    ) -> Optional[Summary]:
        """
        Insert a streaming placeholder. Returns None when a summary for the
        same (resource, granularity, period_start) already exists.
        """
        summary_id = new_id()
        now = now_ms()
        async with self.connect() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO summaries
                (id, resource_id, granularity, period_start, headline, accomplishments, key_features,
                 work_breakdown, total_items, included_digest_ids, state, version, created_at, last_updated_at)
                VALUES (?, ?, ?, ?, ?, '', '[]', '{}', ?, ?, 'streaming', 0, ?, ?)
                """,
                (summary_id, resource_id, granularity, period_start, headline,
                 len(included_digest_ids), _dumps(included_digest_ids), now, now),
            )
            await conn.commit()
            if cursor.rowcount != 1:
                return None
        return await self.get_summary_by_id(summary_id)

    async def update_streaming_summary(self, summary_id: str, fields: Dict[str, Any]) -> bool:
        """Partial write. Only applies while the summary is still streaming."""
        columns, params = _summary_assignments(fields)
        columns.append("last_updated_at = ?")
        params.append(now_ms())
        rowcount = await self.execute(
            f"UPDATE summaries SET {', '.join(columns)} WHERE id = ? AND state = 'streaming'",
            (*params, summary_id),
        )
        return rowcount == 1

    async def settle_summary(self, summary_id: str, fields: Dict[str, Any]) -> bool:
        """Final write: streaming -> settled. Returns False if already settled."""
        columns, params = _summary_assignments(fields)
        columns += ["state = 'settled'", "version = version + 1", "last_updated_at = ?"]
        params.append(now_ms())
        rowcount = await self.execute(
            f"UPDATE summaries SET {', '.join(columns)} WHERE id = ? AND state = 'streaming'",
            (*params, summary_id),
        )
        return rowcount == 1

    async def replace_summary_if_version(
        self,
        summary_id: str,
        expected_version: int,
        fields: Dict[str, Any],
    ) -> bool:
        """
        Compare-and-swap on a settled summary. Returns False when another
        writer bumped the version first.
        """
        columns, params = _summary_assignments(fields)
        columns += ["version = version + 1", "last_updated_at = ?"]
        params.append(now_ms())
        rowcount = await self.execute(
            f"""UPDATE summaries SET {', '.join(columns)}
                WHERE id = ? AND version = ? AND state = 'settled'""",
            (*params, summary_id, expected_version),
        )
        return rowcount == 1

    async def delete_streaming_summary(self, summary_id: str) -> bool:
        """Drop a placeholder whose generation failed. Settled rows are kept."""
        rowcount = await self.execute(
            "DELETE FROM summaries WHERE id = ? AND state = 'streaming'", (summary_id,)
        )
        return rowcount == 1

    # ----------------------------
    # Cache
    # ----------------------------
    async def get_cache_entry(self, key: str) -> Optional[Tuple[Any, int]]:
        row = await self.fetchone("SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,))
        if row is None:
            return None
        return _loads(row["value"]), row["expires_at"]

    async def put_cache_entry(self, key: str, resource_id: str, value: Any, expires_at: int) -> None:
        await self.execute(
            """
            INSERT OR REPLACE INTO cache_entries (key, resource_id, value, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            (key, resource_id, json.dumps(value, default=str), expires_at),
        )

    async def delete_expired_cache_entries(self, now: int) -> int:
        return await self.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (now,))
