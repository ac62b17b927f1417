"""
Shared fixtures: a real aiosqlite database on tmp_path and in-process
fakes for the structured-output and source-control collaborators.
"""
import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from core.entities import Digest, Event, FileChange, ResourceRecord
from core.errors import FatalProviderError
from core.schemas import DigestSchema, PerspectiveSchema, SummarySchema
from processing.retry import RetryPolicy
from services.database import Database, new_id
from services.source_control import SourceControlClient

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


def ms(year, month, day, hour=0, minute=0) -> int:
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp()) * 1000


class FakeLLM:
    """
    Stands in for StructuredLLMClient. Queued results are consumed in
    order per schema; an exception is raised, a coroutine function is
    awaited, anything else is returned. Empty queues use the defaults.
    """

    def __init__(self):
        self.queued: Dict[str, List[Any]] = defaultdict(list)
        self.defaults: Dict[str, Any] = {
            "DigestSchema": DigestSchema(
                title="Added dark mode support",
                summary="Users can now switch to a dark theme.",
                category="feature",
                why_this_matters="Reduces eye strain for night-time users.",
            ),
            "PerspectiveSchema": PerspectiveSchema(
                perspective="feature", title="New theme", summary="A new theme option.", confidence=80
            ),
            "SummarySchema": SummarySchema(
                headline="Dark mode shipped",
                accomplishments="The team shipped dark mode.",
                key_features=["Dark mode"],
                total_items=999,
            ),
        }
        self.calls: List[Dict[str, Any]] = []

    def queue(self, schema, *results) -> None:
        self.queued[schema.__name__].extend(results)

    def calls_for(self, schema) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["schema"] == schema.__name__]

    def model_name(self, tier) -> str:
        return f"fake-{tier}"

    async def generate(self, schema, system_prompt, user_prompt, tier="quality"):
        self.calls.append({"schema": schema.__name__, "system": system_prompt, "prompt": user_prompt, "tier": tier})
        await asyncio.sleep(0)

        queue = self.queued[schema.__name__]
        result = queue.pop(0) if queue else self.defaults.get(schema.__name__)
        if result is None:
            raise FatalProviderError(f"No fake response for {schema.__name__}")
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            result = await result()
        return result

    async def stream(self, schema, system_prompt, user_prompt, tier="quality"):
        result = await self.generate(schema, system_prompt, user_prompt, tier)
        data = result.model_dump()
        yield {"headline": data.get("headline", "")[:4]}
        yield data


class FakeSourceControl(SourceControlClient):
    def __init__(self, changes: Optional[List[FileChange]] = None, error: Optional[Exception] = None):
        self.changes = changes
        self.error = error
        self.calls = 0

    async def fetch_file_changes(self, resource, event):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.changes


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "digests.db"))
    await database.init_tables()
    return database


@pytest.fixture
async def resource(db):
    return await db.add_resource(
        ResourceRecord(id="res-1", owner_tenant_id=TENANT, full_name="acme/widgets", installation_id=7)
    )


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry(sleeps):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    return RetryPolicy(delay_seconds=1.0, sleep=record_sleep)


def push_payload(commits: int = 3, branch: str = "main") -> Dict[str, Any]:
    return {
        "ref": f"refs/heads/{branch}",
        "before": "a" * 40,
        "after": "b" * 40,
        "compare": "https://github.com/acme/widgets/compare/aaa...bbb",
        "commits": [{"id": f"sha{i}", "message": f"Commit {i}"} for i in range(commits)],
    }


def pr_payload(action: str = "opened", title: str = "Add dark mode", body: str = "Adds a theme toggle.") -> Dict[str, Any]:
    return {
        "action": action,
        "pull_request": {
            "number": 42,
            "title": title,
            "body": body,
            "html_url": "https://github.com/acme/widgets/pull/42",
            "state": "open",
            "additions": 120,
            "deletions": 4,
            "changed_files": 3,
        },
    }


async def add_event(
    db: Database,
    resource_id: str = "res-1",
    kind: str = "push",
    payload: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[int] = None,
    file_changes: Optional[List[FileChange]] = None,
    status: str = "pending",
) -> Event:
    event = Event(
        id=new_id(),
        resource_id=resource_id,
        kind=kind,
        payload=payload if payload is not None else push_payload(),
        actor="octocat",
        occurred_at=occurred_at or ms(2024, 3, 6, 12),
        status=status,
        file_changes=file_changes,
    )
    return await db.add_event(event)


async def add_digest(
    db: Database,
    created_at: int,
    category: str = "feature",
    resource_id: str = "res-1",
    title: str = "Change",
) -> Digest:
    event = await add_event(db, resource_id=resource_id, occurred_at=created_at)
    return await db.add_digest(
        Digest(
            id=new_id(),
            resource_id=resource_id,
            event_id=event.id,
            title=title,
            narrative=f"{title} narrative",
            category=category,
            rationale="It matters.",
            contributors=["octocat"],
            created_at=created_at,
        )
    )
