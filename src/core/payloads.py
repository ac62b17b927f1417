"""
Typed views over raw event payloads.

The raw payload stays on the Event untouched; parse_payload() gives the
digest pipeline a tagged union keyed by event kind. Unknown kinds land in
GenericPayload instead of failing.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Commit(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sha: Optional[str] = Field(default=None, alias="id")
    message: str = ""

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "Commit":
        # Push payloads carry the sha as "id", some clients send "sha"
        return cls(id=raw.get("id") or raw.get("sha"), message=raw.get("message") or "")


class PushPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["push"] = "push"
    ref: str = ""
    before: Optional[str] = None
    after: Optional[str] = None
    compare: Optional[str] = None
    commits: List[Commit] = []

    @property
    def branch(self) -> str:
        return self.ref.replace("refs/heads/", "")

    @property
    def commit_count(self) -> int:
        return len(self.commits)


class PullRequestPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["pull_request"] = "pull_request"
    action: Optional[str] = None
    number: Optional[int] = None
    title: Optional[str] = None
    body: Optional[str] = None
    html_url: Optional[str] = None
    state: Optional[str] = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0


class GenericPayload(BaseModel):
    kind: str
    raw: Dict[str, Any] = {}


EventPayload = Union[PushPayload, PullRequestPayload, GenericPayload]


def parse_payload(kind: str, raw: Optional[Dict[str, Any]]) -> EventPayload:
    raw = raw or {}

    if kind == "push":
        return PushPayload(
            ref=raw.get("ref") or "",
            before=raw.get("before"),
            after=raw.get("after"),
            compare=raw.get("compare"),
            commits=[Commit.from_raw(c) for c in raw.get("commits") or []],
        )

    if kind == "pull_request":
        pr = raw.get("pull_request") or {}
        return PullRequestPayload(
            action=raw.get("action"),
            number=pr.get("number"),
            title=pr.get("title"),
            body=pr.get("body"),
            html_url=pr.get("html_url"),
            state=pr.get("state"),
            additions=pr.get("additions") or 0,
            deletions=pr.get("deletions") or 0,
            changed_files=pr.get("changed_files") or 0,
        )

    return GenericPayload(kind=kind, raw=raw)
