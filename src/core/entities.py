from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from core.payloads import EventPayload, parse_payload

Category = Literal["feature", "bugfix", "refactor", "docs", "chore", "security"]
CATEGORIES: tuple = ("feature", "bugfix", "refactor", "docs", "chore", "security")

PerspectiveKind = Literal["bugfix", "ui", "feature", "security", "performance", "refactor", "docs"]

EventStatus = Literal["pending", "processing", "completed", "failed", "skipped"]
ModelTier = Literal["fast", "quality"]
SummaryState = Literal["streaming", "settled"]


@dataclass(frozen=True)
class ResourceRecord:
    """
    Tenant-resource: the repository every query and cache key is scoped to.
    """
    id: str
    owner_tenant_id: str
    full_name: str
    installation_id: Optional[int] = None
    is_active: bool = True
    model_tier: ModelTier = "quality"

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[-1]


@dataclass(frozen=True)
class FileChange:
    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: Optional[str] = None
    previous_filename: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileChange":
        additions = int(data.get("additions") or 0)
        deletions = int(data.get("deletions") or 0)
        return cls(
            filename=data["filename"],
            status=data.get("status", "modified"),
            additions=additions,
            deletions=deletions,
            changes=int(data.get("changes") if data.get("changes") is not None else additions + deletions),
            patch=data.get("patch"),
            previous_filename=data.get("previous_filename"),
        )


@dataclass
class Event:
    """
    Activity record created by ingestion. Only status and derived fields
    (file changes, error message) are ever updated.
    """
    id: str
    resource_id: str
    kind: str
    payload: Dict[str, Any]
    actor: str
    occurred_at: int
    status: EventStatus = "pending"
    file_changes: Optional[List[FileChange]] = None
    error_message: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def typed_payload(self) -> EventPayload:
        return parse_payload(self.kind, self.payload)


@dataclass(frozen=True)
class Perspective:
    perspective: PerspectiveKind
    title: str
    summary: str
    confidence: float


@dataclass(frozen=True)
class ImpactAssessment:
    overall_risk: Literal["low", "medium", "high"]
    confidence: float
    overall_explanation: str
    affected_files: List[Dict[str, Any]] = field(default_factory=list)
    claims_verified: Optional[bool] = None


@dataclass
class Digest:
    """
    One synthesized narrative for one event.
    """
    id: str
    resource_id: str
    event_id: str
    title: str
    narrative: str
    category: Category
    rationale: str
    contributors: List[str]
    created_at: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    perspectives: List[Perspective] = field(default_factory=list)
    impact: Optional[ImpactAssessment] = None
    model_label: Optional[str] = None


@dataclass(frozen=True)
class WorkBreakdownEntry:
    count: int
    percentage: int


@dataclass
class Summary:
    """
    Period rollup. Unique on (resource_id, granularity, period_start).
    """
    id: str
    resource_id: str
    granularity: str
    period_start: int
    headline: str
    accomplishments: str
    key_features: List[str]
    work_breakdown: Dict[str, WorkBreakdownEntry]
    total_items: int
    included_digest_ids: List[str]
    state: SummaryState
    version: int
    created_at: int
    last_updated_at: int

    @property
    def is_streaming(self) -> bool:
        return self.state == "streaming"
