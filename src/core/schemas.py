"""
Pydantic schemas handed to the structured-output model.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

CategoryLiteral = Literal["feature", "bugfix", "refactor", "docs", "chore", "security"]
PerspectiveLiteral = Literal["bugfix", "ui", "feature", "security", "performance", "refactor", "docs"]
RiskLiteral = Literal["low", "medium", "high"]


class PerspectiveSchema(BaseModel):
    perspective: PerspectiveLiteral = Field(
        ..., description="One of: bugfix, ui, feature, security, performance, refactor, docs"
    )
    title: str
    summary: str
    confidence: float = Field(..., ge=0, le=100)


class DigestSchema(BaseModel):
    """
    Digest for a single event
    """
    title: str = Field(..., description="Brief action-oriented title")
    summary: str = Field(..., description="2-3 sentence plain English explanation")
    category: CategoryLiteral = Field(..., description="Category of the change")
    why_this_matters: str = Field(..., description="1-2 sentence explanation of business/user impact")
    perspectives: Optional[List[PerspectiveSchema]] = Field(
        default=None,
        max_length=2,
        description="1-2 key perspectives on this change",
    )


class ChangeIntentSchema(BaseModel):
    primary_intent: Literal["bugfix", "feature", "refactor", "security", "performance", "chore", "docs"]
    claimed_improvements: List[str] = Field(default_factory=list)
    expected_behavior_changes: List[str] = Field(default_factory=list)
    risk_areas: List[str] = Field(default_factory=list)


class AffectedFileSchema(BaseModel):
    file_path: str
    risk_level: RiskLiteral
    brief_reason: str
    confidence: float = Field(..., ge=0, le=100)
    is_improvement: bool


class IntentValidationSchema(BaseModel):
    claims_verified: bool
    explanation: str


class ImpactAnalysisSchema(BaseModel):
    affected_files: List[AffectedFileSchema] = Field(default_factory=list, max_length=10)
    overall_risk: RiskLiteral
    confidence: float = Field(..., ge=0, le=100)
    overall_explanation: str
    intent_validation: IntentValidationSchema


class BreakdownItemSchema(BaseModel):
    count: int
    percentage: float


class WorkBreakdownSchema(BaseModel):
    feature: Optional[BreakdownItemSchema] = None
    bugfix: Optional[BreakdownItemSchema] = None
    refactor: Optional[BreakdownItemSchema] = None
    docs: Optional[BreakdownItemSchema] = None
    chore: Optional[BreakdownItemSchema] = None
    security: Optional[BreakdownItemSchema] = None


class SummarySchema(BaseModel):
    """
    Executive period report. work_breakdown and total_items are
    advisory only; both are recomputed from the digests on write.
    """
    headline: str = Field(..., description="Compelling headline for the period's key achievement")
    accomplishments: str = Field(..., description="2-3 paragraphs describing what was accomplished")
    key_features: List[str] = Field(default_factory=list, description="5-10 key features or changes shipped")
    work_breakdown: WorkBreakdownSchema = Field(default_factory=WorkBreakdownSchema)
    total_items: int = 0
