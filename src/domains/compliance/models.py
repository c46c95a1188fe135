"""Pydantic models for the compliance domain."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class ComplianceStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ComplianceStatus.COMPLETED, ComplianceStatus.EXPIRED)


# ---------------------------------------------------------------------------
# Analysis payloads
# ---------------------------------------------------------------------------


class AnalysisCandidate(BaseModel):
    """One assessment proposed by the analysis collaborator, before validation.

    ``None`` marks a value the collaborator sent in an unusable shape; such
    candidates are rejected during validation like any other bad value.
    """

    category: str | None = None
    raw_score: float | None = None
    confidence: float | None = None
    reasoning: str = ""


class AcceptedCandidate(BaseModel):
    category: str
    risk_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    confidence: float = Field(ge=0, le=1)
    reasoning: str = ""


class RejectedCandidate(BaseModel):
    category: str | None = None
    # NaN/inf serialise to null in JSON
    raw_score: float | None = None
    confidence: float | None = None
    reason: str


class DocumentAnalysis(BaseModel):
    """Structured record of the last analysis run on a document.

    Stored on ``documents.ai_analysis``. Bump ``schema_version`` whenever the
    shape changes so older rows can still be told apart.
    """

    schema_version: int = 1
    analyzer: str
    analyzed_at: datetime
    accepted: list[AcceptedCandidate] = Field(default_factory=list)
    rejected: list[RejectedCandidate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


class ComplianceItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner: str
    title: str
    description: str | None = None
    risk_level: RiskLevel
    status: ComplianceStatus
    due_date: datetime | None = None
    created_at: datetime
    updated_at: datetime


class Document(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner: str
    filename: str
    storage_path: str
    size: int
    mime_type: str
    extracted_text: str | None = None
    ai_analysis: DocumentAnalysis | None = None
    uploaded_at: datetime


class DocumentDetail(BaseModel):
    """Full document for API responses. The blob's storage path stays internal."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner: str
    filename: str
    size: int
    mime_type: str
    extracted_text: str | None = None
    ai_analysis: DocumentAnalysis | None = None
    uploaded_at: datetime


class DocumentSummary(BaseModel):
    """Document representation for API responses (no text body, no storage path)."""

    id: uuid.UUID
    filename: str
    size: int
    mime_type: str
    has_extracted_text: bool
    has_ai_analysis: bool
    uploaded_at: datetime


class RiskScore(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    compliance_item_id: uuid.UUID
    document_id: uuid.UUID | None = None
    owner: str
    risk_category: str
    risk_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    assessment_date: datetime
    assessed_by: str | None = None
    notes: str | None = None
    ai_confidence: float | None = Field(default=None, ge=0, le=1)
    ai_reasoning: str | None = None
    created_at: datetime
    updated_at: datetime


class ScoringOutcome(BaseModel):
    """Result of one scoring call, including the item state after recompute."""

    compliance_item_id: uuid.UUID
    document_id: uuid.UUID | None = None
    risk_score_ids: list[uuid.UUID] = Field(default_factory=list)
    rejected_count: int = 0
    status: ComplianceStatus
    risk_level: RiskLevel


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ComplianceItemCreate(BaseModel):
    title: str = Field(min_length=3, max_length=500)
    description: str | None = None
    risk_level: RiskLevel = RiskLevel.LOW
    due_date: datetime | None = None


class ComplianceItemUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=3, max_length=500)
    description: str | None = None
    due_date: datetime | None = None


class StatusTransitionRequest(BaseModel):
    status: ComplianceStatus


class ReopenRequest(BaseModel):
    due_date: datetime | None = None


class ManualScoreRequest(BaseModel):
    compliance_item_id: uuid.UUID
    document_id: uuid.UUID | None = None
    risk_category: str = Field(min_length=1)
    risk_score: float
    assessed_by: str = Field(min_length=1, max_length=500)
    notes: str | None = None
    ai_confidence: float | None = None
    ai_reasoning: str | None = None


class ScoreDocumentRequest(BaseModel):
    compliance_item_id: uuid.UUID
    timeout_seconds: float | None = Field(default=None, gt=0)


class AssessItemRequest(BaseModel):
    timeout_seconds: float | None = Field(default=None, gt=0)


class TextDocumentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)


class AnnotateRequest(BaseModel):
    notes: str


def utcnow() -> datetime:
    return datetime.now(UTC)
