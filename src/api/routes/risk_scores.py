"""Risk score endpoints: manual scoring, listing and annotations."""

import uuid

from fastapi import APIRouter, Depends

from src.api.deps import get_engine, get_owner, get_session_factory
from src.db.repositories import RiskScoreRepository
from src.domains.compliance.engine import RiskScoringEngine
from src.domains.compliance.errors import RiskScoreNotFound
from src.domains.compliance.models import (
    AnnotateRequest,
    ManualScoreRequest,
    RiskScore,
    ScoringOutcome,
)

router = APIRouter(prefix="/api/v1/risk-scores", tags=["risk-scores"])


@router.post("", response_model=ScoringOutcome, status_code=201)
async def create_manual_score(
    payload: ManualScoreRequest,
    owner: str = Depends(get_owner),  # noqa: B008
    engine: RiskScoringEngine = Depends(get_engine),  # noqa: B008
) -> ScoringOutcome:
    return await engine.record_manual_score(
        payload.compliance_item_id,
        risk_category=payload.risk_category,
        risk_score=payload.risk_score,
        assessed_by=payload.assessed_by,
        owner=owner,
        document_id=payload.document_id,
        notes=payload.notes,
        ai_confidence=payload.ai_confidence,
        ai_reasoning=payload.ai_reasoning,
    )


@router.get("", response_model=list[RiskScore])
async def list_risk_scores(
    owner: str = Depends(get_owner),  # noqa: B008
    session_factory=Depends(get_session_factory),  # noqa: B008
) -> list[RiskScore]:
    async with session_factory() as session:
        rows = await RiskScoreRepository(session).list_for_owner(owner)
        return [RiskScore.model_validate(row) for row in rows]


@router.get("/{score_id}", response_model=RiskScore)
async def get_risk_score(
    score_id: uuid.UUID,
    owner: str = Depends(get_owner),  # noqa: B008
    session_factory=Depends(get_session_factory),  # noqa: B008
) -> RiskScore:
    async with session_factory() as session:
        row = await RiskScoreRepository(session).get(score_id, owner=owner)
        if row is None:
            raise RiskScoreNotFound(score_id)
        return RiskScore.model_validate(row)


@router.patch("/{score_id}/notes", response_model=RiskScore)
async def annotate_risk_score(
    score_id: uuid.UUID,
    payload: AnnotateRequest,
    owner: str = Depends(get_owner),  # noqa: B008
    engine: RiskScoringEngine = Depends(get_engine),  # noqa: B008
) -> RiskScore:
    return await engine.annotate(score_id, payload.notes, owner=owner)
