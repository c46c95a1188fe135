"""Compliance item endpoints.

Every read goes through the lifecycle manager so overdue items are
expired before they are returned.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Response

from src.api.deps import get_engine, get_lifecycle, get_owner, get_session_factory
from src.db.repositories import RiskScoreRepository
from src.domains.compliance.engine import RiskScoringEngine
from src.domains.compliance.lifecycle import ComplianceLifecycleManager
from src.domains.compliance.models import (
    AssessItemRequest,
    ComplianceItem,
    ComplianceItemCreate,
    ComplianceItemUpdate,
    ComplianceStatus,
    ReopenRequest,
    RiskScore,
    ScoringOutcome,
    StatusTransitionRequest,
)

router = APIRouter(prefix="/api/v1/compliance", tags=["compliance"])


@router.post("", response_model=ComplianceItem, status_code=201)
async def create_compliance_item(
    payload: ComplianceItemCreate,
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> ComplianceItem:
    return await lifecycle.create(owner, payload)


@router.get("", response_model=list[ComplianceItem])
async def list_compliance_items(
    status: ComplianceStatus | None = Query(None),
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> list[ComplianceItem]:
    return await lifecycle.refresh_many(owner, status=status)


@router.get("/{item_id}", response_model=ComplianceItem)
async def get_compliance_item(
    item_id: uuid.UUID,
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> ComplianceItem:
    return await lifecycle.refresh(item_id, owner=owner)


@router.patch("/{item_id}", response_model=ComplianceItem)
async def update_compliance_item(
    item_id: uuid.UUID,
    payload: ComplianceItemUpdate,
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> ComplianceItem:
    changes = payload.model_dump(exclude_unset=True)
    # title is required on the row; an explicit null means "leave as is"
    if changes.get("title") is None:
        changes.pop("title", None)
    return await lifecycle.update_details(item_id, changes, owner=owner)


@router.delete("/{item_id}", status_code=204)
async def delete_compliance_item(
    item_id: uuid.UUID,
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> Response:
    await lifecycle.delete(item_id, owner=owner)
    return Response(status_code=204)


@router.post("/{item_id}/status", response_model=ComplianceItem)
async def transition_compliance_item(
    item_id: uuid.UUID,
    payload: StatusTransitionRequest,
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> ComplianceItem:
    return await lifecycle.transition(item_id, payload.status, owner=owner)


@router.post("/{item_id}/reopen", response_model=ComplianceItem)
async def reopen_compliance_item(
    item_id: uuid.UUID,
    payload: ReopenRequest,
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> ComplianceItem:
    return await lifecycle.reopen(item_id, due_date=payload.due_date, owner=owner)


@router.post("/{item_id}/recompute", response_model=ComplianceItem)
async def recompute_compliance_item(
    item_id: uuid.UUID,
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> ComplianceItem:
    return await lifecycle.recompute_risk_level(item_id, owner=owner)


@router.get("/{item_id}/risk-scores", response_model=list[RiskScore])
async def list_compliance_item_scores(
    item_id: uuid.UUID,
    latest_only: bool = Query(False),
    owner: str = Depends(get_owner),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
    session_factory=Depends(get_session_factory),  # noqa: B008
) -> list[RiskScore]:
    # Raises ComplianceItemNotFound for items of other owners.
    await lifecycle.refresh(item_id, owner=owner)
    async with session_factory() as session:
        repo = RiskScoreRepository(session)
        if latest_only:
            rows = await repo.list_latest_by_category(item_id)
        else:
            rows = await repo.list_for_item(item_id)
        return [RiskScore.model_validate(row) for row in rows]


@router.post("/{item_id}/assess", response_model=ScoringOutcome)
async def assess_compliance_item(
    item_id: uuid.UUID,
    payload: AssessItemRequest | None = None,
    owner: str = Depends(get_owner),  # noqa: B008
    engine: RiskScoringEngine = Depends(get_engine),  # noqa: B008
) -> ScoringOutcome:
    timeout = payload.timeout_seconds if payload is not None else None
    return await engine.assess_item(item_id, owner=owner, timeout=timeout)
