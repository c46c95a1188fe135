"""Per-owner dashboard statistics and recent activity."""

import uuid
from datetime import datetime
from enum import StrEnum

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.repositories import ComplianceRepository, DocumentRepository

from .lifecycle import ComplianceLifecycleManager, as_utc
from .models import ComplianceStatus

logger = structlog.get_logger()


class ActivityType(StrEnum):
    COMPLIANCE_CREATED = "compliance_created"
    DOCUMENT_UPLOADED = "document_uploaded"


class DashboardStats(BaseModel):
    total_compliance_items: int
    pending_items: int
    in_progress_items: int
    completed_items: int
    expired_items: int
    total_documents: int
    analyzed_documents: int
    # Share of items completed, 0-100.
    compliance_score: float


class ActivityItem(BaseModel):
    id: uuid.UUID
    activity_type: ActivityType
    title: str
    timestamp: datetime


class DashboardService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lifecycle: ComplianceLifecycleManager,
    ) -> None:
        self._session_factory = session_factory
        self._lifecycle = lifecycle

    async def stats(self, owner: str) -> DashboardStats:
        # Goes through the lifecycle so overdue items are counted as expired.
        items = await self._lifecycle.refresh_many(owner)
        counts = {status: 0 for status in ComplianceStatus}
        for item in items:
            counts[item.status] += 1

        async with self._session_factory() as session:
            total_documents, analyzed_documents = await DocumentRepository(session).counts(owner)

        total = len(items)
        completed = counts[ComplianceStatus.COMPLETED]
        compliance_score = completed / total * 100.0 if total else 0.0

        logger.info("dashboard_stats_computed", owner=owner, total_items=total)
        return DashboardStats(
            total_compliance_items=total,
            pending_items=counts[ComplianceStatus.PENDING],
            in_progress_items=counts[ComplianceStatus.IN_PROGRESS],
            completed_items=completed,
            expired_items=counts[ComplianceStatus.EXPIRED],
            total_documents=total_documents,
            analyzed_documents=analyzed_documents,
            compliance_score=compliance_score,
        )

    async def recent_activity(self, owner: str, limit: int = 10) -> list[ActivityItem]:
        """Item creations and document uploads, newest first."""
        async with self._session_factory() as session:
            items = await ComplianceRepository(session).recent(owner, limit)
            documents = await DocumentRepository(session).recent(owner, limit)

        activity = [
            ActivityItem(
                id=item.id,
                activity_type=ActivityType.COMPLIANCE_CREATED,
                title=item.title,
                timestamp=as_utc(item.created_at),
            )
            for item in items
        ]
        activity.extend(
            ActivityItem(
                id=document.id,
                activity_type=ActivityType.DOCUMENT_UPLOADED,
                title=document.filename,
                timestamp=as_utc(document.uploaded_at),
            )
            for document in documents
        )
        activity.sort(key=lambda entry: entry.timestamp, reverse=True)
        return activity[:limit]
