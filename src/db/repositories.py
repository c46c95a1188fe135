"""Typed persistence boundaries over the compliance tables.

Repositories wrap an ``AsyncSession`` and never commit; transaction
boundaries belong to the caller (the scoring engine, the lifecycle
manager or a route handler).
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import ComplianceItemDB, DocumentDB, RiskScoreDB


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ComplianceRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(
        self, item_id: uuid.UUID, owner: str | None = None, refresh: bool = False
    ) -> ComplianceItemDB | None:
        stmt = select(ComplianceItemDB).where(ComplianceItemDB.id == item_id)
        if owner is not None:
            stmt = stmt.where(ComplianceItemDB.owner == owner)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner: str) -> list[ComplianceItemDB]:
        """All of an owner's items, newest first.

        Status filtering is left to the lifecycle manager, which applies it
        after lazy expiry.
        """
        stmt = (
            select(ComplianceItemDB)
            .where(ComplianceItemDB.owner == owner)
            .order_by(ComplianceItemDB.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        owner: str,
        title: str,
        description: str | None,
        risk_level: str,
        due_date: datetime | None,
    ) -> ComplianceItemDB:
        now = _utcnow()
        row = ComplianceItemDB(
            id=uuid.uuid4(),
            owner=owner,
            title=title,
            description=description,
            risk_level=risk_level,
            status="pending",
            due_date=due_date,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def compare_and_set(
        self, item_id: uuid.UUID, expected_version: int, **values: Any
    ) -> bool:
        """Apply ``values`` only if the row is still at ``expected_version``.

        Bumps ``version`` and ``updated_at``. Returns False when another
        writer got there first.
        """
        stmt = (
            update(ComplianceItemDB)
            .where(
                ComplianceItemDB.id == item_id,
                ComplianceItemDB.version == expected_version,
            )
            .values(version=expected_version + 1, updated_at=_utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def update_fields(self, item: ComplianceItemDB, **values: Any) -> bool:
        """Compare-and-set ``values`` against the version ``item`` was loaded at."""
        return await self.compare_and_set(item.id, item.version, **values)

    async def delete(self, item_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(ComplianceItemDB).where(ComplianceItemDB.id == item_id)
        )
        return result.rowcount > 0

    async def recent(self, owner: str, limit: int) -> list[ComplianceItemDB]:
        stmt = (
            select(ComplianceItemDB)
            .where(ComplianceItemDB.owner == owner)
            .order_by(ComplianceItemDB.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class DocumentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, document_id: uuid.UUID, owner: str | None = None) -> DocumentDB | None:
        stmt = select(DocumentDB).where(DocumentDB.id == document_id)
        if owner is not None:
            stmt = stmt.where(DocumentDB.owner == owner)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner: str) -> list[DocumentDB]:
        stmt = (
            select(DocumentDB)
            .where(DocumentDB.owner == owner)
            .order_by(DocumentDB.uploaded_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        owner: str,
        filename: str,
        storage_path: str,
        size: int,
        mime_type: str,
        document_id: uuid.UUID | None = None,
        extracted_text: str | None = None,
    ) -> DocumentDB:
        row = DocumentDB(
            id=document_id or uuid.uuid4(),
            owner=owner,
            filename=filename,
            storage_path=storage_path,
            size=size,
            mime_type=mime_type,
            extracted_text=extracted_text,
            uploaded_at=_utcnow(),
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def set_extracted_text(self, document_id: uuid.UUID, text: str) -> bool:
        """Overwrite ``extracted_text``. Re-extraction of the same bytes is idempotent."""
        result = await self.session.execute(
            update(DocumentDB)
            .where(DocumentDB.id == document_id)
            .values(extracted_text=text)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_analysis(self, document_id: uuid.UUID, analysis: dict) -> bool:
        result = await self.session.execute(
            update(DocumentDB)
            .where(DocumentDB.id == document_id)
            .values(ai_analysis=analysis)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, document_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(DocumentDB).where(DocumentDB.id == document_id)
        )
        return result.rowcount > 0

    async def counts(self, owner: str) -> tuple[int, int]:
        """Return (total documents, documents with an analysis) for ``owner``."""
        stmt = select(
            func.count(DocumentDB.id),
            func.count(DocumentDB.ai_analysis),
        ).where(DocumentDB.owner == owner)
        result = await self.session.execute(stmt)
        total, analysed = result.one()
        return int(total or 0), int(analysed or 0)

    async def recent(self, owner: str, limit: int) -> list[DocumentDB]:
        stmt = (
            select(DocumentDB)
            .where(DocumentDB.owner == owner)
            .order_by(DocumentDB.uploaded_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class RiskScoreRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        compliance_item_id: uuid.UUID,
        owner: str,
        risk_category: str,
        risk_score: int,
        risk_level: str,
        assessed_by: str | None,
        document_id: uuid.UUID | None = None,
        notes: str | None = None,
        ai_confidence: float | None = None,
        ai_reasoning: str | None = None,
        assessment_date: datetime | None = None,
    ) -> RiskScoreDB:
        now = _utcnow()
        row = RiskScoreDB(
            id=uuid.uuid4(),
            compliance_item_id=compliance_item_id,
            document_id=document_id,
            owner=owner,
            risk_category=risk_category,
            risk_score=risk_score,
            risk_level=risk_level,
            assessment_date=assessment_date or now,
            assessed_by=assessed_by,
            notes=notes,
            ai_confidence=ai_confidence,
            ai_reasoning=ai_reasoning,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get(self, score_id: uuid.UUID, owner: str | None = None) -> RiskScoreDB | None:
        stmt = select(RiskScoreDB).where(RiskScoreDB.id == score_id)
        if owner is not None:
            stmt = stmt.where(RiskScoreDB.owner == owner)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner: str) -> list[RiskScoreDB]:
        stmt = (
            select(RiskScoreDB)
            .where(RiskScoreDB.owner == owner)
            .order_by(RiskScoreDB.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_item(self, compliance_item_id: uuid.UUID) -> list[RiskScoreDB]:
        """Full assessment history for an item, newest first."""
        stmt = (
            select(RiskScoreDB)
            .where(RiskScoreDB.compliance_item_id == compliance_item_id)
            .order_by(RiskScoreDB.assessment_date.desc(), RiskScoreDB.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_latest_by_category(self, compliance_item_id: uuid.UUID) -> list[RiskScoreDB]:
        """Latest score per distinct risk_category for an item.

        Latest means highest assessment_date, then highest id on ties.
        """
        ranked = (
            select(
                RiskScoreDB.id.label("score_id"),
                func.row_number()
                .over(
                    partition_by=RiskScoreDB.risk_category,
                    order_by=(RiskScoreDB.assessment_date.desc(), RiskScoreDB.id.desc()),
                )
                .label("position"),
            )
            .where(RiskScoreDB.compliance_item_id == compliance_item_id)
            .subquery()
        )
        stmt = (
            select(RiskScoreDB)
            .join(ranked, RiskScoreDB.id == ranked.c.score_id)
            .where(ranked.c.position == 1)
            .order_by(RiskScoreDB.risk_category)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_notes(self, score_id: uuid.UUID, notes: str) -> bool:
        result = await self.session.execute(
            update(RiskScoreDB)
            .where(RiskScoreDB.id == score_id)
            .values(notes=notes, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
