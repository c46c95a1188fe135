"""Risk scoring engine.

Turns a document (or a reviewer's manual input) into validated RiskScore
rows for one compliance item:

    load item + document -> extract text (if missing) -> analyze ->
    normalise/validate candidates -> persist scores + analysis ->
    recompute the item's risk_level and status

Extraction and analysis run with no session open. The extracted text is
committed on its own as soon as extraction succeeds; the scores, the
document's analysis record and the recompute are one unit of work, so an
analysis failure never leaves a score behind.

An item can also be assessed from its own title and description, with no
document involved; the same validation and recompute apply.
"""

import asyncio
import uuid
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.collaborators.analysis import AnalysisError, Analyzer
from src.collaborators.extraction import ExtractionError, TextExtractor
from src.db.repositories import ComplianceRepository, DocumentRepository, RiskScoreRepository
from src.storage.blobs import LocalBlobStore

from .config import ComplianceConfig, default_config
from .errors import (
    AnalysisFailed,
    ComplianceItemNotFound,
    DocumentNotFound,
    ExtractionFailed,
    OwnerMismatch,
    RiskScoreNotFound,
    ValidationFailed,
)
from .lifecycle import ComplianceLifecycleManager, as_utc
from .models import (
    AcceptedCandidate,
    ComplianceItem,
    Document,
    DocumentAnalysis,
    RiskLevel,
    RiskScore,
    ScoringOutcome,
    utcnow,
)
from .scoring import (
    level_for_score,
    normalize_category,
    normalize_score,
    partition_candidates,
    validate_confidence,
)

logger = structlog.get_logger()

ITEM_ASSESSMENT_TEXT = "Compliance item: {title}\n\nDescription: {description}"


class RiskScoringEngine:
    """Orchestrates extraction, analysis, validation and score persistence."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        extractor: TextExtractor,
        analyzer: Analyzer,
        lifecycle: ComplianceLifecycleManager,
        config: ComplianceConfig | None = None,
        extraction_timeout: float = 60.0,
        analysis_timeout: float = 120.0,
    ) -> None:
        self._session_factory = session_factory
        self._blob_store = blob_store
        self._extractor = extractor
        self._analyzer = analyzer
        self._lifecycle = lifecycle
        self._config = config or default_config
        self._extraction_timeout = extraction_timeout
        self._analysis_timeout = analysis_timeout

    @property
    def assessor(self) -> str:
        return f"{self._config.scoring.system_assessor_prefix}{self._analyzer.identifier}"

    async def _load_pair(
        self,
        compliance_item_id: uuid.UUID,
        document_id: uuid.UUID,
        owner: str | None,
    ) -> tuple[ComplianceItem, Document]:
        async with self._session_factory() as session:
            item = await ComplianceRepository(session).get(compliance_item_id, owner=owner)
            if item is None:
                raise ComplianceItemNotFound(compliance_item_id)
            document = await DocumentRepository(session).get(document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            if document.owner != item.owner:
                logger.warning(
                    "scoring_owner_mismatch",
                    compliance_item_id=str(compliance_item_id),
                    document_id=str(document_id),
                )
                raise OwnerMismatch(compliance_item_id, document_id)
            return ComplianceItem.model_validate(item), Document.model_validate(document)

    async def _extract(self, document: Document, timeout: float) -> str:
        try:
            content = await self._blob_store.read(document.storage_path)
        except OSError as exc:
            logger.error(
                "document_blob_unreadable",
                document_id=str(document.id),
                storage_path=document.storage_path,
                error=str(exc),
            )
            raise ExtractionFailed(document.id, "unreadable") from exc

        try:
            text = await asyncio.wait_for(
                self._extractor.extract(content, document.mime_type), timeout
            )
        except TimeoutError as exc:
            logger.warning(
                "text_extraction_failed",
                document_id=str(document.id),
                reason="timeout",
                timeout=timeout,
            )
            raise ExtractionFailed(document.id, "timeout") from exc
        except ExtractionError as exc:
            logger.warning(
                "text_extraction_failed",
                document_id=str(document.id),
                reason=exc.kind.value,
                error=str(exc),
            )
            raise ExtractionFailed(document.id, exc.kind.value) from exc

        # Persisted on its own so the text survives a later analysis failure.
        async with self._session_factory() as session:
            await DocumentRepository(session).set_extracted_text(document.id, text)
            await session.commit()

        logger.info("text_extracted", document_id=str(document.id), chars=len(text))
        return text

    async def _analyze(self, document_id: uuid.UUID, text: str, timeout: float):
        try:
            return await asyncio.wait_for(self._analyzer.analyze(text), timeout)
        except TimeoutError as exc:
            logger.warning(
                "document_analysis_failed",
                document_id=str(document_id),
                analyzer=self._analyzer.identifier,
                reason="timeout",
                timeout=timeout,
            )
            raise AnalysisFailed(document_id, "timeout") from exc
        except AnalysisError as exc:
            logger.warning(
                "document_analysis_failed",
                document_id=str(document_id),
                analyzer=self._analyzer.identifier,
                reason=exc.kind.value,
                error=str(exc),
            )
            raise AnalysisFailed(document_id, exc.kind.value) from exc

    async def _create_scores(
        self,
        session: AsyncSession,
        compliance_item_id: uuid.UUID,
        owner: str,
        accepted: list[AcceptedCandidate],
        document_id: uuid.UUID | None = None,
    ) -> list[uuid.UUID]:
        scores = RiskScoreRepository(session)
        ids = []
        for candidate in accepted:
            row = await scores.create(
                compliance_item_id=compliance_item_id,
                document_id=document_id,
                owner=owner,
                risk_category=candidate.category,
                risk_score=candidate.risk_score,
                risk_level=candidate.risk_level.value,
                assessed_by=self.assessor,
                ai_confidence=candidate.confidence,
                ai_reasoning=candidate.reasoning or None,
            )
            ids.append(row.id)
        return ids

    async def score_from_document(
        self,
        compliance_item_id: uuid.UUID,
        document_id: uuid.UUID,
        *,
        owner: str | None = None,
        timeout: float | None = None,
    ) -> ScoringOutcome:
        """Score a document against a compliance item.

        ``owner`` scopes the compliance item lookup to the caller. The
        document is looked up unscoped so a cross-owner pairing surfaces as
        ``OwnerMismatch`` rather than a missing document.

        ``timeout`` applies to each collaborator call separately and falls
        back to the configured defaults.

        Raises:
            ComplianceItemNotFound, DocumentNotFound, OwnerMismatch,
            ExtractionFailed, AnalysisFailed, ConcurrentModification
        """
        item, document = await self._load_pair(compliance_item_id, document_id, owner)

        text = document.extracted_text
        if text is None:
            text = await self._extract(document, timeout or self._extraction_timeout)

        candidates = await self._analyze(document_id, text, timeout or self._analysis_timeout)
        accepted, rejected = partition_candidates(
            candidates,
            self._config.scoring,
            compliance_item_id=str(compliance_item_id),
            document_id=str(document_id),
        )
        analysis = DocumentAnalysis(
            analyzer=self._analyzer.identifier,
            analyzed_at=utcnow(),
            accepted=accepted,
            rejected=rejected,
        )

        async def work(session: AsyncSession) -> tuple[list[uuid.UUID], ComplianceItem]:
            documents = DocumentRepository(session)
            if not await documents.set_analysis(document_id, analysis.model_dump(mode="json")):
                raise DocumentNotFound(document_id)

            if not accepted:
                row = await ComplianceRepository(session).get(compliance_item_id)
                if row is None:
                    raise ComplianceItemNotFound(compliance_item_id)
                return [], ComplianceItem.model_validate(row)

            ids = await self._create_scores(
                session, compliance_item_id, item.owner, accepted, document_id=document_id
            )
            updated = await self._lifecycle.recompute_in_session(
                session, compliance_item_id, score_recorded=True
            )
            return ids, ComplianceItem.model_validate(updated)

        ids, updated = await self._lifecycle.run_unit_of_work(compliance_item_id, work)

        logger.info(
            "document_scored",
            compliance_item_id=str(compliance_item_id),
            document_id=str(document_id),
            analyzer=self._analyzer.identifier,
            risk_scores_created=len(ids),
            candidates_rejected=len(rejected),
            risk_level=updated.risk_level.value,
            status=updated.status.value,
        )
        return ScoringOutcome(
            compliance_item_id=compliance_item_id,
            document_id=document_id,
            risk_score_ids=ids,
            rejected_count=len(rejected),
            status=updated.status,
            risk_level=updated.risk_level,
        )

    async def assess_item(
        self,
        compliance_item_id: uuid.UUID,
        *,
        owner: str | None = None,
        timeout: float | None = None,
    ) -> ScoringOutcome:
        """Score a compliance item from its own title and description.

        Same candidate validation, persistence and recompute as
        ``score_from_document``; the scores carry no document reference.
        """
        async with self._session_factory() as session:
            row = await ComplianceRepository(session).get(compliance_item_id, owner=owner)
            if row is None:
                raise ComplianceItemNotFound(compliance_item_id)
            item = ComplianceItem.model_validate(row)

        text = ITEM_ASSESSMENT_TEXT.format(
            title=item.title, description=item.description or "N/A"
        )
        candidates = await self._analyze(None, text, timeout or self._analysis_timeout)
        accepted, rejected = partition_candidates(
            candidates,
            self._config.scoring,
            compliance_item_id=str(compliance_item_id),
        )
        if not accepted:
            logger.info(
                "compliance_item_assessed",
                compliance_item_id=str(compliance_item_id),
                analyzer=self._analyzer.identifier,
                risk_scores_created=0,
                candidates_rejected=len(rejected),
            )
            return ScoringOutcome(
                compliance_item_id=compliance_item_id,
                rejected_count=len(rejected),
                status=item.status,
                risk_level=item.risk_level,
            )

        async def work(session: AsyncSession) -> tuple[list[uuid.UUID], ComplianceItem]:
            ids = await self._create_scores(session, compliance_item_id, item.owner, accepted)
            updated = await self._lifecycle.recompute_in_session(
                session, compliance_item_id, score_recorded=True
            )
            return ids, ComplianceItem.model_validate(updated)

        ids, updated = await self._lifecycle.run_unit_of_work(compliance_item_id, work)

        logger.info(
            "compliance_item_assessed",
            compliance_item_id=str(compliance_item_id),
            analyzer=self._analyzer.identifier,
            risk_scores_created=len(ids),
            candidates_rejected=len(rejected),
            risk_level=updated.risk_level.value,
            status=updated.status.value,
        )
        return ScoringOutcome(
            compliance_item_id=compliance_item_id,
            risk_score_ids=ids,
            rejected_count=len(rejected),
            status=updated.status,
            risk_level=updated.risk_level,
        )

    async def record_manual_score(
        self,
        compliance_item_id: uuid.UUID,
        *,
        risk_category: str,
        risk_score: float,
        assessed_by: str,
        owner: str | None = None,
        document_id: uuid.UUID | None = None,
        notes: str | None = None,
        ai_confidence: float | None = None,
        ai_reasoning: str | None = None,
        assessment_date: datetime | None = None,
    ) -> ScoringOutcome:
        """Record a reviewer's score with the same normalisation as analysis output.

        Unlike analysis candidates, an out-of-range confidence is an error
        here: the reviewer gets ``ValidationFailed`` instead of a silent drop.
        """
        if not assessed_by or not assessed_by.strip():
            raise ValidationFailed("assessed_by must not be empty")
        category = normalize_category(risk_category, self._config.scoring)
        score = normalize_score(risk_score, self._config.scoring)
        level: RiskLevel = level_for_score(score, self._config.scoring)
        confidence = validate_confidence(ai_confidence)

        async with self._session_factory() as session:
            item = await ComplianceRepository(session).get(compliance_item_id, owner=owner)
            if item is None:
                raise ComplianceItemNotFound(compliance_item_id)
            item_owner = item.owner
            if document_id is not None:
                document = await DocumentRepository(session).get(document_id)
                if document is None:
                    raise DocumentNotFound(document_id)
                if document.owner != item_owner:
                    raise OwnerMismatch(compliance_item_id, document_id)

        async def work(session: AsyncSession) -> tuple[uuid.UUID, ComplianceItem]:
            row = await RiskScoreRepository(session).create(
                compliance_item_id=compliance_item_id,
                document_id=document_id,
                owner=item_owner,
                risk_category=category,
                risk_score=score,
                risk_level=level.value,
                assessed_by=assessed_by.strip(),
                notes=notes,
                ai_confidence=confidence,
                ai_reasoning=ai_reasoning,
                assessment_date=as_utc(assessment_date),
            )
            updated = await self._lifecycle.recompute_in_session(
                session, compliance_item_id, score_recorded=True
            )
            return row.id, ComplianceItem.model_validate(updated)

        score_id, updated = await self._lifecycle.run_unit_of_work(compliance_item_id, work)

        logger.info(
            "risk_score_created",
            risk_score_id=str(score_id),
            compliance_item_id=str(compliance_item_id),
            risk_category=category,
            risk_score=score,
            risk_level=level.value,
            assessed_by=assessed_by,
        )
        return ScoringOutcome(
            compliance_item_id=compliance_item_id,
            document_id=document_id,
            risk_score_ids=[score_id],
            status=updated.status,
            risk_level=updated.risk_level,
        )

    async def annotate(
        self, risk_score_id: uuid.UUID, notes: str, owner: str | None = None
    ) -> RiskScore:
        """Replace a score's notes. Score, category and level stay immutable."""
        async with self._session_factory() as session:
            repo = RiskScoreRepository(session)
            row = await repo.get(risk_score_id, owner=owner)
            if row is None:
                raise RiskScoreNotFound(risk_score_id)
            await repo.update_notes(risk_score_id, notes)
            await session.commit()
            await session.refresh(row)
            score = RiskScore.model_validate(row)

        logger.info("risk_score_annotated", risk_score_id=str(risk_score_id))
        return score
