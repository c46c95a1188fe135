"""Tests for the risk scoring engine."""

import asyncio
import json
import uuid
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from sqlalchemy import func, select

from src.collaborators.analysis import AnalysisErrorKind, OllamaAnalyzer
from src.collaborators.extraction import ExtractionError, ExtractionErrorKind
from src.db.models import RiskScoreDB
from src.db.repositories import DocumentRepository, RiskScoreRepository
from src.domains.compliance.errors import (
    AnalysisFailed,
    ComplianceItemNotFound,
    DocumentNotFound,
    ErrorKind,
    ExtractionFailed,
    OwnerMismatch,
    RiskScoreNotFound,
    ValidationFailed,
)
from src.domains.compliance.engine import RiskScoringEngine
from src.domains.compliance.models import (
    ComplianceStatus,
    DocumentAnalysis,
    RiskLevel,
)
from tests.conftest import OTHER_OWNER, OWNER, candidate


async def _score_count(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(RiskScoreDB))
        return result.scalar_one()


async def _document(session_factory, document_id):
    async with session_factory() as session:
        return await DocumentRepository(session).get(document_id)


class TestScoreFromDocument:
    @pytest.mark.asyncio
    async def test_happy_path(self, scoring_engine, session_factory, make_item, make_document, extractor):
        item_id = await make_item()
        document_id = await make_document()

        outcome = await scoring_engine.score_from_document(item_id, document_id, owner=OWNER)

        assert len(outcome.risk_score_ids) == 1
        assert outcome.risk_level == RiskLevel.CRITICAL
        assert outcome.status == ComplianceStatus.IN_PROGRESS
        assert len(extractor.calls) == 1

        async with session_factory() as session:
            score = await RiskScoreRepository(session).get(outcome.risk_score_ids[0])
        assert score.risk_score == 80
        assert score.risk_level == "critical"
        assert score.assessed_by == "system:fake-model"
        assert score.document_id == document_id
        assert score.owner == OWNER
        assert score.ai_confidence == 0.9

        document = await _document(session_factory, document_id)
        assert document.extracted_text == "Extracted policy text"
        analysis = DocumentAnalysis.model_validate(document.ai_analysis)
        assert analysis.schema_version == 1
        assert analysis.analyzer == "fake-model"
        assert [c.category for c in analysis.accepted] == ["legal"]

    @pytest.mark.asyncio
    async def test_existing_text_skips_extraction(
        self, scoring_engine, make_item, make_document, extractor, analyzer
    ):
        item_id = await make_item()
        document_id = await make_document(extracted_text="Already extracted")

        await scoring_engine.score_from_document(item_id, document_id)

        assert extractor.calls == []
        assert analyzer.calls == ["Already extracted"]

    @pytest.mark.asyncio
    async def test_analysis_failure_keeps_text_and_creates_no_scores(
        self, scoring_engine, session_factory, make_item, make_document, analyzer, lifecycle
    ):
        item_id = await make_item()
        document_id = await make_document()
        analyzer.fail()

        with pytest.raises(AnalysisFailed) as exc_info:
            await scoring_engine.score_from_document(item_id, document_id)

        error = exc_info.value
        assert error.kind == ErrorKind.COLLABORATOR_FAILURE
        assert error.identifiers["reason"] == "unavailable"
        assert "10.0.0.7" not in error.message

        assert await _score_count(session_factory) == 0
        document = await _document(session_factory, document_id)
        assert document.extracted_text == "Extracted policy text"
        assert document.ai_analysis is None
        item = await lifecycle.refresh(item_id)
        assert item.status == ComplianceStatus.PENDING
        assert item.risk_level == RiskLevel.LOW

    @pytest.mark.asyncio
    async def test_extraction_failure_leaves_document_untouched(
        self, scoring_engine, session_factory, make_item, make_document, extractor, analyzer
    ):
        item_id = await make_item()
        document_id = await make_document()
        extractor.error = ExtractionError(ExtractionErrorKind.CORRUPT, "bad xref table")

        with pytest.raises(ExtractionFailed) as exc_info:
            await scoring_engine.score_from_document(item_id, document_id)

        assert exc_info.value.identifiers["reason"] == "corrupt"
        assert analyzer.calls == []
        document = await _document(session_factory, document_id)
        assert document.extracted_text is None
        assert document.ai_analysis is None
        assert await _score_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_extraction_timeout(
        self, scoring_engine, session_factory, make_item, make_document, extractor
    ):
        item_id = await make_item()
        document_id = await make_document()
        extractor.delay = 1.0

        with pytest.raises(ExtractionFailed) as exc_info:
            await scoring_engine.score_from_document(item_id, document_id, timeout=0.05)

        assert exc_info.value.identifiers["reason"] == "timeout"
        document = await _document(session_factory, document_id)
        assert document.extracted_text is None

    @pytest.mark.asyncio
    async def test_analysis_timeout(
        self, scoring_engine, session_factory, make_item, make_document, analyzer
    ):
        item_id = await make_item()
        document_id = await make_document(extracted_text="text")
        analyzer.delay = 1.0

        with pytest.raises(AnalysisFailed) as exc_info:
            await scoring_engine.score_from_document(item_id, document_id, timeout=0.05)

        assert exc_info.value.identifiers["reason"] == "timeout"
        assert await _score_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_invalid_analysis_response(
        self, scoring_engine, make_item, make_document, analyzer
    ):
        item_id = await make_item()
        document_id = await make_document(extracted_text="text")
        analyzer.fail(AnalysisErrorKind.INVALID_RESPONSE)

        with pytest.raises(AnalysisFailed) as exc_info:
            await scoring_engine.score_from_document(item_id, document_id)
        assert exc_info.value.identifiers["reason"] == "invalid_response"

    @pytest.mark.asyncio
    async def test_owner_mismatch_creates_nothing(
        self, scoring_engine, session_factory, make_item, make_document, extractor, analyzer
    ):
        item_id = await make_item(owner=OWNER)
        document_id = await make_document(owner=OTHER_OWNER)

        with pytest.raises(OwnerMismatch) as exc_info:
            await scoring_engine.score_from_document(item_id, document_id)

        assert exc_info.value.identifiers == {
            "compliance_item_id": str(item_id),
            "document_id": str(document_id),
        }
        assert extractor.calls == []
        assert analyzer.calls == []
        assert await _score_count(session_factory) == 0
        document = await _document(session_factory, document_id)
        assert document.extracted_text is None

    @pytest.mark.asyncio
    async def test_missing_entities(self, scoring_engine, make_item, make_document):
        item_id = await make_item()
        document_id = await make_document()

        with pytest.raises(ComplianceItemNotFound):
            await scoring_engine.score_from_document(uuid.uuid4(), document_id)
        with pytest.raises(DocumentNotFound):
            await scoring_engine.score_from_document(item_id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_item_of_other_owner_not_found(self, scoring_engine, make_item, make_document):
        item_id = await make_item(owner=OTHER_OWNER)
        document_id = await make_document(owner=OTHER_OWNER)

        with pytest.raises(ComplianceItemNotFound):
            await scoring_engine.score_from_document(item_id, document_id, owner=OWNER)

    @pytest.mark.asyncio
    async def test_invalid_candidates_dropped(
        self, scoring_engine, session_factory, make_item, make_document, analyzer
    ):
        item_id = await make_item()
        document_id = await make_document(extracted_text="text")
        analyzer.candidates = [
            candidate("legal", 24.5, 0.7),
            candidate("privacy", 90, 1.4),
            candidate("c" * 150, 10, 0.5),
        ]

        outcome = await scoring_engine.score_from_document(item_id, document_id)

        assert len(outcome.risk_score_ids) == 2
        assert outcome.rejected_count == 1
        assert outcome.risk_level == RiskLevel.MEDIUM

        async with session_factory() as session:
            scores = await RiskScoreRepository(session).list_for_item(item_id)
        by_category = {score.risk_category: score for score in scores}
        assert by_category["legal"].risk_score == 25
        assert by_category["legal"].risk_level == "medium"
        assert "c" * 100 in by_category
        assert "privacy" not in by_category

        document = await _document(session_factory, document_id)
        analysis = DocumentAnalysis.model_validate(document.ai_analysis)
        assert [r.category for r in analysis.rejected] == ["privacy"]

    @pytest.mark.asyncio
    async def test_malformed_assessment_keeps_rest_of_batch(
        self, session_factory, blob_store, extractor, lifecycle, make_item, make_document
    ):
        generated = {
            "assessments": [
                {"category": "legal", "score": 80, "confidence": 0.9},
                {"category": None, "score": 40, "confidence": 0.5},
            ]
        }
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"response": json.dumps(generated)})
        )
        engine = RiskScoringEngine(
            session_factory,
            blob_store,
            extractor,
            OllamaAnalyzer("http://ollama.test", "llama3.1", transport=transport),
            lifecycle,
        )
        item_id = await make_item()
        document_id = await make_document(extracted_text="Vendor agreement")

        outcome = await engine.score_from_document(item_id, document_id)

        assert len(outcome.risk_score_ids) == 1
        assert outcome.rejected_count == 1
        assert outcome.risk_level == RiskLevel.CRITICAL
        assert await _score_count(session_factory) == 1
        document = await _document(session_factory, document_id)
        analysis = DocumentAnalysis.model_validate(document.ai_analysis)
        assert [c.category for c in analysis.accepted] == ["legal"]
        assert [r.category for r in analysis.rejected] == [None]

    @pytest.mark.asyncio
    async def test_no_surviving_candidates(
        self, scoring_engine, session_factory, make_item, make_document, analyzer
    ):
        item_id = await make_item(risk_level="medium")
        document_id = await make_document(extracted_text="text")
        analyzer.candidates = [candidate("legal", 50, 2.0)]

        outcome = await scoring_engine.score_from_document(item_id, document_id)

        assert outcome.risk_score_ids == []
        assert outcome.rejected_count == 1
        assert outcome.status == ComplianceStatus.PENDING
        assert outcome.risk_level == RiskLevel.MEDIUM
        document = await _document(session_factory, document_id)
        assert document.ai_analysis is not None

    @pytest.mark.asyncio
    async def test_rescoring_supersedes(self, scoring_engine, make_item, make_document, analyzer):
        item_id = await make_item()
        document_id = await make_document(extracted_text="text")

        analyzer.candidates = [candidate("legal", 90)]
        first = await scoring_engine.score_from_document(item_id, document_id)
        assert first.risk_level == RiskLevel.CRITICAL

        analyzer.candidates = [candidate("legal", 10)]
        second = await scoring_engine.score_from_document(item_id, document_id)
        assert second.risk_level == RiskLevel.LOW

    @pytest.mark.asyncio
    async def test_expired_item_keeps_status(self, scoring_engine, make_item, make_document):
        item_id = await make_item(due_date=datetime.now(UTC) - timedelta(days=1))
        document_id = await make_document(extracted_text="text")

        outcome = await scoring_engine.score_from_document(item_id, document_id)

        assert outcome.status == ComplianceStatus.EXPIRED
        assert outcome.risk_level == RiskLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_concurrent_scoring_different_categories(
        self, session_factory, blob_store, extractor, lifecycle, make_item, make_document
    ):
        from src.domains.compliance.engine import RiskScoringEngine
        from tests.conftest import FakeAnalyzer

        item_id = await make_item()
        legal_doc = await make_document(extracted_text="legal text")
        privacy_doc = await make_document(extracted_text="privacy text")

        legal_analyzer = FakeAnalyzer([candidate("legal", 30)])
        legal_analyzer.delay = 0.01
        privacy_analyzer = FakeAnalyzer([candidate("privacy", 60)])
        privacy_analyzer.delay = 0.01

        legal_engine = RiskScoringEngine(
            session_factory, blob_store, extractor, legal_analyzer, lifecycle
        )
        privacy_engine = RiskScoringEngine(
            session_factory, blob_store, extractor, privacy_analyzer, lifecycle
        )

        first, second = await asyncio.gather(
            legal_engine.score_from_document(item_id, legal_doc),
            privacy_engine.score_from_document(item_id, privacy_doc),
        )

        assert len(first.risk_score_ids) == 1
        assert len(second.risk_score_ids) == 1
        item = await lifecycle.refresh(item_id)
        assert item.risk_level == RiskLevel.HIGH
        assert item.status == ComplianceStatus.IN_PROGRESS
        assert await _score_count(session_factory) == 2


class TestAssessItem:
    @pytest.mark.asyncio
    async def test_scores_item_from_title_and_description(
        self, scoring_engine, session_factory, make_item, analyzer, extractor
    ):
        item_id = await make_item(
            title="Vendor onboarding checks", description="No KYC on foreign vendors"
        )

        outcome = await scoring_engine.assess_item(item_id, owner=OWNER)

        assert outcome.document_id is None
        assert len(outcome.risk_score_ids) == 1
        assert outcome.risk_level == RiskLevel.CRITICAL
        assert outcome.status == ComplianceStatus.IN_PROGRESS
        assert extractor.calls == []
        assert "Vendor onboarding checks" in analyzer.calls[0]
        assert "No KYC on foreign vendors" in analyzer.calls[0]

        async with session_factory() as session:
            score = await RiskScoreRepository(session).get(outcome.risk_score_ids[0])
        assert score.document_id is None
        assert score.assessed_by == "system:fake-model"
        assert score.risk_category == "legal"

    @pytest.mark.asyncio
    async def test_missing_description(self, scoring_engine, make_item, analyzer):
        item_id = await make_item(title="Data retention policy")

        await scoring_engine.assess_item(item_id)

        assert "Description: N/A" in analyzer.calls[0]

    @pytest.mark.asyncio
    async def test_no_surviving_candidates_leaves_item(
        self, scoring_engine, session_factory, make_item, analyzer, lifecycle
    ):
        item_id = await make_item(risk_level="medium")
        analyzer.candidates = [candidate("legal", 50, 2.0), candidate("", 40)]

        outcome = await scoring_engine.assess_item(item_id)

        assert outcome.risk_score_ids == []
        assert outcome.rejected_count == 2
        assert outcome.risk_level == RiskLevel.MEDIUM
        assert await _score_count(session_factory) == 0
        item = await lifecycle.refresh(item_id)
        assert item.status == ComplianceStatus.PENDING

    @pytest.mark.asyncio
    async def test_analysis_failure_creates_no_scores(
        self, scoring_engine, session_factory, make_item, analyzer
    ):
        item_id = await make_item()
        analyzer.fail()

        with pytest.raises(AnalysisFailed) as exc_info:
            await scoring_engine.assess_item(item_id)

        assert exc_info.value.identifiers["reason"] == "unavailable"
        assert await _score_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_item_of_other_owner_not_found(self, scoring_engine, make_item, analyzer):
        item_id = await make_item(owner=OTHER_OWNER)

        with pytest.raises(ComplianceItemNotFound):
            await scoring_engine.assess_item(item_id, owner=OWNER)
        assert analyzer.calls == []

    @pytest.mark.asyncio
    async def test_supersedes_earlier_assessment(self, scoring_engine, make_item, analyzer):
        item_id = await make_item()

        analyzer.candidates = [candidate("legal", 90)]
        await scoring_engine.assess_item(item_id)
        analyzer.candidates = [candidate("legal", 10)]
        outcome = await scoring_engine.assess_item(item_id)

        assert outcome.risk_level == RiskLevel.LOW


class TestManualScore:
    @pytest.mark.asyncio
    async def test_records_score(self, scoring_engine, session_factory, make_item):
        item_id = await make_item()

        outcome = await scoring_engine.record_manual_score(
            item_id,
            risk_category="  vendor risk ",
            risk_score=74.5,
            assessed_by="jane.reviewer",
            owner=OWNER,
            notes="Follow up with procurement",
        )

        assert outcome.risk_level == RiskLevel.CRITICAL
        assert outcome.status == ComplianceStatus.IN_PROGRESS
        async with session_factory() as session:
            score = await RiskScoreRepository(session).get(outcome.risk_score_ids[0])
        assert score.risk_category == "vendor risk"
        assert score.risk_score == 75
        assert score.assessed_by == "jane.reviewer"
        assert score.ai_confidence is None

    @pytest.mark.asyncio
    async def test_invalid_confidence_rejected(self, scoring_engine, session_factory, make_item):
        item_id = await make_item()
        with pytest.raises(ValidationFailed):
            await scoring_engine.record_manual_score(
                item_id, risk_category="legal", risk_score=40, assessed_by="jane",
                ai_confidence=1.5,
            )
        assert await _score_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_empty_category_rejected(self, scoring_engine, make_item):
        item_id = await make_item()
        with pytest.raises(ValidationFailed):
            await scoring_engine.record_manual_score(
                item_id, risk_category="   ", risk_score=40, assessed_by="jane"
            )

    @pytest.mark.asyncio
    async def test_cross_owner_document_rejected(self, scoring_engine, make_item, make_document):
        item_id = await make_item(owner=OWNER)
        document_id = await make_document(owner=OTHER_OWNER)
        with pytest.raises(OwnerMismatch):
            await scoring_engine.record_manual_score(
                item_id,
                risk_category="legal",
                risk_score=40,
                assessed_by="jane",
                document_id=document_id,
            )

    @pytest.mark.asyncio
    async def test_explicit_assessment_dates_order_scores(self, scoring_engine, make_item):
        item_id = await make_item()
        now = datetime.now(UTC)
        await scoring_engine.record_manual_score(
            item_id, risk_category="legal", risk_score=80, assessed_by="jane",
            assessment_date=now,
        )
        # Backdated entry does not supersede the newer one.
        outcome = await scoring_engine.record_manual_score(
            item_id, risk_category="legal", risk_score=10, assessed_by="jane",
            assessment_date=now - timedelta(days=7),
        )
        assert outcome.risk_level == RiskLevel.CRITICAL


class TestAnnotate:
    @pytest.mark.asyncio
    async def test_updates_notes_only(self, scoring_engine, make_item):
        item_id = await make_item()
        outcome = await scoring_engine.record_manual_score(
            item_id, risk_category="legal", risk_score=40, assessed_by="jane"
        )
        score_id = outcome.risk_score_ids[0]

        annotated = await scoring_engine.annotate(score_id, "Reviewed with counsel", owner=OWNER)

        assert annotated.notes == "Reviewed with counsel"
        assert annotated.risk_score == 40
        assert annotated.risk_level == RiskLevel.MEDIUM
        assert annotated.updated_at >= annotated.created_at

    @pytest.mark.asyncio
    async def test_other_owner_not_found(self, scoring_engine, make_item):
        item_id = await make_item()
        outcome = await scoring_engine.record_manual_score(
            item_id, risk_category="legal", risk_score=40, assessed_by="jane"
        )
        with pytest.raises(RiskScoreNotFound):
            await scoring_engine.annotate(outcome.risk_score_ids[0], "x", owner=OTHER_OWNER)


class TestDocumentDeletion:
    @pytest.mark.asyncio
    async def test_scores_keep_history_with_null_document(
        self, scoring_engine, session_factory, make_item, make_document
    ):
        item_id = await make_item()
        document_id = await make_document(extracted_text="text")
        outcome = await scoring_engine.score_from_document(item_id, document_id)

        async with session_factory() as session:
            await DocumentRepository(session).delete(document_id)
            await session.commit()

        async with session_factory() as session:
            score = await RiskScoreRepository(session).get(outcome.risk_score_ids[0])
        assert score is not None
        assert score.document_id is None
