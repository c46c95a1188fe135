"""Shared test fixtures for the compliance risk service tests."""

import asyncio
import os
from datetime import datetime

import pytest
import pytest_asyncio

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./compliance_test.db")
os.environ.setdefault("UPLOAD_DIR", "./uploads_test")

from src.collaborators.analysis import AnalysisError, AnalysisErrorKind  # noqa: E402
from src.collaborators.extraction import ExtractionError  # noqa: E402
from src.db.database import build_engine, build_session_factory, init_db  # noqa: E402
from src.db.repositories import ComplianceRepository, DocumentRepository  # noqa: E402
from src.domains.compliance.config import ComplianceConfig  # noqa: E402
from src.domains.compliance.engine import RiskScoringEngine  # noqa: E402
from src.domains.compliance.lifecycle import ComplianceLifecycleManager  # noqa: E402
from src.domains.compliance.models import AnalysisCandidate  # noqa: E402
from src.storage.blobs import LocalBlobStore  # noqa: E402

OWNER = "user-a"
OTHER_OWNER = "user-b"


class FakeExtractor:
    def __init__(self, text: str = "Extracted policy text", error: ExtractionError | None = None):
        self.text = text
        self.error = error
        self.delay = 0.0
        self.calls: list[tuple[bytes, str]] = []

    async def extract(self, content: bytes, mime_type: str) -> str:
        self.calls.append((content, mime_type))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


class FakeAnalyzer:
    identifier = "fake-model"

    def __init__(self, candidates: list[AnalysisCandidate] | None = None):
        self.candidates = candidates or []
        self.error: AnalysisError | None = None
        self.delay = 0.0
        self.calls: list[str] = []

    async def analyze(self, text: str) -> list[AnalysisCandidate]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.candidates)

    def fail(self, kind: AnalysisErrorKind = AnalysisErrorKind.UNAVAILABLE) -> None:
        self.error = AnalysisError(kind, "connection refused by upstream at 10.0.0.7")


def candidate(category: str, raw_score: float, confidence: float = 0.9) -> AnalysisCandidate:
    return AnalysisCandidate(
        category=category,
        raw_score=raw_score,
        confidence=confidence,
        reasoning=f"{category} exposure",
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'compliance.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def compliance_config() -> ComplianceConfig:
    return ComplianceConfig()


@pytest.fixture
def lifecycle(session_factory, compliance_config) -> ComplianceLifecycleManager:
    return ComplianceLifecycleManager(session_factory, compliance_config)


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "uploads")


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer([candidate("legal", 80)])


@pytest.fixture
def scoring_engine(
    session_factory, blob_store, extractor, analyzer, lifecycle, compliance_config
) -> RiskScoringEngine:
    return RiskScoringEngine(
        session_factory,
        blob_store,
        extractor,
        analyzer,
        lifecycle,
        compliance_config,
        extraction_timeout=5.0,
        analysis_timeout=5.0,
    )


@pytest.fixture
def make_item(session_factory):
    async def _make(
        owner: str = OWNER,
        title: str = "Annual AML policy review",
        description: str | None = None,
        risk_level: str = "low",
        due_date: datetime | None = None,
        status: str | None = None,
    ):
        async with session_factory() as session:
            repo = ComplianceRepository(session)
            row = await repo.create(
                owner=owner,
                title=title,
                description=description,
                risk_level=risk_level,
                due_date=due_date,
            )
            if status is not None:
                await repo.compare_and_set(row.id, row.version, status=status)
            await session.commit()
            return row.id

    return _make


@pytest.fixture
def make_document(session_factory, blob_store):
    async def _make(
        owner: str = OWNER,
        content: bytes = b"Vendor contract with data sharing clauses",
        mime_type: str = "text/plain",
        extracted_text: str | None = None,
    ):
        blob = await blob_store.save(owner, "contract.txt", content)
        async with session_factory() as session:
            row = await DocumentRepository(session).create(
                owner=owner,
                filename="contract.txt",
                storage_path=blob.storage_path,
                size=blob.size,
                mime_type=mime_type,
                extracted_text=extracted_text,
            )
            await session.commit()
            return row.id

    return _make
