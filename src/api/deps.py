"""FastAPI dependency providers.

Collaborators and services are built per request from module-level
singletons; tests swap them through ``app.dependency_overrides``.
"""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.collaborators.analysis import Analyzer, OllamaAnalyzer
from src.collaborators.extraction import (
    HttpTextExtractor,
    MimeRoutingExtractor,
    TextExtractor,
)
from src.config import settings
from src.db.database import async_session_factory
from src.domains.compliance.config import ComplianceConfig
from src.domains.compliance.dashboard import DashboardService
from src.domains.compliance.documents import DocumentStore
from src.domains.compliance.engine import RiskScoringEngine
from src.domains.compliance.lifecycle import ComplianceLifecycleManager
from src.storage.blobs import LocalBlobStore

_compliance_config = ComplianceConfig.from_env()
_blob_store = LocalBlobStore(settings.upload_dir)
_extractor = MimeRoutingExtractor(
    remote=(
        HttpTextExtractor(
            settings.extraction_service_url, timeout=settings.extraction_timeout_seconds
        )
        if settings.extraction_service_url
        else None
    )
)
_analyzer = OllamaAnalyzer(
    settings.ollama_url,
    settings.ollama_model,
    timeout=settings.analysis_timeout_seconds,
    max_chars=settings.analysis_max_chars,
)


async def get_owner(x_user_id: str | None = Header(default=None)) -> str:
    """Owner identity set by the upstream authentication layer."""
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-ID header")
    return x_user_id.strip()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_compliance_config() -> ComplianceConfig:
    return _compliance_config


def get_blob_store() -> LocalBlobStore:
    return _blob_store


def get_extractor() -> TextExtractor:
    return _extractor


def get_analyzer() -> Analyzer:
    return _analyzer


def get_lifecycle(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    config: ComplianceConfig = Depends(get_compliance_config),  # noqa: B008
) -> ComplianceLifecycleManager:
    return ComplianceLifecycleManager(session_factory, config)


def get_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    blob_store: LocalBlobStore = Depends(get_blob_store),  # noqa: B008
    extractor: TextExtractor = Depends(get_extractor),  # noqa: B008
    analyzer: Analyzer = Depends(get_analyzer),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
    config: ComplianceConfig = Depends(get_compliance_config),  # noqa: B008
) -> RiskScoringEngine:
    return RiskScoringEngine(
        session_factory,
        blob_store,
        extractor,
        analyzer,
        lifecycle,
        config,
        extraction_timeout=settings.extraction_timeout_seconds,
        analysis_timeout=settings.analysis_timeout_seconds,
    )


def get_document_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    blob_store: LocalBlobStore = Depends(get_blob_store),  # noqa: B008
) -> DocumentStore:
    return DocumentStore(
        session_factory,
        blob_store,
        max_upload_size=settings.max_upload_size,
        allowed_mime_types=settings.allowed_mime_types,
    )


def get_dashboard(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    lifecycle: ComplianceLifecycleManager = Depends(get_lifecycle),  # noqa: B008
) -> DashboardService:
    return DashboardService(session_factory, lifecycle)
