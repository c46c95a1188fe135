"""Document upload and scoring endpoints."""

import uuid

from fastapi import APIRouter, Depends, File, Response, UploadFile

from src.api.deps import get_document_store, get_engine, get_owner
from src.domains.compliance.documents import DocumentStore, summarize
from src.domains.compliance.engine import RiskScoringEngine
from src.domains.compliance.models import (
    DocumentDetail,
    DocumentSummary,
    ScoreDocumentRequest,
    ScoringOutcome,
    TextDocumentCreate,
)

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])


@router.post("", response_model=DocumentSummary, status_code=201)
async def upload_document(
    file: UploadFile = File(...),  # noqa: B008
    owner: str = Depends(get_owner),  # noqa: B008
    store: DocumentStore = Depends(get_document_store),  # noqa: B008
) -> DocumentSummary:
    # One byte past the limit is enough for the store to reject it.
    content = await file.read(store.max_upload_size + 1)
    mime_type = file.content_type or "application/octet-stream"
    document = await store.upload(owner, file.filename or "", content, mime_type)
    return summarize(document)


@router.post("/text", response_model=DocumentSummary, status_code=201)
async def create_text_document(
    payload: TextDocumentCreate,
    owner: str = Depends(get_owner),  # noqa: B008
    store: DocumentStore = Depends(get_document_store),  # noqa: B008
) -> DocumentSummary:
    document = await store.create_from_text(owner, payload.title, payload.content)
    return summarize(document)


@router.get("", response_model=list[DocumentSummary])
async def list_documents(
    owner: str = Depends(get_owner),  # noqa: B008
    store: DocumentStore = Depends(get_document_store),  # noqa: B008
) -> list[DocumentSummary]:
    return await store.list_for_owner(owner)


@router.get("/{document_id}", response_model=DocumentDetail)
async def get_document(
    document_id: uuid.UUID,
    owner: str = Depends(get_owner),  # noqa: B008
    store: DocumentStore = Depends(get_document_store),  # noqa: B008
) -> DocumentDetail:
    return DocumentDetail.model_validate(await store.get(document_id, owner=owner))


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: uuid.UUID,
    owner: str = Depends(get_owner),  # noqa: B008
    store: DocumentStore = Depends(get_document_store),  # noqa: B008
) -> Response:
    await store.delete(document_id, owner=owner)
    return Response(status_code=204)


@router.post("/{document_id}/score", response_model=ScoringOutcome)
async def score_document(
    document_id: uuid.UUID,
    payload: ScoreDocumentRequest,
    owner: str = Depends(get_owner),  # noqa: B008
    engine: RiskScoringEngine = Depends(get_engine),  # noqa: B008
) -> ScoringOutcome:
    return await engine.score_from_document(
        payload.compliance_item_id,
        document_id,
        owner=owner,
        timeout=payload.timeout_seconds,
    )
