"""Document store adapter: document metadata rows plus their blobs.

No business logic lives here. Uploaded files get their extracted text and
analysis from the scoring engine; documents created from pasted text carry
their text from the start.
"""

import re
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import DocumentDB
from src.db.repositories import DocumentRepository
from src.storage.blobs import LocalBlobStore, validate_upload

from .errors import DocumentNotFound, ValidationFailed
from .models import Document, DocumentSummary

logger = structlog.get_logger()

TEXT_MIME_TYPE = "text/plain"

_UNSAFE_FILENAME = re.compile(r"[^\w-]")


def summarize(document: Document | DocumentDB) -> DocumentSummary:
    return DocumentSummary(
        id=document.id,
        filename=document.filename,
        size=document.size,
        mime_type=document.mime_type,
        has_extracted_text=document.extracted_text is not None,
        has_ai_analysis=document.ai_analysis is not None,
        uploaded_at=document.uploaded_at,
    )


class DocumentStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        max_upload_size: int,
        allowed_mime_types: list[str],
    ) -> None:
        self._session_factory = session_factory
        self._blob_store = blob_store
        self.max_upload_size = max_upload_size
        self._allowed_mime_types = allowed_mime_types

    async def upload(
        self, owner: str, filename: str, content: bytes, mime_type: str
    ) -> Document:
        validate_upload(
            filename, content, mime_type, self.max_upload_size, self._allowed_mime_types
        )
        return await self._store(owner, filename, content, mime_type)

    async def create_from_text(self, owner: str, title: str, content: str) -> Document:
        """Store pasted text as a ``.txt`` document with its text already extracted."""
        if not title.strip():
            raise ValidationFailed("Document title must not be empty")
        filename = f"{_UNSAFE_FILENAME.sub('_', title.strip())}.txt"
        encoded = content.encode("utf-8")
        validate_upload(
            filename, encoded, TEXT_MIME_TYPE, self.max_upload_size, [TEXT_MIME_TYPE]
        )
        return await self._store(
            owner, filename, encoded, TEXT_MIME_TYPE, extracted_text=content
        )

    async def _store(
        self,
        owner: str,
        filename: str,
        content: bytes,
        mime_type: str,
        extracted_text: str | None = None,
    ) -> Document:
        blob = await self._blob_store.save(owner, filename, content)
        try:
            async with self._session_factory() as session:
                row = await DocumentRepository(session).create(
                    owner=owner,
                    filename=filename,
                    storage_path=blob.storage_path,
                    size=blob.size,
                    mime_type=mime_type,
                    extracted_text=extracted_text,
                )
                await session.commit()
                document = Document.model_validate(row)
        except Exception:
            await self._blob_store.delete(blob.storage_path)
            raise

        logger.info(
            "document_uploaded",
            document_id=str(document.id),
            owner=owner,
            mime_type=mime_type,
            size=blob.size,
            has_text=extracted_text is not None,
        )
        return document

    async def get(self, document_id: uuid.UUID, owner: str | None = None) -> Document:
        async with self._session_factory() as session:
            row = await DocumentRepository(session).get(document_id, owner=owner)
            if row is None:
                raise DocumentNotFound(document_id)
            return Document.model_validate(row)

    async def list_for_owner(self, owner: str) -> list[DocumentSummary]:
        async with self._session_factory() as session:
            rows = await DocumentRepository(session).list_for_owner(owner)
            return [summarize(row) for row in rows]

    async def delete(self, document_id: uuid.UUID, owner: str | None = None) -> None:
        """Delete the row and its blob. Linked risk scores keep a null document_id."""
        async with self._session_factory() as session:
            repo = DocumentRepository(session)
            row = await repo.get(document_id, owner=owner)
            if row is None:
                raise DocumentNotFound(document_id)
            storage_path = row.storage_path
            await repo.delete(document_id)
            await session.commit()

        await self._blob_store.delete(storage_path)
        logger.info("document_deleted", document_id=str(document_id))
