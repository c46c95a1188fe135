"""Text extraction collaborators.

    extract(content, mime_type) -> str

Failures are raised as ``ExtractionError`` with one of three kinds:
unsupported (mime type not handled), corrupt (bytes could not be parsed)
or timeout.
"""

from enum import StrEnum
from typing import Protocol

import httpx
import structlog

from src.shared.mime import base_mime_type

logger = structlog.get_logger()

PLAIN_TEXT_TYPES = frozenset({"text/plain", "text/csv", "application/json"})


class ExtractionErrorKind(StrEnum):
    UNSUPPORTED = "unsupported"
    CORRUPT = "corrupt"
    TIMEOUT = "timeout"


class ExtractionError(Exception):
    def __init__(self, kind: ExtractionErrorKind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


class TextExtractor(Protocol):
    async def extract(self, content: bytes, mime_type: str) -> str: ...


class PlainTextExtractor:
    """Decodes text-like uploads as UTF-8."""

    def __init__(self, mime_types: frozenset[str] = PLAIN_TEXT_TYPES) -> None:
        self.mime_types = mime_types

    def supports(self, mime_type: str) -> bool:
        return base_mime_type(mime_type) in self.mime_types

    async def extract(self, content: bytes, mime_type: str) -> str:
        if not self.supports(mime_type):
            raise ExtractionError(ExtractionErrorKind.UNSUPPORTED, mime_type)
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ExtractionError(ExtractionErrorKind.CORRUPT, str(exc)) from exc
        return text.strip()


class HttpTextExtractor:
    """Posts the document to a remote extraction service.

    The service takes a multipart ``file`` upload and answers with
    ``{"text": "..."}``. 415 means the format is unsupported, 422 that the
    file could not be parsed.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def extract(self, content: bytes, mime_type: str) -> str:
        url = f"{self.base_url}/api/v1/extract"
        files = {"file": ("document", content, mime_type)}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, files=files)
        except httpx.TimeoutException as exc:
            logger.warning("extraction_service_timeout", url=url, error=str(exc))
            raise ExtractionError(ExtractionErrorKind.TIMEOUT, str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("extraction_service_unreachable", url=url, error=str(exc))
            raise ExtractionError(ExtractionErrorKind.CORRUPT, str(exc)) from exc

        if response.status_code == 415:
            raise ExtractionError(ExtractionErrorKind.UNSUPPORTED, mime_type)
        if response.status_code == 422:
            raise ExtractionError(ExtractionErrorKind.CORRUPT, response.text[:200])
        if response.status_code >= 400:
            logger.warning(
                "extraction_service_error",
                url=url,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise ExtractionError(
                ExtractionErrorKind.CORRUPT, f"HTTP {response.status_code}"
            )

        try:
            text = response.json()["text"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ExtractionError(ExtractionErrorKind.CORRUPT, "malformed response") from exc
        if not isinstance(text, str):
            raise ExtractionError(ExtractionErrorKind.CORRUPT, "malformed response")
        return text.strip()


class MimeRoutingExtractor:
    """Plain text is decoded locally; everything else goes to the remote service."""

    def __init__(
        self,
        plain: PlainTextExtractor | None = None,
        remote: TextExtractor | None = None,
    ) -> None:
        self.plain = plain or PlainTextExtractor()
        self.remote = remote

    async def extract(self, content: bytes, mime_type: str) -> str:
        if self.plain.supports(mime_type):
            return await self.plain.extract(content, mime_type)
        if self.remote is None:
            raise ExtractionError(ExtractionErrorKind.UNSUPPORTED, mime_type)
        return await self.remote.extract(content, mime_type)
