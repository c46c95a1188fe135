"""Document analysis collaborators.

    analyze(text) -> list[AnalysisCandidate]

An analyzer exposes an ``identifier`` used to stamp scores it produced
(``assessed_by = "system:<identifier>"``). Failures are raised as
``AnalysisError`` with kind unavailable, timeout or invalid_response.
"""

import json
from enum import StrEnum
from typing import Any, Protocol

import httpx
import structlog

from src.domains.compliance.models import AnalysisCandidate

logger = structlog.get_logger()

ANALYSIS_PROMPT = """You are a compliance risk analyst. Read the document below and \
identify the compliance risks it exposes.

Respond with JSON only, in exactly this shape:
{{"assessments": [{{"category": "<short risk category>", "score": <0-100>, \
"confidence": <0.0-1.0>, "reasoning": "<one or two sentences>"}}]}}

Use an empty list when the document raises no compliance risk.

Document:
{text}
"""


class AnalysisErrorKind(StrEnum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"


class AnalysisError(Exception):
    def __init__(self, kind: AnalysisErrorKind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


class Analyzer(Protocol):
    identifier: str

    async def analyze(self, text: str) -> list[AnalysisCandidate]: ...


class OllamaAnalyzer:
    """Asks an Ollama model for risk assessments through ``/api/generate``."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 120.0,
        max_chars: int = 4000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.identifier = model
        self.timeout = timeout
        self.max_chars = max_chars
        self._transport = transport

    def build_prompt(self, text: str) -> str:
        return ANALYSIS_PROMPT.format(text=text[: self.max_chars])

    async def analyze(self, text: str) -> list[AnalysisCandidate]:
        url = f"{self.base_url}/api/generate"
        payload = {
            "model": self.model,
            "prompt": self.build_prompt(text),
            "format": "json",
            "stream": False,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("analysis_provider_timeout", model=self.model, error=str(exc))
            raise AnalysisError(AnalysisErrorKind.TIMEOUT, str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("analysis_provider_unavailable", model=self.model, error=str(exc))
            raise AnalysisError(AnalysisErrorKind.UNAVAILABLE, str(exc)) from exc

        try:
            generated = response.json()["response"]
            body = json.loads(generated)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "analysis_provider_invalid_response",
                model=self.model,
                body=response.text[:200],
            )
            raise AnalysisError(AnalysisErrorKind.INVALID_RESPONSE, str(exc)) from exc

        return parse_assessments(body)


def parse_assessments(body: Any) -> list[AnalysisCandidate]:
    """Parse ``{"assessments": [...]}`` into candidates.

    Only a body without an ``assessments`` list is an invalid response.
    A malformed entry (not an object, a non-string category, a non-numeric
    score or confidence) still becomes a candidate with the bad values set
    to ``None``, so the scoring engine rejects it on its own and keeps the
    rest of the batch.
    """
    if not isinstance(body, dict) or not isinstance(body.get("assessments"), list):
        raise AnalysisError(AnalysisErrorKind.INVALID_RESPONSE, "missing assessments list")

    candidates = []
    for entry in body["assessments"]:
        if not isinstance(entry, dict):
            candidates.append(AnalysisCandidate())
            continue
        category = entry.get("category")
        reasoning = entry.get("reasoning")
        candidates.append(
            AnalysisCandidate(
                category=category if isinstance(category, str) else None,
                raw_score=_number(entry.get("score")),
                confidence=_number(entry.get("confidence")),
                reasoning=reasoning if isinstance(reasoning, str) else "",
            )
        )
    return candidates


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)
