"""Error taxonomy surfaced by the scoring engine and lifecycle manager.

Every error carries its taxonomy ``kind`` and the entity ids involved.
Messages never include a collaborator's raw error text; that is logged
at the point of failure instead.
"""

import uuid
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    OWNER_MISMATCH = "owner_mismatch"
    VALIDATION_FAILED = "validation_failed"
    COLLABORATOR_FAILURE = "collaborator_failure"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    INVALID_TRANSITION = "invalid_transition"


class ComplianceError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, **identifiers: Any) -> None:
        super().__init__(message)
        self.message = message
        self.identifiers = {
            key: str(value) if isinstance(value, uuid.UUID) else value
            for key, value in identifiers.items()
            if value is not None
        }

    def to_dict(self) -> dict:
        return {
            "error": self.kind.value,
            "message": self.message,
            "identifiers": self.identifiers,
        }


class ComplianceItemNotFound(ComplianceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, compliance_item_id: uuid.UUID) -> None:
        super().__init__("Compliance item not found", compliance_item_id=compliance_item_id)


class DocumentNotFound(ComplianceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, document_id: uuid.UUID) -> None:
        super().__init__("Document not found", document_id=document_id)


class RiskScoreNotFound(ComplianceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, risk_score_id: uuid.UUID) -> None:
        super().__init__("Risk score not found", risk_score_id=risk_score_id)


class OwnerMismatch(ComplianceError):
    kind = ErrorKind.OWNER_MISMATCH

    def __init__(self, compliance_item_id: uuid.UUID, document_id: uuid.UUID) -> None:
        super().__init__(
            "Document and compliance item belong to different owners",
            compliance_item_id=compliance_item_id,
            document_id=document_id,
        )


class ValidationFailed(ComplianceError):
    kind = ErrorKind.VALIDATION_FAILED


class CollaboratorFailure(ComplianceError):
    kind = ErrorKind.COLLABORATOR_FAILURE

    def __init__(self, message: str, reason: str, **identifiers: Any) -> None:
        super().__init__(message, reason=reason, **identifiers)
        self.reason = reason


class ExtractionFailed(CollaboratorFailure):
    def __init__(self, document_id: uuid.UUID, reason: str) -> None:
        super().__init__("Text extraction failed", reason, document_id=document_id)


class AnalysisFailed(CollaboratorFailure):
    def __init__(self, document_id: uuid.UUID | None, reason: str) -> None:
        super().__init__("Document analysis failed", reason, document_id=document_id)


class ConcurrentModification(ComplianceError):
    kind = ErrorKind.CONCURRENT_MODIFICATION

    def __init__(self, compliance_item_id: uuid.UUID, attempts: int) -> None:
        super().__init__(
            "Compliance item was modified concurrently; retry the request",
            compliance_item_id=compliance_item_id,
            attempts=attempts,
        )


class InvalidTransition(ComplianceError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(
        self,
        compliance_item_id: uuid.UUID,
        current: str,
        target: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message or f"Cannot move compliance item from {current} to {target}",
            compliance_item_id=compliance_item_id,
            current_status=current,
            target_status=target,
        )
