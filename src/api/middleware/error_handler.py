"""Exception handlers mapping domain errors to HTTP responses."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.domains.compliance.errors import ComplianceError, ErrorKind

logger = structlog.get_logger()

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.OWNER_MISMATCH: 403,
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.COLLABORATOR_FAILURE: 502,
    ErrorKind.CONCURRENT_MODIFICATION: 409,
    ErrorKind.INVALID_TRANSITION: 409,
}


async def compliance_exception_handler(request: Request, exc: ComplianceError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = STATUS_BY_KIND.get(exc.kind, 400)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        exc.kind.value,
        request_id=request_id,
        message=exc.message,
        **exc.identifiers,
    )
    return JSONResponse(
        status_code=status_code,
        content={**exc.to_dict(), "request_id": request_id},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        },
    )
