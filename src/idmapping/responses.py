"""
Error responses for the service boundary.

Translates the exception taxonomy into a status code plus body, in the
shape an HTTP façade returns them. Framework-neutral: a façade only needs
``error_response(exc).to_body()`` and ``.status``.

    - DuplicateMappingError -> 409 with both records under ``moreInfo``
    - MappingNotFoundError -> 404
    - anything else -> 500
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from idmapping.exceptions import DuplicateMappingError, MappingNotFoundError

logger = logging.getLogger(__name__)

DUPLICATE_MAPPING_ERROR_CODE = 1409


class ErrorResponse(BaseModel):
    """Error body returned for every failed call."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    status: int
    error_code: int | None = None
    user_message: str | None = None
    developer_message: str | None = None
    more_info: Any = None

    def to_body(self) -> dict[str, Any]:
        """JSON-ready body with camelCase keys and unset fields left out."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DuplicateMappingErrorResponse(ErrorResponse):
    """409 body carrying the rejected record and the record it collided with."""

    status: int = 409
    error_code: int | None = DUPLICATE_MAPPING_ERROR_CODE
    more_info: dict[str, Any] = Field(default_factory=dict)


def error_response(exc: BaseException) -> ErrorResponse:
    """
    Build the response for an exception raised by the service.

    Logs at the level the façade would: duplicates at error, misses at
    info, anything unexpected with its traceback.

    Example:
        >>> response = error_response(MappingNotFoundError("corporate", source_id=1))
        >>> response.to_body()["userMessage"]
        'Not Found: No corporate mapping found for source_id=1'
    """
    message = str(exc)

    if isinstance(exc, DuplicateMappingError):
        logger.error("Conflict: %s (duplicate=%s)", message, exc.duplicate.describe())
        return DuplicateMappingErrorResponse(
            user_message=f"Conflict: {message}",
            developer_message=message,
            more_info=exc.report.to_dict(),
        )

    if isinstance(exc, MappingNotFoundError):
        logger.info("Not Found: %s", message)
        return ErrorResponse(
            status=404,
            user_message=f"Not Found: {message}",
            developer_message=message,
        )

    logger.error("Unexpected error: %s", message, exc_info=exc)
    return ErrorResponse(
        status=500,
        user_message=f"Unexpected error: {message}",
        developer_message=message,
    )


__all__ = [
    "DUPLICATE_MAPPING_ERROR_CODE",
    "DuplicateMappingErrorResponse",
    "ErrorResponse",
    "error_response",
]
