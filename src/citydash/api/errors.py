# citydash/api/errors.py
"""
Translation of domain errors into HTTP errors.

Routers wrap their service calls with ``raise http_error(exc) from exc``
so every endpoint reports failures the same way.
"""
from __future__ import annotations

import logging

from fastapi import HTTPException

from citydash.core.errors import ConfigurationError, DuplicateEntityError, NotFound
from citydash.core.ngsi.transport import (
    BrokerUnavailableError,
    EntityNotFoundError,
    NgsiError,
)

logger = logging.getLogger(__name__)


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, ConfigurationError):
        return HTTPException(400, str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(404, str(exc))
    if isinstance(exc, DuplicateEntityError):
        return HTTPException(409, str(exc))
    if isinstance(exc, EntityNotFoundError):
        return HTTPException(404, exc.reason)
    if isinstance(exc, BrokerUnavailableError):
        return HTTPException(502, exc.reason)
    if isinstance(exc, NgsiError):
        return HTTPException(exc.status or 502, exc.reason)

    logger.exception("Unhandled error: %s", exc)
    return HTTPException(500, "Internal server error")
