"""Error translation helpers for circles API."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from circlehood.circles.domain import exceptions

log = logging.getLogger(__name__)


def to_http_error(exc: Exception) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors."""
	if isinstance(exc, HTTPException):
		return exc
	if isinstance(exc, exceptions.CircleError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	log.exception("circles_unhandled_error", exc_info=exc)
	return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal_error")
