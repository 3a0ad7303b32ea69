"""Custom exceptions for circle services."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class CircleError(Exception):
	"""Base class for circle related errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "circle_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class NotFoundError(CircleError):
	"""Raised when a referenced parent, circle, post or reply is missing."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class ForbiddenError(CircleError):
	"""Raised when the caller lacks the membership an action requires."""

	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class ConflictError(CircleError):
	"""Raised for conflicting operations (e.g., duplicate custom circle)."""

	status_code = status.HTTP_409_CONFLICT
	detail = "conflict"


class ValidationError(CircleError):
	"""Raised for missing or malformed input not caught by schema validation."""

	status_code = _HTTP_422
	detail = "validation_error"


class InvalidDepthError(CircleError):
	"""Internal guard: a reply would nest below a second-level reply."""

	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	detail = "invalid_reply_depth"


class TransientStorageConflict(CircleError):
	"""Circle node creation kept racing a writer that rolled back."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "transient_storage_conflict"
