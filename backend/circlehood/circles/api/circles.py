"""Circle lookup, custom circle and discovery routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response

from circlehood.circles.api._errors import to_http_error
from circlehood.circles.domain.services import CirclesService
from circlehood.circles.schemas import dto
from circlehood.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["circles:circles"])
_service = CirclesService()


# Registered before /circles/{circle_id} so "discover" is not parsed as an id.
@router.get("/circles/discover", response_model=dto.CircleListResponse)
async def discover_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.CircleListResponse:
	try:
		return await _service.discover(auth_user)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/circles/{circle_id}", response_model=dto.CircleResponse)
async def get_circle_endpoint(
	circle_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.CircleResponse:
	try:
		return await _service.get_circle(auth_user, circle_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/circles/{circle_id}/custom", response_model=dto.CircleResponse, status_code=201)
async def create_custom_circle_endpoint(
	circle_id: UUID,
	payload: dto.CustomCircleCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.CircleResponse:
	try:
		return await _service.create_custom_circle(auth_user, circle_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/circles/{circle_id}/join", response_model=dto.MembershipResponse)
async def join_circle_endpoint(
	circle_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipResponse:
	try:
		return await _service.join_circle(auth_user, circle_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.delete(
	"/circles/{circle_id}/membership",
	status_code=204,
	response_class=Response,
	response_model=None,
)
async def leave_circle_endpoint(
	circle_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> None:
	try:
		await _service.leave_circle(auth_user, circle_id)
		return None
	except Exception as exc:
		raise to_http_error(exc) from exc
