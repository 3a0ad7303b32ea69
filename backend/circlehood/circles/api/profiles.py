"""Parent profile and membership routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from circlehood.circles.api._errors import to_http_error
from circlehood.circles.domain.services import CirclesService
from circlehood.circles.schemas import dto
from circlehood.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["circles:profiles"])
_service = CirclesService()


@router.put("/parents/me/profile", response_model=dto.MembershipListResponse)
async def onboard_endpoint(
	payload: dto.ProfileRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipListResponse:
	try:
		return await _service.onboard(auth_user, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.patch("/parents/me/profile", response_model=dto.MembershipListResponse)
async def reassign_endpoint(
	payload: dto.ProfileUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipListResponse:
	try:
		return await _service.reassign(auth_user, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/parents/me/memberships", response_model=dto.MembershipListResponse)
async def list_memberships_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipListResponse:
	try:
		return await _service.list_memberships(auth_user)
	except Exception as exc:
		raise to_http_error(exc) from exc
