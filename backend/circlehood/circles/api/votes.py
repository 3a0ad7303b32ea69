"""Vote routes for posts and replies."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from circlehood.circles.api._errors import to_http_error
from circlehood.circles.domain.models import TargetType
from circlehood.circles.domain.services import CirclesService
from circlehood.circles.schemas import dto
from circlehood.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["circles:votes"])
_service = CirclesService()


@router.put("/votes/{target_type}/{target_id}", response_model=dto.TallyResponse)
async def cast_vote_endpoint(
	target_type: TargetType,
	target_id: UUID,
	payload: dto.VoteRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TallyResponse:
	try:
		return await _service.cast_vote(auth_user, target_type, target_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.delete("/votes/{target_type}/{target_id}", response_model=dto.TallyResponse)
async def remove_vote_endpoint(
	target_type: TargetType,
	target_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TallyResponse:
	try:
		return await _service.remove_vote(auth_user, target_type, target_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/votes/{target_type}/{target_id}", response_model=dto.TallyResponse)
async def get_tally_endpoint(
	target_type: TargetType,
	target_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TallyResponse:
	try:
		return await _service.get_tally(auth_user, target_type, target_id)
	except Exception as exc:
		raise to_http_error(exc) from exc
