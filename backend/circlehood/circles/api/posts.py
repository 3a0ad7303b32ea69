"""Post and reply routes for circles."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from circlehood.circles.api._errors import to_http_error
from circlehood.circles.domain.services import CirclesService
from circlehood.circles.schemas import dto
from circlehood.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["circles:posts"])
_service = CirclesService()


@router.get("/circles/{circle_id}/posts", response_model=dto.PostListResponse)
async def list_posts_endpoint(
	circle_id: UUID,
	limit: int = Query(default=20, ge=1, le=50),
	before: str | None = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostListResponse:
	try:
		return await _service.list_posts(auth_user, circle_id, limit=limit, before=before)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/circles/{circle_id}/posts", response_model=dto.PostResponse, status_code=201)
async def create_post_endpoint(
	circle_id: UUID,
	payload: dto.PostCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostResponse:
	try:
		return await _service.create_post(auth_user, circle_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}", response_model=dto.PostResponse)
async def get_post_endpoint(
	post_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostResponse:
	try:
		return await _service.get_post(auth_user, post_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}/replies", response_model=dto.ReplyListResponse)
async def list_replies_endpoint(
	post_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.ReplyListResponse:
	try:
		return await _service.list_replies(auth_user, post_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/posts/{post_id}/replies", response_model=dto.ReplyResponse, status_code=201)
async def create_reply_endpoint(
	post_id: UUID,
	payload: dto.ReplyCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.ReplyResponse:
	try:
		return await _service.create_reply(auth_user, post_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc
