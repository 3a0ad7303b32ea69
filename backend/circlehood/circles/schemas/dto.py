"""Pydantic schemas for the circles API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from circlehood.circles.domain.models import CircleKind, TargetType, VoteValue


class ProfileRequest(BaseModel):
	school_id: str = Field(..., min_length=1, max_length=64)
	class_id: str = Field(..., min_length=1, max_length=64)
	section_id: str = Field(..., min_length=1, max_length=64)
	society_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class ProfileUpdateRequest(BaseModel):
	"""Partial profile; omitted fields keep their stored value, an explicit null clears the society."""

	school_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
	class_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
	section_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
	society_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class CircleResponse(BaseModel):
	id: UUID
	kind: CircleKind
	parent_id: Optional[UUID] = None
	name: str
	natural_key: str
	created_by: Optional[UUID] = None
	discoverable: bool
	created_at: datetime


class CircleListResponse(BaseModel):
	items: List[CircleResponse]


class MembershipResponse(BaseModel):
	circle: CircleResponse
	joined_at: datetime
	auto_joined: bool


class MembershipListResponse(BaseModel):
	items: List[MembershipResponse]


class CustomCircleCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=80)


class PostCreateRequest(BaseModel):
	content: str = Field(..., min_length=1, max_length=10000)


class PostResponse(BaseModel):
	id: UUID
	circle_id: UUID
	author_id: UUID
	content: str
	score: int
	created_at: datetime


class PostListResponse(BaseModel):
	items: List[PostResponse]
	next_cursor: Optional[str] = None


class ReplyCreateRequest(BaseModel):
	content: str = Field(..., min_length=1, max_length=4000)
	reply_to_reply_id: Optional[UUID] = None


class ReplyResponse(BaseModel):
	id: UUID
	post_id: UUID
	author_id: UUID
	parent_reply_id: Optional[UUID] = None
	content: str
	score: int
	created_at: datetime


class ReplyThreadResponse(ReplyResponse):
	children: List[ReplyResponse] = Field(default_factory=list)


class ReplyListResponse(BaseModel):
	items: List[ReplyThreadResponse]


class VoteRequest(BaseModel):
	value: VoteValue


class TallyResponse(BaseModel):
	target_type: TargetType
	target_id: UUID
	score: int
	my_vote: Optional[VoteValue] = None
