"""Domain models for the circle hierarchy and threads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class CircleKind(str, Enum):
	SCHOOL = "school"
	CLASS = "class"
	SECTION = "section"
	SOCIETY = "society"
	CUSTOM = "custom"


class TargetType(str, Enum):
	POST = "post"
	REPLY = "reply"


class VoteValue(str, Enum):
	UP = "up"
	DOWN = "down"

	@property
	def contribution(self) -> int:
		return 1 if self is VoteValue.UP else -1

	@classmethod
	def from_contribution(cls, value: int) -> "VoteValue":
		return cls.UP if value > 0 else cls.DOWN


class CircleNode(BaseModel):
	"""A node in the circle forest."""

	id: UUID
	kind: CircleKind
	parent_id: Optional[UUID] = None
	natural_key: str
	name: str
	created_by: Optional[UUID] = None
	discoverable: bool
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class ParentProfile(BaseModel):
	"""School placement and residence a parent's auto-joined circles derive from."""

	parent_id: UUID
	school_id: str
	class_id: str
	section_id: str
	society_id: Optional[str] = None
	updated_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class Membership(BaseModel):
	"""Represents a (parent, circle) membership row."""

	parent_id: UUID
	circle_id: UUID
	joined_at: datetime
	auto_joined: bool

	model_config = ConfigDict(from_attributes=True)


class Post(BaseModel):
	"""Top-level discussion inside a circle."""

	id: UUID
	circle_id: UUID
	author_id: UUID
	content: str
	score: int
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Reply(BaseModel):
	"""Reply to a post, at most one level below another reply."""

	id: UUID
	post_id: UUID
	author_id: UUID
	parent_reply_id: Optional[UUID] = None
	content: str
	score: int
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Vote(BaseModel):
	"""One voter's up/down vote on a post or reply; value is +1 or -1."""

	voter_id: UUID
	target_type: TargetType
	target_id: UUID
	value: int
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class VoteWrite(BaseModel):
	"""Result of a vote write: the target's new score and the change applied."""

	score: int
	delta: int
