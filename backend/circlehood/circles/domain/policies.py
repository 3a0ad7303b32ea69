"""Authorization and input policies for circle operations."""

from __future__ import annotations

import re
from uuid import UUID

from circlehood.circles.domain import models
from circlehood.circles.domain.exceptions import ForbiddenError, NotFoundError, ValidationError

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


def require_circle(circle: models.CircleNode | None) -> models.CircleNode:
	if circle is None:
		raise NotFoundError("circle_not_found")
	return circle


def require_post(post: models.Post | None) -> models.Post:
	if post is None:
		raise NotFoundError("post_not_found")
	return post


def ensure_membership(membership: models.Membership | None) -> models.Membership:
	if membership is None:
		raise ForbiddenError("membership_required")
	return membership


def ensure_profile_complete(*, school_id: str | None, class_id: str | None, section_id: str | None) -> None:
	for field, value in (("school_id", school_id), ("class_id", class_id), ("section_id", section_id)):
		if value is None or not str(value).strip():
			raise ValidationError(f"{field}_required")


def ensure_content(content: str, *, limit: int, field: str = "content") -> str:
	text = (content or "").strip()
	if not text:
		raise ValidationError(f"{field}_required")
	if len(text) > limit:
		raise ValidationError(f"{field}_too_long")
	return text


def ensure_cursor_limit(limit: int) -> None:
	if limit < 1 or limit > 50:
		raise ValidationError("limit_out_of_range")


def slugify_circle_name(name: str, *, limit: int) -> str:
	"""Return the natural-key segment for a custom circle name."""
	text = (name or "").strip()
	if not text:
		raise ValidationError("name_required")
	if len(text) > limit:
		raise ValidationError("name_too_long")
	slug = _SLUG_STRIP_RE.sub("-", text.lower()).strip("-")
	if not slug:
		raise ValidationError("name_invalid")
	return slug


def ensure_custom_joinable(circle: models.CircleNode, *, parent_circle_joined: bool) -> None:
	if circle.kind is not models.CircleKind.CUSTOM:
		raise ForbiddenError("circle_not_joinable")
	if not circle.discoverable or not parent_circle_joined:
		raise ForbiddenError("circle_not_reachable")


def ensure_leavable(membership: models.Membership | None) -> models.Membership:
	if membership is None:
		raise NotFoundError("membership_not_found")
	if membership.auto_joined:
		raise ForbiddenError("auto_joined_membership")
	return membership


def ensure_same_post(reply: models.Reply | None, post_id: UUID) -> models.Reply:
	if reply is None or reply.post_id != post_id:
		raise NotFoundError("reply_not_found")
	return reply
