"""Posts and two-level replies inside circles."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from circlehood.circles.domain import models, policies, repo as repo_module
from circlehood.circles.domain.exceptions import InvalidDepthError
from circlehood.obs import metrics as obs_metrics
from circlehood.settings import settings

log = logging.getLogger(__name__)


def effective_parent_reply_id(reply_to: models.Reply | None) -> UUID | None:
	"""Where a reply attaches so a thread never nests below two levels.

	Replying to a top-level reply nests under it; replying to a second-level
	reply attaches to that reply's top-level parent instead.
	"""
	if reply_to is None:
		return None
	if reply_to.parent_reply_id is None:
		return reply_to.id
	return reply_to.parent_reply_id


@dataclass(slots=True)
class ReplyThread:
	reply: models.Reply
	children: list[models.Reply] = field(default_factory=list)


def build_threads(replies: list[models.Reply]) -> list[ReplyThread]:
	"""Group replies (oldest first) into top-level threads with their children."""
	threads: dict[UUID, ReplyThread] = {}
	ordered: list[ReplyThread] = []
	for reply in replies:
		if reply.parent_reply_id is None:
			thread = ReplyThread(reply=reply)
			threads[reply.id] = thread
			ordered.append(thread)
	for reply in replies:
		if reply.parent_reply_id is not None:
			parent = threads.get(reply.parent_reply_id)
			if parent is not None:
				parent.children.append(reply)
	return ordered


class ThreadEngine:
	"""Membership-gated posting and replying."""

	def __init__(self, repository: repo_module.CirclesRepository | None = None) -> None:
		self.repo = repository or repo_module.CirclesRepository()

	async def _require_member(self, circle_id: UUID, parent_id: UUID) -> None:
		policies.ensure_membership(await self.repo.get_membership(parent_id, circle_id))

	async def create_post(self, circle_id: UUID, author_id: UUID, content: str) -> models.Post:
		text = policies.ensure_content(content, limit=settings.post_max_length)
		policies.require_circle(await self.repo.get_circle(circle_id))
		await self._require_member(circle_id, author_id)
		post = await self.repo.create_post(circle_id=circle_id, author_id=author_id, content=text)
		obs_metrics.inc_post_created()
		log.info("post_created", extra={"post_id": str(post.id), "circle_id": str(circle_id)})
		return post

	async def create_reply(
		self,
		post_id: UUID,
		author_id: UUID,
		content: str,
		reply_to_reply_id: UUID | None = None,
	) -> models.Reply:
		text = policies.ensure_content(content, limit=settings.reply_max_length)
		post = policies.require_post(await self.repo.get_post(post_id))
		await self._require_member(post.circle_id, author_id)
		reply_to: models.Reply | None = None
		if reply_to_reply_id is not None:
			reply_to = policies.ensure_same_post(await self.repo.get_reply(reply_to_reply_id), post.id)
		parent_reply_id = effective_parent_reply_id(reply_to)
		reply = await self.repo.create_reply(
			post_id=post.id,
			author_id=author_id,
			content=text,
			parent_reply_id=parent_reply_id,
		)
		if reply is None:
			log.error(
				"reply_depth_guard_tripped",
				extra={"post_id": str(post.id), "parent_reply_id": str(parent_reply_id)},
			)
			raise InvalidDepthError()
		flattened = reply_to is not None and reply_to.parent_reply_id is not None
		obs_metrics.inc_reply_created(depth=1 if parent_reply_id is None else 2, flattened=flattened)
		log.info(
			"reply_created",
			extra={"reply_id": str(reply.id), "post_id": str(post.id), "flattened": flattened},
		)
		return reply

	async def get_post(self, post_id: UUID, viewer_id: UUID) -> models.Post:
		post = policies.require_post(await self.repo.get_post(post_id))
		await self._require_member(post.circle_id, viewer_id)
		return post

	async def list_posts(
		self,
		circle_id: UUID,
		viewer_id: UUID,
		*,
		limit: int,
		before: str | None = None,
	) -> tuple[list[models.Post], str | None]:
		"""Newest first; ``before`` is the cursor returned by the previous page."""
		policies.ensure_cursor_limit(limit)
		policies.require_circle(await self.repo.get_circle(circle_id))
		await self._require_member(circle_id, viewer_id)
		cursor = repo_module.decode_cursor(before) if before else None
		return await self.repo.list_posts(circle_id, limit=limit, before=cursor)

	async def list_replies(self, post_id: UUID, viewer_id: UUID) -> list[ReplyThread]:
		post = policies.require_post(await self.repo.get_post(post_id))
		await self._require_member(post.circle_id, viewer_id)
		return build_threads(await self.repo.list_replies(post.id))
