"""Member-created sub-circles and their discovery."""

from __future__ import annotations

import logging
from typing import AbstractSet, Iterable
from uuid import UUID

import asyncpg

from circlehood.circles.domain import models, policies, repo as repo_module
from circlehood.circles.domain.exceptions import ConflictError
from circlehood.circles.domain.graph import child_key
from circlehood.obs import metrics as obs_metrics
from circlehood.settings import settings

log = logging.getLogger(__name__)


def order_discovered(
	candidates: Iterable[tuple[models.CircleNode, int]],
	*,
	limit: int,
	joined: AbstractSet[UUID] = frozenset(),
) -> list[models.CircleNode]:
	"""Drop joined and hidden circles; nearest first, then newest first."""
	best: dict[UUID, tuple[models.CircleNode, int]] = {}
	for circle, distance in candidates:
		if circle.id in joined or not circle.discoverable or circle.kind is not models.CircleKind.CUSTOM:
			continue
		seen = best.get(circle.id)
		if seen is None or distance < seen[1]:
			best[circle.id] = (circle, distance)
	ordered = sorted(
		best.values(),
		key=lambda item: (item[1], -item[0].created_at.timestamp(), str(item[0].id)),
	)
	return [circle for circle, _distance in ordered[:limit]]


class CustomCircleRegistry:
	"""Creates custom circles under joined circles and lets others find and join them."""

	def __init__(self, repository: repo_module.CirclesRepository | None = None) -> None:
		self.repo = repository or repo_module.CirclesRepository()

	async def create(self, parent_id: UUID, name: str, parent_circle_id: UUID) -> models.CircleNode:
		slug = policies.slugify_circle_name(name, limit=settings.custom_circle_name_max_length)
		async with self.repo.transaction() as conn:
			await self.repo.lock_parent(parent_id, conn=conn)
			parent_circle = policies.require_circle(await self.repo.get_circle(parent_circle_id, conn=conn))
			policies.ensure_membership(await self.repo.get_membership(parent_id, parent_circle_id, conn=conn))
			circle = await self.repo.insert_circle(
				kind=models.CircleKind.CUSTOM,
				natural_key=child_key(parent_circle.natural_key, models.CircleKind.CUSTOM, slug),
				name=name.strip(),
				parent_id=parent_circle.id,
				created_by=parent_id,
				discoverable=True,
				conn=conn,
			)
			if circle is None:
				raise ConflictError("circle_exists")
			await self.repo.add_memberships(parent_id, [circle.id], auto_joined=False, conn=conn)
		obs_metrics.inc_custom_circle_created()
		obs_metrics.inc_membership_change("custom_join")
		log.info(
			"custom_circle_created",
			extra={"circle_id": str(circle.id), "parent_circle_id": str(parent_circle_id), "parent_id": str(parent_id)},
		)
		return circle

	async def discover(self, parent_id: UUID) -> list[models.CircleNode]:
		"""Recomputed on every call from current memberships."""
		candidates = await self.repo.list_reachable_custom_circles(
			parent_id,
			max_depth=settings.discover_max_depth,
		)
		return order_discovered(candidates, limit=settings.discover_limit)

	async def join(self, parent_id: UUID, circle_id: UUID) -> models.Membership:
		async with self.repo.transaction() as conn:
			await self.repo.lock_parent(parent_id, conn=conn)
			circle = policies.require_circle(await self.repo.get_circle(circle_id, conn=conn))
			existing = await self.repo.get_membership(parent_id, circle_id, conn=conn)
			if existing is not None:
				return existing
			reachable = await self._is_reachable(parent_id, circle, conn=conn)
			policies.ensure_custom_joinable(circle, parent_circle_joined=reachable)
			await self.repo.add_memberships(parent_id, [circle_id], auto_joined=False, conn=conn)
			membership = policies.ensure_membership(await self.repo.get_membership(parent_id, circle_id, conn=conn))
		obs_metrics.inc_membership_change("custom_join")
		log.info("custom_circle_joined", extra={"circle_id": str(circle_id), "parent_id": str(parent_id)})
		return membership

	async def leave(self, parent_id: UUID, circle_id: UUID) -> None:
		async with self.repo.transaction() as conn:
			await self.repo.lock_parent(parent_id, conn=conn)
			policies.ensure_leavable(await self.repo.get_membership(parent_id, circle_id, conn=conn))
			await self.repo.remove_memberships(parent_id, [circle_id], auto_joined=False, conn=conn)
		obs_metrics.inc_membership_change("custom_leave")
		log.info("custom_circle_left", extra={"circle_id": str(circle_id), "parent_id": str(parent_id)})

	async def _is_reachable(
		self,
		parent_id: UUID,
		circle: models.CircleNode,
		*,
		conn: asyncpg.Connection,
	) -> bool:
		"""Whether discovery would offer ``circle`` to the parent."""
		node = circle
		for _distance in range(settings.discover_max_depth):
			if node.parent_id is None:
				return False
			if await self.repo.get_membership(parent_id, node.parent_id, conn=conn) is not None:
				return True
			ancestor = await self.repo.get_circle(node.parent_id, conn=conn)
			if ancestor is None or ancestor.kind is not models.CircleKind.CUSTOM or not ancestor.discoverable:
				return False
			node = ancestor
		return False
