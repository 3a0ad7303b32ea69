"""Profile-derived membership reconciliation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence
from uuid import UUID

import asyncpg

from circlehood.circles.domain import models, policies, repo as repo_module
from circlehood.circles.domain.exceptions import CircleError, NotFoundError
from circlehood.circles.domain.graph import CircleGraphStore, CircleSpec
from circlehood.obs import metrics as obs_metrics

log = logging.getLogger(__name__)

Kind = models.CircleKind


def compute_target_circles(profile: models.ParentProfile) -> list[CircleSpec]:
	"""Circles a profile implies, broadest first.

	School, School/Class, School/Class/Section and, with a society,
	Society and Society/School.
	"""
	policies.ensure_profile_complete(
		school_id=profile.school_id,
		class_id=profile.class_id,
		section_id=profile.section_id,
	)
	school = (Kind.SCHOOL, profile.school_id)
	klass = (Kind.CLASS, profile.class_id)
	section = (Kind.SECTION, profile.section_id)
	specs = [
		CircleSpec.of(school),
		CircleSpec.of(school, klass),
		CircleSpec.of(school, klass, section),
	]
	if profile.society_id is not None and profile.society_id.strip():
		society = (Kind.SOCIETY, profile.society_id)
		specs.append(CircleSpec.of(society))
		specs.append(CircleSpec.of(society, school))
	return specs


@dataclass(frozen=True, slots=True)
class MembershipPlan:
	to_add: tuple[UUID, ...]
	to_remove: tuple[UUID, ...]

	@property
	def is_noop(self) -> bool:
		return not self.to_add and not self.to_remove


def plan_membership_changes(current: Iterable[UUID], target: Sequence[UUID]) -> MembershipPlan:
	"""Diff current auto-joined circle ids against the target set, keeping target order."""
	current_set = set(current)
	target_set = set(target)
	to_add: list[UUID] = []
	for circle_id in target:
		if circle_id not in current_set and circle_id not in to_add:
			to_add.append(circle_id)
	to_remove = tuple(sorted((cid for cid in current_set if cid not in target_set), key=str))
	return MembershipPlan(to_add=tuple(to_add), to_remove=to_remove)


@dataclass(frozen=True, slots=True)
class SyncResult:
	circles: tuple[models.CircleNode, ...]
	added: tuple[UUID, ...]
	removed: tuple[UUID, ...]


_MERGEABLE_FIELDS = frozenset({"school_id", "class_id", "section_id", "society_id"})

PrepareTargets = Callable[[asyncpg.Connection], Awaitable[Sequence[CircleSpec]]]


def merge_profile_changes(current: models.ParentProfile, changes: Mapping[str, Any]) -> models.ParentProfile:
	"""Apply a partial update; school, class and section cannot be cleared."""
	update = {field: value for field, value in changes.items() if field in _MERGEABLE_FIELDS}
	for field in ("school_id", "class_id", "section_id"):
		if field in update and update[field] is None:
			update.pop(field)
	return current.model_copy(update=update)


class MembershipSynchronizer:
	"""Reconciles a parent's auto-joined memberships with their profile.

	Each sync runs in one transaction holding the parent's advisory lock, so
	overlapping reassignments of the same parent apply one after the other and a
	failure part-way leaves the previous memberships untouched. Memberships the
	parent opted into (``auto_joined = false``) are never modified here.
	"""

	def __init__(
		self,
		repository: repo_module.CirclesRepository | None = None,
		graph: CircleGraphStore | None = None,
	) -> None:
		self.repo = repository or repo_module.CirclesRepository()
		self.graph = graph or CircleGraphStore(self.repo)

	async def sync(
		self,
		parent_id: UUID,
		target_specs: Sequence[CircleSpec],
		*,
		profile: models.ParentProfile | None = None,
	) -> SyncResult:
		"""Make the parent's auto-joined memberships equal ``target_specs``.

		When ``profile`` is given it is stored in the same transaction.
		"""

		async def prepare(conn: asyncpg.Connection) -> Sequence[CircleSpec]:
			if profile is not None:
				await self.repo.upsert_profile(profile, conn=conn)
			return target_specs

		return await self._reconcile(parent_id, prepare)

	async def sync_profile(self, profile: models.ParentProfile) -> SyncResult:
		"""Store ``profile`` and reconcile memberships to the circles it implies."""
		return await self.sync(profile.parent_id, compute_target_circles(profile), profile=profile)

	async def reassign(self, parent_id: UUID, changes: Mapping[str, Any]) -> SyncResult:
		"""Merge ``changes`` into the stored profile and reconcile.

		The stored profile is read under the parent's lock, so concurrent
		partial updates each see the other's committed result.
		"""

		async def prepare(conn: asyncpg.Connection) -> Sequence[CircleSpec]:
			current = await self.repo.get_profile(parent_id, conn=conn)
			if current is None:
				raise NotFoundError("parent_not_found")
			profile = merge_profile_changes(current, changes)
			target_specs = compute_target_circles(profile)
			await self.repo.upsert_profile(profile, conn=conn)
			return target_specs

		return await self._reconcile(parent_id, prepare)

	async def _reconcile(self, parent_id: UUID, prepare: PrepareTargets) -> SyncResult:
		started = time.perf_counter()
		try:
			async with self.repo.transaction() as conn:
				await self.repo.lock_parent(parent_id, conn=conn)
				target_specs = await prepare(conn)
				circles: list[models.CircleNode] = []
				for spec in target_specs:
					circles.append(await self.graph.resolve(spec, conn=conn))
				current = await self.repo.list_memberships(parent_id, auto_joined=True, conn=conn)
				plan = plan_membership_changes(
					(membership.circle_id for membership in current),
					[circle.id for circle in circles],
				)
				if not plan.is_noop:
					await self.repo.add_memberships(parent_id, plan.to_add, auto_joined=True, conn=conn)
					await self.repo.remove_memberships(parent_id, plan.to_remove, auto_joined=True, conn=conn)
		except CircleError:
			obs_metrics.record_membership_sync("rejected", duration_seconds=time.perf_counter() - started)
			raise
		except Exception:
			obs_metrics.record_membership_sync("error", duration_seconds=time.perf_counter() - started)
			log.exception("membership_sync_failed", extra={"parent_id": str(parent_id)})
			raise
		obs_metrics.record_membership_sync(
			"noop" if plan.is_noop else "changed",
			duration_seconds=time.perf_counter() - started,
		)
		obs_metrics.inc_membership_change("auto_join", len(plan.to_add))
		obs_metrics.inc_membership_change("auto_leave", len(plan.to_remove))
		log.info(
			"membership_synced",
			extra={
				"parent_id": str(parent_id),
				"added": len(plan.to_add),
				"removed": len(plan.to_remove),
			},
		)
		return SyncResult(circles=tuple(circles), added=plan.to_add, removed=plan.to_remove)
