"""Canonical circle nodes, deduplicated by natural key."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import quote
from uuid import UUID

import asyncpg

from circlehood.circles.domain import models, repo as repo_module
from circlehood.circles.domain.exceptions import TransientStorageConflict, ValidationError
from circlehood.obs import metrics as obs_metrics
from circlehood.settings import settings

log = logging.getLogger(__name__)

PathSegment = tuple[models.CircleKind, str]


def _normalise_identifier(identifier: str) -> str:
	text = str(identifier).strip().lower()
	if not text:
		raise ValidationError("circle_identifier_required")
	return quote(text, safe="")


def natural_key_for(path: Iterable[PathSegment]) -> str:
	"""Join ``kind:identifier`` segments root first, e.g. ``school:dps/class:i``."""
	segments = [f"{kind.value}:{_normalise_identifier(identifier)}" for kind, identifier in path]
	if not segments:
		raise ValidationError("circle_path_required")
	return "/".join(segments)


def child_key(parent_key: str, kind: models.CircleKind, identifier: str) -> str:
	return f"{parent_key}/{kind.value}:{_normalise_identifier(identifier)}"


@dataclass(frozen=True, slots=True)
class CircleSpec:
	"""A circle identified by its ancestor chain; the last segment names the circle itself."""

	path: tuple[PathSegment, ...]

	@classmethod
	def of(cls, *segments: PathSegment) -> "CircleSpec":
		return cls(path=tuple((models.CircleKind(kind), str(identifier)) for kind, identifier in segments))

	@property
	def kind(self) -> models.CircleKind:
		return self.path[-1][0]

	@property
	def name(self) -> str:
		return self.path[-1][1].strip()

	@property
	def natural_key(self) -> str:
		return natural_key_for(self.path)

	@property
	def parent(self) -> "CircleSpec | None":
		if len(self.path) <= 1:
			return None
		return CircleSpec(path=self.path[:-1])


class CircleGraphStore:
	"""Get-or-create access to hierarchy nodes.

	Creation never checks before inserting: the insert itself is the race
	arbiter and a losing writer re-reads the winner's row.
	"""

	def __init__(
		self,
		repository: repo_module.CirclesRepository | None = None,
		*,
		max_attempts: int | None = None,
	) -> None:
		self.repo = repository or repo_module.CirclesRepository()
		self.max_attempts = max_attempts or settings.circle_resolve_max_attempts

	async def resolve(
		self,
		spec: CircleSpec,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.CircleNode:
		"""Return the single node for ``spec``, creating it and its ancestors as needed."""
		if spec.kind is models.CircleKind.CUSTOM:
			raise ValidationError("custom_circles_not_resolvable")
		parent_id: UUID | None = None
		if spec.parent is not None:
			parent = await self.resolve(spec.parent, conn=conn)
			parent_id = parent.id
		return await self.get_or_create(
			kind=spec.kind,
			natural_key=spec.natural_key,
			name=spec.name,
			parent_id=parent_id,
			conn=conn,
		)

	async def get_or_create(
		self,
		*,
		kind: models.CircleKind,
		natural_key: str,
		name: str,
		parent_id: UUID | None,
		conn: asyncpg.Connection | None = None,
	) -> models.CircleNode:
		for attempt in range(1, self.max_attempts + 1):
			created = await self.repo.insert_circle(
				kind=kind,
				natural_key=natural_key,
				name=name,
				parent_id=parent_id,
				conn=conn,
			)
			if created is not None:
				obs_metrics.inc_circle_resolution(kind.value, "created")
				log.info("circle_created", extra={"circle_id": str(created.id), "natural_key": natural_key})
				return created
			existing = await self.repo.get_circle_by_key(natural_key, conn=conn)
			if existing is not None:
				obs_metrics.inc_circle_resolution(kind.value, "existing")
				return existing
			# The conflicting row belonged to a writer that has since rolled back.
			obs_metrics.inc_circle_resolve_retry()
			log.warning(
				"circle_resolve_retry",
				extra={"natural_key": natural_key, "attempt": attempt},
			)
		obs_metrics.inc_circle_resolution(kind.value, "conflict")
		raise TransientStorageConflict()

	async def get(self, circle_id: UUID, *, conn: asyncpg.Connection | None = None) -> models.CircleNode | None:
		return await self.repo.get_circle(circle_id, conn=conn)

	async def get_many(
		self,
		circle_ids: Iterable[UUID],
		*,
		conn: asyncpg.Connection | None = None,
	) -> list[models.CircleNode]:
		return await self.repo.get_circles(circle_ids, conn=conn)
