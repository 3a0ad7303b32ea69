"""In-memory stand-in for CirclesRepository used by the unit tests."""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Iterable
from uuid import UUID, uuid4

import pytest

from circlehood.circles.domain import models
from circlehood.circles.domain.repo import CursorPair, encode_cursor

_EPOCH = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class _FakeConnection:
	def __init__(self) -> None:
		self.locks: list[asyncio.Lock] = []


class InMemoryCirclesRepository:
	"""Mirrors the repository contract, including ON CONFLICT and rollback behaviour."""

	def __init__(self) -> None:
		self.circles: dict[UUID, models.CircleNode] = {}
		self.profiles: dict[UUID, models.ParentProfile] = {}
		self.memberships: dict[tuple[UUID, UUID], models.Membership] = {}
		self.posts: dict[UUID, models.Post] = {}
		self.replies: dict[UUID, models.Reply] = {}
		self.votes: dict[tuple[UUID, str, UUID], models.Vote] = {}
		self.parent_locks: dict[UUID, asyncio.Lock] = {}
		self.fail_on_add_memberships: Exception | None = None
		self.insert_calls = 0
		self._tick = 0

	# --- helpers ----------------------------------------------------------

	def now(self) -> datetime:
		self._tick += 1
		return _EPOCH + timedelta(seconds=self._tick)

	def _tables(self) -> tuple:
		return (self.circles, self.profiles, self.memberships, self.posts, self.replies, self.votes)

	def _restore(self, snapshot: tuple) -> None:
		(
			self.circles,
			self.profiles,
			self.memberships,
			self.posts,
			self.replies,
			self.votes,
		) = snapshot

	def auto_joined_ids(self, parent_id: UUID) -> set[UUID]:
		return {cid for (pid, cid), m in self.memberships.items() if pid == parent_id and m.auto_joined}

	def membership_ids(self, parent_id: UUID) -> set[UUID]:
		return {cid for (pid, cid) in self.memberships if pid == parent_id}

	def circle_by_key(self, natural_key: str) -> models.CircleNode | None:
		for circle in self.circles.values():
			if circle.natural_key == natural_key:
				return circle
		return None

	def seed_circle(
		self,
		*,
		kind: models.CircleKind,
		natural_key: str,
		name: str | None = None,
		parent_id: UUID | None = None,
		created_by: UUID | None = None,
		discoverable: bool = False,
		created_at: datetime | None = None,
	) -> models.CircleNode:
		circle = models.CircleNode(
			id=uuid4(),
			kind=kind,
			parent_id=parent_id,
			natural_key=natural_key,
			name=name or natural_key.rsplit(":", 1)[-1],
			created_by=created_by,
			discoverable=discoverable,
			created_at=created_at or self.now(),
		)
		self.circles[circle.id] = circle
		return circle

	def seed_membership(self, parent_id: UUID, circle_id: UUID, *, auto_joined: bool) -> models.Membership:
		membership = models.Membership(
			parent_id=parent_id,
			circle_id=circle_id,
			joined_at=self.now(),
			auto_joined=auto_joined,
		)
		self.memberships[(parent_id, circle_id)] = membership
		return membership

	# --- transactions -----------------------------------------------------

	@asynccontextmanager
	async def transaction(self) -> AsyncIterator[_FakeConnection]:
		snapshot = copy.deepcopy(self._tables())
		conn = _FakeConnection()
		try:
			yield conn
		except BaseException:
			self._restore(snapshot)
			raise
		finally:
			for lock in reversed(conn.locks):
				lock.release()

	async def lock_parent(self, parent_id: UUID, *, conn: _FakeConnection) -> None:
		lock = self.parent_locks.setdefault(parent_id, asyncio.Lock())
		await lock.acquire()
		conn.locks.append(lock)

	# --- circle nodes -----------------------------------------------------

	async def insert_circle(
		self,
		*,
		kind: models.CircleKind,
		natural_key: str,
		name: str,
		parent_id: UUID | None,
		created_by: UUID | None = None,
		discoverable: bool = False,
		conn=None,
	) -> models.CircleNode | None:
		self.insert_calls += 1
		await asyncio.sleep(0)
		if self.circle_by_key(natural_key) is not None:
			return None
		return self.seed_circle(
			kind=kind,
			natural_key=natural_key,
			name=name,
			parent_id=parent_id,
			created_by=created_by,
			discoverable=discoverable,
		)

	async def get_circle(self, circle_id: UUID, *, conn=None) -> models.CircleNode | None:
		return self.circles.get(circle_id)

	async def get_circle_by_key(self, natural_key: str, *, conn=None) -> models.CircleNode | None:
		await asyncio.sleep(0)
		return self.circle_by_key(natural_key)

	async def get_circles(self, circle_ids: Iterable[UUID], *, conn=None) -> list[models.CircleNode]:
		found = [self.circles[cid] for cid in set(circle_ids) if cid in self.circles]
		return sorted(found, key=lambda circle: circle.natural_key)

	async def list_reachable_custom_circles(
		self,
		parent_id: UUID,
		*,
		max_depth: int,
		conn=None,
	) -> list[tuple[models.CircleNode, int]]:
		joined = self.membership_ids(parent_id)

		def children(of: set[UUID]) -> list[models.CircleNode]:
			return [
				circle
				for circle in self.circles.values()
				if circle.parent_id in of and circle.kind is models.CircleKind.CUSTOM and circle.discoverable
			]

		results: list[tuple[models.CircleNode, int]] = []
		frontier = children(joined)
		distance = 1
		while frontier:
			results.extend((circle, distance) for circle in frontier if circle.id not in joined)
			if distance >= max_depth:
				break
			frontier = children({circle.id for circle in frontier if circle.id not in joined})
			distance += 1
		return results

	# --- profiles ---------------------------------------------------------

	async def get_profile(self, parent_id: UUID, *, conn=None) -> models.ParentProfile | None:
		return self.profiles.get(parent_id)

	async def upsert_profile(self, profile: models.ParentProfile, *, conn) -> models.ParentProfile:
		stored = profile.model_copy(update={"updated_at": self.now()})
		self.profiles[profile.parent_id] = stored
		return stored

	# --- memberships ------------------------------------------------------

	async def get_membership(self, parent_id: UUID, circle_id: UUID, *, conn=None) -> models.Membership | None:
		return self.memberships.get((parent_id, circle_id))

	async def list_memberships(
		self,
		parent_id: UUID,
		*,
		auto_joined: bool | None = None,
		conn=None,
	) -> list[models.Membership]:
		items = [
			m
			for (pid, _cid), m in self.memberships.items()
			if pid == parent_id and (auto_joined is None or m.auto_joined == auto_joined)
		]
		return sorted(items, key=lambda m: (m.joined_at, str(m.circle_id)))

	async def add_memberships(
		self,
		parent_id: UUID,
		circle_ids: Iterable[UUID],
		*,
		auto_joined: bool,
		conn,
	) -> int:
		if self.fail_on_add_memberships is not None:
			raise self.fail_on_add_memberships
		added = 0
		for circle_id in circle_ids:
			if (parent_id, circle_id) in self.memberships:
				continue
			self.seed_membership(parent_id, circle_id, auto_joined=auto_joined)
			added += 1
		await asyncio.sleep(0)
		return added

	async def remove_memberships(
		self,
		parent_id: UUID,
		circle_ids: Iterable[UUID],
		*,
		auto_joined: bool,
		conn,
	) -> int:
		removed = 0
		for circle_id in list(circle_ids):
			membership = self.memberships.get((parent_id, circle_id))
			if membership is not None and membership.auto_joined == auto_joined:
				del self.memberships[(parent_id, circle_id)]
				removed += 1
		return removed

	# --- posts & replies --------------------------------------------------

	async def create_post(self, *, circle_id: UUID, author_id: UUID, content: str) -> models.Post:
		post = models.Post(
			id=uuid4(),
			circle_id=circle_id,
			author_id=author_id,
			content=content,
			score=0,
			created_at=self.now(),
		)
		self.posts[post.id] = post
		return post

	async def get_post(self, post_id: UUID) -> models.Post | None:
		return self.posts.get(post_id)

	async def list_posts(
		self,
		circle_id: UUID,
		*,
		limit: int,
		before: CursorPair | None = None,
	) -> tuple[list[models.Post], str | None]:
		items = sorted(
			(post for post in self.posts.values() if post.circle_id == circle_id),
			key=lambda post: (post.created_at, str(post.id)),
			reverse=True,
		)
		if before is not None:
			items = [post for post in items if (post.created_at, str(post.id)) < (before[0], str(before[1]))]
		next_cursor = None
		if len(items) > limit:
			items = items[:limit]
			next_cursor = encode_cursor((items[-1].created_at, items[-1].id))
		return items, next_cursor

	async def create_reply(
		self,
		*,
		post_id: UUID,
		author_id: UUID,
		content: str,
		parent_reply_id: UUID | None,
	) -> models.Reply | None:
		if parent_reply_id is not None:
			parent = self.replies.get(parent_reply_id)
			if parent is None or parent.post_id != post_id or parent.parent_reply_id is not None:
				return None
		reply = models.Reply(
			id=uuid4(),
			post_id=post_id,
			author_id=author_id,
			parent_reply_id=parent_reply_id,
			content=content,
			score=0,
			created_at=self.now(),
		)
		self.replies[reply.id] = reply
		return reply

	async def get_reply(self, reply_id: UUID) -> models.Reply | None:
		return self.replies.get(reply_id)

	async def list_replies(self, post_id: UUID) -> list[models.Reply]:
		return sorted(
			(reply for reply in self.replies.values() if reply.post_id == post_id),
			key=lambda reply: (reply.created_at, str(reply.id)),
		)

	# --- votes ------------------------------------------------------------

	def _target_table(self, target_type: models.TargetType) -> dict:
		return self.posts if target_type is models.TargetType.POST else self.replies

	async def get_target_circle_id(self, target_type: models.TargetType, target_id: UUID) -> UUID | None:
		if target_type is models.TargetType.POST:
			post = self.posts.get(target_id)
			return post.circle_id if post else None
		reply = self.replies.get(target_id)
		if reply is None:
			return None
		return self.posts[reply.post_id].circle_id

	def _move_score(self, target_type: models.TargetType, target_id: UUID, delta: int) -> int:
		table = self._target_table(target_type)
		target = table[target_id]
		updated = target.model_copy(update={"score": target.score + delta})
		table[target_id] = updated
		return updated.score

	async def apply_vote(
		self,
		*,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
		value: int,
	) -> models.VoteWrite | None:
		if target_id not in self._target_table(target_type):
			return None
		key = (voter_id, target_type.value, target_id)
		existing = self.votes.get(key)
		now = self.now()
		if existing is None:
			delta = value
			self.votes[key] = models.Vote(
				voter_id=voter_id,
				target_type=target_type,
				target_id=target_id,
				value=value,
				created_at=now,
				updated_at=now,
			)
		elif existing.value == value:
			delta = 0
		else:
			delta = 2 * value
			self.votes[key] = existing.model_copy(update={"value": value, "updated_at": now})
		return models.VoteWrite(score=self._move_score(target_type, target_id, delta), delta=delta)

	async def delete_vote(
		self,
		*,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
	) -> models.VoteWrite | None:
		if target_id not in self._target_table(target_type):
			return None
		removed = self.votes.pop((voter_id, target_type.value, target_id), None)
		delta = -removed.value if removed else 0
		return models.VoteWrite(score=self._move_score(target_type, target_id, delta), delta=delta)

	async def get_vote(
		self,
		*,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
	) -> models.Vote | None:
		return self.votes.get((voter_id, target_type.value, target_id))

	async def get_score(self, target_type: models.TargetType, target_id: UUID) -> int | None:
		target = self._target_table(target_type).get(target_id)
		return target.score if target else None


@pytest.fixture()
def circles_repo() -> InMemoryCirclesRepository:
	return InMemoryCirclesRepository()
