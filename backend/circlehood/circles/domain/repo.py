"""Async repository helpers for the circles domain."""

from __future__ import annotations

import binascii
from base64 import b64decode, b64encode
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID, uuid4

import asyncpg

from circlehood.circles.domain import models
from circlehood.circles.domain.exceptions import ValidationError
from circlehood.infra.postgres import get_pool

CursorPair = tuple[datetime, UUID]

_TARGET_TABLES = {
	models.TargetType.POST: "circle_post",
	models.TargetType.REPLY: "circle_reply",
}


def encode_cursor(value: CursorPair) -> str:
	created_at, entity_id = value
	payload = f"{created_at.isoformat()}|{entity_id}"
	return b64encode(payload.encode()).decode()


def decode_cursor(cursor: str) -> CursorPair:
	try:
		decoded = b64decode(cursor.encode(), validate=True).decode()
		created_str, id_str = decoded.split("|", maxsplit=1)
		return datetime.fromisoformat(created_str), UUID(id_str)
	except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
		raise ValidationError("invalid_cursor") from exc


class CirclesRepository:
	"""Thin data-access layer around asyncpg.

	Methods taking ``conn`` run on that connection (and inside its transaction)
	when given, otherwise on a pooled connection.
	"""

	@asynccontextmanager
	async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				yield conn

	@asynccontextmanager
	async def _connection(self, conn: asyncpg.Connection | None) -> AsyncIterator[asyncpg.Connection]:
		if conn is not None:
			yield conn
			return
		pool = await get_pool()
		async with pool.acquire() as pooled_conn:
			yield pooled_conn

	async def lock_parent(self, parent_id: UUID, *, conn: asyncpg.Connection) -> None:
		"""Serialize membership writes for one parent until the transaction ends."""
		await conn.execute("SELECT pg_advisory_xact_lock(hashtextextended($1, 0))", str(parent_id))

	# --- Circle nodes -----------------------------------------------------

	async def insert_circle(
		self,
		*,
		kind: models.CircleKind,
		natural_key: str,
		name: str,
		parent_id: UUID | None,
		created_by: UUID | None = None,
		discoverable: bool = False,
		conn: asyncpg.Connection | None = None,
	) -> models.CircleNode | None:
		"""Insert a node; returns None when the natural key already exists."""
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(
				"""
				INSERT INTO circle_node (id, kind, parent_id, natural_key, name, created_by, discoverable)
				VALUES ($1, $2, $3, $4, $5, $6, $7)
				ON CONFLICT (natural_key) DO NOTHING
				RETURNING *
				""",
				uuid4(),
				kind.value,
				parent_id,
				natural_key,
				name,
				created_by,
				discoverable,
			)
		return models.CircleNode.model_validate(dict(record)) if record else None

	async def get_circle(
		self,
		circle_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.CircleNode | None:
		async with self._connection(conn) as connection:
			record = await connection.fetchrow("SELECT * FROM circle_node WHERE id=$1", circle_id)
		return models.CircleNode.model_validate(dict(record)) if record else None

	async def get_circle_by_key(
		self,
		natural_key: str,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.CircleNode | None:
		async with self._connection(conn) as connection:
			record = await connection.fetchrow("SELECT * FROM circle_node WHERE natural_key=$1", natural_key)
		return models.CircleNode.model_validate(dict(record)) if record else None

	async def get_circles(
		self,
		circle_ids: Iterable[UUID],
		*,
		conn: asyncpg.Connection | None = None,
	) -> list[models.CircleNode]:
		ids = list(circle_ids)
		if not ids:
			return []
		async with self._connection(conn) as connection:
			rows = await connection.fetch(
				"SELECT * FROM circle_node WHERE id = ANY($1::uuid[]) ORDER BY natural_key",
				ids,
			)
		return [models.CircleNode.model_validate(dict(row)) for row in rows]

	async def list_reachable_custom_circles(
		self,
		parent_id: UUID,
		*,
		max_depth: int,
		conn: asyncpg.Connection | None = None,
	) -> list[tuple[models.CircleNode, int]]:
		"""Discoverable custom circles below the parent's joined circles.

		Distance 1 is a direct child of a joined circle; the walk continues only
		through discoverable custom circles the parent has not joined, and joined
		circles are left out of the result.
		"""
		async with self._connection(conn) as connection:
			rows = await connection.fetch(
				"""
				WITH RECURSIVE joined AS (
					SELECT circle_id FROM circle_membership WHERE parent_id = $1
				),
				reachable AS (
					SELECT c.*, 1 AS distance
					FROM circle_node c
					JOIN joined j ON c.parent_id = j.circle_id
					WHERE c.kind = 'custom' AND c.discoverable
					UNION ALL
					SELECT c.*, r.distance + 1
					FROM circle_node c
					JOIN reachable r ON c.parent_id = r.id
					WHERE c.kind = 'custom'
						AND c.discoverable
						AND r.distance < $2
						AND r.id NOT IN (SELECT circle_id FROM joined)
				)
				SELECT * FROM reachable
				WHERE id NOT IN (SELECT circle_id FROM joined)
				""",
				parent_id,
				max_depth,
			)
		results: list[tuple[models.CircleNode, int]] = []
		for row in rows:
			data = dict(row)
			distance = int(data.pop("distance"))
			results.append((models.CircleNode.model_validate(data), distance))
		return results

	# --- Parent profiles --------------------------------------------------

	async def get_profile(
		self,
		parent_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.ParentProfile | None:
		async with self._connection(conn) as connection:
			record = await connection.fetchrow("SELECT * FROM parent_profile WHERE parent_id=$1", parent_id)
		return models.ParentProfile.model_validate(dict(record)) if record else None

	async def upsert_profile(
		self,
		profile: models.ParentProfile,
		*,
		conn: asyncpg.Connection,
	) -> models.ParentProfile:
		record = await conn.fetchrow(
			"""
			INSERT INTO parent_profile (parent_id, school_id, class_id, section_id, society_id)
			VALUES ($1, $2, $3, $4, $5)
			ON CONFLICT (parent_id)
			DO UPDATE SET school_id=EXCLUDED.school_id,
				class_id=EXCLUDED.class_id,
				section_id=EXCLUDED.section_id,
				society_id=EXCLUDED.society_id,
				updated_at=NOW()
			RETURNING *
			""",
			profile.parent_id,
			profile.school_id,
			profile.class_id,
			profile.section_id,
			profile.society_id,
		)
		return models.ParentProfile.model_validate(dict(record))

	# --- Memberships ------------------------------------------------------

	async def get_membership(
		self,
		parent_id: UUID,
		circle_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.Membership | None:
		async with self._connection(conn) as connection:
			record = await connection.fetchrow(
				"SELECT * FROM circle_membership WHERE parent_id=$1 AND circle_id=$2",
				parent_id,
				circle_id,
			)
		return models.Membership.model_validate(dict(record)) if record else None

	async def list_memberships(
		self,
		parent_id: UUID,
		*,
		auto_joined: bool | None = None,
		conn: asyncpg.Connection | None = None,
	) -> list[models.Membership]:
		query = "SELECT * FROM circle_membership WHERE parent_id=$1"
		params: list[object] = [parent_id]
		if auto_joined is not None:
			query += " AND auto_joined=$2"
			params.append(auto_joined)
		query += " ORDER BY joined_at ASC, circle_id ASC"
		async with self._connection(conn) as connection:
			rows = await connection.fetch(query, *params)
		return [models.Membership.model_validate(dict(row)) for row in rows]

	async def add_memberships(
		self,
		parent_id: UUID,
		circle_ids: Iterable[UUID],
		*,
		auto_joined: bool,
		conn: asyncpg.Connection,
	) -> int:
		ids = list(circle_ids)
		if not ids:
			return 0
		rows = await conn.fetch(
			"""
			INSERT INTO circle_membership (parent_id, circle_id, auto_joined)
			SELECT $1::uuid, circle_id, $3::boolean FROM unnest($2::uuid[]) AS circle_id
			ON CONFLICT (parent_id, circle_id) DO NOTHING
			RETURNING circle_id
			""",
			parent_id,
			ids,
			auto_joined,
		)
		return len(rows)

	async def remove_memberships(
		self,
		parent_id: UUID,
		circle_ids: Iterable[UUID],
		*,
		auto_joined: bool,
		conn: asyncpg.Connection,
	) -> int:
		ids = list(circle_ids)
		if not ids:
			return 0
		result = await conn.execute(
			"""
			DELETE FROM circle_membership
			WHERE parent_id=$1 AND circle_id = ANY($2::uuid[]) AND auto_joined=$3
			""",
			parent_id,
			ids,
			auto_joined,
		)
		return int(result.split()[-1])

	# --- Posts & replies --------------------------------------------------

	async def create_post(self, *, circle_id: UUID, author_id: UUID, content: str) -> models.Post:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				INSERT INTO circle_post (id, circle_id, author_id, content)
				VALUES ($1, $2, $3, $4)
				RETURNING *
				""",
				uuid4(),
				circle_id,
				author_id,
				content,
			)
		return models.Post.model_validate(dict(record))

	async def get_post(self, post_id: UUID) -> models.Post | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow("SELECT * FROM circle_post WHERE id=$1", post_id)
		return models.Post.model_validate(dict(record)) if record else None

	async def list_posts(
		self,
		circle_id: UUID,
		*,
		limit: int,
		before: CursorPair | None = None,
	) -> tuple[list[models.Post], str | None]:
		conditions = ["circle_id=$1"]
		params: list[object] = [circle_id]
		if before:
			params.extend([before[0], before[1]])
			conditions.append("(created_at, id) < ($%d, $%d)" % (len(params) - 1, len(params)))
		params.append(limit + 1)
		query = f"""
			SELECT * FROM circle_post
			WHERE {' AND '.join(conditions)}
			ORDER BY created_at DESC, id DESC
			LIMIT ${len(params)}
		"""
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		items = [models.Post.model_validate(dict(row)) for row in rows]
		next_cursor = None
		if len(items) > limit:
			items = items[:limit]
			last = items[-1]
			next_cursor = encode_cursor((last.created_at, last.id))
		return items, next_cursor

	async def create_reply(
		self,
		*,
		post_id: UUID,
		author_id: UUID,
		content: str,
		parent_reply_id: UUID | None,
	) -> models.Reply | None:
		"""Insert a reply; returns None when the parent reply is not top-level on this post."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				INSERT INTO circle_reply (id, post_id, author_id, parent_reply_id, content)
				SELECT $1::uuid, $2::uuid, $3::uuid, $4::uuid, $5::text
				WHERE $4::uuid IS NULL OR EXISTS (
					SELECT 1 FROM circle_reply parent
					WHERE parent.id = $4 AND parent.post_id = $2 AND parent.parent_reply_id IS NULL
				)
				RETURNING *
				""",
				uuid4(),
				post_id,
				author_id,
				parent_reply_id,
				content,
			)
		return models.Reply.model_validate(dict(record)) if record else None

	async def get_reply(self, reply_id: UUID) -> models.Reply | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow("SELECT * FROM circle_reply WHERE id=$1", reply_id)
		return models.Reply.model_validate(dict(record)) if record else None

	async def list_replies(self, post_id: UUID) -> list[models.Reply]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM circle_reply WHERE post_id=$1 ORDER BY created_at ASC, id ASC",
				post_id,
			)
		return [models.Reply.model_validate(dict(row)) for row in rows]

	# --- Votes ------------------------------------------------------------

	async def get_target_circle_id(self, target_type: models.TargetType, target_id: UUID) -> UUID | None:
		if target_type is models.TargetType.POST:
			query = "SELECT circle_id FROM circle_post WHERE id=$1"
		else:
			query = """
				SELECT p.circle_id FROM circle_reply r
				JOIN circle_post p ON p.id = r.post_id
				WHERE r.id=$1
			"""
		pool = await get_pool()
		async with pool.acquire() as conn:
			value = await conn.fetchval(query, target_id)
		return value

	async def apply_vote(
		self,
		*,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
		value: int,
	) -> models.VoteWrite | None:
		"""Upsert a vote and move the target's score in one statement.

		A new vote moves the score by ``value``, a flipped vote by ``2 * value``,
		a repeated vote by nothing. Returns None when the target does not exist.
		"""
		table = _TARGET_TABLES[target_type]
		query = f"""
			WITH upserted AS (
				INSERT INTO circle_vote (voter_id, target_type, target_id, value)
				SELECT $1::uuid, $2::text, $3::uuid, $4::smallint
				WHERE EXISTS (SELECT 1 FROM {table} WHERE id = $3)
				ON CONFLICT (voter_id, target_type, target_id)
				DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
				WHERE circle_vote.value <> EXCLUDED.value
				RETURNING CASE WHEN circle_vote.xmax = 0 THEN circle_vote.value ELSE 2 * circle_vote.value END AS delta
			)
			UPDATE {table}
			SET score = score + COALESCE((SELECT delta FROM upserted), 0)
			WHERE id = $3
			RETURNING score, COALESCE((SELECT delta FROM upserted), 0) AS delta
		"""
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(query, voter_id, target_type.value, target_id, value)
		return models.VoteWrite(score=record["score"], delta=record["delta"]) if record else None

	async def delete_vote(
		self,
		*,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
	) -> models.VoteWrite | None:
		"""Delete a vote and take back its contribution in one statement."""
		table = _TARGET_TABLES[target_type]
		query = f"""
			WITH removed AS (
				DELETE FROM circle_vote
				WHERE voter_id = $1 AND target_type = $2 AND target_id = $3
				RETURNING value
			)
			UPDATE {table}
			SET score = score - COALESCE((SELECT value FROM removed), 0)
			WHERE id = $3
			RETURNING score, -COALESCE((SELECT value FROM removed), 0) AS delta
		"""
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(query, voter_id, target_type.value, target_id)
		return models.VoteWrite(score=record["score"], delta=record["delta"]) if record else None

	async def get_vote(
		self,
		*,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
	) -> models.Vote | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"SELECT * FROM circle_vote WHERE voter_id=$1 AND target_type=$2 AND target_id=$3",
				voter_id,
				target_type.value,
				target_id,
			)
		return models.Vote.model_validate(dict(record)) if record else None

	async def get_score(self, target_type: models.TargetType, target_id: UUID) -> Optional[int]:
		table = _TARGET_TABLES[target_type]
		pool = await get_pool()
		async with pool.acquire() as conn:
			return await conn.fetchval(f"SELECT score FROM {table} WHERE id=$1", target_id)
