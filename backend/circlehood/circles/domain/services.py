"""Service layer orchestrating circle domain operations."""

from __future__ import annotations

from uuid import UUID

from circlehood.circles.domain import models, policies, repo as repo_module
from circlehood.circles.domain.custom_circles import CustomCircleRegistry
from circlehood.circles.domain.graph import CircleGraphStore
from circlehood.circles.domain.membership import MembershipSynchronizer
from circlehood.circles.domain.threads import ReplyThread, ThreadEngine
from circlehood.circles.domain.votes import Tally, VoteTally
from circlehood.circles.schemas import dto
from circlehood.infra.auth import AuthenticatedUser


class CirclesService:
	"""Entry point for the HTTP layer; wires the circle components to one repository."""

	def __init__(self, repository: repo_module.CirclesRepository | None = None) -> None:
		self.repo = repository or repo_module.CirclesRepository()
		self.graph = CircleGraphStore(self.repo)
		self.memberships = MembershipSynchronizer(self.repo, self.graph)
		self.custom_circles = CustomCircleRegistry(self.repo)
		self.threads = ThreadEngine(self.repo)
		self.votes = VoteTally(self.repo)

	# ------------------------------------------------------------------
	# Helpers

	@staticmethod
	def _circle_to_response(circle: models.CircleNode) -> dto.CircleResponse:
		return dto.CircleResponse(**circle.model_dump())

	@staticmethod
	def _post_to_response(post: models.Post) -> dto.PostResponse:
		return dto.PostResponse(**post.model_dump())

	@staticmethod
	def _reply_to_response(reply: models.Reply) -> dto.ReplyResponse:
		return dto.ReplyResponse(**reply.model_dump())

	@classmethod
	def _thread_to_response(cls, thread: ReplyThread) -> dto.ReplyThreadResponse:
		return dto.ReplyThreadResponse(
			**thread.reply.model_dump(),
			children=[cls._reply_to_response(child) for child in thread.children],
		)

	@staticmethod
	def _tally_to_response(tally: Tally) -> dto.TallyResponse:
		return dto.TallyResponse(
			target_type=tally.target_type,
			target_id=tally.target_id,
			score=tally.score,
			my_vote=tally.my_vote,
		)

	async def _membership_list(self, parent_id: UUID) -> dto.MembershipListResponse:
		memberships = await self.repo.list_memberships(parent_id)
		circles = {circle.id: circle for circle in await self.graph.get_many(m.circle_id for m in memberships)}
		items = [
			dto.MembershipResponse(
				circle=self._circle_to_response(circles[membership.circle_id]),
				joined_at=membership.joined_at,
				auto_joined=membership.auto_joined,
			)
			for membership in memberships
			if membership.circle_id in circles
		]
		return dto.MembershipListResponse(items=items)

	# ------------------------------------------------------------------
	# Profiles & memberships

	async def onboard(self, user: AuthenticatedUser, payload: dto.ProfileRequest) -> dto.MembershipListResponse:
		profile = models.ParentProfile(
			parent_id=user.parent_id,
			school_id=payload.school_id,
			class_id=payload.class_id,
			section_id=payload.section_id,
			society_id=payload.society_id,
		)
		await self.memberships.sync_profile(profile)
		return await self._membership_list(user.parent_id)

	async def reassign(
		self,
		user: AuthenticatedUser,
		payload: dto.ProfileUpdateRequest,
	) -> dto.MembershipListResponse:
		changes = payload.model_dump(include=payload.model_fields_set)
		await self.memberships.reassign(user.parent_id, changes)
		return await self._membership_list(user.parent_id)

	async def list_memberships(self, user: AuthenticatedUser) -> dto.MembershipListResponse:
		return await self._membership_list(user.parent_id)

	# ------------------------------------------------------------------
	# Circles

	async def get_circle(self, user: AuthenticatedUser, circle_id: UUID) -> dto.CircleResponse:
		circle = policies.require_circle(await self.graph.get(circle_id))
		return self._circle_to_response(circle)

	async def create_custom_circle(
		self,
		user: AuthenticatedUser,
		parent_circle_id: UUID,
		payload: dto.CustomCircleCreateRequest,
	) -> dto.CircleResponse:
		circle = await self.custom_circles.create(user.parent_id, payload.name, parent_circle_id)
		return self._circle_to_response(circle)

	async def discover(self, user: AuthenticatedUser) -> dto.CircleListResponse:
		circles = await self.custom_circles.discover(user.parent_id)
		return dto.CircleListResponse(items=[self._circle_to_response(circle) for circle in circles])

	async def join_circle(self, user: AuthenticatedUser, circle_id: UUID) -> dto.MembershipResponse:
		membership = await self.custom_circles.join(user.parent_id, circle_id)
		circle = policies.require_circle(await self.graph.get(circle_id))
		return dto.MembershipResponse(
			circle=self._circle_to_response(circle),
			joined_at=membership.joined_at,
			auto_joined=membership.auto_joined,
		)

	async def leave_circle(self, user: AuthenticatedUser, circle_id: UUID) -> None:
		await self.custom_circles.leave(user.parent_id, circle_id)

	# ------------------------------------------------------------------
	# Posts & replies

	async def list_posts(
		self,
		user: AuthenticatedUser,
		circle_id: UUID,
		*,
		limit: int,
		before: str | None = None,
	) -> dto.PostListResponse:
		posts, next_cursor = await self.threads.list_posts(circle_id, user.parent_id, limit=limit, before=before)
		return dto.PostListResponse(items=[self._post_to_response(post) for post in posts], next_cursor=next_cursor)

	async def create_post(
		self,
		user: AuthenticatedUser,
		circle_id: UUID,
		payload: dto.PostCreateRequest,
	) -> dto.PostResponse:
		post = await self.threads.create_post(circle_id, user.parent_id, payload.content)
		return self._post_to_response(post)

	async def get_post(self, user: AuthenticatedUser, post_id: UUID) -> dto.PostResponse:
		return self._post_to_response(await self.threads.get_post(post_id, user.parent_id))

	async def list_replies(self, user: AuthenticatedUser, post_id: UUID) -> dto.ReplyListResponse:
		threads = await self.threads.list_replies(post_id, user.parent_id)
		return dto.ReplyListResponse(items=[self._thread_to_response(thread) for thread in threads])

	async def create_reply(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		payload: dto.ReplyCreateRequest,
	) -> dto.ReplyResponse:
		reply = await self.threads.create_reply(
			post_id,
			user.parent_id,
			payload.content,
			reply_to_reply_id=payload.reply_to_reply_id,
		)
		return self._reply_to_response(reply)

	# ------------------------------------------------------------------
	# Votes

	async def cast_vote(
		self,
		user: AuthenticatedUser,
		target_type: models.TargetType,
		target_id: UUID,
		payload: dto.VoteRequest,
	) -> dto.TallyResponse:
		tally = await self.votes.cast_vote(user.parent_id, target_type, target_id, payload.value)
		return self._tally_to_response(tally)

	async def remove_vote(
		self,
		user: AuthenticatedUser,
		target_type: models.TargetType,
		target_id: UUID,
	) -> dto.TallyResponse:
		tally = await self.votes.remove_vote(user.parent_id, target_type, target_id)
		return self._tally_to_response(tally)

	async def get_tally(
		self,
		user: AuthenticatedUser,
		target_type: models.TargetType,
		target_id: UUID,
	) -> dto.TallyResponse:
		tally = await self.votes.get_tally(target_type, target_id, voter_id=user.parent_id)
		return self._tally_to_response(tally)
