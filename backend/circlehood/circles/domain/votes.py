"""Incrementally maintained vote scores for posts and replies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from circlehood.circles.domain import models, policies, repo as repo_module
from circlehood.circles.domain.exceptions import NotFoundError
from circlehood.obs import metrics as obs_metrics

log = logging.getLogger(__name__)


def vote_outcome(delta: int) -> str:
	"""Name a cast-vote delta: 0 unchanged, ±1 new vote, ±2 flipped vote."""
	magnitude = abs(delta)
	if magnitude == 0:
		return "unchanged"
	if magnitude == 1:
		return "created"
	return "flipped"


@dataclass(frozen=True, slots=True)
class Tally:
	target_type: models.TargetType
	target_id: UUID
	score: int
	my_vote: models.VoteValue | None = None


class VoteTally:
	"""One vote per voter per target; each write moves the cached score in the same statement."""

	def __init__(self, repository: repo_module.CirclesRepository | None = None) -> None:
		self.repo = repository or repo_module.CirclesRepository()

	async def _require_voter_membership(
		self,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
	) -> None:
		circle_id = await self.repo.get_target_circle_id(target_type, target_id)
		if circle_id is None:
			raise NotFoundError(f"{target_type.value}_not_found")
		policies.ensure_membership(await self.repo.get_membership(voter_id, circle_id))

	async def cast_vote(
		self,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
		value: models.VoteValue,
	) -> Tally:
		await self._require_voter_membership(voter_id, target_type, target_id)
		write = await self.repo.apply_vote(
			voter_id=voter_id,
			target_type=target_type,
			target_id=target_id,
			value=value.contribution,
		)
		if write is None:
			raise NotFoundError(f"{target_type.value}_not_found")
		outcome = vote_outcome(write.delta)
		obs_metrics.inc_vote(target_type.value, outcome)
		log.info(
			"vote_cast",
			extra={
				"target_type": target_type.value,
				"target_id": str(target_id),
				"outcome": outcome,
				"delta": write.delta,
			},
		)
		return Tally(target_type=target_type, target_id=target_id, score=write.score, my_vote=value)

	async def remove_vote(
		self,
		voter_id: UUID,
		target_type: models.TargetType,
		target_id: UUID,
	) -> Tally:
		write = await self.repo.delete_vote(voter_id=voter_id, target_type=target_type, target_id=target_id)
		if write is None:
			raise NotFoundError(f"{target_type.value}_not_found")
		obs_metrics.inc_vote(target_type.value, "removed" if write.delta else "unchanged")
		log.info(
			"vote_removed",
			extra={"target_type": target_type.value, "target_id": str(target_id), "delta": write.delta},
		)
		return Tally(target_type=target_type, target_id=target_id, score=write.score, my_vote=None)

	async def get_tally(
		self,
		target_type: models.TargetType,
		target_id: UUID,
		*,
		voter_id: UUID | None = None,
	) -> Tally:
		score = await self.repo.get_score(target_type, target_id)
		if score is None:
			raise NotFoundError(f"{target_type.value}_not_found")
		my_vote: models.VoteValue | None = None
		if voter_id is not None:
			vote = await self.repo.get_vote(voter_id=voter_id, target_type=target_type, target_id=target_id)
			if vote is not None:
				my_vote = models.VoteValue.from_contribution(vote.value)
		return Tally(target_type=target_type, target_id=target_id, score=score, my_vote=my_vote)
