from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from circlehood.circles.domain import models
from circlehood.circles.domain.exceptions import NotFoundError, ValidationError
from circlehood.circles.domain.membership import (
	MembershipSynchronizer,
	compute_target_circles,
	merge_profile_changes,
	plan_membership_changes,
)

Kind = models.CircleKind


def _profile(parent_id=None, *, school="DPS", klass="I", section="F", society=None) -> models.ParentProfile:
	return models.ParentProfile(
		parent_id=parent_id or uuid4(),
		school_id=school,
		class_id=klass,
		section_id=section,
		society_id=society,
	)


def _keys(repo, circle_ids) -> set[str]:
	return {repo.circles[cid].natural_key for cid in circle_ids}


def test_target_circles_without_society():
	specs = compute_target_circles(_profile())
	assert [spec.natural_key for spec in specs] == [
		"school:dps",
		"school:dps/class:i",
		"school:dps/class:i/section:f",
	]


def test_target_circles_with_society():
	specs = compute_target_circles(_profile(society="Brigade"))
	assert len(specs) == 5
	assert [spec.natural_key for spec in specs[3:]] == ["society:brigade", "society:brigade/school:dps"]
	assert specs[4].kind is Kind.SCHOOL


def test_blank_society_is_ignored():
	assert len(compute_target_circles(_profile(society="  "))) == 3


def test_target_circles_require_section():
	with pytest.raises(ValidationError) as exc:
		compute_target_circles(_profile(section=" "))
	assert exc.value.detail == "section_id_required"


def test_plan_keeps_target_order_and_sorts_removals():
	a, b, c, d = uuid4(), uuid4(), uuid4(), uuid4()
	plan = plan_membership_changes([a, d], [c, a, b, c])
	assert plan.to_add == (c, b)
	assert plan.to_remove == (d,)
	assert not plan.is_noop
	assert plan_membership_changes([a, b], [b, a]).is_noop


@pytest.mark.asyncio
async def test_onboarding_with_society_joins_five_circles(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	profile = _profile(society="Brigade")

	result = await sync.sync_profile(profile)

	assert _keys(circles_repo, circles_repo.auto_joined_ids(profile.parent_id)) == {
		"school:dps",
		"school:dps/class:i",
		"school:dps/class:i/section:f",
		"society:brigade",
		"society:brigade/school:dps",
	}
	assert len(result.added) == 5
	assert result.removed == ()
	assert circles_repo.profiles[profile.parent_id].society_id == "Brigade"


@pytest.mark.asyncio
async def test_parents_in_same_section_share_circles(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	first = await sync.sync_profile(_profile())
	second = await sync.sync_profile(_profile(school="dps ", klass="i", section="f"))

	assert [c.id for c in first.circles] == [c.id for c in second.circles]
	assert len(circles_repo.circles) == 3


@pytest.mark.asyncio
async def test_grade_change_moves_class_and_section_only(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	parent_id = uuid4()
	await sync.sync_profile(_profile(parent_id, society="Brigade"))
	school = circles_repo.circle_by_key("school:dps")
	custom = circles_repo.seed_circle(
		kind=Kind.CUSTOM,
		natural_key="school:dps/custom:chess",
		parent_id=school.id,
		created_by=uuid4(),
		discoverable=True,
	)
	circles_repo.seed_membership(parent_id, custom.id, auto_joined=False)

	result = await sync.sync_profile(_profile(parent_id, klass="II", society="Brigade"))

	assert _keys(circles_repo, result.added) == {"school:dps/class:ii", "school:dps/class:ii/section:f"}
	assert _keys(circles_repo, result.removed) == {"school:dps/class:i", "school:dps/class:i/section:f"}
	assert _keys(circles_repo, circles_repo.auto_joined_ids(parent_id)) == {
		"school:dps",
		"school:dps/class:ii",
		"school:dps/class:ii/section:f",
		"society:brigade",
		"society:brigade/school:dps",
	}
	assert circles_repo.memberships[(parent_id, custom.id)].auto_joined is False


@pytest.mark.asyncio
async def test_dropping_society_removes_society_circles(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	parent_id = uuid4()
	await sync.sync_profile(_profile(parent_id, society="Brigade"))

	result = await sync.sync_profile(_profile(parent_id))

	assert _keys(circles_repo, result.removed) == {"society:brigade", "society:brigade/school:dps"}
	assert len(circles_repo.auto_joined_ids(parent_id)) == 3


@pytest.mark.asyncio
async def test_resync_with_same_profile_is_noop(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	profile = _profile()
	await sync.sync_profile(profile)
	before = dict(circles_repo.memberships)

	result = await sync.sync_profile(profile)

	assert result.added == () and result.removed == ()
	assert circles_repo.memberships == before


@pytest.mark.asyncio
async def test_failed_sync_leaves_previous_state(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	parent_id = uuid4()
	await sync.sync_profile(_profile(parent_id))
	memberships = dict(circles_repo.memberships)
	circle_count = len(circles_repo.circles)

	circles_repo.fail_on_add_memberships = RuntimeError("connection reset")
	with pytest.raises(RuntimeError):
		await sync.sync_profile(_profile(parent_id, school="KV"))

	assert circles_repo.memberships == memberships
	assert circles_repo.profiles[parent_id].school_id == "DPS"
	assert len(circles_repo.circles) == circle_count


@pytest.mark.asyncio
async def test_reassign_rejects_unknown_parent(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	with pytest.raises(NotFoundError) as exc:
		await sync.reassign(uuid4(), {"class_id": "II"})
	assert exc.value.detail == "parent_not_found"
	assert circles_repo.memberships == {}


@pytest.mark.asyncio
async def test_overlapping_reassignments_apply_one_after_the_other(circles_repo):
	sync = MembershipSynchronizer(circles_repo)
	parent_id = uuid4()
	await sync.sync_profile(_profile(parent_id))

	await asyncio.gather(
		sync.sync_profile(_profile(parent_id, klass="II")),
		sync.sync_profile(_profile(parent_id, klass="III")),
	)

	keys = _keys(circles_repo, circles_repo.auto_joined_ids(parent_id))
	assert keys in (
		{"school:dps", "school:dps/class:ii", "school:dps/class:ii/section:f"},
		{"school:dps", "school:dps/class:iii", "school:dps/class:iii/section:f"},
	)
	assert circles_repo.profiles[parent_id].class_id in {"II", "III"}
	stored_class = circles_repo.profiles[parent_id].class_id.lower()
	assert f"school:dps/class:{stored_class}" in keys


def test_merge_profile_changes_keeps_required_fields_and_clears_society():
	current = _profile(society="Brigade")

	merged = merge_profile_changes(current, {"class_id": "II", "section_id": None, "society_id": None})

	assert (merged.school_id, merged.class_id, merged.section_id, merged.society_id) == ("DPS", "II", "F", None)
	assert merged.parent_id == current.parent_id
