"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


REQUEST_COUNTER = Counter(
	"circlehood_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"circlehood_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

CIRCLE_RESOLUTIONS = Counter(
	"circlehood_circle_resolutions_total",
	"Circle node resolutions by kind and outcome",
	["kind", "result"],
)

CIRCLE_RESOLVE_RETRIES = Counter(
	"circlehood_circle_resolve_retries_total",
	"Circle node insert attempts retried after a vanished conflicting row",
)

MEMBERSHIP_SYNCS = Counter(
	"circlehood_membership_syncs_total",
	"Membership synchronizations by outcome",
	["result"],
)

MEMBERSHIP_CHANGES = Counter(
	"circlehood_membership_changes_total",
	"Membership rows changed by synchronization or explicit joins",
	["action"],
)

MEMBERSHIP_SYNC_LATENCY = Histogram(
	"circlehood_membership_sync_duration_seconds",
	"Duration of one membership synchronization transaction",
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

CUSTOM_CIRCLES_CREATED = Counter(
	"circlehood_custom_circles_created_total",
	"Custom circles created by members",
)

POSTS_CREATED = Counter(
	"circlehood_posts_created_total",
	"Posts created",
)

REPLIES_CREATED = Counter(
	"circlehood_replies_created_total",
	"Replies created by effective depth",
	["depth", "flattened"],
)

VOTES = Counter(
	"circlehood_votes_total",
	"Vote writes by target type and outcome",
	["target_type", "outcome"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_circle_resolution(kind: str, result: str) -> None:
	CIRCLE_RESOLUTIONS.labels(kind=kind, result=result).inc()


def inc_circle_resolve_retry() -> None:
	CIRCLE_RESOLVE_RETRIES.inc()


def record_membership_sync(result: str, *, duration_seconds: float | None = None) -> None:
	MEMBERSHIP_SYNCS.labels(result=result).inc()
	if duration_seconds is not None:
		MEMBERSHIP_SYNC_LATENCY.observe(duration_seconds)


def inc_membership_change(action: str, count: int = 1) -> None:
	if count > 0:
		MEMBERSHIP_CHANGES.labels(action=action).inc(count)


def inc_custom_circle_created() -> None:
	CUSTOM_CIRCLES_CREATED.inc()


def inc_post_created() -> None:
	POSTS_CREATED.inc()


def inc_reply_created(*, depth: int, flattened: bool) -> None:
	REPLIES_CREATED.labels(depth=str(depth), flattened="yes" if flattened else "no").inc()


def inc_vote(target_type: str, outcome: str) -> None:
	VOTES.labels(target_type=target_type, outcome=outcome).inc()
