"""FastAPI routers for the circles domain."""

from __future__ import annotations

from fastapi import APIRouter

from circlehood.circles.api import circles, posts, profiles, votes

router = APIRouter(prefix="/api/circles/v1")

router.include_router(profiles.router)
router.include_router(circles.router)
router.include_router(posts.router)
router.include_router(votes.router)

__all__ = ["router"]
