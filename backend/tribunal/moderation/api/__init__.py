"""Moderation API routers."""

from fastapi import APIRouter

from . import actions, appeals, reports, reputation, suspensions

router = APIRouter()
router.include_router(reports.router)
router.include_router(actions.router)
router.include_router(suspensions.router)
router.include_router(appeals.router)
router.include_router(reputation.router)

__all__ = ["router"]
