"""Assessment router assembly for the runtime domain."""

from fastapi import APIRouter

from .candidate_runtime_routes import router as candidate_runtime_router
from .recruiter_routes import router as recruiter_router

router = APIRouter(tags=["Assessments"])
router.include_router(recruiter_router)
router.include_router(candidate_runtime_router)

__all__ = ["router"]
