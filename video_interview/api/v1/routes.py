from fastapi import APIRouter

from .analyses import router as analyses_router
from .interviews import candidate_router as interviews_candidate_router
from .interviews import router as interviews_router
from .recording import router as recording_router

router = APIRouter()

# Link-addressed routes first so "/interviews/by-link/..." never reaches "/interviews/{interview_id}/..."
router.include_router(interviews_candidate_router)
router.include_router(recording_router)
router.include_router(interviews_router)
router.include_router(analyses_router)
