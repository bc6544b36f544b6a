from fastapi import APIRouter
from .agents import router as agents_router
from .twilio import router as twilio_router
from .vapi import router as vapi_router
from .pink_tools import router as pink_tools_router

api_router = APIRouter()
api_router.include_router(agents_router, tags=["agents"])
api_router.include_router(twilio_router, prefix="/twilio", tags=["twilio"])
api_router.include_router(vapi_router, prefix="/vapi", tags=["vapi"])
api_router.include_router(pink_tools_router, prefix="/vapi/pink", tags=["pink-tools"])
