from fastapi import APIRouter
from clubreach.modules.outreach.router import router as outreach_router
from clubreach.modules.messaging.router import router as messaging_router
from clubreach.modules.matching.router import router as matching_router
from clubreach.modules.realtime.router import router as realtime_router
from clubreach.modules.webhooks.router import router as webhooks_router

api_router = APIRouter()
api_router.include_router(outreach_router, prefix="/outreach", tags=["outreach"])
api_router.include_router(messaging_router, prefix="/messaging", tags=["messaging"])
api_router.include_router(matching_router, prefix="/matching", tags=["matching"])
api_router.include_router(realtime_router, prefix="/realtime", tags=["realtime"])
# provider callbacks authenticate by signature, not bearer token
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
