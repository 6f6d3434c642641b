"""
API Router - JSON Endpoints
"""
from fastapi import APIRouter

from marketsync.api.integrations import integrations_router
from marketsync.api.sync import router as sync_router
from marketsync.utils.date_utils import utcnow

api_router = APIRouter(tags=["API"])

api_router.include_router(integrations_router)
api_router.include_router(sync_router)


@api_router.get("/status")
async def api_status():
    return {"status": "ok", "version": "1.0.0", "timestamp": utcnow().isoformat()}
