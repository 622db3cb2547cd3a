from fastapi import APIRouter

from app.api.crm.conversations import router as conversations_router
from app.api.crm.inbox import router as inbox_router
from app.api.crm.pages import router as pages_router

router = APIRouter(tags=["crm"])
router.include_router(pages_router)
router.include_router(conversations_router)
router.include_router(inbox_router)

__all__ = ["router"]
