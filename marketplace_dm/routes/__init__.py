from fastapi import APIRouter
from .users import router as users_router
from .ws import router as ws_router
from .notifications import router as notifications_router
from .messages import router as messages_router
from .uploads import router as uploads_router

router = APIRouter()
router.include_router(users_router, prefix='/users', tags=['users'])
router.include_router(ws_router, tags=['ws'])
router.include_router(notifications_router, prefix='/notifications', tags=['notifications'])
router.include_router(messages_router, prefix='/messages', tags=['messages'])
router.include_router(uploads_router, prefix='/uploads', tags=['uploads'])
