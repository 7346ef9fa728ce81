from fastapi import APIRouter

from app.api.v1 import characters, exports, panels, scenes, sessions


api_router = APIRouter(prefix="/v1")

api_router.include_router(sessions.router)
api_router.include_router(scenes.router)
api_router.include_router(characters.router)
api_router.include_router(panels.router)
api_router.include_router(exports.router)
