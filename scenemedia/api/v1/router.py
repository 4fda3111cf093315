from fastapi import APIRouter

from scenemedia.api.v1 import assets, diagnostics, jobs, scene_assets, scripts


api_router = APIRouter(prefix="/v1")

api_router.include_router(scripts.router)
api_router.include_router(assets.router)
api_router.include_router(scene_assets.router)
api_router.include_router(diagnostics.router)
api_router.include_router(jobs.router)
