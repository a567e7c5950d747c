from fastapi import APIRouter

from freecore.api.v1 import workflows

api_router = APIRouter()

api_router.include_router(workflows.router)
