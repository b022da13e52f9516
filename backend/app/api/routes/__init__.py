from fastapi import APIRouter

from app.api.routes import cron, health, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, tags=["webhooks"])
api_router.include_router(cron.router, tags=["cron"])
