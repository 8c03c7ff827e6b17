from fastapi import APIRouter

from codepolish.api.routes import admin, api_keys, auth, billing, health, polish, subscription

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, tags=["auth"])
api_router.include_router(polish.router, prefix="/polish", tags=["polish"])
api_router.include_router(subscription.router, prefix="/subscription", tags=["subscription"])
api_router.include_router(api_keys.router, prefix="/api-keys", tags=["api-keys"])
api_router.include_router(billing.router, tags=["billing"])
api_router.include_router(admin.router)
