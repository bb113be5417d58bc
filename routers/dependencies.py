"""
Shared FastAPI dependencies for the entitlement routers
"""
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database import get_db
from services.dual_store import DualStore
from services.entitlement_service import AccessCheckController
from utils.local_cache import LocalCache


def get_cache(request: Request) -> LocalCache:
    """Cache created at startup; lazily created if the app skipped startup."""
    cache = getattr(request.app.state, "entitlement_cache", None)
    if cache is None:
        cache = LocalCache.from_settings()
        request.app.state.entitlement_cache = cache
    return cache


def get_access_controller(request: Request) -> AccessCheckController:
    controller = getattr(request.app.state, "access_controller", None)
    if controller is None:
        controller = AccessCheckController()
        request.app.state.access_controller = controller
    return controller


def get_store(db: AsyncSession = Depends(get_db), cache: LocalCache = Depends(get_cache)) -> DualStore:
    return DualStore(db, cache)


def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Admin-only routes need X-Admin-Key matching ADMIN_API_KEY."""
    expected = settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
