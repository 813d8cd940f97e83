"""Hot-window routes."""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from dropwatch.worker.hot_windows import hot_windows

router = APIRouter(prefix="/api/hot-windows", tags=["hot-windows"])


class RefreshRequest(BaseModel):
    top_products: Optional[int] = None
    horizon_minutes: Optional[int] = None


@router.post("/refresh")
async def refresh_hot_windows(request: Optional[RefreshRequest] = None):
    """Recompute hot-window markers now."""
    request = request or RefreshRequest()
    count = await hot_windows.refresh_hot_windows(
        top_products=request.top_products,
        horizon_minutes=request.horizon_minutes,
    )
    return {"marked": count}


@router.get("/active")
async def active_hot_windows():
    """Whether any hot window is active, plus the product markers."""
    active = await hot_windows.has_active_hot_window()
    return {
        "active": active,
        "windows": await hot_windows.active_windows() if active else [],
    }
