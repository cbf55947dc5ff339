"""Admin login endpoint - no auth required."""
from fastapi import APIRouter, HTTPException, Request

from pizzaday.app.core.limiter import limiter
from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.settings import get_settings
from pizzaday.app.schemas import AdminLoginBody

router = APIRouter()
logger = get_logger(__name__)

# Rate limit uses app.state.limiter (set in main.py); same limiter instance from core.limiter


@router.post("/login")
@limiter.limit("5/minute")
async def admin_login(request: Request, data: AdminLoginBody):
    """Check admin login and password, return the token for X-Admin-Token.

    Rate limited to 5 attempts per minute per IP address.
    """
    settings = get_settings()
    if not settings.ADMIN_LOGIN or not settings.ADMIN_PASSWORD or not settings.ADMIN_SECRET:
        raise HTTPException(status_code=503, detail="Admin panel not configured")
    if data.login != settings.ADMIN_LOGIN or data.password != settings.ADMIN_PASSWORD:
        logger.warning("Admin login failed", login=data.login)
        raise HTTPException(status_code=401, detail="Invalid login or password")
    return {"token": settings.ADMIN_SECRET}
