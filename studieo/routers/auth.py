"""
Authentication router – JWT cookie session.

Sign-in itself is handled by the external auth provider, which sets the
``access_token`` cookie. This module only reads (and, in development,
issues) that cookie.

Endpoints:
    GET  /auth/logout → clear JWT cookie
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import RedirectResponse
from jose import JWTError, jwt

from studieo.config import settings

router = APIRouter(prefix="/auth", tags=["auth"])

COOKIE_KEY = "access_token"
LOGIN_URL = "/auth/login"


# ═══════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════

def create_access_token(data: dict) -> str:
    """Create a signed JWT with an expiry claim."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _set_auth_cookie(response: RedirectResponse, user_id: str) -> RedirectResponse:
    """Attach the JWT cookie to a response."""
    token = create_access_token({"sub": str(user_id)})
    response.set_cookie(
        key=COOKIE_KEY,
        value=token,
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        samesite="lax",
    )
    return response


async def get_current_user_id(request: Request) -> Optional[str]:
    """
    Extract the JWT from the cookie and return the caller's user id.
    Returns None when no valid token is present; the lifecycle engine
    checks the id against stored users.
    """
    token = request.cookies.get(COOKIE_KEY)
    if not token:
        return None
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None
    return payload.get("sub") or None


# ═══════════════════════════════════════════════════════════════
#  Logout
# ═══════════════════════════════════════════════════════════════

@router.get("/logout")
async def logout():
    """Clear the auth cookie and redirect to the login page."""
    response = RedirectResponse(url=LOGIN_URL, status_code=status.HTTP_303_SEE_OTHER)
    response.delete_cookie(COOKIE_KEY)
    return response
