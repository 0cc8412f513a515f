"""
Studieo – FastAPI application entry-point.

Run with:
    uvicorn studieo.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.responses import RedirectResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from studieo import models  # noqa: F401  (registers tables on Base.metadata)
from studieo.config import settings
from studieo.database import Base, engine
from studieo.routers import applications, auth
from studieo.services.notifications import notifier

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: create tables on startup, flush notifications on shutdown ──
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await notifier.drain()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Team applications to company projects – invite, confirm, submit, decide.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=("*",))

# ── Register API routers ──
app.include_router(auth.router)
app.include_router(applications.router)


if settings.ENVIRONMENT != "production":
    from studieo.routers.auth import _set_auth_cookie

    @app.get("/mock-login/{user_id}")
    def mock_login(user_id: str):
        logger.warning(f"Issuing development session for user {user_id}")
        resp = RedirectResponse(url="/student/dashboard", status_code=status.HTTP_303_SEE_OTHER)
        return _set_auth_cookie(resp, user_id)
