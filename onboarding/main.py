"""
Main application file
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from onboarding.api.routes.api.admin import router as admin_router
from onboarding.api.routes.api.invitations import router as invitations_router
from onboarding.api.routes.api.members import router as members_router
from onboarding.config import get_settings
from onboarding.core.errors import OnboardingError

# Load environment variables from .env file
load_dotenv()

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# --- Lifespan handler ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_client = None
    app.state.redis_client = None

    try:
        # Redis only backs rate limiting, which fails open without it
        if settings.redis_url:
            try:
                redis_client = Redis.from_url(settings.redis_url, decode_responses=False)
                await redis_client.ping()
                app.state.redis_client = redis_client
                logger.info("Redis connection successful.")
            except Exception as e:
                logger.error("Redis connection failed, rate limiting disabled: %s", e)
                redis_client = None
        else:
            logger.warning("REDIS_URL not set, rate limiting disabled")

        yield

    finally:
        if redis_client:
            try:
                await redis_client.close()
                logger.info("Redis connection closed.")
            except Exception as e:
                logger.error("Error closing Redis connection: %s", e)


app = FastAPI(lifespan=lifespan)

allowed_origins = list(settings.allowed_origins)
if settings.frontend_url and settings.frontend_url not in allowed_origins:
    allowed_origins.append(settings.frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True if allowed_origins != ["*"] else False,
    allow_methods=["*"],  # Allow all methods including OPTIONS for preflight
    allow_headers=["*"],
)


@app.exception_handler(OnboardingError)
async def onboarding_error_handler(request: Request, exc: OnboardingError):
    logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.get("/")
def root():
    return {"status": "ok"}


app.include_router(
    invitations_router,
    prefix="/api/invitations",
    tags=["invitations"],
)

app.include_router(
    admin_router,
    prefix="/api/admin",
    tags=["admin"],
)

app.include_router(
    members_router,
    prefix="/api/members",
    tags=["members"],
)
