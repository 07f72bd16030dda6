"""
Entry point de la API de ratings
"""

import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.cache import get_cache
from app.core.config import get_settings
from app.database import Database, verify_schema

from app.controllers.health_controller import router as health_router
from app.controllers.ratings_controller import router as ratings_router

settings = get_settings()

logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = {origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()}
PREVIEW_ORIGIN_PATTERN = re.compile(r"https://.*\.vercel\.app") if settings.app_env == "production" else None

# Solo lectura: GET + preflight. If-None-Match para el polling con ETag
PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept, Origin, If-None-Match",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Max-Age": "86400",
}
EXPOSED_HEADERS = "ETag, X-Resource-Version"


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def origin_allowed(origin: str) -> bool:
    if not origin:
        return False
    if origin in ALLOWED_ORIGINS:
        return True
    return bool(PREVIEW_ORIGIN_PATTERN and PREVIEW_ORIGIN_PATTERN.match(origin))


class ReadOnlyCORSMiddleware(BaseHTTPMiddleware):
    """
    Answers preflights before routing and tags allowed responses.

    Browsers only read ETag / X-Resource-Version if they are exposed.
    """

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin", "")
        allowed = origin_allowed(origin)

        if request.method == "OPTIONS":
            if not allowed:
                return Response(status_code=403, content="Origin not allowed")
            return Response(status_code=200, headers={"Access-Control-Allow-Origin": origin, **PREFLIGHT_HEADERS})

        response = await call_next(request)
        if allowed:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Expose-Headers"] = EXPOSED_HEADERS
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await Database.connect()
    # Sin colecciones/índices de la cola no se arranca
    await verify_schema(require_transactions=settings.require_transactions)
    logger.info("Ratings API ready (env=%s)", settings.app_env)
    yield
    await get_cache().close()
    await Database.disconnect()


app = FastAPI(
    title="Prediction Ratings API",
    description="Leaderboards, rachas y rewards del juego de predicciones",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(ReadOnlyCORSMiddleware)

app.include_router(health_router)
app.include_router(ratings_router)


@app.get("/")
async def root():
    return {
        "name": "Prediction Ratings API",
        "version": "1.0.0",
        "leaderboard": "/ratings?scope=current",
        "docs": "/docs"
    }
