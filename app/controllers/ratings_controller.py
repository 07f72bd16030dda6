"""
Controlador de ratings - leaderboard por scope y resumen por usuario

Los clientes hacen polling con If-None-Match; las respuestas salen del cache
y el ETag cambia cuando cambia la versión de la key.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Query, Response, status

from app.core.dependencies import AppSettings, Cache, Leaderboards, RewardProcessor
from app.core.http_caching import build_weak_etag, cache_control, matches_if_none_match
from app.cache import ratings_page_key, user_rating_key
from app.models.rating import RatingScope
from app.services.rating_aggregation import RecalculationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ratings", tags=["ratings"])


def _not_modified(etag: str, version: int) -> Response:
    return Response(
        status_code=status.HTTP_304_NOT_MODIFIED,
        headers={"ETag": etag, "X-Resource-Version": str(version)},
    )


@router.get("")
async def get_leaderboard(
    response: Response,
    background_tasks: BackgroundTasks,
    leaderboards: Leaderboards,
    rewards: RewardProcessor,
    cache: Cache,
    settings: AppSettings,
    scope: str = Query("current", description="current | yearly"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    if_none_match: Optional[str] = Header(None),
):
    """
    Obtener una página del leaderboard.

    La página 1 fuerza un recálculo completo cuando el cache está frío.
    """
    rating_scope = RatingScope.parse(scope)
    page, page_size = leaderboards.normalize_paging(page, page_size)
    cache_key = ratings_page_key(rating_scope, page, page_size)

    async def loader():
        result = await leaderboards.get_page(rating_scope, page, page_size, ensure_fresh=page == 1)
        data = result.model_dump(mode="json")
        data["scope"] = rating_scope.key
        return data

    try:
        value, version = await cache.get_with_meta(cache_key, loader, settings.rating_leaderboard_ttl_seconds)
    except RecalculationError as exc:
        logger.warning("Leaderboard %s unavailable: %s", cache_key, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ratings are being recalculated, retry shortly",
        ) from exc

    # Procesamiento oportunista de la cola de rewards
    background_tasks.add_task(rewards.process_pending)

    etag = build_weak_etag(cache_key, version)
    if matches_if_none_match(if_none_match, etag):
        return _not_modified(etag, version)

    response.headers["Cache-Control"] = cache_control(
        "public", settings.rating_leaderboard_ttl_seconds, settings.rating_leaderboard_stale_seconds
    )
    response.headers["ETag"] = etag
    response.headers["X-Resource-Version"] = str(version)
    return {"ok": True, "data": value, "meta": {"version": version}}


@router.get("/users/{user_id}")
async def get_user_rating(
    user_id: str,
    response: Response,
    leaderboards: Leaderboards,
    cache: Cache,
    settings: AppSettings,
    if_none_match: Optional[str] = Header(None),
):
    """
    Obtener el resumen de rating de un usuario.
    """
    cache_key = user_rating_key(user_id)

    async def loader():
        view = await leaderboards.get_user_rating(user_id)
        return view.model_dump(mode="json")

    value, version = await cache.get_with_meta(cache_key, loader, settings.rating_leaderboard_ttl_seconds)

    etag = build_weak_etag(cache_key, version)
    if matches_if_none_match(if_none_match, etag):
        return _not_modified(etag, version)

    response.headers["Cache-Control"] = cache_control(
        "private", settings.rating_leaderboard_ttl_seconds, settings.rating_leaderboard_stale_seconds
    )
    response.headers["ETag"] = etag
    response.headers["X-Resource-Version"] = str(version)
    return {"ok": True, "data": value, "meta": {"version": version}}
