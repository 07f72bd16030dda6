"""
Configuración de la app cargada desde variables de entorno (.env)

Todo lo que varía entre desarrollo/producción va aquí
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "prediction_ratings"

    # App
    app_env: str = "development"  # o "production"
    debug: bool = False
    log_level: str = "INFO"
    # Sin replica set o mongos no hay transacciones; la app no arranca
    require_transactions: bool = True

    # CORS - de dónde pueden venir los requests
    cors_origins: str = "http://localhost:3000"  # URLs separadas por coma

    # ==================== Cache ====================
    # Sin URL se usa el cache en memoria del proceso
    cache_redis_url: str | None = None

    # Los ratings solo cambian tras recalcular, 2 min fresco + 10 min stale
    rating_leaderboard_ttl_seconds: int = 120
    rating_leaderboard_stale_seconds: int = 600

    # ==================== Leaderboard ====================
    rating_default_page_size: int = 10
    rating_max_page_size: int = 100
    rating_max_page: int = 1000  # páginas más allá no se cachean ni se piden
    rating_snapshot_limit: int = 10  # top N por scope en cada snapshot

    # ==================== Recalculation ====================
    recalculation_timeout_seconds: float = 20.0
    upsert_chunk_size: int = 100  # statements por wave de bulk_write

    # ==================== Reward jobs ====================
    reward_max_attempts: int = 3
    reward_batch_size: int = 10
    # Un job en PROCESSING más tiempo que esto se vuelve a tomar
    reward_claim_timeout_seconds: int = 300

    class Config:
        env_file = ".env"  # Lee desde el archivo .env
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignora campos extras del .env que no estén en el modelo


@lru_cache()
def get_settings() -> Settings:
    """Retorna la instancia de configuración (cacheada para no releerla)"""
    return Settings()
