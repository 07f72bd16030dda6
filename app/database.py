"""
🔌 Database Connection Setup - MongoDB

Configuración centralizada para conectar a MongoDB, índices y transacciones
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, DESCENDING

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# Colecciones que el worker de rewards necesita antes de aceptar trabajo
REQUIRED_COLLECTIONS = ("reward_jobs", "achievement_rewards")
REWARD_IDEMPOTENCY_INDEX = "user_group_tier_year_unique"


class SchemaNotReadyError(RuntimeError):
    """Raised at start-up when collections or indexes are missing."""
    pass


class Database:
    """Singleton para la conexión a MongoDB"""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def connect(cls):
        """Conecta a MongoDB"""
        if cls.client is None:
            settings = get_settings()

            cls.client = AsyncIOMotorClient(
                settings.mongodb_uri,
                maxPoolSize=10,
                minPoolSize=2,
                tz_aware=True,
            )
            cls.db = cls.client[settings.mongodb_db_name]

            # Test de conexión
            await cls.client.admin.command("ping")
            logger.info("Connected to MongoDB: %s", settings.mongodb_db_name)

    @classmethod
    async def disconnect(cls):
        """Cierra la conexión"""
        if cls.client is not None:
            cls.client.close()
            cls.client = None
            cls.db = None
            logger.info("Disconnected from MongoDB")

    @classmethod
    def get_db(cls) -> AsyncIOMotorDatabase:
        """Retorna la instancia de la base de datos"""
        if cls.db is None:
            raise RuntimeError("Database not connected. Call Database.connect() first.")
        return cls.db


# ============================================
# 🎯 DEPENDENCY para FastAPI
# ============================================

async def get_database() -> AsyncIOMotorDatabase:
    """FastAPI dependency para inyectar la DB"""
    return Database.get_db()


# ============================================
# 🔒 TRANSACCIONES
# ============================================

_transaction_support: dict[int, bool] = {}


async def supports_transactions(db: AsyncIOMotorDatabase) -> bool:
    """
    Multi-document transactions need a replica set or a mongos.

    The answer is cached per client, the topology doesn't change at runtime.
    """
    key = id(db.client)
    if key not in _transaction_support:
        hello = await db.client.admin.command("hello")
        _transaction_support[key] = "setName" in hello or hello.get("msg") == "isdbgrid"
        if not _transaction_support[key]:
            logger.warning("MongoDB is standalone, writes run without a transaction")
    return _transaction_support[key]


@asynccontextmanager
async def transaction(
    db: AsyncIOMotorDatabase,
    max_commit_time_ms: Optional[int] = None,
) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
    """
    Yields a session bound to an open transaction, or None on a standalone server.

    Leaving the block with an exception (cancellation included) aborts the
    transaction, so nothing written inside it becomes visible.
    """
    if not await supports_transactions(db):
        yield None
        return

    async with await db.client.start_session() as session:
        async with session.start_transaction(max_commit_time_ms=max_commit_time_ms):
            yield session


# ============================================
# 🏗️ CREAR ÍNDICES (run once al deployment)
# ============================================

async def create_indexes(db: Optional[AsyncIOMotorDatabase] = None):
    """
    Crea los índices necesarios para optimizar queries

    Llamar una vez al hacer deploy o en un script de inicialización
    """
    db = db if db is not None else Database.get_db()

    # Predicciones (las escribe el servicio de settlement)
    await db.prediction_entries.create_index([("user_id", ASCENDING), ("resolved_at", ASCENDING), ("_id", ASCENDING)])
    await db.prediction_entries.create_index("status")

    # Ajustes manuales y de rewards
    await db.point_adjustments.create_index("user_id")

    # Resumen de ratings, uno por usuario (_id = user_id)
    await db.rating_summaries.create_index([("total_points", DESCENDING)])
    await db.rating_summaries.create_index([("seasonal_points", DESCENDING), ("total_points", DESCENDING)])
    await db.rating_summaries.create_index([("yearly_points", DESCENDING), ("total_points", DESCENDING)])

    # Snapshots históricos
    await db.rating_snapshots.create_index([("scope", ASCENDING), ("captured_at", DESCENDING)])

    # Temporadas
    await db.rating_seasons.create_index([("scope", ASCENDING), ("closed_at", ASCENDING), ("starts_at", DESCENDING)])

    # Cola de rewards
    await db.reward_jobs.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
    await db.achievement_rewards.create_index(
        [("user_id", ASCENDING), ("group", ASCENDING), ("tier", ASCENDING), ("scope_year", ASCENDING)],
        unique=True,
        name=REWARD_IDEMPOTENCY_INDEX,
    )

    logger.info("Indexes created successfully")


async def verify_schema(db: Optional[AsyncIOMotorDatabase] = None, require_transactions: bool = True):
    """
    Fail fast if the reward queue storage isn't there.

    Enqueueing into a missing collection would silently create it without
    the idempotency index, so start-up refuses to continue instead. Rewards
    and recalculations are only all-or-nothing inside a transaction, so a
    standalone server is refused too unless require_transactions is off.
    """
    db = db if db is not None else Database.get_db()

    if require_transactions and not await supports_transactions(db):
        raise SchemaNotReadyError("MongoDB must be a replica set or mongos, transactions are required")

    existing = set(await db.list_collection_names())
    missing = [name for name in REQUIRED_COLLECTIONS if name not in existing]
    if missing:
        raise SchemaNotReadyError(f"Missing collections: {', '.join(missing)}. Run create_indexes() first.")

    indexes = await db.achievement_rewards.index_information()
    index = indexes.get(REWARD_IDEMPOTENCY_INDEX)
    if not index or not index.get("unique"):
        raise SchemaNotReadyError(f"Missing unique index {REWARD_IDEMPOTENCY_INDEX} on achievement_rewards")
