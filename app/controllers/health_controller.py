"""
Controlador de salud - estado del servicio, de MongoDB y de la cola de rewards
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from app.database import Database, supports_transactions
from app.models.reward import RewardJobStats
from app.repositories.reward_job_repository import RewardJobQueue


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Respuesta del chequeo de estado."""
    status: str
    database: str
    transactions: Optional[bool] = None
    reward_jobs: Optional[RewardJobStats] = None


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Endpoint de verificación de estado.

    Con la base conectada informa si hay transacciones y cuántos jobs de
    rewards hay en cada estado (los FAILED necesitan revisión manual).
    """
    if Database.db is None:
        return HealthResponse(status="degraded", database="disconnected")

    db = Database.db
    return HealthResponse(
        status="ok",
        database="connected",
        transactions=await supports_transactions(db),
        reward_jobs=await RewardJobQueue(db).stats(),
    )
