"""
RewardJobProcessor - applies achievement point rewards from the job queue.

Jobs are processed opportunistically by request-serving workers. Each job
is applied in its own transaction and at most once per
(user, group, tier, scope_year). After a batch the affected users get a
targeted recalculation and their cached entries are dropped.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.cache import CacheBackend, get_cache, ratings_page_key, user_achievements_prefix, user_rating_key
from app.core.config import Settings, get_settings
from app.database import transaction
from app.models.rating import PointAdjustment, RatingScope
from app.models.reward import AchievementReward, RewardJob, RewardJobPayload, RewardJobStats, RewardJobStatus
from app.repositories.adjustment_repository import PointAdjustmentRepository
from app.repositories.reward_job_repository import RewardJobQueue
from app.repositories.reward_repository import AchievementRewardRepository
from app.services.rating_aggregation import RatingAggregationService, RatingServiceError

logger = logging.getLogger(__name__)

REWARD_JOB_TYPE = "achievement_reward"

# Puntos por nivel de cada grupo de logros
REWARD_POINTS: dict[str, dict[int, int]] = {
    "streak": {1: 20, 2: 200, 3: 1000},
    "predictions": {1: 50, 2: 350, 3: 1000},
    "season_points": {1: 50, 2: 250, 3: 1000},
}


class RewardJobError(Exception):
    """Base exception for reward job errors."""
    pass


class InvalidRewardPayloadError(RewardJobError):
    """Raised when a job payload can't be applied."""
    pass


def current_reward_year() -> int:
    """Scope year for yearly achievements"""
    return datetime.now(timezone.utc).year


def reward_points_for(group: str, tier: int) -> int:
    try:
        return REWARD_POINTS[group][tier]
    except KeyError:
        raise InvalidRewardPayloadError(f"No reward configured for {group} tier {tier}") from None


class RewardJobProcessor:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        cache: Optional[CacheBackend] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else get_cache()
        self.queue = RewardJobQueue(db)
        self.reward_repo = AchievementRewardRepository(db)
        self.adjustment_repo = PointAdjustmentRepository(db)
        self.aggregation = RatingAggregationService(db, self.settings)

    # ============================================
    # 📌 ENQUEUE
    # ============================================

    async def create_job(
        self,
        user_id: str,
        group: str,
        tier: int,
        points: Optional[int] = None,
        scope_year: Optional[int] = None,
    ) -> RewardJob:
        """
        Enqueue a reward for an unlocked achievement tier.

        Points default to the reward table for (group, tier). Storage errors
        propagate to the caller.
        """
        if points is None:
            points = reward_points_for(group, tier)

        payload = RewardJobPayload(
            type=REWARD_JOB_TYPE,
            user_id=user_id,
            group=group,
            tier=tier,
            points=points,
            scope_year=scope_year,
        )
        return await self.queue.enqueue(payload.model_dump())

    async def get_stats(self) -> RewardJobStats:
        return await self.queue.stats()

    # ============================================
    # 📌 PROCESS
    # ============================================

    async def _apply_reward(self, payload: RewardJobPayload) -> bool:
        """
        Insert the reward record and its point adjustment in one transaction.

        Returns False when the reward was already applied. If the adjustment
        can't be written the reward record doesn't stay either, so a retry
        applies the points instead of skipping them.
        """
        async with transaction(self.db) as session:
            if await self.reward_repo.exists(
                payload.user_id, payload.group, payload.tier, payload.scope_year, session=session
            ):
                return False

            await self.reward_repo.create(
                AchievementReward(
                    user_id=payload.user_id,
                    group=payload.group,
                    tier=payload.tier,
                    scope_year=payload.scope_year,
                    points=payload.points,
                    created_at=datetime.now(timezone.utc),
                ),
                session=session,
            )
            try:
                # Con año va solo al rating anual; sin año es global
                await self.adjustment_repo.create(
                    PointAdjustment(
                        user_id=payload.user_id,
                        delta=payload.points,
                        scope=RatingScope.YEARLY if payload.scope_year else None,
                        reason=f"achievement_{payload.group}_tier_{payload.tier}",
                        issued_by=REWARD_JOB_TYPE,
                    ),
                    session=session,
                )
            except PyMongoError:
                # Sin sesión no hay abort, el registro se borra a mano
                if session is None:
                    await self.reward_repo.delete(payload.user_id, payload.group, payload.tier, payload.scope_year)
                raise
        return True

    async def _run_job(self, job: RewardJob) -> str:
        try:
            payload = RewardJobPayload.model_validate(job.payload)
        except ValidationError as exc:
            raise InvalidRewardPayloadError(f"Invalid payload: {exc.errors()[0]['msg']}") from exc

        if payload.type != REWARD_JOB_TYPE:
            raise InvalidRewardPayloadError(f"Unknown job type: {payload.type}")

        try:
            applied = await self._apply_reward(payload)
        except DuplicateKeyError:
            # Otro worker lo insertó entre el lookup y el insert
            applied = False

        if not applied:
            logger.info("Reward %s tier %s already applied for user %s", payload.group, payload.tier, payload.user_id)
        return payload.user_id

    async def _record_failure(self, job: RewardJob, exc: Exception) -> bool:
        """Count the attempt; False when the queue itself couldn't be updated"""
        try:
            failed = await self.queue.fail(job.id, str(exc) or exc.__class__.__name__, self.settings.reward_max_attempts)
        except PyMongoError:
            logger.error("Could not record failure of reward job %s: %s", job.id, exc, exc_info=True)
            return False

        if failed is not None and failed.status is RewardJobStatus.FAILED:
            logger.error("Reward job %s failed permanently after %d attempts: %s", job.id, failed.attempts, exc)
        else:
            logger.warning("Reward job %s failed (attempt %d): %s", job.id, job.attempts + 1, exc)
        return True

    async def process_pending(self, limit: Optional[int] = None) -> int:
        """
        Claim and apply up to `limit` pending jobs.

        Failures are isolated per job: the job goes back to PENDING with its
        error until it reaches reward_max_attempts, then stays FAILED.
        Claimed jobs that couldn't be marked either way are released back to
        PENDING; if even that fails the claim expires after
        reward_claim_timeout_seconds. Returns the number of jobs completed.
        """
        limit = limit if limit is not None else self.settings.reward_batch_size
        jobs = await self.queue.claim(limit, stale_after_seconds=self.settings.reward_claim_timeout_seconds)
        if not jobs:
            return 0

        processed = 0
        affected_users: set[str] = set()
        unsettled = {job.id for job in jobs}

        try:
            for job in jobs:
                try:
                    user_id = await self._run_job(job)
                except Exception as exc:
                    if await self._record_failure(job, exc):
                        unsettled.discard(job.id)
                    continue

                affected_users.add(user_id)
                try:
                    await self.queue.complete(job.id)
                except PyMongoError:
                    logger.error("Could not mark reward job %s done", job.id, exc_info=True)
                    continue
                unsettled.discard(job.id)
                processed += 1
        finally:
            if unsettled:
                await self._release(sorted(unsettled))

        if affected_users:
            await self._refresh_users(sorted(affected_users))

        return processed

    async def _release(self, job_ids: list[str]) -> None:
        # Un reward ya aplicado se detecta en el reintento y el job queda DONE
        try:
            released = await self.queue.release(job_ids)
        except PyMongoError:
            logger.error("Could not release %d reward jobs, they wait for the claim timeout", len(job_ids), exc_info=True)
            return
        logger.warning("Released %d unsettled reward jobs back to PENDING", released)

    async def _refresh_users(self, user_ids: list[str]) -> None:
        """
        Targeted recalculation + cache invalidation for the rewarded users.

        The rewards are already committed, a failure here only delays when
        they show up, so it is logged and not raised.
        """
        try:
            await self.aggregation.recalculate(user_ids)
        except RatingServiceError as exc:
            logger.warning("Recalculation after rewards failed for %d users: %s", len(user_ids), exc)

        page_size = self.settings.rating_default_page_size
        keys = [ratings_page_key(scope, 1, page_size) for scope in RatingScope]
        try:
            for user_id in user_ids:
                await self.cache.invalidate(user_rating_key(user_id))
                await self.cache.invalidate_prefix(user_achievements_prefix(user_id))
            for key in keys:
                await self.cache.invalidate(key)
        except Exception:
            logger.warning("Cache invalidation after rewards failed", exc_info=True)
