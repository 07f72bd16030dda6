"""
Tests para RatingAggregationService (recálculo completo y por usuario)
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from pymongo.errors import PyMongoError

from app.cache import user_rating_key
from app.database import supports_transactions
from app.models.rating import PointAdjustment, RatingLevel, RatingScope
from app.repositories.adjustment_repository import PointAdjustmentRepository
from app.repositories.rating_repository import RatingRepository
from app.services.rating_aggregation import (
    RatingAggregationService,
    RecalculationError,
    RecalculationTimeoutError,
)


def _days_ago(days):
    return datetime.now(timezone.utc) - timedelta(days=days)


async def _seed(test_db, make_entry):
    """u1: predicciones con racha; u2: solo ajuste global (MYTHIC)"""
    await test_db.prediction_entries.insert_many([
        make_entry("u1", "WON", 100, resolved_at=_days_ago(200)),
        make_entry("u1", "WON", 10, resolved_at=_days_ago(5)),
        make_entry("u1", "WON", 20, resolved_at=_days_ago(4)),
        make_entry("u1", "LOST", 0, resolved_at=_days_ago(3)),
        make_entry("u1", "WON", 30, resolved_at=_days_ago(2)),
        make_entry("u1", "PENDING"),
        make_entry("u3", "LOST", 0, resolved_at=_days_ago(1)),
    ])
    await PointAdjustmentRepository(test_db).create(
        PointAdjustment(user_id="u2", delta=1400, reason="migration")
    )


def _without_timestamp(doc):
    return {k: v for k, v in doc.items() if k != "last_recalculated_at"}


class TestRatingAggregationService:
    """Test suite for rating recalculation."""

    @pytest.mark.asyncio
    async def test_full_recalculation(self, test_db, make_entry, test_settings):
        await _seed(test_db, make_entry)
        service = RatingAggregationService(test_db, test_settings)

        context = await service.recalculate()

        assert context.full
        repo = RatingRepository(test_db)

        u1 = await repo.get_summary("u1")
        assert u1.total_points == 160
        assert u1.seasonal_points == 60
        assert u1.yearly_points == 160
        assert u1.level == RatingLevel.SILVER
        assert u1.mythic_rank is None
        assert u1.prediction_count == 5
        assert u1.prediction_wins == 4

        streak = await repo.get_streak("u1")
        assert streak.max_streak == 3
        assert streak.current_streak == 1

        u2 = await repo.get_summary("u2")
        assert u2.total_points == 1400
        assert u2.seasonal_points == 1400
        assert u2.level == RatingLevel.MYTHIC
        assert u2.mythic_rank == 1

        u3 = await repo.get_summary("u3")
        assert u3.total_points == 0
        assert (await repo.get_streak("u3")).max_streak == 0

    @pytest.mark.asyncio
    async def test_recalculation_is_idempotent(self, test_db, make_entry, test_settings):
        await _seed(test_db, make_entry)
        service = RatingAggregationService(test_db, test_settings)

        await service.recalculate()
        first = [_without_timestamp(d) async for d in test_db.rating_summaries.find().sort("_id", 1)]
        first_streaks = [d async for d in test_db.prediction_streaks.find().sort("_id", 1)]

        await service.recalculate()
        second = [_without_timestamp(d) async for d in test_db.rating_summaries.find().sort("_id", 1)]
        second_streaks = [d async for d in test_db.prediction_streaks.find().sort("_id", 1)]

        assert first == second
        assert first_streaks == second_streaks

    @pytest.mark.asyncio
    async def test_targeted_run_skips_snapshots(self, test_db, make_entry, test_settings):
        await _seed(test_db, make_entry)
        service = RatingAggregationService(test_db, test_settings)
        await service.recalculate()
        snapshots_before = await test_db.rating_snapshots.count_documents({})
        u2_before = await test_db.rating_summaries.find_one({"_id": "u2"})

        await test_db.prediction_entries.insert_one(make_entry("u1", "WON", 50, resolved_at=_days_ago(1)))
        context = await service.recalculate(["u1", "ghost"])

        assert not context.full
        assert {e.user_id for e in context.entries} == {"u1", "ghost"}
        assert await test_db.rating_snapshots.count_documents({}) == snapshots_before

        repo = RatingRepository(test_db)
        u1 = await repo.get_summary("u1")
        assert u1.total_points == 210
        assert (await repo.get_streak("u1")).current_streak == 2

        # Usuarios fuera del set no se tocan
        assert await test_db.rating_summaries.find_one({"_id": "u2"}) == u2_before
        ghost = await repo.get_summary("ghost")
        assert ghost.total_points == 0
        assert ghost.level == RatingLevel.BRONZE

    @pytest.mark.asyncio
    async def test_snapshots_capped_per_scope(self, test_db, make_entry, test_settings):
        """snapshot limit = 3: top 3 per scope on every full run."""
        for index, user_id in enumerate(["a", "b", "c", "d", "e"]):
            await test_db.prediction_entries.insert_one(
                make_entry(user_id, "WON", (index + 1) * 10, resolved_at=_days_ago(1))
            )
        service = RatingAggregationService(test_db, test_settings)

        await service.recalculate()
        await service.recalculate()

        # Append-only: dos tandas de 3 por scope
        assert await test_db.rating_snapshots.count_documents({}) == 12

        latest = await RatingRepository(test_db).get_snapshots(RatingScope.CURRENT)
        assert [s.user_id for s in latest] == ["e", "d", "c"]
        assert [s.rank for s in latest] == [1, 2, 3]
        assert latest[0].points == 50
        assert latest[0].payload["level"] == RatingLevel.BRONZE.value

    @pytest.mark.asyncio
    async def test_writes_in_waves(self, test_db, make_entry, test_settings):
        """upsert_chunk_size = 2 still writes every user."""
        await test_db.prediction_entries.insert_many([
            make_entry(f"user{i}", "WON", i) for i in range(5)
        ])

        await RatingAggregationService(test_db, test_settings).recalculate()

        assert await test_db.rating_summaries.count_documents({}) == 5
        assert await test_db.prediction_streaks.count_documents({}) == 5

    @pytest.mark.asyncio
    async def test_timeout_raises_transient_error(self, test_db, make_entry, test_settings):
        await _seed(test_db, make_entry)
        settings = test_settings.model_copy(update={"recalculation_timeout_seconds": 0.05})
        service = RatingAggregationService(test_db, settings)

        async def slow_extract(*args, **kwargs):
            await asyncio.sleep(1)
            return {}

        service.prediction_repo.extract = slow_extract

        with pytest.raises(RecalculationTimeoutError) as exc_info:
            await service.recalculate()

        assert exc_info.value.transient is True
        assert await test_db.rating_summaries.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_full_run_invalidates_cached_user_ratings(self, test_db, make_entry, test_settings, memory_cache):
        await _seed(test_db, make_entry)

        async def loader():
            return {"total_points": 0}

        _, version_before = await memory_cache.get_with_meta(user_rating_key("u1"), loader, 60)

        await RatingAggregationService(test_db, test_settings, memory_cache).recalculate()

        _, version_after = await memory_cache.get_with_meta(user_rating_key("u1"), loader, 60)
        assert version_after == version_before + 1


async def _adjust(test_db, user_id, delta):
    await PointAdjustmentRepository(test_db).create(
        PointAdjustment(user_id=user_id, delta=delta, reason="manual")
    )


async def _mythic_ranks(test_db):
    return {
        doc["_id"]: doc["mythic_rank"]
        async for doc in test_db.rating_summaries.find({"mythic_rank": {"$ne": None}})
    }


class TestMythicRanks:
    """Mythic ranks stay dense 1..k over every stored summary."""

    @pytest.mark.asyncio
    async def test_targeted_run_keeps_other_ranks(self, test_db, test_settings):
        await _adjust(test_db, "a", 2000)
        await _adjust(test_db, "b", 1500)
        service = RatingAggregationService(test_db, test_settings)
        await service.recalculate()
        assert await _mythic_ranks(test_db) == {"a": 1, "b": 2}

        await _adjust(test_db, "b", 100)
        context = await service.recalculate(["b"])

        assert await _mythic_ranks(test_db) == {"a": 1, "b": 2}
        [entry] = context.entries
        assert entry.mythic_rank == 2

    @pytest.mark.asyncio
    async def test_targeted_run_reorders_when_overtaken(self, test_db, test_settings):
        await _adjust(test_db, "a", 2000)
        await _adjust(test_db, "b", 1500)
        service = RatingAggregationService(test_db, test_settings)
        await service.recalculate()

        await _adjust(test_db, "b", 1000)
        await service.recalculate(["b"])

        assert await _mythic_ranks(test_db) == {"b": 1, "a": 2}

    @pytest.mark.asyncio
    async def test_targeted_run_closes_gap_when_user_drops_out(self, test_db, test_settings):
        await _adjust(test_db, "a", 2000)
        await _adjust(test_db, "b", 1500)
        await _adjust(test_db, "c", 1800)
        service = RatingAggregationService(test_db, test_settings)
        await service.recalculate()
        assert await _mythic_ranks(test_db) == {"a": 1, "c": 2, "b": 3}

        await _adjust(test_db, "c", -1000)
        await service.recalculate(["c"])

        assert await _mythic_ranks(test_db) == {"a": 1, "b": 2}
        c = await RatingRepository(test_db).get_summary("c")
        assert c.level == RatingLevel.PLATINUM
        assert c.mythic_rank is None

    @pytest.mark.asyncio
    async def test_ties_break_on_user_id(self, test_db, test_settings):
        await _adjust(test_db, "b", 1500)
        await _adjust(test_db, "a", 1500)
        service = RatingAggregationService(test_db, test_settings)
        await service.recalculate()

        await service.recalculate(["b"])

        assert await _mythic_ranks(test_db) == {"a": 1, "b": 2}


class TestRecalculationFailures:
    """A failed recalculation leaves the stored ratings as they were."""

    @pytest.mark.asyncio
    async def test_driver_error_is_not_transient(self, test_db, make_entry, test_settings):
        await _seed(test_db, make_entry)
        service = RatingAggregationService(test_db, test_settings)

        async def broken_sum(*args, **kwargs):
            raise PyMongoError("node is recovering")

        service.adjustment_repo.sum_by_user = broken_sum

        with pytest.raises(RecalculationError) as exc_info:
            await service.recalculate()

        assert not isinstance(exc_info.value, RecalculationTimeoutError)
        assert exc_info.value.transient is False
        assert await test_db.rating_summaries.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_failure_after_writes_rolls_back(self, test_db, make_entry, test_settings):
        if not await supports_transactions(test_db):
            pytest.skip("Rollback needs a replica set")

        await _seed(test_db, make_entry)
        service = RatingAggregationService(test_db, test_settings)
        await service.recalculate()
        summaries_before = [d async for d in test_db.rating_summaries.find().sort("_id", 1)]
        snapshots_before = await test_db.rating_snapshots.count_documents({})

        await _adjust(test_db, "u1", 500)

        async def broken_snapshots(*args, **kwargs):
            raise PyMongoError("write conflict")

        # Summaries y streaks ya se escribieron cuando falla esto
        service.rating_repo.append_snapshots = broken_snapshots

        with pytest.raises(RecalculationError):
            await service.recalculate()

        assert [d async for d in test_db.rating_summaries.find().sort("_id", 1)] == summaries_before
        assert await test_db.rating_snapshots.count_documents({}) == snapshots_before
