"""
Tests for race conditions and concurrent operations.

Tests scenarios where multiple operations might conflict:
- Concurrent water intake upserts for the same day
- Two store instances writing the same day's row
- Overlapping logins replacing each other's local session
- Concurrent meal log inserts
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session as DBSession

from beatwell.models import MealLog, Session, WaterIntake
from beatwell.services.local_store import LocalStore
from tests.factories import TEST_PASSWORD, create_user


pytestmark = pytest.mark.integration


def count_rows(store, model, **filters) -> int:
    with DBSession(store.engine) as db:
        query = select(func.count()).select_from(model)
        for column, value in filters.items():
            query = query.where(getattr(model, column) == value)
        return db.scalar(query)


class TestWaterIntakeRaceConditions:
    """Tests for the one-row-per-day water intake upsert."""

    def test_concurrent_upserts_leave_one_row(self, store, clock):
        """Test that parallel saves for one day never create a second row."""
        user = create_user(store, "alice", user_id=7)
        today = clock().date()
        counts = list(range(1, 11))

        with ThreadPoolExecutor(max_workers=5) as executor:
            futures = [
                executor.submit(store.upsert_water_intake, user.id, glasses, today)
                for glasses in counts
            ]
            for future in as_completed(futures):
                future.result()

        assert count_rows(store, WaterIntake, user_id=user.id) == 1
        assert store.water_intake_for_day(user.id, today) in counts
        assert store._water_locks == {}

    @pytest.mark.slow
    def test_two_stores_on_one_file(self, store, database_url, codec, clock):
        """Test the unique-constraint retry when in-process locks are not shared."""
        user = create_user(store, "alice", user_id=7)
        other = LocalStore.open(database_url, codec=codec, clock=clock)
        today = clock().date()

        try:
            with ThreadPoolExecutor(max_workers=4) as executor:
                futures = [
                    executor.submit(target.upsert_water_intake, user.id, glasses, today)
                    for glasses in range(1, 9)
                    for target in (store, other)
                ]
                for future in as_completed(futures):
                    future.result()
        finally:
            other.engine.dispose()

        assert count_rows(store, WaterIntake, user_id=user.id) == 1

    def test_different_days_do_not_contend(self, store, clock):
        user = create_user(store, "alice", user_id=7)
        today = clock().date()
        days = [today.replace(day=d) for d in range(1, 8)]

        with ThreadPoolExecutor(max_workers=7) as executor:
            list(executor.map(lambda day: store.upsert_water_intake(user.id, day.day, day), days))

        assert count_rows(store, WaterIntake, user_id=user.id) == 7


class TestSessionRaceConditions:
    """Tests for overlapping session establishment."""

    @pytest.mark.asyncio
    async def test_overlapping_logins_keep_one_session(self, coordinator, store, account, session_context):
        """Test that two logins in flight leave exactly one cached session."""
        first, second = await asyncio.gather(
            coordinator.login("alice", TEST_PASSWORD),
            coordinator.login("alice", TEST_PASSWORD),
        )

        assert first.value.token != second.value.token
        assert count_rows(store, Session, user_id=account["user_id"]) == 1

        current = session_context.current()
        assert current.token in (first.value.token, second.value.token)
        assert store.find_valid_session(current.token) is not None


class TestMealLogRaceConditions:
    """Tests for concurrent meal log inserts."""

    def test_concurrent_inserts_all_persist(self, store):
        user = create_user(store, "alice", user_id=7)

        def log_meal(i):
            return store.insert_meal_log(user.id, "lunch", f"Custom {i}", 100 + i, is_custom=True)

        with ThreadPoolExecutor(max_workers=5) as executor:
            meals = list(executor.map(log_meal, range(20)))

        assert len({meal.id for meal in meals}) == 20
        assert count_rows(store, MealLog, user_id=user.id) == 20
