"""
Tests for the course aggregate projector.
"""
import pytest
from sqlalchemy import update

from db_models import CourseAggregate, Enrollment
from services import aggregate_projector


async def _enroll(db, user_id: str, course_id: str = "C1"):
    db.add(Enrollment(user_id=user_id, course_id=course_id, source_order_id=f"order_{user_id}"))
    await db.flush()


class TestIncrement:

    @pytest.mark.unit
    async def test_creates_row_and_counts(self, db_session):
        assert await aggregate_projector.current_total(db_session, "C1") == 0
        assert await aggregate_projector.increment(db_session, "C1") == 1
        assert await aggregate_projector.increment(db_session, "C1") == 2
        await db_session.commit()
        assert await aggregate_projector.current_total(db_session, "C1") == 2

    @pytest.mark.unit
    async def test_rollback_discards_increment(self, db_session):
        await aggregate_projector.ensure_row(db_session, "C1")
        await db_session.commit()

        await aggregate_projector.increment(db_session, "C1")
        await db_session.rollback()
        assert await aggregate_projector.current_total(db_session, "C1") == 0

    @pytest.mark.unit
    async def test_ensure_row_keeps_existing_total(self, db_session):
        await aggregate_projector.increment(db_session, "C1")
        await aggregate_projector.ensure_row(db_session, "C1")
        assert await aggregate_projector.current_total(db_session, "C1") == 1


class TestRecount:

    @pytest.mark.unit
    async def test_recount_overwrites_counter(self, db_session):
        await _enroll(db_session, "U1")
        await _enroll(db_session, "U2")
        await aggregate_projector.ensure_row(db_session, "C1")

        assert await aggregate_projector.live_count(db_session, "C1") == 2
        assert await aggregate_projector.recount(db_session, "C1") == 2
        assert await aggregate_projector.current_total(db_session, "C1") == 2

    @pytest.mark.unit
    async def test_recount_all_reports_only_drift(self, db_session):
        for user in ("U1", "U2", "U3"):
            await _enroll(db_session, user, "C1")
        await _enroll(db_session, "U1", "C2")
        for _ in range(3):
            await aggregate_projector.increment(db_session, "C1")
        await aggregate_projector.ensure_row(db_session, "C2")
        await aggregate_projector.ensure_row(db_session, "C3")
        await db_session.execute(
            update(CourseAggregate).where(CourseAggregate.course_id == "C3").values(total_enrolled=5)
        )
        await db_session.commit()

        drifted = await aggregate_projector.recount_all(db_session)
        assert drifted == {"C2": (0, 1), "C3": (5, 0)}
        assert await aggregate_projector.current_total(db_session, "C2") == 1
        assert await aggregate_projector.current_total(db_session, "C3") == 0
        assert await aggregate_projector.recount_all(db_session) == {}

    @pytest.mark.unit
    async def test_recount_all_creates_missing_rows(self, db_session):
        await _enroll(db_session, "U1", "C7")
        await db_session.commit()

        assert await aggregate_projector.recount_all(db_session) == {"C7": (0, 1)}
        assert await aggregate_projector.current_total(db_session, "C7") == 1
