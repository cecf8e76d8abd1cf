"""
Course aggregate projector - keeps course_aggregates.total_enrolled in step
with the enrollments table.

The counter is bumped with a relative UPDATE (total = total + 1) inside the
same transaction that inserts the Enrollment. Two concurrent enrollments for
different users each add one, and a rolled-back enrollment takes its
increment with it.

recount() / recount_all() rebuild counters from the enrollments table and
are used by scripts/recount_enrollments.py after manual data repair.
"""
import logging

from sqlalchemy import select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import CourseAggregate, Enrollment
from utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def _insert_for(db: AsyncSession):
    """Pick the dialect insert that supports ON CONFLICT DO NOTHING."""
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def ensure_row(db: AsyncSession, course_id: str) -> None:
    """Create the aggregate row at 0 if it does not exist yet (atomic upsert)."""
    insert = _insert_for(db)
    await db.execute(
        insert(CourseAggregate)
        .values(course_id=course_id, total_enrolled=0, updated_at=utcnow())
        .on_conflict_do_nothing(index_elements=["course_id"])
    )


async def increment(db: AsyncSession, course_id: str) -> int:
    """
    Add one enrollment to the course counter and return the new total.

    Must run in the transaction that inserted the Enrollment.
    """
    await ensure_row(db, course_id)
    await db.execute(
        update(CourseAggregate)
        .where(CourseAggregate.course_id == course_id)
        .values(
            total_enrolled=CourseAggregate.total_enrolled + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return await current_total(db, course_id)


async def current_total(db: AsyncSession, course_id: str) -> int:
    """Counter value as seen by this transaction (0 if no row yet)."""
    total = await db.scalar(
        select(CourseAggregate.total_enrolled).where(CourseAggregate.course_id == course_id)
    )
    return total or 0


async def live_count(db: AsyncSession, course_id: str) -> int:
    """COUNT(*) over enrollments; the value the counter must equal."""
    count = await db.scalar(
        select(func.count(Enrollment.id)).where(Enrollment.course_id == course_id)
    )
    return count or 0


async def recount(db: AsyncSession, course_id: str) -> int:
    """
    Overwrite one course counter with the live enrollment count.

    Does not commit.
    """
    actual = await live_count(db, course_id)
    await ensure_row(db, course_id)
    await db.execute(
        update(CourseAggregate)
        .where(CourseAggregate.course_id == course_id)
        .values(total_enrolled=actual, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return actual


async def recount_all(db: AsyncSession) -> dict[str, tuple[int, int]]:
    """
    Rebuild every counter and commit.

    Returns:
        {course_id: (old_total, new_total)} for every course whose counter drifted.
    """
    counts = dict(
        (await db.execute(
            select(Enrollment.course_id, func.count(Enrollment.id)).group_by(Enrollment.course_id)
        )).all()
    )
    stored = dict(
        (await db.execute(select(CourseAggregate.course_id, CourseAggregate.total_enrolled))).all()
    )

    drifted = {}
    for course_id in set(counts) | set(stored):
        old_total = stored.get(course_id, 0)
        new_total = counts.get(course_id, 0)
        if old_total != new_total or course_id not in stored:
            await ensure_row(db, course_id)
            await db.execute(
                update(CourseAggregate)
                .where(CourseAggregate.course_id == course_id)
                .values(total_enrolled=new_total, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if old_total != new_total:
                drifted[course_id] = (old_total, new_total)
                logger.warning(
                    f"Aggregate drift on course {course_id}: stored={old_total} actual={new_total}"
                )

    await db.commit()
    logger.info(f"Recount complete: {len(drifted)} course(s) corrected")
    return drifted
