"""
Enrollment store - persistence for enrollments.

The uq_enrollment_user_course constraint, not a prior SELECT, decides who
enrolls first. insert_enrollment() turns the constraint violation into
EnrollmentConflict so the coordinator can settle it without an error.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Enrollment
from exceptions import EnrollmentConflict
from utils.timeutils import isoformat, utcnow

logger = logging.getLogger(__name__)


async def insert_enrollment(
    db: AsyncSession,
    *,
    user_id: str,
    course_id: str,
    source_order_id: str,
) -> Enrollment:
    """
    Insert the (user, course) enrollment inside the caller's transaction.

    Raises:
        EnrollmentConflict: the pair is already enrolled. The session has
        been rolled back and is usable again.
    """
    enrollment = Enrollment(
        user_id=user_id,
        course_id=course_id,
        source_order_id=source_order_id,
        enrolled_at=utcnow(),
    )
    db.add(enrollment)
    try:
        await db.flush()
    except IntegrityError:
        # Race: another writer enrolled this pair first.
        await db.rollback()
        raise EnrollmentConflict(user_id, course_id)
    return enrollment


async def get_enrollment(db: AsyncSession, user_id: str, course_id: str) -> Optional[Enrollment]:
    result = await db.execute(
        select(Enrollment).where(
            Enrollment.user_id == user_id,
            Enrollment.course_id == course_id,
        )
    )
    return result.scalar_one_or_none()


async def get_enrollment_by_id(db: AsyncSession, enrollment_id: int) -> Optional[Enrollment]:
    return await db.get(Enrollment, enrollment_id)


async def is_enrolled(db: AsyncSession, user_id: str, course_id: str) -> bool:
    return await get_enrollment(db, user_id, course_id) is not None


def enrollment_to_dict(enrollment: Enrollment) -> dict:
    return {
        "id": enrollment.id,
        "userId": enrollment.user_id,
        "courseId": enrollment.course_id,
        "sourceOrderId": enrollment.source_order_id,
        "enrolledAt": isoformat(enrollment.enrolled_at),
    }
