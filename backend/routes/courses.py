"""
Course-scoped read endpoints.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from deps import CurrentUser, get_db, require_staff, require_user
from domain.responses import success_response
from services import aggregate_projector, enrollment_store, order_manager, reporting_service
from utils.validators import validated_course_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/courses", tags=["courses"])


@router.get("/{course_id}/enrollment")
async def get_my_enrollment(
    course_id: str = Depends(validated_course_id),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller is enrolled in the course."""
    await order_manager.get_course(db, course_id)
    enrollment = await enrollment_store.get_enrollment(db, user.user_id, course_id)
    return success_response({
        "courseId": course_id,
        "enrolled": enrollment is not None,
        "enrollment": enrollment_store.enrollment_to_dict(enrollment) if enrollment else None,
        "totalEnrolled": await aggregate_projector.current_total(db, course_id),
    })


@router.get("/{course_id}/stats")
async def get_course_stats(
    course_id: str = Depends(validated_course_id),
    _staff: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Revenue and enrollment figures (educators and admins)."""
    return success_response(await reporting_service.course_stats(db, course_id))
