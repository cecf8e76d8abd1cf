"""
SQLAlchemy ORM models for the enrollment service.

Tables:
    courses            - read-only catalog rows (price, currency) owned by course CRUD
    course_aggregates  - per-course enrollment counter, maintained with enrollments
    payment_orders     - one row per checkout attempt, never deleted
    enrollments        - one row per (user, course) pair, ever
    gateway_events     - webhook deliveries seen, for audit and dedup
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Text, ForeignKey,
    UniqueConstraint, Index,
)

from database import Base
from domain.enums import OrderStatus
from utils.timeutils import utcnow


class Course(Base):
    """Catalog entry. Prices are integer minor units (paise for INR)."""
    __tablename__ = "courses"

    course_id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    price_minor = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    is_published = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class CourseAggregate(Base):
    """
    Enrollment counter per course.

    Only ever changed inside the transaction that inserts an Enrollment,
    so total_enrolled == count(enrollments where course_id = X).
    """
    __tablename__ = "course_aggregates"

    course_id = Column(String(64), primary_key=True)
    total_enrolled = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class PaymentOrder(Base):
    """
    One checkout attempt.

    Lifecycle:
        1. OrderManager creates the gateway order -> row inserted (CREATED)
        2. Client/webhook submits the proof -> VERIFIED (compare-and-set)
        3. Enrollment committed in the same transaction as ENROLLED
        Cancel/fail/expiry move open orders to CANCELLED/FAILED/EXPIRED.
    """
    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), unique=True, nullable=False, index=True)  # gateway-issued, immutable
    receipt = Column(String(64), unique=True, nullable=False)  # local reference sent to the gateway

    user_id = Column(String(64), nullable=False, index=True)
    course_id = Column(String(64), nullable=False, index=True)

    amount = Column(BigInteger, nullable=False)  # minor units
    currency = Column(String(3), nullable=False, default="INR")

    status = Column(String(20), nullable=False, default=OrderStatus.CREATED.value, index=True)

    # Populated once the gateway reports success
    payment_id = Column(String(64), nullable=True, index=True)
    signature = Column(String(128), nullable=True)

    # Outcome
    enrollment_id = Column(Integer, ForeignKey("enrollments.id"), nullable=True)
    total_enrolled_snapshot = Column(Integer, nullable=True)  # course total returned on success
    needs_reconciliation = Column(Boolean, nullable=False, default=False)
    failure_reason = Column(Text, nullable=True)
    resume_attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, index=True)
    expires_at = Column(DateTime, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # Payment history: filter by user, newest first
        Index("ix_payment_orders_user_created", "user_id", "created_at"),
        # Expiry sweep: open orders past expires_at
        Index("ix_payment_orders_status_expires", "status", "expires_at"),
        # Course stats: enrolled orders per course
        Index("ix_payment_orders_course_status", "course_id", "status"),
    )


class Enrollment(Base):
    """
    A user's access to a course.

    The (user_id, course_id) unique constraint is the final arbiter when two
    writers race; application checks are only a fast path.
    """
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    course_id = Column(String(64), nullable=False, index=True)
    source_order_id = Column(String(64), nullable=False, index=True)
    enrolled_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),
    )


class GatewayEvent(Base):
    """
    Webhook deliveries already handled.

    Gateways redeliver on timeouts; a repeated event_id is acknowledged
    without being processed again.
    """
    __tablename__ = "gateway_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(128), unique=True, nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    order_id = Column(String(64), nullable=True, index=True)
    outcome = Column(String(50), nullable=False)
    received_at = Column(DateTime, default=utcnow)
