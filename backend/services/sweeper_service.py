"""
Sweeper Service - periodic expiry and reconciliation.

Every SWEEP_INTERVAL_SECONDS:
    1. expire_stale_orders(): open orders past expires_at -> EXPIRED
    2. reconcile_verified_orders(): orders stuck in VERIFIED longer than
       RECONCILE_GRACE_SECONDS (crash between verification and enrollment)
       are re-driven through the coordinator's resume(). After
       MAX_RESUME_ATTEMPTS failed re-drives the order is moved to FAILED.

This runs as an asyncio background task during the FastAPI app lifespan.
All coordination goes through the database, so running it in several
processes at once is safe.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from config import settings
from database import async_session
from domain.enums import OrderStatus
from domain.errors import DomainError
from services import enrollment_coordinator, failure_handler, order_manager, order_store
from utils.timeutils import isoformat, utcnow

logger = logging.getLogger(__name__)

# Sweeper state
_sweeper_task: Optional[asyncio.Task] = None
_is_running: bool = False
_errors_count: int = 0
_last_run_at: Optional[datetime] = None
_last_result: dict = {}


async def reconcile_verified_orders(db, now: Optional[datetime] = None) -> dict:
    """
    Re-drive VERIFIED orders older than the grace period.

    Returns:
        dict: {resumed, retried, failed}
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=settings.reconcile_grace_seconds)
    stuck = await order_store.list_stuck_verified(db, cutoff)
    order_ids = [o.order_id for o in stuck]

    resumed = retried = failed = 0
    for order_id in order_ids:
        try:
            await enrollment_coordinator.resume(db, order_id)
            resumed += 1
            logger.info(f"  Reconciled stuck order {order_id}")
            continue
        except DomainError as e:
            reason = f"resume failed: {e.message}"
            logger.warning(f"  Re-drive of order {order_id} failed: {e.message}")

        order = await order_store.get_order(db, order_id)
        if order is None or order.status != OrderStatus.VERIFIED.value:
            continue
        if order.resume_attempts + 1 >= settings.max_resume_attempts:
            if await failure_handler.fail_after_verification(db, order_id, reason):
                failed += 1
        else:
            await order_store.increment_resume_attempts(db, order_id, reason)
            await db.commit()
            retried += 1

    return {"resumed": resumed, "retried": retried, "failed": failed}


async def run_sweep_once(now: Optional[datetime] = None) -> dict:
    """One sweep cycle in a fresh session. Also used by tests and scripts."""
    global _last_run_at, _last_result

    async with async_session() as db:
        expired = await order_manager.expire_stale_orders(db, now)
        reconciled = await reconcile_verified_orders(db, now)

    _last_run_at = utcnow()
    _last_result = {"expired": expired, **reconciled}
    if expired or any(reconciled.values()):
        logger.info(f"Sweep: {_last_result}")
    return _last_result


async def _sweeper_loop():
    """Main loop. Runs until stop() as a background asyncio task."""
    global _is_running, _errors_count

    _is_running = True
    interval = settings.sweep_interval_seconds
    logger.info(f"Sweeper started (every {interval}s)")

    while _is_running:
        try:
            await asyncio.sleep(interval)
            await run_sweep_once()
        except asyncio.CancelledError:
            logger.info("Sweeper cancelled")
            break
        except Exception as e:
            _errors_count += 1
            logger.error(f"Sweeper cycle error: {e}")
            # Backoff on repeated errors
            if _errors_count > 5:
                backoff = min(300, interval * 2)
                logger.warning(f"  Too many errors, backing off {backoff}s")
                await asyncio.sleep(backoff)

    _is_running = False
    logger.info("Sweeper stopped")


# ════════════════════════════════════════════════════════════════════
# Public API - Start / Stop / Status
# ════════════════════════════════════════════════════════════════════


async def start():
    """Start the sweeper as a background asyncio task."""
    global _sweeper_task, _is_running

    if _sweeper_task and not _sweeper_task.done():
        logger.warning("Sweeper already running")
        return

    _is_running = True
    _sweeper_task = asyncio.create_task(_sweeper_loop())


async def stop():
    """Stop the sweeper gracefully."""
    global _sweeper_task, _is_running
    _is_running = False

    if _sweeper_task and not _sweeper_task.done():
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass

    _sweeper_task = None


def get_status() -> dict:
    """Sweeper status for GET /health."""
    return {
        "enabled": settings.sweeper_enabled,
        "running": _is_running,
        "intervalSeconds": settings.sweep_interval_seconds,
        "lastRunAt": isoformat(_last_run_at),
        "lastResult": _last_result,
        "errorsCount": _errors_count,
    }
