"""
Repair: rebuild course_aggregates.total_enrolled from the enrollments table.

Normal operation never needs this; counters move with each enrollment.
Run it after restoring a backup or editing enrollments by hand.

Run from the backend/ directory:
    python scripts/recount_enrollments.py
"""
import asyncio
import os
import sys

# Add backend/ to path so we can import config
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import async_session, init_db  # noqa: E402
from services import aggregate_projector  # noqa: E402


async def main() -> int:
    await init_db()
    async with async_session() as db:
        drifted = await aggregate_projector.recount_all(db)

    if not drifted:
        print("✅ All course counters match their enrollments")
        return 0

    print(f"🔧 Corrected {len(drifted)} course counter(s):")
    for course_id, (old, new) in sorted(drifted.items()):
        print(f"   {course_id}: {old} → {new}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
