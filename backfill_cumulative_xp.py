"""
One-time backfill script: Rewrite legacy XP rows in cumulative format.

Older clients stored only the XP earned inside the current level. Those rows
are flagged xp_is_cumulative = False. This resolves each one through the
ledger, stores the cumulative total and the level derived from it, and
clears the flag so the row is never re-interpreted.

Safe to run multiple times: already-cumulative rows are skipped.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from database import SessionLocal, UserStats, engine, Base, atomic
from leveling import read_cumulative_xp, write_cumulative_xp

logger = logging.getLogger(__name__)


def backfill(db: Optional[Session] = None) -> dict:
    own_session = db is None
    if own_session:
        # Create tables if missing, additive only
        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
    try:
        legacy_rows = db.query(UserStats).filter(
            UserStats.xp_is_cumulative.is_(False)
        ).with_for_update().all()
        logger.info("Found %s legacy XP rows to backfill", len(legacy_rows))

        upgraded = 0
        relevelled = 0
        with atomic(db):
            for stats in legacy_rows:
                old_level = stats.level
                old_xp = stats.cumulative_xp
                new_level = write_cumulative_xp(stats, read_cumulative_xp(stats))
                upgraded += 1
                if new_level != old_level:
                    relevelled += 1
                    logger.warning("User %s level corrected %s -> %s (stored XP %s, cumulative %s)",
                                   stats.user_id, old_level, new_level, old_xp, stats.cumulative_xp)

        logger.info("Backfill complete. Upgraded: %s, level corrected: %s", upgraded, relevelled)
        return {"upgraded": upgraded, "level_corrected": relevelled}
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    result = backfill()
    print(f"Backfill complete. Upgraded: {result['upgraded']}, level corrected: {result['level_corrected']}")
