"""
Session Reaper Job

Removes stale verification sessions and prunes in-memory rate-limit records.
Reads stay correct without it (stale sessions are evicted when fetched);
this only bounds memory for identifiers that never come back.

Run command:
    python -m otpverify.jobs.session_reaper
"""
import logging
from datetime import datetime
from typing import Optional

from ..core.clock import utc_now
from ..services.engine_factory import get_verification_engine
from ..services.verification_engine import VerificationEngine

logger = logging.getLogger(__name__)


def run_session_reaper(engine: Optional[VerificationEngine] = None, now: Optional[datetime] = None):
    """
    Run one reaping pass:
    - Delete sessions past their retention horizon
    - Drop rate-limit records outside the issuance window

    Returns:
        Counts of removed sessions and rate-limit keys
    """
    engine = engine or get_verification_engine()
    now = now or utc_now()

    purged_sessions = engine.repository.purge_stale(now)
    logger.info(f"Purged {purged_sessions} stale verification sessions")

    pruned_keys = engine.rate_limiter.prune(now)
    logger.info(f"Pruned {pruned_keys} rate-limit keys outside the issuance window")

    return {
        "purged_sessions": purged_sessions,
        "pruned_rate_limit_keys": pruned_keys,
    }


def main():
    """Main entry point for the session reaper job"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        logger.info("Starting session reaper job...")
        results = run_session_reaper()
        logger.info(f"Session reaper job completed: {results}")
    except Exception as e:
        logger.error(f"Session reaper job failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
