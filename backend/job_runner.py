"""
Shared job runner for scheduled background jobs.
Used by the server scheduler and by scripts/ for one-off runs.
Each run_* returns a dict with "message" and "count".
"""
import logging

logger = logging.getLogger(__name__)


async def run_signature_link_expiry(db=None):
    try:
        from services.signing_flow import expire_stale_links, SIGNATURE_LINK_EXPIRY_DAYS
        count = await expire_stale_links(SIGNATURE_LINK_EXPIRY_DAYS, db=db)
        logger.info(f"Signature link expiry job completed: {count} links expired")
        return {"message": f"Signature links expired: {count}", "count": count}
    except Exception as e:
        logger.error(f"Signature link expiry job failed: {e}")
        raise
