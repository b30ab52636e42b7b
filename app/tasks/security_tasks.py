from celery import shared_task
from celery.utils.log import get_task_logger

from app.db.session import SessionLocal
from app.services.revocation_ledger import RevocationLedger

logger = get_task_logger(__name__)


@shared_task
def cleanup_revocation_ledger():
    """Prune expired blacklist rows and stale logout cutoffs.

    Failures are logged and left for the next scheduled run; request
    handling never depends on this task having succeeded.
    """
    db = SessionLocal()
    try:
        return RevocationLedger.cleanup(db)
    except Exception:
        logger.exception("revocation_ledger_cleanup_failed")
        return {"error": True}
    finally:
        db.close()
