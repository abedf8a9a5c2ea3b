"""
Sweep Scheduler

Runs the background sweeps on fixed intervals with APScheduler:
- hold_expiry: every HOLD_EXPIRY_INTERVAL_MINUTES (default 10)
- reconciliation: every RECONCILE_INTERVAL_MINUTES (default 5)
- hold_purge: every HOLD_PURGE_INTERVAL_MINUTES (default 60), also purges
  expired rate-limit counters

Jobs are plain functions, so AsyncIOScheduler runs them in its thread pool
and the event loop is never blocked by database work. max_instances=1 and
coalesce=True keep a slow run from stacking up; overlapping runs from other
processes are safe because every sweep is idempotent.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from .hold_gc import HoldGarbageCollector
from .reconciliation import ReconciliationSweeper

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_last_runs: Dict[str, Dict] = {}


def sweep_hold_expiry(db: Session) -> Dict:
    return HoldGarbageCollector(db).expire_stale_holds().to_dict()


def sweep_reconciliation(db: Session) -> Dict:
    return ReconciliationSweeper(db).sweep().to_dict()


def sweep_hold_purge(db: Session) -> Dict:
    collector = HoldGarbageCollector(db)
    result = collector.purge_terminal_holds().to_dict()
    result["counters_purged"] = collector.purge_expired_counters().processed
    return result


SWEEPS: Dict[str, Callable[[Session], Dict]] = {
    "hold_expiry": sweep_hold_expiry,
    "reconciliation": sweep_reconciliation,
    "hold_purge": sweep_hold_purge,
}


def run_sweep(name: str) -> Dict:
    """
    Run one sweep with its own session and record the outcome.
    Errors are logged and reported in the result, never raised.
    """
    sweep = SWEEPS[name]
    started = datetime.utcnow()
    db = SessionLocal()
    try:
        result = {"ok": True, **sweep(db)}
    except Exception as e:
        logger.error(f"Sweep {name} failed: {e}", exc_info=True)
        db.rollback()
        result = {"ok": False, "error": str(e)}
    finally:
        db.close()

    result["started_at"] = started.isoformat()
    result["duration_ms"] = int((datetime.utcnow() - started).total_seconds() * 1000)
    _last_runs[name] = result
    return result


def _job(name: str) -> Callable[[], None]:
    def run():
        run_sweep(name)
    run.__name__ = f"sweep_{name}"
    return run


def start_scheduler() -> bool:
    """
    Start the sweep scheduler.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Sweep scheduler is already running")
        return True

    intervals = {
        "hold_expiry": settings.hold_expiry_interval_minutes,
        "reconciliation": settings.reconcile_interval_minutes,
        "hold_purge": settings.hold_purge_interval_minutes,
    }

    try:
        _scheduler = AsyncIOScheduler(timezone="UTC")

        for name, minutes in intervals.items():
            _scheduler.add_job(
                _job(name),
                IntervalTrigger(minutes=minutes),
                id=f"sweep_{name}",
                name=f"{name} every {minutes} min",
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        _scheduler.start()
        logger.info(f"Sweep scheduler started: {intervals}")
        return True

    except Exception as e:
        logger.error(f"Failed to start sweep scheduler: {e}")
        _scheduler = None
        return False


def stop_scheduler() -> bool:
    global _scheduler

    if _scheduler is None:
        return True

    try:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Sweep scheduler stopped")
        return True
    except Exception as e:
        logger.error(f"Failed to stop sweep scheduler: {e}")
        return False


def get_scheduler_status() -> Dict:
    """
    Get the current status of the sweep scheduler.

    Returns:
        Dict with running flag, job schedule and the last result of each sweep
    """
    status = {
        "running": False,
        "jobs": [],
        "last_runs": dict(_last_runs),
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        for job in _scheduler.get_jobs():
            status["jobs"].append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

    return status
