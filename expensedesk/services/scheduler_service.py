"""
Expense Desk
Scheduler Service.

Background jobs register with ``@register_job(name, cron=...)`` and get a
persisted ScheduledJob row.  Nothing here keeps time: cron, the hosting
platform's scheduler or the admin trigger endpoint calls
``SchedulerService.run_job``.  A job runs inside its own app context, so it
works on a fresh session and its failures are recorded on the row instead
of propagating to the caller.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from expensedesk.models import db
from expensedesk.models.scheduling import RUN_FAILED, RUN_SKIPPED, RUN_SUCCESS, ScheduledJob

logger = logging.getLogger(__name__)

DEFAULT_CRON = "0 0 * * *"

_job_registry: dict[str, Callable] = {}
_job_crons: dict[str, str] = {}


def register_job(name: str, cron: str = DEFAULT_CRON):
    """Register ``fn(app) -> dict`` as background job ``name``.

    ``cron`` is only the initial schedule; the stored row is authoritative
    once it exists.
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        _job_crons[name] = cron
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _describe(name: str, fn: Callable) -> str:
    doc = (fn.__doc__ or "").strip()
    return doc.splitlines()[0] if doc else name.replace("_", " ").capitalize()


class SchedulerService:
    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        from expensedesk.services import scheduled_jobs  # noqa: F401  (registers jobs)

        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler bound with jobs: %s", ", ".join(sorted(_job_registry)))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Insert a row for each registered job that has none; returns the new rows."""
        if cls._app is None:
            return []

        with cls._app.app_context():
            known = {name for (name,) in db.session.query(ScheduledJob.job_name)}
            created = [
                ScheduledJob(
                    job_name=name,
                    description=_describe(name, fn),
                    cron=_job_crons.get(name, DEFAULT_CRON),
                    is_enabled=True,
                    run_count=0,
                    failure_count=0,
                )
                for name, fn in _job_registry.items()
                if name not in known
            ]
            if created:
                db.session.add_all(created)
                db.session.commit()
                logger.info("Registered %d scheduled job rows", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, *, force: bool = False) -> dict:
        """Run ``job_name`` once and record the outcome.

        A disabled job is skipped unless ``force`` is set (manual trigger).
        Returns ``{job_name, status, duration_ms, result, error}`` where status
        is success, failed, skipped, or error for an unknown job.
        """
        fn = _job_registry.get(job_name)
        if fn is None or cls._app is None:
            reason = f"Unknown job: {job_name}" if fn is None else "Scheduler not initialised"
            return {"job_name": job_name, "status": "error", "duration_ms": 0,
                    "result": None, "error": reason}

        app = cls._app
        log_extra = {"job_name": job_name}

        with app.app_context():
            row = ScheduledJob.query.filter_by(job_name=job_name).first()
            if row is not None and not row.is_enabled and not force:
                row.record_skipped()
                db.session.commit()
                logger.info("Job %s is paused, skipped", job_name, extra=log_extra)
                return {"job_name": job_name, "status": RUN_SKIPPED, "duration_ms": 0,
                        "result": None, "error": None}

        started = time.monotonic()
        result, error = None, None
        try:
            with app.app_context():
                result = fn(app)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception("Job %s failed", job_name, extra=log_extra)
        duration_ms = int((time.monotonic() - started) * 1000)
        status = RUN_FAILED if error is not None else RUN_SUCCESS

        with app.app_context():
            row = ScheduledJob.query.filter_by(job_name=job_name).first()
            if row is not None:
                if error is None:
                    row.record_success(duration_ms, result if isinstance(result, dict) else None)
                else:
                    row.record_failure(duration_ms, error)
                db.session.commit()

        logger.info("Job %s %s in %dms", job_name, status, duration_ms,
                    extra={**log_extra, "duration_ms": duration_ms})
        return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
                "result": result, "error": error}

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Every registered job, merged with its stored row when there is one."""
        rows = {job.job_name: job for job in ScheduledJob.query.all()}
        listing = []
        for name in sorted(_job_registry):
            row = rows.get(name)
            entry = row.to_dict() if row is not None else {
                "job_name": name, "cron": _job_crons.get(name, DEFAULT_CRON), "status": "unregistered",
            }
            listing.append(entry)
        return listing

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        row = ScheduledJob.query.filter_by(job_name=job_name).first()
        if row is None:
            return None
        row.is_enabled = enabled
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused",
                    extra={"job_name": job_name})
        return row.to_dict()
