"""
Expense Desk
Scheduled job bookkeeping.

One row per registered background job (delegation expiry sweep, approval
reminders, notification retention).  The row holds the cron expression an
external trigger should follow, whether the job is enabled, and the outcome
of the latest run.
"""

from expensedesk.models import db, iso, utcnow

RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"


class ScheduledJob(db.Model):
    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    cron = db.Column(db.String(100), nullable=False, default="0 0 * * *",
                     comment="minute hour day month weekday")
    is_enabled = db.Column(db.Boolean, default=True, nullable=False)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_success_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_status = db.Column(db.String(20), nullable=True, comment="success, failed, skipped")
    last_duration_ms = db.Column(db.Integer, nullable=True)
    last_result = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    run_count = db.Column(db.Integer, default=0, nullable=False)
    failure_count = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def status(self) -> str:
        if not self.is_enabled:
            return "paused"
        if self.last_status == RUN_FAILED:
            return "failing"
        return "active"

    def _finish(self, status, duration_ms):
        self.last_run_at = utcnow()
        self.last_status = status
        self.last_duration_ms = duration_ms

    def record_success(self, duration_ms: int, result: dict | None):
        self._finish(RUN_SUCCESS, duration_ms)
        self.last_success_at = self.last_run_at
        self.last_result = result
        self.last_error = None
        self.run_count = (self.run_count or 0) + 1

    def record_failure(self, duration_ms: int, error: str):
        self._finish(RUN_FAILED, duration_ms)
        self.last_result = None
        self.last_error = error
        self.run_count = (self.run_count or 0) + 1
        self.failure_count = (self.failure_count or 0) + 1

    def record_skipped(self):
        """Disabled job asked to run; nothing executed, counters untouched."""
        self._finish(RUN_SKIPPED, 0)

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "cron": self.cron,
            "is_enabled": self.is_enabled,
            "status": self.status,
            "last_run_at": iso(self.last_run_at),
            "last_success_at": iso(self.last_success_at),
            "last_status": self.last_status,
            "last_duration_ms": self.last_duration_ms,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"
