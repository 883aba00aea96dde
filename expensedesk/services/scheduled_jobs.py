"""
Expense Desk
Scheduled Jobs.

Concrete job implementations, registered with the scheduler on import.

Jobs:
    - delegation_expiry_sweep: deactivates delegations past their expiry date
    - pending_approval_reminder: reminds production heads of waiting expenses
    - stale_notification_cleanup: deletes old read notifications
"""

from __future__ import annotations

import logging
from typing import Any

from expensedesk.services import approval_service, delegation_service
from expensedesk.services import recipients as ev
from expensedesk.services.notification_dispatcher import NotificationDispatcher
from expensedesk.services.notification_store import NotificationStore
from expensedesk.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Delegation Expiry Sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("delegation_expiry_sweep", cron="*/15 * * * *")
def sweep_expired_delegations(app) -> dict[str, Any]:
    """Deactivate expired temporary approvers and notify delegate and assigner."""
    expired = delegation_service.process_expired()
    results = {
        "expired": len(expired),
        "delegation_ids": [d.id for d in expired],
    }
    logger.info("Delegation expiry sweep: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Pending Approval Reminder
# ═══════════════════════════════════════════════════════════════════════════

@register_job("pending_approval_reminder", cron="0 9 * * *")
def remind_pending_approvals(app) -> dict[str, Any]:
    """Notify production heads of every project with expenses awaiting review."""
    min_age = int(app.config.get("PENDING_REMINDER_MIN_AGE_DAYS", 1))
    results = {"projects": 0, "notifications_created": 0}

    for project_id, expenses in approval_service.overdue_pending(older_than_days=min_age).items():
        created = NotificationDispatcher.dispatch(ev.DomainEvent(
            kind=ev.PENDING_APPROVAL_REMINDER,
            actor_id=None,
            project_id=project_id,
            payload={
                "pending_count": len(expenses),
                "pending_amount": sum(e.amount or 0 for e in expenses),
            },
        ))
        results["projects"] += 1
        results["notifications_created"] += len(created)

    logger.info("Pending approval reminder: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Stale Notification Cleanup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("stale_notification_cleanup", cron="0 2 * * *")
def cleanup_stale_notifications(app) -> dict[str, Any]:
    """Delete read notifications older than the retention window."""
    days = int(app.config.get("NOTIFICATION_RETENTION_DAYS", 30))
    deleted = NotificationStore.delete_older_than(days, read_only=True)
    return {"deleted": deleted, "retention_days": days}
