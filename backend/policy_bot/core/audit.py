"""
Audit logging for admin operations and state maintenance.

Every admin multi-step operation (policy search, field edit, mass deletion)
leaves a JSON trail on the "audit" logger: who started it, how its data
changed, and how it ended (cleared, expired).
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for admin state events."""

    @staticmethod
    def log_admin_state(
        action: str,  # "create", "update", "clear", "expire"
        user_id: int,
        chat_id: int,
        operation: str,
        changes: Optional[Dict[str, Any]] = None,
    ):
        """
        Log an admin state transition.

        Usage:
            AuditLog.log_admin_state("create", 1, -100123, "policy_search")
            AuditLog.log_admin_state("update", 1, -100123, "policy_search", changes={"term": "ABC"})
        """
        log_entry = {
            "timestamp": _now_iso(),
            "event_type": f"admin_state.{action}",
            "user_id": user_id,
            "chat_id": chat_id,
            "operation": operation,
        }

        if changes:
            log_entry["changes"] = sorted(changes)

        if action == "expire":
            audit_logger.warning(json.dumps(log_entry))
        else:
            audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_chat_state_cleared(
        chat_id: int,
        thread_id: Any,
        user_id: Optional[int],
        results: Dict[str, int],
    ):
        """
        Log a "clear everything" request (/start, main menu, API).

        Usage:
            AuditLog.log_chat_state_cleared(-100123, 7, 1, {"flow_state": 2, "admin_state": 1})
        """
        log_entry = {
            "timestamp": _now_iso(),
            "event_type": "chat_state.cleared",
            "chat_id": chat_id,
            "thread_id": thread_id,
            "user_id": user_id,
            "results": results,
        }

        audit_logger.info(json.dumps(log_entry, default=str))

    @staticmethod
    def log_cleanup_run(cleaned: int, provider_results: Dict[str, int]):
        """Log a sweep that removed something or had a failing provider."""
        log_entry = {
            "timestamp": _now_iso(),
            "event_type": "state_cleanup.run",
            "cleaned": cleaned,
            "provider_results": provider_results,
        }

        if any(count < 0 for count in provider_results.values()):
            audit_logger.warning(json.dumps(log_entry))
        else:
            audit_logger.info(json.dumps(log_entry))
