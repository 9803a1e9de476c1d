"""User-facing notices raised by the sync agent.

A notice tells the user either that something was done *for* them (idle
stop) or that something they asked for did not happen (action failed).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class NoticeKind(str, Enum):
    IDLE_STOPPED = "idle_stopped"
    ACTION_FAILED = "action_failed"
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    SESSION_EXPIRED = "session_expired"


@dataclass
class Notice:
    kind: NoticeKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def idle_stopped_notice(idle_seconds: float, entry_id: Optional[str] = None) -> Notice:
    minutes = max(1, int(idle_seconds // 60))
    unit = "minute" if minutes == 1 else "minutes"
    return Notice(
        kind=NoticeKind.IDLE_STOPPED,
        message=f"Your timer was stopped for you after {minutes} {unit} idle.",
        details={"idleSeconds": int(idle_seconds), "timeEntryId": entry_id},
    )


def action_failed_notice(action: str, error: Exception) -> Notice:
    return Notice(
        kind=NoticeKind.ACTION_FAILED,
        message=f"Could not {action}: {getattr(error, 'message', str(error))}. Please retry.",
        details={"action": action, "code": getattr(error, "code", None)},
    )


def transport_unavailable_notice() -> Notice:
    return Notice(
        kind=NoticeKind.TRANSPORT_UNAVAILABLE,
        message="Live updates are unavailable; checking the server periodically instead.",
    )


def session_expired_notice(reason: Optional[str] = None) -> Notice:
    return Notice(
        kind=NoticeKind.SESSION_EXPIRED,
        message="Your session has expired. Please sign in again.",
        details={"reason": reason},
    )
