import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("timetrack")


class SyncEventLogger:
    """Bounded in-memory journal of timer sync events.

    Kept per process so the debug endpoint and the client can show the last
    few start/stop/broadcast decisions without touching the database.
    """

    def __init__(self, max_logs: int = 500):
        self.logs = []
        self.max_logs = max_logs

    def log_sync_event(
        self,
        event_type: str,
        description: str,
        user_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        status: str = "info",
        error: Optional[str] = None,
    ):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "description": description,
            "user_id": user_id,
            "payload": self._sanitize(payload) if payload else None,
            "status": status,
            "error": error,
        }

        self.logs.append(log_entry)

        if len(self.logs) > self.max_logs:
            self.logs.pop(0)

        log_msg = f"[{event_type}] {description}"
        if error:
            logger.error(f"{log_msg} - Error: {error}")
        else:
            logger.info(log_msg)

        return log_entry

    def _sanitize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = data.copy()
        for key in ("token", "access_token", "password", "authorization"):
            if key in sanitized:
                value = str(sanitized[key])
                if len(value) > 8:
                    sanitized[key] = f"{value[:4]}...{value[-4:]}"
                else:
                    sanitized[key] = "***"
        return sanitized

    def get_logs(self, limit: Optional[int] = None) -> list:
        if limit:
            return self.logs[-limit:]
        return self.logs


sync_logger = SyncEventLogger()
