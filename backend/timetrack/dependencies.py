from fastapi import Depends, Request
from sqlalchemy.orm import Session

from timetrack.database import get_db
from timetrack.services.entry_store import EntryStore
from timetrack.services.realtime_hub import RealtimeHub
from timetrack.services.timer_engine import TimerEngine, UserLocks


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def get_user_locks(request: Request) -> UserLocks:
    return request.app.state.user_locks


def get_store(db: Session = Depends(get_db)) -> EntryStore:
    return EntryStore(db)


def get_timer_engine(
    store: EntryStore = Depends(get_store),
    hub: RealtimeHub = Depends(get_hub),
    locks: UserLocks = Depends(get_user_locks),
) -> TimerEngine:
    return TimerEngine(store, hub, locks)
