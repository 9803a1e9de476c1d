"""
Client Sync Agent - reconciles one device's view of the timer with the server.

Truth lives on the server. The agent keeps a local belief
``{is_running, current_entry, elapsed_seconds}`` and converges it through:

- push: realtime events, applied idempotently and keyed by entry id
- local tick: +1s per tick for display, re-derived from ``startTime`` on
  every resync and on foreground so drift never accumulates
- pull: ``GET /current`` when the socket reconnects, when the app returns to
  the foreground, and on the polling fallback while push is down

Every background task belongs to a session generation. :meth:`close` bumps
the generation, so a request that completes afterwards changes nothing.
"""

import asyncio
import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Set

from timetrack.client.api_client import TimeTrackApiClient
from timetrack.client.config import ClientSettings
from timetrack.client.idle_guard import IdleGuard
from timetrack.client.notices import (
    Notice,
    action_failed_notice,
    idle_stopped_notice,
    session_expired_notice,
    transport_unavailable_notice,
)
from timetrack.client.polling import PollingFallback
from timetrack.client.socket_client import ConnectionState, RealtimeConnection
from timetrack.client.state_cache import CachedState, StateCache
from timetrack.errors import AuthError, ConflictError, NotFoundError, TimeTrackError, TransientIOError
from timetrack.models.events import DeletedRef, EventName
from timetrack.models.project import ProjectResponse
from timetrack.models.task import TaskResponse
from timetrack.models.time_entry import TimeEntryResponse
from timetrack.utils.logger import logger

_CENTS = Decimal("0.01")

_AUTH_FAILURE_REASONS = {
    AuthError.TOKEN_MISSING,
    AuthError.TOKEN_INVALID,
    AuthError.TOKEN_EXPIRED,
    AuthError.USER_NOT_FOUND,
}


def compute_earnings(rate, seconds: int) -> Decimal:
    """``rate * seconds / 3600`` rounded half-up to cents."""
    amount = Decimal(str(rate or 0)) * Decimal(int(seconds or 0)) / Decimal(3600)
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ClientSyncAgent:
    def __init__(
        self,
        api: TimeTrackApiClient,
        connection: RealtimeConnection,
        settings: Optional[ClientSettings] = None,
        cache: Optional[StateCache] = None,
        clock: Callable[[], datetime] = _now,
        sleep=asyncio.sleep,
        close_api: bool = False,
    ):
        self.api = api
        self._close_api = close_api
        self.connection = connection
        self.settings = settings or ClientSettings()
        self.cache = cache
        self._clock = clock
        self._sleep = sleep

        self.current_entry: Optional[TimeEntryResponse] = None
        self.last_stopped_entry: Optional[TimeEntryResponse] = None
        self.elapsed_seconds = 0
        self.projects: Dict[str, ProjectResponse] = {}
        self.tasks: Dict[str, TaskResponse] = {}
        self.notices: List[Notice] = []

        self._recent: Dict[str, TimeEntryResponse] = {}
        self._stopped_ids: Set[str] = set()
        self._notice_listeners: List[Callable[[Notice], None]] = []
        self._generation = 0
        self._in_outage = False
        self._background_at: Optional[datetime] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._resync_task: Optional[asyncio.Task] = None
        self._fetches: Set[asyncio.Task] = set()

        self.poller = PollingFallback(
            fetch=self.api.get_current,
            on_result=self.apply_current,
            on_error=self._on_poll_error,
            min_interval=self.settings.POLL_MIN_SECONDS,
            max_interval=self.settings.POLL_MAX_SECONDS,
            factor=self.settings.POLL_FACTOR,
            error_factor=self.settings.POLL_ERROR_FACTOR,
            sleep=sleep,
        )
        self.idle_guard = IdleGuard(
            on_idle=self._idle_stop,
            timeout_seconds=self.settings.IDLE_TIMEOUT_SECONDS,
            check_interval=self.settings.IDLE_CHECK_SECONDS,
            clock=clock,
            sleep=sleep,
        )
        self._subscribe()

    # ---- derived state ----

    @property
    def is_running(self) -> bool:
        return self.current_entry is not None

    @property
    def displayed_entry(self) -> Optional[TimeEntryResponse]:
        return self.current_entry or self.last_stopped_entry

    @property
    def earnings(self) -> Decimal:
        entry = self.displayed_entry
        if entry is None:
            return Decimal("0.00")
        seconds = self.elapsed_seconds if self.current_entry is not None else (entry.durationSeconds or 0)
        return compute_earnings(entry.hourlyRateSnapshot, seconds)

    @property
    def recent_entries(self) -> List[TimeEntryResponse]:
        entries = sorted(self._recent.values(), key=lambda e: e.startTime, reverse=True)
        return entries[: self.settings.RECENT_ENTRIES_LIMIT]

    def snapshot(self) -> dict:
        return {
            "isRunning": self.is_running,
            "currentEntry": self.current_entry,
            "elapsedSeconds": self.elapsed_seconds,
            "earnings": self.earnings,
        }

    # ---- notices ----

    def on_notice(self, listener: Callable[[Notice], None]) -> None:
        self._notice_listeners.append(listener)

    def _notify(self, notice: Notice) -> None:
        logger.info("Notice %s: %s", notice.kind.value, notice.message)
        self.notices.append(notice)
        for listener in list(self._notice_listeners):
            listener(notice)

    def _report_failure(self, action: str, error: TimeTrackError) -> None:
        if isinstance(error, AuthError):
            self._session_expired(error.reason)
            return
        self._notify(action_failed_notice(action, error))
        if isinstance(error, TransientIOError):
            self.poller.start()

    def _session_expired(self, reason: Optional[str]) -> None:
        self.poller.stop()
        self._notify(session_expired_notice(reason))

    # ---- lifecycle ----

    async def start(self) -> None:
        self._generation += 1
        generation = self._generation
        self._load_cache()
        await self.load_profile()
        await self.refresh()
        if generation != self._generation:
            return
        await self.connection.connect()
        self._resync_task = asyncio.create_task(self._resync_loop(generation))
        self.idle_guard.start()

    async def close(self) -> None:
        self._generation += 1
        self._cancel_tick()
        resync, self._resync_task = self._resync_task, None
        if resync is not None:
            resync.cancel()
        for task in list(self._fetches):
            task.cancel()
        await self.poller.close()
        await self.idle_guard.stop()
        await self.connection.disconnect()
        self._persist()
        if self._close_api:
            await self.api.close()

    async def load_profile(self) -> None:
        """Adopt the user's idle threshold."""
        try:
            user = await self.api.me()
        except TimeTrackError as e:
            logger.warning("Could not load profile: %s", e.message)
            return
        self.idle_guard.timeout_seconds = user.idleTimeoutSeconds

    def _subscribe(self) -> None:
        c = self.connection
        c.on(EventName.TIME_ENTRY_STARTED, self.handle_started)
        c.on(EventName.TIME_ENTRY_STOPPED, self.handle_stopped)
        c.on(EventName.TIME_ENTRY_UPDATED, self.handle_updated)
        c.on(EventName.TIME_ENTRY_CREATED, self.handle_created)
        c.on(EventName.TIME_ENTRY_DELETED, self.handle_deleted)
        c.on(EventName.PROJECT_CREATED, self.handle_project)
        c.on(EventName.PROJECT_UPDATED, self.handle_project)
        c.on(EventName.PROJECT_DELETED, self.handle_project_deleted)
        c.on(EventName.TASK_CREATED, self.handle_task)
        c.on(EventName.TASK_UPDATED, self.handle_task)
        c.on(EventName.TASK_DELETED, self.handle_task_deleted)
        c.on_state_change(self._on_connection_state)

    # ---- push reconciliation ----

    def handle_started(self, entry: TimeEntryResponse) -> None:
        if entry.id in self._stopped_ids:
            logger.debug("Ignoring late start for stopped entry %s", entry.id)
            return
        if not entry.isRunning:
            self.handle_stopped(entry)
            return
        self._adopt_running(entry)

    def handle_stopped(self, entry: TimeEntryResponse) -> None:
        self._stopped_ids.add(entry.id)
        self._upsert_recent(entry)
        if self.current_entry is not None and self.current_entry.id == entry.id:
            self._clear_running(final=entry)
        elif self.last_stopped_entry is not None and self.last_stopped_entry.id == entry.id:
            self.last_stopped_entry = entry
            self.elapsed_seconds = entry.durationSeconds or 0
        self._persist()

    def handle_updated(self, entry: TimeEntryResponse) -> None:
        if not entry.isRunning:
            self.handle_stopped(entry)
            return
        if entry.id in self._stopped_ids:
            return
        self._adopt_running(entry)

    def handle_created(self, entry: TimeEntryResponse) -> None:
        if not entry.isRunning:
            self._stopped_ids.add(entry.id)
        self._upsert_recent(entry)
        self._persist()

    def handle_deleted(self, ref: DeletedRef) -> None:
        self._recent.pop(ref.id, None)
        if self.current_entry is not None and self.current_entry.id == ref.id:
            self._clear_running()
        if self.last_stopped_entry is not None and self.last_stopped_entry.id == ref.id:
            self.last_stopped_entry = None
            self.elapsed_seconds = 0
        self._persist()

    def handle_project(self, project: ProjectResponse) -> None:
        self.projects[project.id] = project

    def handle_project_deleted(self, ref: DeletedRef) -> None:
        self.projects.pop(ref.id, None)
        for task_id in [t.id for t in self.tasks.values() if t.projectId == ref.id]:
            del self.tasks[task_id]

    def handle_task(self, task: TaskResponse) -> None:
        self.tasks[task.id] = task

    def handle_task_deleted(self, ref: DeletedRef) -> None:
        self.tasks.pop(ref.id, None)

    # ---- pull reconciliation ----

    async def apply_current(self, entry: Optional[TimeEntryResponse]) -> None:
        """Reconcile with a ``GET /current`` result."""
        if entry is not None:
            if entry.id not in self._stopped_ids:
                self._adopt_running(entry)
            return

        believed = self.current_entry
        if believed is None:
            return

        # Stopped elsewhere while we were not listening; fetch the final row.
        generation = self._generation
        try:
            final = await self.api.get_entry(believed.id)
        except NotFoundError:
            final = None
        except TimeTrackError as e:
            logger.warning("Could not fetch final state of %s: %s", believed.id, e.message)
            final = None
        if generation != self._generation:
            return
        if self.current_entry is None or self.current_entry.id != believed.id:
            return

        if final is not None and not final.isRunning:
            self.handle_stopped(final)
        else:
            self._clear_running()
            self._persist()

    async def resync(self) -> None:
        generation = self._generation
        try:
            entry = await self.api.get_current()
        except AuthError as e:
            self._session_expired(e.reason)
            return
        except TransientIOError as e:
            logger.info("Resync failed (%s); polling", e.message)
            self.poller.start()
            return
        except TimeTrackError as e:
            logger.warning("Resync failed: %s", e.message)
            return
        if generation != self._generation:
            return
        await self.apply_current(entry)

    async def refresh(self) -> None:
        """Full pull: running entry, projects and recent entries."""
        await self.resync()
        generation = self._generation
        try:
            projects = await self.api.list_projects()
            listing = await self.api.list_entries(limit=self.settings.RECENT_ENTRIES_LIMIT)
        except TimeTrackError as e:
            self._report_failure("refresh", e)
            return
        if generation != self._generation:
            return

        self.projects = {p.id: p for p in projects}
        self._recent = {e.id: e for e in listing.entries}
        self._stopped_ids.update(e.id for e in listing.entries if not e.isRunning)
        self._prune_recent()
        self._persist()

    # ---- actions ----

    async def start_timer(
        self,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[TimeEntryResponse]:
        generation = self._generation
        self.idle_guard.record_activity()
        try:
            entry = await self.api.start_entry(project_id=project_id, task_id=task_id, description=description)
        except ConflictError as e:
            # Something is already running, probably started on another device.
            self._report_failure("start the timer", e)
            await self.resync()
            return None
        except TimeTrackError as e:
            self._report_failure("start the timer", e)
            return None
        if generation != self._generation:
            return None
        self.handle_started(entry)
        return entry

    async def stop_timer(self) -> Optional[TimeEntryResponse]:
        entry = self.current_entry
        if entry is None:
            return None
        generation = self._generation
        self.idle_guard.record_activity()
        try:
            stopped = await self.api.stop_entry(entry.id)
        except ConflictError:
            # Already stopped elsewhere; pick up the final state.
            await self.resync()
            return None
        except TimeTrackError as e:
            self._report_failure("stop the timer", e)
            return None
        if generation != self._generation:
            return None
        self.handle_stopped(stopped)
        return stopped

    async def restart_from(self, entry: TimeEntryResponse) -> Optional[TimeEntryResponse]:
        """Start a new timer with the same project, task and description."""
        return await self.start_timer(
            project_id=entry.projectId,
            task_id=entry.taskId,
            description=entry.description,
        )

    def record_activity(self) -> None:
        self.idle_guard.record_activity()

    # ---- foreground / background ----

    def enter_background(self) -> None:
        self._background_at = self._clock()
        self.idle_guard.set_foreground(False)

    async def enter_foreground(self) -> None:
        now = self._clock()
        away = (now - self._background_at).total_seconds() if self._background_at else 0.0
        self._background_at = None
        self.idle_guard.set_foreground(True)

        if self.current_entry is not None and away >= self.idle_guard.timeout_seconds:
            await self._idle_stop(away)
            return
        self.rederive_elapsed(now)
        await self.resync()

    async def _idle_stop(self, idle_seconds: float) -> None:
        entry = self.current_entry
        if entry is None:
            return
        generation = self._generation
        try:
            stopped = await self.api.stop_entry(entry.id)
        except ConflictError:
            await self.resync()
            return
        except TimeTrackError as e:
            # No retry; the next pull or push settles the state.
            logger.warning("Idle stop of %s failed: %s", entry.id, e.message)
            if isinstance(e, TransientIOError):
                self.poller.start()
            return
        if generation != self._generation:
            return
        self.handle_stopped(stopped)
        self._notify(idle_stopped_notice(idle_seconds, entry.id))

    # ---- connection state ----

    async def _on_connection_state(self, state: ConnectionState, reason: Optional[str]) -> None:
        if state == ConnectionState.CONNECTED:
            self.poller.stop()
            if self._in_outage:
                self._in_outage = False
                # Events sent while offline are not replayed.
                await self.resync()
        elif state == ConnectionState.RECONNECTING:
            self._begin_outage()
        elif state == ConnectionState.FAILED:
            if reason in _AUTH_FAILURE_REASONS:
                self._session_expired(reason)
            else:
                self._begin_outage()

    def _begin_outage(self) -> None:
        if not self._in_outage:
            self._in_outage = True
            self._notify(transport_unavailable_notice())
        if not self.poller.is_polling:
            self.poller.start()

    async def _on_poll_error(self, error: TimeTrackError) -> None:
        if isinstance(error, AuthError):
            self._session_expired(error.reason)

    # ---- local clock ----

    def rederive_elapsed(self, now: Optional[datetime] = None) -> None:
        if self.current_entry is not None:
            self.elapsed_seconds = self._derive_elapsed(self.current_entry, now)

    def _derive_elapsed(self, entry: TimeEntryResponse, now: Optional[datetime] = None) -> int:
        start = entry.startTime
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return max(0, math.floor(((now or self._clock()) - start).total_seconds()))

    def _ensure_tick(self) -> None:
        if self._tick_task is not None and not self._tick_task.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._tick_task = asyncio.create_task(self._tick_loop(self._generation))

    def _cancel_tick(self) -> None:
        task, self._tick_task = self._tick_task, None
        if task is not None:
            task.cancel()

    async def _tick_loop(self, generation: int) -> None:
        while True:
            await self._sleep(self.settings.TICK_SECONDS)
            if generation != self._generation or self.current_entry is None:
                return
            self.elapsed_seconds += 1

    async def _resync_loop(self, generation: int) -> None:
        while generation == self._generation:
            await self._sleep(self.settings.RESYNC_SECONDS)
            if generation != self._generation:
                return
            self.rederive_elapsed()

    # ---- state helpers ----

    def _adopt_running(self, entry: TimeEntryResponse) -> None:
        previous = self.current_entry
        if previous is not None and previous.id != entry.id:
            self._retire(previous)
        self.current_entry = entry
        self.elapsed_seconds = self._derive_elapsed(entry)
        self._upsert_recent(entry)
        self.idle_guard.set_timer_running(True)
        self._ensure_tick()
        self._persist()

    def _clear_running(self, final: Optional[TimeEntryResponse] = None) -> None:
        self.current_entry = None
        self._cancel_tick()
        self.idle_guard.set_timer_running(False)
        self.last_stopped_entry = final
        self.elapsed_seconds = (final.durationSeconds or 0) if final is not None else 0

    def _retire(self, entry: TimeEntryResponse) -> None:
        """A different entry is running, so this one was stopped elsewhere.

        Only one entry runs per user. Until its final row arrives the entry is
        kept as stopped with no duration.
        """
        logger.info("Entry %s superseded while believed running; fetching final state", entry.id)
        self._stopped_ids.add(entry.id)
        self._recent[entry.id] = entry.model_copy(update={"isRunning": False})
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        task = asyncio.create_task(self._fetch_final(entry.id, self._generation))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    async def _fetch_final(self, entry_id: str, generation: int) -> None:
        try:
            final = await self.api.get_entry(entry_id)
        except NotFoundError:
            final = None
        except TimeTrackError as e:
            logger.warning("Could not fetch final state of %s: %s", entry_id, e.message)
            return
        if generation != self._generation:
            return
        if final is None:
            self._recent.pop(entry_id, None)
        elif not final.isRunning:
            self.handle_stopped(final)
            return
        self._persist()

    def _upsert_recent(self, entry: TimeEntryResponse) -> None:
        self._recent[entry.id] = entry
        self._prune_recent()

    def _prune_recent(self) -> None:
        limit = self.settings.RECENT_ENTRIES_LIMIT
        if len(self._recent) > limit:
            keep = {e.id for e in self.recent_entries}
            if self.current_entry is not None:
                keep.add(self.current_entry.id)
            self._recent = {k: v for k, v in self._recent.items() if k in keep}
        # Stopped ids only guard entries still on screen.
        self._stopped_ids &= set(self._recent)

    def _load_cache(self) -> None:
        if self.cache is None:
            return
        state = self.cache.load()
        self.projects = {p.id: p for p in state.projects}
        self._recent = {e.id: e for e in state.recentEntries}
        if state.currentEntry is not None and state.currentEntry.isRunning:
            self._adopt_running(state.currentEntry)

    def _persist(self) -> None:
        if self.cache is None:
            return
        try:
            self.cache.save(
                CachedState(
                    currentEntry=self.current_entry,
                    projects=list(self.projects.values()),
                    recentEntries=self.recent_entries,
                    earnings=self.earnings,
                    savedAt=self._clock(),
                )
            )
        except OSError as e:
            logger.warning("Could not write state cache: %s", e)


def create_agent(credentials, settings: Optional[ClientSettings] = None, use_cache: bool = True) -> ClientSyncAgent:
    """Wire an agent against the configured server with the default transports."""
    settings = settings or ClientSettings()
    api = TimeTrackApiClient(settings.API_URL, credentials, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    connection = RealtimeConnection(
        settings.ws_url,
        credentials.get_token,
        max_attempts=settings.RECONNECT_MAX_ATTEMPTS,
        base_delay=settings.RECONNECT_BASE_DELAY_SECONDS,
        max_delay=settings.RECONNECT_MAX_DELAY_SECONDS,
        confirm_timeout=settings.REALTIME_CONFIRM_SECONDS,
    )
    cache = None
    if use_cache:
        cache = StateCache(f"{settings.CACHE_DIR.rstrip('/')}/state.json")
    return ClientSyncAgent(api, connection, settings=settings, cache=cache, close_api=True)
