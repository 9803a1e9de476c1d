from timetrack.client.api_client import TimeTrackApiClient
from timetrack.client.config import ClientSettings
from timetrack.client.credential_store import CredentialStore, FileCredentialStore, MemoryCredentialStore
from timetrack.client.idle_guard import IdleGuard
from timetrack.client.notices import Notice, NoticeKind
from timetrack.client.polling import PollingFallback
from timetrack.client.socket_client import ConnectionState, RealtimeConnection
from timetrack.client.state_cache import CachedState, StateCache
from timetrack.client.sync_agent import ClientSyncAgent, compute_earnings, create_agent

__all__ = [
    "TimeTrackApiClient",
    "ClientSettings",
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "IdleGuard",
    "Notice",
    "NoticeKind",
    "PollingFallback",
    "ConnectionState",
    "RealtimeConnection",
    "CachedState",
    "StateCache",
    "ClientSyncAgent",
    "compute_earnings",
    "create_agent",
]
