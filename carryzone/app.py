"""Composition root: wires storage, remote, connectivity and sync from settings."""

import logging
from typing import Optional

from carryzone.config import Settings, get_settings
from carryzone.network import ConnectivityMonitor, HttpConnectivityMonitor
from carryzone.remote.base import RemotePinDataSource
from carryzone.remote.memory import InMemoryPinDataSource
from carryzone.remote.supabase import SupabasePinDataSource
from carryzone.repository import PinRepository
from carryzone.storage import open_local_storage
from carryzone.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class CarryZone:
    """A fully wired carryzone instance.

    Without Supabase credentials the remote is a process-local in-memory
    backend and the device is reported offline, so queued changes stay in
    the local queue until a real backend is configured.
    Collaborators can be passed in explicitly to override the settings.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        remote: Optional[RemotePinDataSource] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
    ):
        self.settings = settings or get_settings()
        self.db_path = self.settings.resolve_db_path()
        self.store, self.queue = open_local_storage(self.db_path)

        local_only = False
        if remote is None:
            if self.settings.has_remote_backend:
                remote = SupabasePinDataSource.from_settings(self.settings)
            else:
                logger.info("No Supabase credentials configured, sync disabled")
                remote = InMemoryPinDataSource()
                local_only = True
        self.remote = remote

        if connectivity is None:
            if local_only:
                connectivity = ConnectivityMonitor(online=False)
            else:
                connectivity = HttpConnectivityMonitor.from_settings(self.settings)
        self.connectivity = connectivity or ConnectivityMonitor(online=True)

        self.engine = SyncEngine(
            self.store,
            self.queue,
            self.remote,
            self.connectivity,
            max_retries=self.settings.max_retries,
        )
        self.pins = PinRepository(
            self.store, self.engine, sync_immediately=self.settings.sync_on_write
        )

    @property
    def backend_name(self) -> str:
        if isinstance(self.remote, SupabasePinDataSource):
            return "supabase"
        if isinstance(self.remote, InMemoryPinDataSource):
            return "memory"
        return type(self.remote).__name__
