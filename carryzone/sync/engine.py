"""
Sync engine for carryzone.

Drives convergence between the local pin store and the remote data source:

- Upload: drain the operation queue oldest first, retrying failed entries
  on later passes up to a ceiling before discarding them
- Download: fetch every remote pin and merge it with last-write-wins
  (remote replaces local only when strictly newer)
- Real-time: merge change-feed events with the same rule

At most one pass runs at a time; a trigger arriving during a pass waits
for and returns that pass's result. Public operations never raise: failures
are reported through SyncResult and the status stream.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional

from carryzone.errors import (
    DeviceOfflineError,
    DownloadFailedError,
    LocalStoreError,
    RemoteNotFoundError,
    SyncError,
)
from carryzone.network import ConnectivityMonitor
from carryzone.observable import StateChannel, Subscription
from carryzone.remote.base import RemotePinDataSource
from carryzone.storage.sqlite import SQLitePinStore
from carryzone.storage.sync_queue import SyncQueue
from carryzone.types import (
    ChangeType,
    Pin,
    PinChangeEvent,
    QueuedOperation,
    SyncOperation,
    SyncResult,
    SyncStatus,
    now_ms,
)

logger = logging.getLogger(__name__)

# Attempts before a failing queue entry is discarded
MAX_RETRIES = 3


class SyncEngine:
    """Keeps the local pin store and the remote data source converged."""

    def __init__(
        self,
        store: SQLitePinStore,
        queue: SyncQueue,
        remote: RemotePinDataSource,
        connectivity: ConnectivityMonitor,
        max_retries: int = MAX_RETRIES,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._queue = queue
        self._remote = remote
        self._connectivity = connectivity
        self.max_retries = max_retries
        self._clock = clock

        self._status: StateChannel[SyncStatus] = StateChannel(SyncStatus.idle(), name="sync_status")
        self._pass_lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self._inflight_thread: Optional[int] = None
        self._last_sync_time: Optional[int] = None

    # === Queueing ===

    def enqueue_create(self, pin: Pin) -> None:
        self._queue.enqueue_create(pin)

    def enqueue_update(self, pin: Pin) -> None:
        self._queue.enqueue_update(pin)

    def enqueue_delete(self, pin_id: str) -> None:
        self._queue.enqueue_delete(pin_id)

    def get_pending_operation_count(self) -> int:
        return self._queue.count()

    def get_failed_operations(self, threshold: int = 1) -> List[QueuedOperation]:
        """Queued entries that have failed at least ``threshold`` times."""
        return self._queue.get_failed_operations(threshold)

    def clear_queue(self) -> int:
        count = self._queue.clear()
        logger.info(f"Cleared {count} queued operation(s)")
        return count

    # === Status ===

    @property
    def status(self) -> SyncStatus:
        return self._status.value

    def observe_status(self, callback: Callable[[SyncStatus], None]) -> Subscription:
        """Subscribe to status changes (current status delivered first)."""
        return self._status.subscribe(callback)

    @property
    def last_sync_time(self) -> Optional[int]:
        """Epoch ms at which the last successful pass finished, if any."""
        return self._last_sync_time

    # === Sync pass ===

    def trigger_sync(self) -> SyncResult:
        """Run one sync pass, or join the one already in flight."""
        with self._pass_lock:
            inflight = self._inflight
            if inflight is None:
                future: Future = Future()
                self._inflight = future
                self._inflight_thread = threading.get_ident()
            elif self._inflight_thread == threading.get_ident():
                # Called back from inside the running pass (e.g. a status observer)
                logger.warning("trigger_sync called from within a running pass, ignoring")
                return SyncResult(error=SyncError("Sync pass already in progress"))

        if inflight is not None:
            logger.debug("Sync pass already running, waiting for its result")
            return inflight.result()

        try:
            result = self._run_pass()
            future.set_result(result)
            return result
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._pass_lock:
                self._inflight = None
                self._inflight_thread = None

    def _is_online(self) -> bool:
        try:
            return self._connectivity.is_online()
        except Exception as e:
            logger.warning(f"Connectivity check raised, treating device as offline: {e}")
            return False

    def _run_pass(self) -> SyncResult:
        if not self._is_online():
            logger.info("Offline - sync skipped, changes queued")
            error = DeviceOfflineError()
            self._status.publish(SyncStatus.error(str(error), retryable=error.retryable))
            return SyncResult(error=error)

        result = SyncResult()
        try:
            pending = self._queue.list_pending()
            self._status.publish(SyncStatus.syncing(len(pending)))
            logger.info(f"Sync started: {len(pending)} pending operation(s)")

            self._upload(pending, result)

            try:
                remote_pins = self._remote.get_all()
            except Exception as e:
                logger.error(f"Failed to fetch remote pins: {e}", exc_info=True)
                result.error = DownloadFailedError(str(e), cause=e)
                self._status.publish(SyncStatus.error(str(e), retryable=True))
                return result

            self._download(remote_pins, result)
        except LocalStoreError as e:
            logger.error(f"Local store failure during sync: {e}", exc_info=True)
            result.error = e
            self._status.publish(SyncStatus.error(str(e), retryable=False))
            return result
        except Exception as e:
            logger.error(f"Unexpected sync failure: {e}", exc_info=True)
            result.error = SyncError(str(e), cause=e)
            self._status.publish(SyncStatus.error(str(e), retryable=True))
            return result

        if result.upload_failure:
            logger.warning(f"Sync finished with {result.upload_failure}")
        self._last_sync_time = self._clock()
        logger.info(
            f"Sync complete: uploaded={result.uploaded}, downloaded={result.downloaded}, "
            f"discarded={result.discarded}, still_queued={result.still_queued}"
        )
        self._status.publish(SyncStatus.success(result.uploaded, result.downloaded))
        return result

    # === Upload ===

    def _upload(self, pending: List[QueuedOperation], result: SyncResult) -> None:
        for entry in pending:
            try:
                pushed = self._push_entry(entry)
            except LocalStoreError:
                raise
            except Exception as e:
                self._record_failure(entry, e, result)
                continue

            self._queue.remove(entry.id)
            if pushed:
                result.uploaded += 1
            else:
                result.discarded += 1

    def _push_entry(self, entry: QueuedOperation) -> bool:
        """Send one entry to the remote. Returns False if the entry is obsolete."""
        if entry.operation == SyncOperation.DELETE:
            self._remote.delete(entry.pin_id)
            logger.debug(f"Deleted pin {entry.pin_id} on remote")
            return True

        pin = self._store.get_by_id(entry.pin_id)
        if pin is None:
            logger.debug(
                f"Pin {entry.pin_id} no longer exists locally, dropping {entry.operation.value}"
            )
            return False

        if entry.operation == SyncOperation.CREATE:
            self._remote.insert(pin)
        else:
            try:
                self._remote.update(pin)
            except RemoteNotFoundError:
                logger.debug(f"Pin {pin.id} missing on remote, inserting instead")
                self._remote.insert(pin)
        logger.debug(f"Uploaded {entry.operation.value} for pin {pin.id}")
        return True

    def _record_failure(self, entry: QueuedOperation, error: Exception, result: SyncResult) -> None:
        entry.retry_count += 1
        entry.last_error = str(error)
        description = f"{entry.operation.value} {entry.pin_id}"

        if entry.retry_count >= self.max_retries:
            logger.warning(
                f"Discarding {description} after {entry.retry_count} failed attempts: {error}"
            )
            self._queue.remove(entry.id)
            result.discarded += 1
            result.errors.append(f"Discarded {description}: {error}")
        else:
            logger.error(
                f"Error uploading {description}: {error} "
                f"(retry {entry.retry_count}/{self.max_retries})",
                exc_info=True,
            )
            self._queue.update_retry(entry)
            result.still_queued += 1
            result.errors.append(
                f"Failed {description} (retry {entry.retry_count}/{self.max_retries}): {error}"
            )

    # === Download ===

    def _download(self, remote_pins: List[Pin], result: SyncResult) -> None:
        logger.debug(f"Merging {len(remote_pins)} remote pin(s)")
        for remote_pin in remote_pins:
            try:
                if self._merge(remote_pin):
                    result.downloaded += 1
            except Exception as e:
                logger.error(f"Failed to merge remote pin {remote_pin.id}: {e}", exc_info=True)
                result.errors.append(f"Failed to merge {remote_pin.id}: {e}")

    def _merge(self, remote_pin: Pin) -> bool:
        """Apply a remote pin locally with last-write-wins. Returns True if written."""
        local = self._store.get_by_id(remote_pin.id)
        if local is None:
            self._store.insert(remote_pin)
            logger.debug(f"Inserted new pin from remote: {remote_pin.id}")
            return True
        if remote_pin.last_modified > local.last_modified:
            if not self._store.update(remote_pin):
                logger.debug(f"Pin {remote_pin.id} deleted locally during merge, skipped")
                return False
            logger.debug(f"Updated pin from remote (newer): {remote_pin.id}")
            return True
        return False

    # === Real-time ===

    def start_realtime_subscription(
        self, listener: Optional[Callable[[str], None]] = None
    ) -> Subscription:
        """Merge remote change events into the local store as they arrive.

        ``listener`` receives a short description of each handled event.
        Backends without a push transport deliver nothing; cancel the
        returned subscription to stop.
        """

        def notify(message: str) -> None:
            if listener is not None:
                try:
                    listener(message)
                except Exception as e:
                    logger.error(f"Realtime listener raised: {e}", exc_info=True)

        def on_change(event: PinChangeEvent) -> None:
            try:
                notify(self.apply_change(event))
            except Exception as e:
                logger.error(f"Failed to apply remote change for {event.pin_id}: {e}", exc_info=True)
                notify(f"Error applying change for pin {event.pin_id}: {e}")

        subscription = self._remote.subscribe_to_changes(on_change)
        logger.info("Realtime subscription started")
        notify("Realtime subscription started")
        return subscription

    def apply_change(self, event: PinChangeEvent) -> str:
        """Merge one change event into the local store and describe it."""
        if event.change == ChangeType.DELETE:
            if self._store.delete_by_id(event.pin_id):
                logger.debug(f"Deleted pin from real-time: {event.pin_id}")
            return f"Deleted pin {event.pin_id}"

        # Inserts for pins we already have are merged like updates
        self._merge(event.pin)
        if event.change == ChangeType.INSERT:
            return f"Inserted pin {event.pin_id}"
        return f"Updated pin {event.pin_id}"
