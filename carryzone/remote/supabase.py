"""Supabase-backed remote data source.

Pins are stored in the ``pins`` table. Rows use snake_case columns, ISO 8601
timestamps and integer status codes (see mapper.py).
"""

import logging
from typing import Any, Callable, List, Optional

from supabase import Client, ClientOptions, create_client

from carryzone.config import Settings
from carryzone.errors import RemoteError, RemoteNotFoundError
from carryzone.observable import Subscription
from carryzone.types import Pin, PinChangeEvent

from .base import RemotePinDataSource
from .mapper import pin_to_row, row_to_pin, rows_to_pins

logger = logging.getLogger(__name__)

PINS_TABLE = "pins"


class SupabasePinDataSource(RemotePinDataSource):
    """Remote pins over a supabase-py client.

    Every client exception is re-raised as RemoteError. Timeouts come from
    the client's transport options.
    """

    def __init__(self, client: Client, table: str = PINS_TABLE):
        self._client = client
        self._table = table

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabasePinDataSource":
        if not settings.has_remote_backend:
            raise ValueError("CARRYZONE_SUPABASE_URL and CARRYZONE_SUPABASE_KEY must be set")
        options = ClientOptions(postgrest_client_timeout=settings.remote_timeout)
        client = create_client(settings.supabase_url, settings.supabase_key, options=options)
        return cls(client)

    def _query(self):
        return self._client.table(self._table)

    def _execute(self, description: str, build: Callable[[], Any]) -> List[dict]:
        try:
            result = build().execute()
        except RemoteError:
            raise
        except Exception as e:
            logger.error(f"Supabase {description} failed: {e}", exc_info=True)
            raise RemoteError(f"{description} failed: {e}") from e
        return result.data or []

    # === RemotePinDataSource ===

    def get_all(self) -> List[Pin]:
        rows = self._execute("get_all", lambda: self._query().select("*"))
        return rows_to_pins(rows)

    def get_by_id(self, pin_id: str) -> Optional[Pin]:
        rows = self._execute(
            f"get_by_id {pin_id}", lambda: self._query().select("*").eq("id", pin_id)
        )
        pins = rows_to_pins(rows)
        return pins[0] if pins else None

    def insert(self, pin: Pin) -> Pin:
        rows = self._execute(f"insert {pin.id}", lambda: self._query().insert(pin_to_row(pin)))
        pins = rows_to_pins(rows)
        return pins[0] if pins else pin

    def update(self, pin: Pin) -> Pin:
        rows = self._execute(
            f"update {pin.id}",
            lambda: self._query().update(pin_to_row(pin)).eq("id", pin.id),
        )
        if not rows:
            raise RemoteNotFoundError(pin.id)
        return row_to_pin(rows[0])

    def delete(self, pin_id: str) -> None:
        self._execute(f"delete {pin_id}", lambda: self._query().delete().eq("id", pin_id))

    def get_in_bounding_box(
        self, min_lat: float, max_lat: float, min_lng: float, max_lng: float
    ) -> List[Pin]:
        rows = self._execute(
            "get_in_bounding_box",
            lambda: self._query()
            .select("*")
            .gte("latitude", min_lat)
            .lte("latitude", max_lat)
            .gte("longitude", min_lng)
            .lte("longitude", max_lng),
        )
        return rows_to_pins(rows)

    def subscribe_to_changes(self, callback: Callable[[PinChangeEvent], None]) -> Subscription:
        # The synchronous client has no realtime channel; changes arrive via sync passes
        logger.info("Realtime changes not available for Supabase backend, relying on sync")
        return Subscription.inert()
