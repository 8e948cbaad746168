"""Remote data source contract for carryzone.

Implementations talk to the shared backend. Every call either returns its
value or raises RemoteError; transport timeouts are the implementation's
responsibility, not the sync engine's.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from carryzone.observable import Subscription
from carryzone.types import Pin, PinChangeEvent


class RemotePinDataSource(ABC):
    """CRUD, bounding-box query and change feed over the shared backend."""

    @abstractmethod
    def get_all(self) -> List[Pin]:
        """Fetch every remote pin."""

    @abstractmethod
    def get_by_id(self, pin_id: str) -> Optional[Pin]:
        """Fetch one pin, or None if the backend does not have it."""

    @abstractmethod
    def insert(self, pin: Pin) -> Pin:
        """Insert a pin. Returns the stored pin (server-assigned fields included)."""

    @abstractmethod
    def update(self, pin: Pin) -> Pin:
        """Update a pin. Raises RemoteNotFoundError if the backend does not have it."""

    @abstractmethod
    def delete(self, pin_id: str) -> None:
        """Delete a pin by id. Deleting an absent pin is not an error."""

    @abstractmethod
    def get_in_bounding_box(
        self, min_lat: float, max_lat: float, min_lng: float, max_lng: float
    ) -> List[Pin]:
        """Fetch pins inside the box (bounds inclusive)."""

    @abstractmethod
    def subscribe_to_changes(self, callback: Callable[[PinChangeEvent], None]) -> Subscription:
        """Deliver remote insert/update/delete events to ``callback``.

        Implementations without a push transport may return an inert
        subscription that never delivers anything.
        """
