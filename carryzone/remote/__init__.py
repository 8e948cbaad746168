"""Remote pin data sources."""

from .base import RemotePinDataSource
from .memory import InMemoryPinDataSource
from .supabase import SupabasePinDataSource

__all__ = [
    "RemotePinDataSource",
    "InMemoryPinDataSource",
    "SupabasePinDataSource",
]
