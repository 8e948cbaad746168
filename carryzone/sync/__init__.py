"""Synchronization between the local pin store and the remote backend."""

from .engine import MAX_RETRIES, SyncEngine

__all__ = ["MAX_RETRIES", "SyncEngine"]
