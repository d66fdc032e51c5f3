"""State snapshot persistence."""
from .snapshot import STATE_VERSION, ResourceState, StateSnapshot, migrate_document
from .store import StateStore

__all__ = [
    "STATE_VERSION",
    "ResourceState",
    "StateSnapshot",
    "StateStore",
    "migrate_document",
]
