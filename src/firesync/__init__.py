"""firesync - keep local models and collections in sync with a realtime store."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("firesync")
except PackageNotFoundError:
    __version__ = "0+local"
from firesync.config import FiresyncConfig
from firesync.exceptions import (
    FiresyncConfigError,
    FiresyncConsistencyError,
    FiresyncError,
    FiresyncIdentifierError,
    FiresyncTransportError,
    FiresyncWriteError,
)
from firesync.local.collection import Collection
from firesync.local.model import Model
from firesync.snapshot import Snapshot
from firesync.store.base import EventKind, RemoteStore
from firesync.store.memory import MemoryStore
from firesync.store.rest import RestStore
from firesync.sync.collection import SyncedCollection
from firesync.sync.diff import SyncPatch, compute_patch
from firesync.sync.record import ContinuousSync, OneShotSync, SyncedModel, SyncMode

__all__ = [
    "__version__",
    "Collection",
    "ContinuousSync",
    "EventKind",
    "FiresyncConfig",
    "FiresyncConfigError",
    "FiresyncConsistencyError",
    "FiresyncError",
    "FiresyncIdentifierError",
    "FiresyncTransportError",
    "FiresyncWriteError",
    "MemoryStore",
    "Model",
    "OneShotSync",
    "RemoteStore",
    "RestStore",
    "Snapshot",
    "SyncMode",
    "SyncPatch",
    "SyncedCollection",
    "SyncedModel",
    "compute_patch",
]
