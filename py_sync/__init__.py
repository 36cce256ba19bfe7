from .diff import ChangeType, DiffEntry, diff_trees
from .errors import (
    CorruptObjectError,
    InvalidPathError,
    InvalidReferenceError,
    NotFoundError,
    SyncError,
    TransportError,
    WriteError,
)
from .history import HistoryGraph
from .objects import Blob, Commit, DiskObjectStore, FileMode, MemoryObjectStore, Tree, TreeEntry
from .repository import Repository
from .sync import SyncController, SyncState
from .transport import Accepted, Credentials, HttpTransport, LocalTransport, Rejected, RejectReason, TransportFailure

__version__ = '0.1.0'
