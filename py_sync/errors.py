class SyncError(Exception):
    """Base class for every error raised by py_sync."""


class NotFoundError(SyncError, LookupError):
    """An object id, reference or path does not resolve."""


class CorruptObjectError(SyncError):
    """Stored bytes do not decode as the expected object kind."""


class InvalidReferenceError(SyncError, ValueError):
    """A reference name or hash is malformed, ambiguous or unresolvable."""


class InvalidPathError(SyncError, ValueError):
    """A tracked path cannot be represented in a tree."""


class WriteError(SyncError):
    """Writing working-tree content or an object failed."""


class TransportError(SyncError):
    """The remote could not be reached or refused the credentials."""
