"""Content-addressed objects and the stores that hold them.

Every object is stored as ``b"<kind> <size>\\0" + body`` and named by the hex
digest of those bytes, so identical content always gets the same id. Stores
are append-only: there is no way to delete or overwrite an object.
"""
import hashlib
import logging
import os
import string
import tempfile
from enum import Enum
from typing import Iterable, Iterator, NamedTuple, TypeAlias

from .errors import CorruptObjectError, InvalidPathError, InvalidReferenceError, NotFoundError, WriteError

logger = logging.getLogger(__name__)

ObjectId: TypeAlias = str

# hex digest length per supported hash algorithm
HASH_ALGORITHMS = {'sha1': 40, 'sha256': 64}
OBJECT_KINDS = ('blob', 'tree', 'commit')


class FileMode(str, Enum):
    FILE = 'blob'
    EXECUTABLE = 'exec'
    DIRECTORY = 'tree'


def validate_name(name: str) -> str:
    if not name or name in ('.', '..'):
        raise InvalidPathError(f"invalid path segment: {name!r}")
    if any(c in name for c in '/\n\0'):
        raise InvalidPathError(f"invalid character in path segment: {name!r}")
    return name


def algorithm_for(oid: str) -> str:
    """Return the hash algorithm that produces ids shaped like ``oid``."""
    if isinstance(oid, str) and all(c in string.hexdigits for c in oid):
        for algorithm, length in HASH_ALGORITHMS.items():
            if len(oid) == length:
                return algorithm
    raise InvalidReferenceError(f"not an object id: {oid!r}")


def hash_object(body: bytes, kind: str, algorithm: str = 'sha1') -> tuple[ObjectId, bytes]:
    header = f"{kind} {len(body)}\0".encode()
    full_data = header + body
    return hashlib.new(algorithm, full_data).hexdigest(), full_data


class Blob(NamedTuple):
    data: bytes

    kind = 'blob'

    def encode(self) -> bytes:
        return self.data

    def references(self) -> tuple[ObjectId, ...]:
        return ()

    @classmethod
    def decode(cls, body: bytes) -> 'Blob':
        return cls(bytes(body))


class TreeEntry(NamedTuple):
    name: str
    mode: FileMode
    target: ObjectId

    @property
    def is_dir(self) -> bool:
        return self.mode is FileMode.DIRECTORY

    @property
    def sort_key(self) -> str:
        # directories sort as "name/" so walks come out in full-path order
        return self.name + '/' if self.is_dir else self.name


class Tree(NamedTuple):
    """One directory snapshot: entries sorted by name, unique by name."""

    entries: tuple[TreeEntry, ...] = ()

    kind = 'tree'

    @classmethod
    def from_entries(cls, entries: Iterable[TreeEntry]) -> 'Tree':
        by_name = {}
        for entry in entries:
            validate_name(entry.name)
            if entry.name in by_name:
                raise InvalidPathError(f"duplicate tree entry: {entry.name!r}")
            by_name[entry.name] = TreeEntry(entry.name, FileMode(entry.mode), entry.target)
        return cls(tuple(by_name[name] for name in sorted(by_name)))

    def get(self, name: str) -> TreeEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def with_entry(self, entry: TreeEntry) -> 'Tree':
        others = [e for e in self.entries if e.name != entry.name]
        return Tree.from_entries(others + [entry])

    def encode(self) -> bytes:
        return "\n".join(
            f"{e.mode.value} {e.target} {e.name}" for e in self.entries
        ).encode()

    def references(self) -> tuple[ObjectId, ...]:
        return tuple(e.target for e in self.entries)

    @classmethod
    def decode(cls, body: bytes) -> 'Tree':
        entries = []
        try:
            for line in body.decode().split('\n'):
                if not line:
                    continue
                mode, sha, name = line.split(' ', 2)
                algorithm_for(sha)
                entries.append(TreeEntry(name, FileMode(mode), sha))
            return cls.from_entries(entries)
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptObjectError(f"malformed tree: {exc}") from exc


class Commit(NamedTuple):
    tree: ObjectId
    parents: tuple[ObjectId, ...]
    author: str
    timestamp: int
    message: str

    kind = 'commit'

    @property
    def first_parent(self) -> ObjectId | None:
        return self.parents[0] if self.parents else None

    def encode(self) -> bytes:
        commit_content = f"tree {self.tree}\n"
        for parent in self.parents:
            commit_content += f"parent {parent}\n"
        commit_content += f"author {self.author} {self.timestamp}\n\n{self.message}"
        return commit_content.encode()

    def references(self) -> tuple[ObjectId, ...]:
        return (self.tree,) + tuple(self.parents)

    @classmethod
    def decode(cls, body: bytes) -> 'Commit':
        try:
            header, message = body.decode().split("\n\n", 1)
            tree, parents, author, timestamp = None, [], None, None
            for line in header.splitlines():
                if line.startswith("tree "):
                    tree = line.split(" ", 1)[1]
                elif line.startswith("parent "):
                    parents.append(line.split(" ", 1)[1])
                elif line.startswith("author "):
                    author, _, stamp = line[7:].rpartition(" ")
                    timestamp = int(stamp)
            if tree is None or author is None:
                raise ValueError("missing tree or author header")
            for oid in [tree] + parents:
                algorithm_for(oid)
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptObjectError(f"malformed commit: {exc}") from exc
        return cls(tree, tuple(parents), author, timestamp, message)


Object: TypeAlias = Blob | Tree | Commit
_DECODERS = {'blob': Blob.decode, 'tree': Tree.decode, 'commit': Commit.decode}


def decode_object(kind: str, body: bytes) -> Object:
    if kind not in _DECODERS:
        raise CorruptObjectError(f"unknown object kind: {kind!r}")
    return _DECODERS[kind](body)


def parse_raw(raw: bytes) -> tuple[str, bytes]:
    """Split stored bytes into ``(kind, body)``, checking the header."""
    null_index = raw.find(b'\0')
    if null_index < 0:
        raise CorruptObjectError("object header is not terminated")
    try:
        kind, size = raw[:null_index].decode().split(' ')
        size = int(size)
    except ValueError as exc:
        raise CorruptObjectError(f"malformed object header: {exc}") from exc
    body = raw[null_index + 1:]
    if kind not in OBJECT_KINDS or size != len(body):
        raise CorruptObjectError(f"bad object header: {kind} {size}")
    return kind, body


def pack_object(store: 'BaseObjectStore', oid: ObjectId) -> dict:
    """JSON-friendly form of one stored object, as sent over the wire."""
    kind, body = store.get_raw(oid)
    _, full_data = hash_object(body, kind, store.algorithm)
    return {"sha1": oid, "type": kind, "data": full_data.hex()}


def unpack_object(store: 'BaseObjectStore', item: dict) -> ObjectId:
    """Store one wire object, checking that its id matches its content."""
    try:
        kind, body = parse_raw(bytes.fromhex(item["data"]))
        expected = item["sha1"].lower()
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise CorruptObjectError(f"malformed object payload: {exc}") from exc
    if item.get("type", kind) != kind:
        raise CorruptObjectError(f"{expected}: declared {item.get('type')}, got {kind}")
    oid, _ = hash_object(body, kind, store.algorithm)
    if oid != expected:
        raise CorruptObjectError(f"object {expected} hashes to {oid}")
    decode_object(kind, body)
    return store.put_raw(kind, body)


def find_dangling(store: 'BaseObjectStore', oids: Iterable[ObjectId]) -> list[ObjectId]:
    """Ids referenced by the given objects that ``store`` lacks."""
    missing = []
    for oid in oids:
        for target in store.get(oid).references():
            if target not in store and target not in missing:
                missing.append(target)
    return missing


class BaseObjectStore:
    """Append-only content-addressed storage.

    Subclasses provide ``_read``, ``_write``, ``_contains`` and ``__iter__``
    over raw (header + body) bytes; everything else is shared.
    """

    def __init__(self, algorithm: str = 'sha1'):
        if algorithm not in HASH_ALGORITHMS:
            raise ValueError(f"unsupported hash algorithm: {algorithm}")
        self.algorithm = algorithm

    def _read(self, oid: ObjectId) -> bytes:
        raise NotImplementedError

    def _write(self, oid: ObjectId, raw: bytes) -> None:
        raise NotImplementedError

    def _contains(self, oid: ObjectId) -> bool:
        raise NotImplementedError

    def __iter__(self) -> Iterator[ObjectId]:
        raise NotImplementedError

    def check_id(self, oid: ObjectId) -> ObjectId:
        if algorithm_for(oid) != self.algorithm:
            raise InvalidReferenceError(f"{oid} is not a {self.algorithm} id")
        return oid.lower()

    def __contains__(self, oid: object) -> bool:
        try:
            oid = self.check_id(oid)
        except InvalidReferenceError:
            return False
        return self._contains(oid)

    def put(self, obj: Object) -> ObjectId:
        """Store ``obj`` and return its id; storing it again is a no-op."""
        missing = [oid for oid in obj.references() if oid not in self]
        if missing:
            raise CorruptObjectError(f"{obj.kind} references missing objects: {', '.join(missing)}")
        return self.put_raw(obj.kind, obj.encode())

    def put_raw(self, kind: str, body: bytes) -> ObjectId:
        if kind not in OBJECT_KINDS:
            raise CorruptObjectError(f"unknown object kind: {kind!r}")
        oid, full_data = hash_object(body, kind, self.algorithm)
        if not self._contains(oid):
            self._write(oid, full_data)
            logger.debug("stored %s %s", kind, oid)
        return oid

    def get_raw(self, oid: ObjectId) -> tuple[str, bytes]:
        oid = self.check_id(oid)
        if not self._contains(oid):
            raise NotFoundError(f"object {oid} not found")
        return parse_raw(self._read(oid))

    def get(self, oid: ObjectId, expected: str | None = None) -> Object:
        kind, body = self.get_raw(oid)
        if expected is not None and kind != expected:
            raise CorruptObjectError(f"{oid}: expected {expected}, got {kind}")
        return decode_object(kind, body)

    def get_blob(self, oid: ObjectId) -> Blob:
        return self.get(oid, expected='blob')

    def get_tree(self, oid: ObjectId) -> Tree:
        return self.get(oid, expected='tree')

    def get_commit(self, oid: ObjectId) -> Commit:
        return self.get(oid, expected='commit')

    def iter_prefix(self, prefix: str) -> Iterator[ObjectId]:
        prefix = prefix.lower()
        for oid in self:
            if oid.startswith(prefix):
                yield oid


class MemoryObjectStore(BaseObjectStore):

    def __init__(self, algorithm: str = 'sha1'):
        super().__init__(algorithm)
        self._objects = {}

    def _read(self, oid):
        return self._objects[oid]

    def _write(self, oid, raw):
        self._objects[oid] = raw

    def _contains(self, oid):
        return oid in self._objects

    def __iter__(self):
        return iter(list(self._objects))


class DiskObjectStore(BaseObjectStore):
    """Loose objects under ``<path>/<id[:2]>/<id[2:]>``."""

    def __init__(self, path: str, algorithm: str = 'sha1'):
        super().__init__(algorithm)
        self.path = path

    def _object_path(self, oid):
        return os.path.join(self.path, oid[:2], oid[2:])

    def _read(self, oid):
        try:
            with open(self._object_path(oid), 'rb') as f:
                return f.read()
        except FileNotFoundError as exc:
            raise NotFoundError(f"object {oid} not found") from exc

    def _write(self, oid, raw):
        path_dir = os.path.join(self.path, oid[:2])
        try:
            os.makedirs(path_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path_dir, prefix='.tmp-')
            with os.fdopen(fd, 'wb') as f:
                f.write(raw)
            os.replace(tmp_path, self._object_path(oid))
        except OSError as exc:
            raise WriteError(f"could not write object {oid}: {exc}") from exc

    def _contains(self, oid):
        return os.path.isfile(self._object_path(oid))

    def __iter__(self):
        if not os.path.isdir(self.path):
            return
        for dir_prefix in sorted(os.listdir(self.path)):
            dir_path = os.path.join(self.path, dir_prefix)
            if not os.path.isdir(dir_path):
                continue
            for file_name in sorted(os.listdir(dir_path)):
                if not file_name.startswith('.tmp-'):
                    yield dir_prefix + file_name

    def iter_prefix(self, prefix):
        prefix = prefix.lower()
        if len(prefix) < 2:
            yield from super().iter_prefix(prefix)
            return
        dir_path = os.path.join(self.path, prefix[:2])
        if not os.path.isdir(dir_path):
            return
        for file_name in sorted(os.listdir(dir_path)):
            if file_name.startswith(prefix[2:]) and not file_name.startswith('.tmp-'):
                yield prefix[:2] + file_name
