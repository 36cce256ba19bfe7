"""The commit graph, read lazily out of an object store."""
import re
import string
from collections import deque
from itertools import islice
from typing import Iterable, Iterator

from .errors import InvalidReferenceError
from .objects import BaseObjectStore, Commit, ObjectId
from .refs import HEAD, RefStore

MIN_PREFIX = 4
_SUFFIX = re.compile(r'(\^|~\d*)$')


class HistoryGraph:

    def __init__(self, store: BaseObjectStore, refs: RefStore | None = None):
        self.store = store
        self.refs = refs

    def commit(self, oid: ObjectId) -> Commit:
        return self.store.get_commit(oid)

    def resolve(self, name: str) -> ObjectId:
        """Turn a ref name, abbreviated hash or ``rev~N``/``rev^`` into an id."""
        if not name:
            raise InvalidReferenceError("empty revision")
        steps = 0
        while True:
            match = _SUFFIX.search(name)
            if not match or match.start() == 0:
                break
            suffix = match.group(1)
            steps += 1 if suffix in ('^', '~') else int(suffix[1:])
            name = name[:match.start()]

        oid = self._resolve_name(name)
        for _ in range(steps):
            parent = self.commit(oid).first_parent
            if parent is None:
                raise InvalidReferenceError(f"{oid} has no parent")
            oid = parent
        return oid

    def _resolve_name(self, name):
        if name == '@':
            name = HEAD
        if self.refs is not None:
            refs_to_try = [
                name,
                f'refs/{name}',
                f'refs/heads/{name}',
                f'refs/remotes/{name}',
                f'refs/tags/{name}',
            ]
            for ref in refs_to_try:
                try:
                    oid = self.refs.read(ref)
                except InvalidReferenceError:
                    continue
                if oid:
                    return oid
            if name == HEAD:
                raise InvalidReferenceError("HEAD does not point to a commit yet")

        if len(name) >= MIN_PREFIX and all(c in string.hexdigits for c in name):
            matches = list(islice(self.store.iter_prefix(name), 2))
            if len(matches) == 1:
                return matches[0]
            if matches:
                raise InvalidReferenceError(f"ambiguous object id prefix: {name}")
        raise InvalidReferenceError(f"{name} is not a valid reference or object id")

    def ancestors_of(self, oid: ObjectId) -> Iterator[tuple[ObjectId, Commit]]:
        """Yield ``(id, commit)`` from ``oid`` back along first parents."""
        seen = set()
        while oid and oid not in seen:
            seen.add(oid)
            commit = self.commit(oid)
            yield oid, commit
            oid = commit.first_parent

    def iter_commits(self, oids: Iterable[ObjectId], stop: Iterable[ObjectId] = ()) -> Iterator[ObjectId]:
        """Every commit reachable from ``oids``, first parents first."""
        pending = deque(oids)
        visited = set(stop)
        while pending:
            oid = pending.popleft()
            if not oid or oid in visited:
                continue
            visited.add(oid)
            yield oid
            commit = self.commit(oid)
            # first parent next, the others after
            pending.extendleft(commit.parents[:1])
            pending.extend(commit.parents[1:])

    def is_ancestor(self, ancestor: ObjectId, descendant: ObjectId) -> bool:
        """True when ``ancestor`` is reachable from ``descendant`` (or equal)."""
        for oid in self.iter_commits([descendant]):
            if oid == ancestor:
                return True
        return False

    def iter_objects(self, wants: Iterable[ObjectId], haves: Iterable[ObjectId] = ()) -> Iterator[ObjectId]:
        """Ids of all objects reachable from ``wants`` but not from ``haves``.

        Commits come before the trees and blobs they reference. ``haves``
        the store does not know about are ignored.
        """
        haves = [oid for oid in haves if oid in self.store]
        visited = set()

        def iter_objects_in_tree(oid):
            visited.add(oid)
            yield oid
            for entry in self.store.get_tree(oid).entries:
                if entry.target in visited:
                    continue
                if entry.is_dir:
                    yield from iter_objects_in_tree(entry.target)
                else:
                    visited.add(entry.target)
                    yield entry.target

        known = set(self.iter_commits(haves))
        for oid in known:
            tree = self.commit(oid).tree
            if tree not in visited:
                for _ in iter_objects_in_tree(tree):
                    pass

        for oid in self.iter_commits(wants, stop=known):
            yield oid
            tree = self.commit(oid).tree
            if tree not in visited:
                yield from iter_objects_in_tree(tree)
