"""Path-level differences between two tree snapshots.

Both trees are walked in lock-step one directory level at a time. Entries
are ordered by their sort key (``name`` for files, ``name/`` for
directories), which keeps the output sorted by full path. Sub-trees are
only read from the store when their ids differ, so unchanged directories
cost nothing.
"""
import os
from enum import Enum
from typing import Iterator, NamedTuple

from .errors import InvalidPathError
from .objects import BaseObjectStore, ObjectId, TreeEntry, validate_name


class ChangeType(str, Enum):
    ADD = 'add'
    MODIFY = 'modify'
    DELETE = 'delete'
    RENAME = 'rename'


class DiffEntry(NamedTuple):
    change_type: ChangeType
    old_path: str | None
    new_path: str | None
    old_id: ObjectId | None
    new_id: ObjectId | None

    @property
    def path(self) -> str:
        return self.old_path if self.change_type is ChangeType.DELETE else self.new_path

    def __str__(self):
        if self.change_type is ChangeType.RENAME:
            return f"{self.change_type.value} {self.old_path} -> {self.new_path}"
        return f"{self.change_type.value} {self.path}"


def split_path(path: str) -> list[str]:
    parts = path.replace(os.sep, '/').strip('/').split('/')
    if parts == ['']:
        raise InvalidPathError("empty path")
    for part in parts:
        validate_name(part)
    return parts


def lookup_path(store: BaseObjectStore, tree: ObjectId | None, path: str) -> TreeEntry | None:
    """Find the entry at ``path`` below ``tree``, or None if there is none."""
    *dirs, leaf = split_path(path)
    for part in dirs:
        if tree is None:
            return None
        entry = store.get_tree(tree).get(part)
        if entry is None or not entry.is_dir:
            return None
        tree = entry.target
    if tree is None:
        return None
    return store.get_tree(tree).get(leaf)


def _entries(store, tree):
    if tree is None:
        return []
    return sorted(store.get_tree(tree).entries, key=lambda e: e.sort_key)


def _removed(prefix, entry):
    if entry.is_dir:
        return entry.sort_key, None, (entry.target, None)
    path = prefix + entry.name
    return entry.sort_key, DiffEntry(ChangeType.DELETE, path, None, entry.target, None), None


def _added(prefix, entry):
    if entry.is_dir:
        return entry.sort_key, None, (None, entry.target)
    path = prefix + entry.name
    return entry.sort_key, DiffEntry(ChangeType.ADD, None, path, None, entry.target), None


def _pair_renames(changes):
    deleted = [c for c in changes if c[1] is not None and c[1].change_type is ChangeType.DELETE]
    added = [c for c in changes if c[1] is not None and c[1].change_type is ChangeType.ADD]
    if not deleted or not added:
        return changes
    paired = set()
    renames = []
    for old in deleted:
        for new in added:
            if id(new) in paired or new[1].new_id != old[1].old_id:
                continue
            paired.update((id(old), id(new)))
            entry = DiffEntry(ChangeType.RENAME, old[1].old_path, new[1].new_path, old[1].old_id, new[1].new_id)
            renames.append((new[0], entry, None))
            break
    kept = [c for c in changes if id(c) not in paired]
    return sorted(kept + renames, key=lambda c: c[0])


def _walk(store, prefix, tree_a, tree_b, detect_renames):
    if tree_a == tree_b:
        return
    entries_a = _entries(store, tree_a)
    entries_b = _entries(store, tree_b)
    changes = []
    i = j = 0
    while i < len(entries_a) or j < len(entries_b):
        entry_a = entries_a[i] if i < len(entries_a) else None
        entry_b = entries_b[j] if j < len(entries_b) else None
        if entry_b is None or (entry_a is not None and entry_a.sort_key < entry_b.sort_key):
            changes.append(_removed(prefix, entry_a))
            i += 1
        elif entry_a is None or entry_b.sort_key < entry_a.sort_key:
            changes.append(_added(prefix, entry_b))
            j += 1
        else:
            # same key means same name and both files or both directories
            if entry_a.is_dir:
                if entry_a.target != entry_b.target:
                    changes.append((entry_a.sort_key, None, (entry_a.target, entry_b.target)))
            elif entry_a.target != entry_b.target or entry_a.mode != entry_b.mode:
                path = prefix + entry_a.name
                modified = DiffEntry(ChangeType.MODIFY, path, path, entry_a.target, entry_b.target)
                changes.append((entry_a.sort_key, modified, None))
            i += 1
            j += 1

    if detect_renames:
        changes = _pair_renames(changes)

    for key, entry, subtrees in changes:
        if entry is not None:
            yield entry
        else:
            yield from _walk(store, prefix + key, subtrees[0], subtrees[1], detect_renames)


def iter_changes(store: BaseObjectStore, tree_a: ObjectId | None, tree_b: ObjectId | None,
                 detect_renames: bool = False) -> Iterator[DiffEntry]:
    return _walk(store, '', tree_a, tree_b, detect_renames)


def diff_trees(store: BaseObjectStore, tree_a: ObjectId | None, tree_b: ObjectId | None,
               detect_renames: bool = False) -> list[DiffEntry]:
    """Changes turning ``tree_a`` into ``tree_b``, sorted by path.

    ``None`` stands for the empty tree. With ``detect_renames`` a file
    deleted and a file added with the same content in the same directory are
    reported as one RENAME.
    """
    return list(iter_changes(store, tree_a, tree_b, detect_renames))
