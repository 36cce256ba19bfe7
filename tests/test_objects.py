import hashlib
import os

import pytest

from py_sync.errors import CorruptObjectError, InvalidPathError, InvalidReferenceError, NotFoundError, WriteError
from py_sync.objects import (
    Blob,
    Commit,
    DiskObjectStore,
    FileMode,
    MemoryObjectStore,
    Tree,
    TreeEntry,
    algorithm_for,
    hash_object,
    pack_object,
    unpack_object,
)


@pytest.fixture(params=['memory', 'disk'])
def store(request, tmp_path):
    if request.param == 'memory':
        return MemoryObjectStore()
    return DiskObjectStore(str(tmp_path / 'objects'))


def test_hash_matches_header_plus_body():
    oid, raw = hash_object(b'hello', 'blob')
    assert raw == b'blob 5\x00hello'
    assert oid == hashlib.sha1(b'blob 5\x00hello').hexdigest()


def test_identical_content_gets_identical_id(store):
    first = store.put(Blob(b'hello'))
    second = store.put(Blob(b'hello'))
    assert first == second
    assert list(store) == [first]


def test_different_content_gets_different_id(store):
    assert store.put(Blob(b'hello')) != store.put(Blob(b'hello!'))


def test_get_returns_stored_value(store):
    oid = store.put(Blob(b'\x00\xffbinary'))
    assert store.get(oid) == Blob(b'\x00\xffbinary')
    assert store.get_blob(oid).data == b'\x00\xffbinary'


def test_get_missing_object(store):
    with pytest.raises(NotFoundError):
        store.get('0' * 40)


def test_get_malformed_id(store):
    with pytest.raises(InvalidReferenceError):
        store.get('not-a-hash')
    assert 'not-a-hash' not in store


def test_get_with_wrong_kind(store):
    oid = store.put(Blob(b'data'))
    with pytest.raises(CorruptObjectError):
        store.get_tree(oid)


def test_tree_round_trip_keeps_modes(store):
    blob = store.put(Blob(b'#!/bin/sh\n'))
    tree = Tree.from_entries([
        TreeEntry('run.sh', FileMode.EXECUTABLE, blob),
        TreeEntry('a.txt', FileMode.FILE, blob),
    ])
    oid = store.put(tree)
    loaded = store.get_tree(oid)
    assert [e.name for e in loaded.entries] == ['a.txt', 'run.sh']
    assert loaded.get('run.sh').mode is FileMode.EXECUTABLE
    assert loaded.get('missing') is None


def test_tree_rejects_duplicate_and_bad_names():
    with pytest.raises(InvalidPathError):
        Tree.from_entries([TreeEntry('a', FileMode.FILE, '0' * 40)] * 2)
    for name in ('', '.', '..', 'a/b', 'line\nbreak'):
        with pytest.raises(InvalidPathError):
            Tree.from_entries([TreeEntry(name, FileMode.FILE, '0' * 40)])


def test_with_entry_replaces_by_name():
    tree = Tree.from_entries([TreeEntry('a', FileMode.FILE, '1' * 40), TreeEntry('b', FileMode.FILE, '2' * 40)])
    updated = tree.with_entry(TreeEntry('a', FileMode.FILE, '3' * 40))
    assert updated.get('a').target == '3' * 40
    assert updated.get('b') == tree.get('b')
    assert tree.get('a').target == '1' * 40


def test_commit_round_trip(store):
    tree = store.put(Tree())
    root = store.put(Commit(tree, (), 'Ada <ada@example.com>', 100, 'init'))
    merge = Commit(tree, (root, root), 'Ada <ada@example.com>', 200, 'subject\n\nbody text\n')
    loaded = store.get_commit(store.put(merge))
    assert loaded == merge
    assert loaded.first_parent == root


def test_put_refuses_dangling_references(store):
    with pytest.raises(CorruptObjectError):
        store.put(Tree.from_entries([TreeEntry('a', FileMode.FILE, '0' * 40)]))
    with pytest.raises(CorruptObjectError):
        store.put(Commit('1' * 40, (), 'x <x@y>', 0, 'm'))


def test_corrupt_stored_bytes(tmp_path):
    store = DiskObjectStore(str(tmp_path))
    oid = store.put(Blob(b'fine'))
    with open(os.path.join(str(tmp_path), oid[:2], oid[2:]), 'wb') as f:
        f.write(b'blob 99\x00short')
    with pytest.raises(CorruptObjectError):
        store.get(oid)


def test_disk_layout_uses_hash_prefix(tmp_path):
    store = DiskObjectStore(str(tmp_path))
    oid = store.put(Blob(b'hello'))
    assert os.path.isfile(os.path.join(str(tmp_path), oid[:2], oid[2:]))
    assert list(store.iter_prefix(oid[:5])) == [oid]
    assert oid.startswith('b6fc4c6')
    assert list(store.iter_prefix('0000')) == []


def test_disk_write_failure_is_write_error(tmp_path):
    blocker = tmp_path / 'objects'
    blocker.write_text('not a directory')
    store = DiskObjectStore(str(blocker))
    with pytest.raises(WriteError):
        store.put(Blob(b'data'))


def test_sha256_store():
    store = MemoryObjectStore('sha256')
    oid = store.put(Blob(b'hello'))
    assert len(oid) == 64
    assert algorithm_for(oid) == 'sha256'
    assert store.get_blob(oid).data == b'hello'


def test_wire_form_round_trip_checks_hash():
    source, target = MemoryObjectStore(), MemoryObjectStore()
    oid = source.put(Blob(b'payload'))
    item = pack_object(source, oid)
    assert item['type'] == 'blob'
    assert unpack_object(target, item) == oid

    forged = dict(item, sha1='0' * 40)
    with pytest.raises(CorruptObjectError):
        unpack_object(target, forged)
    with pytest.raises(CorruptObjectError):
        unpack_object(target, dict(item, data='zz'))
