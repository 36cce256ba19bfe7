from py_sync.diff import DiffEntry
from py_sync.errors import NotFoundError
from py_sync.objects import BaseObjectStore, Commit, Tree, algorithm_for, parse_raw

from .models import GitObject, Reference


class DatabaseObjectStore(BaseObjectStore):
    """Objects of one remote repository, kept in the ``GitObject`` table."""

    def __init__(self, repo, algorithm='sha1'):
        super().__init__(algorithm)
        self.repo = repo

    def _objects(self):
        return GitObject.objects.filter(repo=self.repo)

    def _read(self, oid):
        try:
            return bytes(self._objects().get(sha1=oid).data)
        except GitObject.DoesNotExist:
            raise NotFoundError(f"object {oid} not found") from None

    def _write(self, oid, raw):
        kind, _ = parse_raw(raw)
        GitObject.objects.get_or_create(repo=self.repo, sha1=oid, defaults={'type': kind, 'data': raw})

    def _contains(self, oid):
        return self._objects().filter(sha1=oid).exists()

    def __iter__(self):
        return iter(self._objects().order_by('sha1').values_list('sha1', flat=True))

    def iter_prefix(self, prefix):
        objects = self._objects().filter(sha1__startswith=prefix.lower()).order_by('sha1')
        return iter(objects.values_list('sha1', flat=True))


def store_for(repo, oid=None):
    """A store for ``repo`` using the hash algorithm its ids are made with."""
    if oid is None:
        ref = Reference.objects.filter(repo=repo).first()
        oid = ref.commit_hash if ref else None
    return DatabaseObjectStore(repo, algorithm_for(oid) if oid else 'sha1')


def tree_to_json(tree: Tree):
    return [{"type": e.mode.value, "sha": e.target, "name": e.name} for e in tree.entries]


def commit_to_json(oid, commit: Commit):
    return {
        "sha": oid,
        "tree": commit.tree,
        "parents": list(commit.parents),
        "author": commit.author,
        "timestamp": commit.timestamp,
        "message": commit.message,
    }


def diff_to_json(entry: DiffEntry):
    return {
        "change": entry.change_type.value,
        "old_path": entry.old_path,
        "new_path": entry.new_path,
        "old_sha": entry.old_id,
        "new_sha": entry.new_id,
    }
