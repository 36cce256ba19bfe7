"""Commit, push and reconcile against a remote.

One :class:`SyncController` drives one repository. A synchronization
attempt moves through ``EDITING -> COMMITTED -> PUSH_ATTEMPTED`` and ends
in ``PUSHED``, ``CONFLICTED`` or ``FAILED``. A rejected push is not an
error: the controller fetches the remote tip and returns the rejection
together with the tree diff between the local and remote tips, leaving the
resolution to the caller.
"""
import logging
import threading
import time
from enum import Enum
from typing import Iterator

from .config import DEFAULT_REMOTE
from .diff import DiffEntry, diff_trees, lookup_path, split_path
from .errors import InvalidPathError, InvalidReferenceError, NotFoundError, SyncError, TransportError
from .objects import Blob, Commit, FileMode, ObjectId, Tree, TreeEntry
from .refs import HEAD, branch_ref, tracking_ref
from .transport import Accepted, Credentials, PushOutcome, Rejected, RefSpec, Transport, TransportFailure, get_transport
from .worktree import WorkingTreeWriter

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    EDITING = 'editing'
    COMMITTED = 'committed'
    PUSH_ATTEMPTED = 'push_attempted'
    PUSHED = 'pushed'
    CONFLICTED = 'conflicted'
    FAILED = 'failed'


class SyncController:

    def __init__(self, repository, transport: Transport | None = None,
                 writer: WorkingTreeWriter | None = None, credentials: Credentials | None = None,
                 clock=time.time):
        self.repository = repository
        self.store = repository.store
        self.refs = repository.refs
        self.graph = repository.graph
        self.writer = writer if writer is not None else WorkingTreeWriter(repository.root)
        self.credentials = credentials
        self.clock = clock
        self.state = None
        self._transport = transport
        # commit_change and push mutate HEAD; one writer at a time
        self._lock = threading.Lock()

    def _set_state(self, state):
        logger.debug("sync state: %s -> %s", self.state and self.state.value, state.value)
        self.state = state

    def transport_for(self, remote: str) -> Transport:
        if self._transport is not None:
            return self._transport
        try:
            url = self.repository.config.remote_url(remote)
        except KeyError as exc:
            raise InvalidReferenceError(str(exc.args[0])) from None
        return get_transport(self.repository, url)

    def _branch(self, branch=None):
        if branch:
            return branch_ref(branch)
        return self.refs.current_branch() or branch_ref(self.repository.config.branch)

    def _tree_of(self, commit_id):
        return self.graph.commit(commit_id).tree if commit_id else None

    # -- writing -------------------------------------------------------------

    def commit_change(self, path: str, content: bytes | str, message: str, executable: bool = False) -> ObjectId:
        """Write ``content`` at ``path``, commit it on top of HEAD and advance HEAD."""
        with self._lock:
            self._set_state(SyncState.EDITING)
            try:
                commit_id = self._commit_change(path, content, message, executable)
            except SyncError:
                self._set_state(SyncState.FAILED)
                raise
            self._set_state(SyncState.COMMITTED)
            return commit_id

    def _commit_change(self, path, content, message, executable):
        parts = split_path(path)
        data = content.encode() if isinstance(content, str) else bytes(content)
        mode = FileMode.EXECUTABLE if executable else FileMode.FILE
        blob_id = self.store.put(Blob(data))
        parent = self.refs.read(HEAD)
        # a path that clashes with the tree fails here, before the disk is touched
        tree_id = self._write_tree(self._tree_of(parent), parts, TreeEntry(parts[-1], mode, blob_id))
        if self.writer is not None:
            self.writer.write('/'.join(parts), data, executable=executable)

        commit = Commit(
            tree=tree_id,
            parents=(parent,) if parent else (),
            author=self.repository.config.author,
            timestamp=int(self.clock()),
            message=message,
        )
        commit_id = self.store.put(commit)
        # the ref moves last: any failure above leaves HEAD where it was
        self.refs.set(HEAD, commit_id)
        logger.info("committed %s: %s", commit_id[:7], message)
        return commit_id

    def _write_tree(self, tree_id, parts, leaf):
        tree = self.store.get_tree(tree_id) if tree_id else Tree()
        name = parts[0]
        existing = tree.get(name)
        if len(parts) == 1:
            if existing is not None and existing.is_dir:
                raise InvalidPathError(f"{name} is a directory")
            entry = leaf
        else:
            if existing is not None and not existing.is_dir:
                raise InvalidPathError(f"{name} is a file")
            subtree = self._write_tree(existing.target if existing else None, parts[1:], leaf)
            entry = TreeEntry(name, FileMode.DIRECTORY, subtree)
        return self.store.put(tree.with_entry(entry))

    # -- pushing -------------------------------------------------------------

    def push(self, remote: str = DEFAULT_REMOTE, branch: str | None = None) -> PushOutcome:
        """Push HEAD to ``branch`` on ``remote``.

        Returns :class:`Accepted`, :class:`Rejected` (with the conflict
        report filled in) or :class:`TransportFailure`.
        """
        with self._lock:
            head = self.refs.read(HEAD)
            if head is None:
                raise InvalidReferenceError("nothing to push: HEAD does not point to a commit")
            dst = self._branch(branch)
            refspec = RefSpec(self.refs.current_branch() or HEAD, dst)
            transport = self.transport_for(remote)

            self._set_state(SyncState.PUSH_ATTEMPTED)
            outcome = transport.push(remote, refspec, self.credentials)

            if isinstance(outcome, Accepted):
                self.refs.set(tracking_ref(remote, dst), outcome.head)
                self._set_state(SyncState.PUSHED)
                logger.info("pushed %s to %s %s", outcome.head[:7], remote, dst)
            elif isinstance(outcome, Rejected):
                logger.info("push to %s rejected (%s), reconciling", remote, outcome.reason.value)
                try:
                    conflicts = self._reconcile(transport, remote, dst)
                except TransportError as exc:
                    self._set_state(SyncState.FAILED)
                    return TransportFailure(str(exc))
                except SyncError:
                    self._set_state(SyncState.FAILED)
                    raise
                outcome = outcome._replace(conflicts=tuple(conflicts))
                self._set_state(SyncState.CONFLICTED)
            else:
                logger.warning("push to %s failed: %s", remote, outcome.message)
                self._set_state(SyncState.FAILED)
            return outcome

    def reconcile(self, remote: str = DEFAULT_REMOTE, branch: str | None = None) -> list[DiffEntry]:
        """Fetch ``remote`` and report how HEAD's tree differs from its tip."""
        return self._reconcile(self.transport_for(remote), remote, self._branch(branch))

    def _reconcile(self, transport, remote, dst):
        transport.fetch(remote, self.credentials)
        remote_head = self.refs.read(tracking_ref(remote, dst))
        local_head = self.refs.read(HEAD)
        conflicts = diff_trees(self.store, self._tree_of(local_head), self._tree_of(remote_head))
        logger.info("%d paths differ between HEAD and %s", len(conflicts), tracking_ref(remote, dst))
        return conflicts

    def fetch(self, remote: str = DEFAULT_REMOTE) -> dict[str, ObjectId]:
        return self.transport_for(remote).fetch(remote, self.credentials)

    # -- history -------------------------------------------------------------

    def history_of(self, ref: str = HEAD) -> Iterator[tuple[ObjectId, Commit]]:
        """Commits from ``ref`` back to the root, newest first, read lazily."""
        return self.graph.ancestors_of(self.graph.resolve(ref))

    def diff_against(self, commit_ref: str, detect_renames: bool = False) -> list[DiffEntry]:
        """What changed from ``commit_ref`` to HEAD."""
        old_tree = self._tree_of(self.graph.resolve(commit_ref))
        new_tree = self._tree_of(self.graph.resolve(HEAD))
        return diff_trees(self.store, old_tree, new_tree, detect_renames=detect_renames)

    def changes_in(self, revision: str = HEAD, detect_renames: bool = False) -> list[DiffEntry]:
        """What a commit changed relative to its first parent."""
        commit = self.graph.commit(self.graph.resolve(revision))
        return diff_trees(self.store, self._tree_of(commit.first_parent), commit.tree,
                          detect_renames=detect_renames)

    def content_at(self, revision: str, path: str) -> bytes:
        """The bytes of ``path`` as recorded in ``revision``."""
        commit_id = self.graph.resolve(revision)
        entry = lookup_path(self.store, self._tree_of(commit_id), path)
        if entry is None or entry.is_dir:
            raise NotFoundError(f"{path} is not a file in {commit_id[:7]}")
        return self.store.get_blob(entry.target).data

    def remote_history(self, remote: str = DEFAULT_REMOTE, branch: str | None = None) -> Iterator[tuple[ObjectId, Commit]]:
        self.fetch(remote)
        return self.history_of(tracking_ref(remote, self._branch(branch)))

    def remote_branches(self, url: str | None = None, remote: str = DEFAULT_REMOTE) -> list[str]:
        """Branch names a remote advertises, without fetching any objects."""
        if url is None:
            transport = self.transport_for(remote)
            url = transport.remote_url(remote)
        else:
            transport = self._transport or get_transport(self.repository, url)
        refs = transport.list_remote_refs(url, self.credentials)
        return [name[len('refs/heads/'):] for name, _ in refs if name.startswith('refs/heads/')]
