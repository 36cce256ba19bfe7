"""Moving objects and refs between a repository and its remotes.

A transport is bound to one local repository. ``push`` never raises for
network trouble: it returns a :class:`TransportFailure` so the caller can
tell it apart from a rejection. ``fetch`` and ``list_remote_refs`` raise
:class:`TransportError` instead.
"""
import logging
import os
from enum import Enum
from typing import Iterable, NamedTuple, TypeAlias

import requests

from .config import TOKEN_ENV, USERNAME_ENV
from .diff import DiffEntry
from .errors import InvalidReferenceError, NotFoundError, SyncError, TransportError
from .objects import BaseObjectStore, ObjectId, find_dangling, pack_object, unpack_object
from .refs import branch_ref, tracking_ref
from .repository import Repository

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    NON_FAST_FORWARD = 'non-fast-forward'
    OTHER = 'other'


class Accepted(NamedTuple):
    head: ObjectId
    ref: str


class Rejected(NamedTuple):
    reason: RejectReason
    message: str = ''
    conflicts: tuple[DiffEntry, ...] = ()


class TransportFailure(NamedTuple):
    message: str


PushOutcome: TypeAlias = Accepted | Rejected | TransportFailure


class Credentials(NamedTuple):
    """Opaque identity/secret pair handed to the remote as-is."""

    identity: str
    secret: str

    def __repr__(self):
        return f"Credentials(identity={self.identity!r}, secret='***')"

    @classmethod
    def from_env(cls, environ=None) -> 'Credentials | None':
        environ = os.environ if environ is None else environ
        identity = environ.get(USERNAME_ENV)
        secret = environ.get(TOKEN_ENV)
        if identity and secret:
            return cls(identity, secret)
        return None


class RefSpec(NamedTuple):
    src: str
    dst: str

    @classmethod
    def parse(cls, spec: str) -> 'RefSpec':
        src, _, dst = spec.partition(':')
        return cls(branch_ref(src), branch_ref(dst or src))


def copy_objects(source: BaseObjectStore, target: BaseObjectStore, oids: Iterable[ObjectId]) -> int:
    """Copy ``oids`` missing from ``target``; referenced objects go first."""
    copied = 0
    # walks yield commits before their trees, so copy back to front
    for oid in reversed(list(oids)):
        if oid in target:
            continue
        unpack_object(target, pack_object(source, oid))
        copied += 1
    return copied


class Transport:

    def __init__(self, repository):
        self.repository = repository

    def fetch(self, remote_name: str, credentials: Credentials | None = None) -> dict[str, ObjectId]:
        raise NotImplementedError

    def push(self, remote_name: str, refspec: RefSpec, credentials: Credentials | None = None) -> PushOutcome:
        raise NotImplementedError

    def list_remote_refs(self, url: str, credentials: Credentials | None = None) -> list[tuple[str, ObjectId]]:
        raise NotImplementedError

    def remote_url(self, remote_name: str) -> str:
        try:
            return self.repository.config.remote_url(remote_name)
        except KeyError as exc:
            raise InvalidReferenceError(str(exc.args[0])) from None

    def _haves(self) -> list[ObjectId]:
        return [oid for _, oid in self.repository.refs.iter_refs()]

    def _update_tracking(self, remote_name, refs):
        """Mirror the remote's branches under ``refs/remotes/<remote>/``.

        Tracking refs for branches the remote no longer has are deleted.
        """
        updated = {}
        for name, oid in refs:
            if not name.startswith('refs/heads/'):
                continue
            tracking = tracking_ref(remote_name, name)
            self.repository.refs.set(tracking, oid)
            updated[tracking] = oid
        for stale, _ in list(self.repository.refs.iter_refs(f'refs/remotes/{remote_name}/')):
            if stale not in updated:
                self.repository.refs.delete(stale)
                logger.info("pruned %s", stale)
        logger.info("fetched %d refs from %s", len(updated), remote_name)
        return updated

    def _objects_to_push(self, refspec, haves):
        """HEAD of ``refspec.src`` and the objects the remote lacks.

        ``haves`` must only name commits the remote is known to hold.
        """
        head = self.repository.refs.read(refspec.src)
        if head is None:
            raise InvalidReferenceError(f"{refspec.src} does not point to a commit")
        return head, list(self.repository.graph.iter_objects([head], haves))


class LocalTransport(Transport):
    """Remote is another repository on the local filesystem."""

    def _open(self, url):
        path = url[len('file://'):] if url.startswith('file://') else url
        try:
            return Repository(path)
        except NotFoundError as exc:
            raise TransportError(f"cannot open remote {url}: {exc}") from exc

    def list_remote_refs(self, url, credentials=None):
        return list(self._open(url).refs.iter_refs('refs/heads/'))

    def fetch(self, remote_name, credentials=None):
        remote = self._open(self.remote_url(remote_name))
        refs = list(remote.refs.iter_refs('refs/heads/'))
        oids = remote.graph.iter_objects([oid for _, oid in refs], self._haves())
        copied = copy_objects(remote.store, self.repository.store, oids)
        logger.debug("copied %d objects from %s", copied, remote)
        return self._update_tracking(remote_name, refs)

    def push(self, remote_name, refspec, credentials=None):
        try:
            remote = self._open(self.remote_url(remote_name))
        except TransportError as exc:
            return TransportFailure(str(exc))
        if remote.store.algorithm != self.repository.store.algorithm:
            return Rejected(RejectReason.OTHER, "remote uses a different hash algorithm")

        haves = [oid for oid in self._haves() if oid in remote.store]
        head, oids = self._objects_to_push(refspec, haves)
        try:
            copy_objects(self.repository.store, remote.store, oids)
            missing = find_dangling(remote.store, oids)
        except SyncError as exc:
            return Rejected(RejectReason.OTHER, str(exc))
        if head not in remote.store:
            missing.append(head)
        if missing:
            return Rejected(RejectReason.OTHER, f"missing objects: {', '.join(missing)}")

        current = remote.refs.read(refspec.dst)
        if current is not None and not remote.graph.is_ancestor(current, head):
            return Rejected(RejectReason.NON_FAST_FORWARD, f"{refspec.dst} has diverged from {head[:7]}")
        remote.refs.set(refspec.dst, head)
        return Accepted(head, refspec.dst)


class HttpTransport(Transport):
    """Remote is a repository served by the ``remote_app`` Django app."""

    def __init__(self, repository, session: requests.Session | None = None, timeout: float | None = None):
        super().__init__(repository)
        self.session = session or requests.Session()
        self.timeout = timeout or repository.config.timeout

    def _request(self, method, url, credentials, **kwargs):
        auth = (credentials.identity, credentials.secret) if credentials else None
        try:
            return self.session.request(method, url, auth=auth, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc.__class__.__name__}") from exc

    @staticmethod
    def _check(resp):
        if resp.status_code in (401, 403):
            raise TransportError(f"authentication failed ({resp.status_code})")
        if resp.status_code >= 400:
            raise TransportError(f"remote answered {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError("remote sent a malformed response") from exc

    def list_remote_refs(self, url, credentials=None):
        data = self._check(self._request('GET', f"{url.rstrip('/')}/refs", credentials))
        return sorted(data.get('refs', {}).items())

    def fetch(self, remote_name, credentials=None):
        url = self.remote_url(remote_name).rstrip('/')
        refs = [(name, oid) for name, oid in self.list_remote_refs(url, credentials) if name.startswith('refs/heads/')]
        wants = [oid for _, oid in refs if oid not in self.repository.store]
        if wants:
            payload = {"wants": wants, "haves": self._haves()}
            data = self._check(self._request('POST', f"{url}/fetch", credentials, json=payload))
            for item in data.get('objects', []):
                unpack_object(self.repository.store, item)
        return self._update_tracking(remote_name, refs)

    def push(self, remote_name, refspec, credentials=None):
        url = self.remote_url(remote_name).rstrip('/')
        try:
            advertised = self.list_remote_refs(url, credentials)
        except TransportError as exc:
            return TransportFailure(str(exc))
        haves = [oid for _, oid in advertised if oid in self.repository.store]
        head, oids = self._objects_to_push(refspec, haves)
        objects_data = [pack_object(self.repository.store, oid) for oid in reversed(oids)]
        payload = {"objects": objects_data, "head": head, "ref": refspec.dst}
        try:
            resp = self._request('POST', f"{url}/push", credentials, json=payload)
        except TransportError as exc:
            return TransportFailure(str(exc))
        logger.debug("push response: %s", resp.status_code)

        if resp.status_code == 200:
            return Accepted(head, refspec.dst)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code == 409:
            return Rejected(RejectReason.NON_FAST_FORWARD, body.get('message', ''))
        if resp.status_code == 400 and body.get('status') == 'rejected':
            return Rejected(RejectReason.OTHER, body.get('message', ''))
        if resp.status_code in (401, 403):
            return TransportFailure(f"authentication failed ({resp.status_code})")
        return TransportFailure(f"remote answered {resp.status_code}")


def get_transport(repository, url: str, **kwargs) -> Transport:
    if url.startswith(('http://', 'https://')):
        return HttpTransport(repository, **kwargs)
    return LocalTransport(repository)
