"""Named pointers to commits, stored as small files under the repository dir."""
import logging
import os
import tempfile
from typing import Iterator

from .errors import InvalidReferenceError, WriteError
from .objects import ObjectId, validate_name

logger = logging.getLogger(__name__)

HEAD = 'HEAD'
SYMREF_PREFIX = 'ref:'


def branch_ref(branch: str) -> str:
    return branch if branch.startswith('refs/') else f'refs/heads/{branch}'


def tracking_ref(remote: str, branch: str) -> str:
    if branch.startswith('refs/heads/'):
        branch = branch[len('refs/heads/'):]
    return f'refs/remotes/{remote}/{branch}'


def check_ref_name(name: str) -> str:
    if name == HEAD:
        return name
    if not name.startswith('refs/'):
        raise InvalidReferenceError(f"invalid reference name: {name!r}")
    try:
        for part in name.split('/'):
            validate_name(part)
    except ValueError as exc:
        raise InvalidReferenceError(f"invalid reference name: {name!r}") from exc
    return name


class RefStore:
    """References of one repository.

    ``HEAD`` is normally symbolic (``ref: refs/heads/main``); reading it
    follows the chain down to a commit id. A ref that does not exist yet
    (an unborn branch) reads as ``None``.
    """

    def __init__(self, path: str):
        self.path = path

    def _ref_path(self, name):
        return os.path.join(self.path, *check_ref_name(name).split('/'))

    def read_raw(self, name: str) -> str | None:
        ref_path = self._ref_path(name)
        if not os.path.isfile(ref_path):
            return None
        with open(ref_path) as f:
            return f.read().strip() or None

    def follow(self, name: str) -> str:
        """Return the name of the ref that ``name`` finally points through."""
        seen = set()
        while True:
            if name in seen:
                raise InvalidReferenceError(f"symbolic reference loop at {name}")
            seen.add(name)
            value = self.read_raw(name)
            if value is None or not value.startswith(SYMREF_PREFIX):
                return name
            name = value[len(SYMREF_PREFIX):].strip()

    def read(self, name: str) -> ObjectId | None:
        value = self.read_raw(self.follow(name))
        if value is None or value.startswith(SYMREF_PREFIX):
            return None
        return value

    def __contains__(self, name: str) -> bool:
        try:
            return self.read(name) is not None
        except InvalidReferenceError:
            return False

    def _write(self, name, value):
        ref_path = self._ref_path(name)
        try:
            os.makedirs(os.path.dirname(ref_path), exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(ref_path), prefix='.tmp-')
            with os.fdopen(fd, 'w') as f:
                f.write(value + '\n')
            os.replace(tmp_path, ref_path)
        except OSError as exc:
            raise WriteError(f"could not update {name}: {exc}") from exc

    def set(self, name: str, oid: ObjectId, deref: bool = True) -> None:
        if deref:
            name = self.follow(name)
        self._write(name, oid)
        logger.debug("%s -> %s", name, oid)

    def delete(self, name: str) -> None:
        ref_path = self._ref_path(name)
        try:
            os.remove(ref_path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise WriteError(f"could not delete {name}: {exc}") from exc
        logger.debug("deleted %s", name)

    def set_symbolic(self, name: str, target: str) -> None:
        self._write(name, f'{SYMREF_PREFIX} {check_ref_name(target)}')

    def current_branch(self) -> str | None:
        """The branch ref HEAD points at, or None when HEAD is detached."""
        target = self.follow(HEAD)
        return target if target != HEAD else None

    def iter_refs(self, prefix: str = 'refs/') -> Iterator[tuple[str, ObjectId]]:
        names = []
        for root, _, filenames in os.walk(os.path.join(self.path, 'refs')):
            root = os.path.relpath(root, self.path).replace(os.sep, '/')
            names.extend(f'{root}/{name}' for name in filenames if not name.startswith('.tmp-'))
        for refname in sorted(names):
            if not refname.startswith(prefix):
                continue
            oid = self.read(refname)
            if oid:
                yield refname, oid
