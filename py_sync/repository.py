"""A repository: the ``.py_sync`` directory and the objects and refs in it."""
import logging
import os

from .config import CONFIG_FILE, DEFAULT_BRANCH, REPO_DIR, Config
from .errors import NotFoundError
from .history import HistoryGraph
from .objects import DiskObjectStore, ObjectId
from .refs import HEAD, RefStore, branch_ref

logger = logging.getLogger(__name__)


class Repository:
    """One repository instance; several can be open in the same process."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        self.git_dir = os.path.join(self.root, REPO_DIR)
        if not os.path.isdir(self.git_dir):
            raise NotFoundError(f"not a py_sync repository: {self.root}")
        self.config = Config.load(os.path.join(self.git_dir, CONFIG_FILE))
        self.store = DiskObjectStore(os.path.join(self.git_dir, 'objects'), self.config.hash_algorithm)
        self.refs = RefStore(self.git_dir)
        self.graph = HistoryGraph(self.store, self.refs)

    def __repr__(self):
        return f"<Repository {self.root}>"

    @classmethod
    def init(cls, root: str, hash_algorithm: str = 'sha1', branch: str = DEFAULT_BRANCH,
             remotes: dict | None = None, **config) -> 'Repository':
        git_dir = os.path.join(os.path.abspath(root), REPO_DIR)
        os.makedirs(os.path.join(git_dir, 'objects'), exist_ok=True)
        config_path = os.path.join(git_dir, CONFIG_FILE)
        if not os.path.exists(config_path):
            Config(hash_algorithm=hash_algorithm, branch=branch, remotes=remotes, **config).save(config_path)
        refs = RefStore(git_dir)
        if refs.read_raw(HEAD) is None:
            refs.set_symbolic(HEAD, branch_ref(branch))
        logger.info("initialized py_sync repository in %s", git_dir)
        return cls(root)

    @classmethod
    def discover(cls, start: str = '.') -> 'Repository':
        """Open the repository containing ``start`` or one of its parents."""
        path = os.path.abspath(start)
        while True:
            if os.path.isdir(os.path.join(path, REPO_DIR)):
                return cls(path)
            parent = os.path.dirname(path)
            if parent == path:
                raise NotFoundError(f"not inside a py_sync repository: {start}")
            path = parent

    @property
    def head(self) -> ObjectId | None:
        return self.refs.read(HEAD)

    @property
    def branch(self) -> str | None:
        return self.refs.current_branch()

    def add_remote(self, name: str, url: str) -> None:
        """Point remote ``name`` at ``url``.

        Tracking refs left from a previous URL describe another repository,
        so they are dropped.
        """
        previous = self.config.remotes.get(name)
        self.config.remotes[name] = url
        self.config.save()
        if previous is not None and previous != url:
            for ref, _ in list(self.refs.iter_refs(f'refs/remotes/{name}/')):
                self.refs.delete(ref)
            logger.info("remote %s moved from %s to %s", name, previous, url)
