"""Repository configuration, kept as JSON next to the objects."""
import json
import logging
import os

from .errors import WriteError
from .objects import HASH_ALGORITHMS

logger = logging.getLogger(__name__)

REPO_DIR = ".py_sync"
CONFIG_FILE = "config.json"
DEFAULT_BRANCH = "main"
DEFAULT_REMOTE = "origin"
DEFAULT_REMOTE_URL = "http://localhost:8000/api/sync"
DEFAULT_TIMEOUT = 10

USERNAME_ENV = "PY_SYNC_USERNAME"
TOKEN_ENV = "PY_SYNC_TOKEN"


class Config:

    def __init__(self, path=None, hash_algorithm='sha1', branch=DEFAULT_BRANCH,
                 author_name='User', author_email='user@example.com',
                 remotes=None, timeout=DEFAULT_TIMEOUT):
        if hash_algorithm not in HASH_ALGORITHMS:
            raise ValueError(f"unsupported hash algorithm: {hash_algorithm}")
        self.path = path
        self.hash_algorithm = hash_algorithm
        self.branch = branch
        self.author_name = author_name
        self.author_email = author_email
        self.remotes = dict(remotes or {})
        self.timeout = timeout

    @property
    def author(self) -> str:
        return f"{self.author_name} <{self.author_email}>"

    def remote_url(self, name: str) -> str:
        try:
            return self.remotes[name]
        except KeyError:
            raise KeyError(f"no remote named {name!r}") from None

    def to_dict(self) -> dict:
        return {
            "hash_algorithm": self.hash_algorithm,
            "branch": self.branch,
            "author": {"name": self.author_name, "email": self.author_email},
            "remotes": self.remotes,
            "timeout": self.timeout,
        }

    @classmethod
    def load(cls, path: str) -> 'Config':
        data = {}
        if os.path.isfile(path):
            with open(path, 'r') as f:
                data = json.load(f)
        author = data.get("author", {})
        return cls(
            path=path,
            hash_algorithm=data.get("hash_algorithm", 'sha1'),
            branch=data.get("branch", DEFAULT_BRANCH),
            author_name=author.get("name", 'User'),
            author_email=author.get("email", 'user@example.com'),
            remotes=data.get("remotes"),
            timeout=data.get("timeout", DEFAULT_TIMEOUT),
        )

    def save(self, path=None):
        path = path or self.path
        try:
            with open(path, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as exc:
            raise WriteError(f"could not write {path}: {exc}") from exc
        self.path = path
        logger.debug("saved config to %s", path)
