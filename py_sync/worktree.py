import logging
import os

from .diff import split_path
from .errors import WriteError

logger = logging.getLogger(__name__)


class WorkingTreeWriter:
    """Writes tracked file content into the checkout a repository lives in."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def write(self, path: str, data: bytes, executable: bool = False) -> str:
        full_path = os.path.join(self.root, *split_path(path))
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, 'wb') as f:
                f.write(data)
            if executable:
                os.chmod(full_path, os.stat(full_path).st_mode | 0o111)
        except OSError as exc:
            raise WriteError(f"could not write {path}: {exc}") from exc
        logger.debug("wrote %d bytes to %s", len(data), full_path)
        return full_path
