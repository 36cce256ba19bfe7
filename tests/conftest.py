import itertools
from urllib.parse import urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from py_sync.repository import Repository
from py_sync.sync import SyncController


class DjangoClientAdapter(BaseAdapter):
    """Serve requests through Django's test client instead of the network."""

    def __init__(self, client):
        super().__init__()
        self.client = client
        self.requests = []

    def send(self, request, **kwargs):
        self.requests.append(request)
        url = urlsplit(request.url)
        path = url.path + (f"?{url.query}" if url.query else "")
        extra = {}
        if 'Authorization' in request.headers:
            extra['HTTP_AUTHORIZATION'] = request.headers['Authorization']
        response = self.client.generic(
            request.method,
            path,
            data=request.body or b'',
            content_type=request.headers.get('Content-Type', 'application/octet-stream'),
            **extra,
        )
        resp = requests.Response()
        resp.status_code = response.status_code
        resp._content = response.content
        resp.headers = CaseInsensitiveDict(response.items())
        resp.encoding = 'utf-8'
        resp.url = request.url
        resp.request = request
        return resp

    def close(self):
        pass


class Clock:
    """Deterministic clock: every call is one second later."""

    def __init__(self, start=1_700_000_000):
        self._ticks = itertools.count(start)

    def __call__(self):
        return next(self._ticks)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def repo(tmp_path):
    return Repository.init(str(tmp_path / "local"))


@pytest.fixture
def controller(repo, clock):
    return SyncController(repo, clock=clock)


@pytest.fixture
def remote_repo(tmp_path):
    return Repository.init(str(tmp_path / "remote"))


@pytest.fixture
def local_pair(tmp_path, remote_repo, clock):
    """Two clones-to-be sharing one on-disk remote, wired as ``origin``."""
    controllers = []
    for name in ("alice", "bob"):
        repo = Repository.init(str(tmp_path / name), remotes={"origin": remote_repo.root})
        controllers.append(SyncController(repo, clock=clock))
    return controllers


@pytest.fixture
def no_remote_auth(settings):
    settings.PY_SYNC_CREDENTIALS = {}


@pytest.fixture
def adapter(client, no_remote_auth):
    return DjangoClientAdapter(client)


@pytest.fixture
def http_session(adapter):
    session = requests.Session()
    session.mount("http://testserver", adapter)
    return session
