"""HttpTransport against the remote_app views, end to end."""
import pytest

from py_sync.diff import ChangeType
from py_sync.errors import TransportError
from py_sync.repository import Repository
from py_sync.sync import SyncController, SyncState
from py_sync.transport import Accepted, Credentials, HttpTransport, Rejected, RejectReason, TransportFailure
from remote_app.models import GitObject, Reference

pytestmark = pytest.mark.django_db

REMOTE_BASE = "http://testserver/api/sync"


def make_controller(tmp_path, name, session, clock, credentials=None, repo_name="notes"):
    repo = Repository.init(str(tmp_path / name), remotes={"origin": f"{REMOTE_BASE}/{repo_name}"})
    transport = HttpTransport(repo, session=session)
    return SyncController(repo, transport=transport, credentials=credentials, clock=clock)


def test_push_then_fast_forward(tmp_path, http_session, clock):
    alice = make_controller(tmp_path, "alice", http_session, clock)
    first = alice.commit_change("a.txt", "hello", "init")

    assert alice.push() == Accepted(first, "refs/heads/main")
    assert Reference.objects.get(repo__name="notes", name="refs/heads/main").commit_hash == first
    assert GitObject.objects.filter(repo__name="notes").count() == 3

    second = alice.commit_change("a.txt", "hello again", "second")
    assert alice.push() == Accepted(second, "refs/heads/main")
    # only the new commit, its tree and blob travel the second time
    assert GitObject.objects.filter(repo__name="notes").count() == 6
    assert alice.refs.read("refs/remotes/origin/main") == second


def test_rejected_push_reports_conflicts(tmp_path, http_session, clock):
    alice = make_controller(tmp_path, "alice", http_session, clock)
    bob = make_controller(tmp_path, "bob", http_session, clock)
    alice.commit_change("shared.txt", "alice", "from alice")
    alice.push()

    bob.commit_change("shared.txt", "bob", "from bob")
    outcome = bob.push()

    assert isinstance(outcome, Rejected)
    assert outcome.reason is RejectReason.NON_FAST_FORWARD
    assert [(c.change_type, c.path) for c in outcome.conflicts] == [(ChangeType.MODIFY, "shared.txt")]
    conflict = outcome.conflicts[0]
    assert bob.store.get_blob(conflict.old_id).data == b"bob"
    assert bob.store.get_blob(conflict.new_id).data == b"alice"
    assert bob.state is SyncState.CONFLICTED
    # the rejected push left nothing behind on the remote
    assert Reference.objects.get(repo__name="notes").commit_hash == alice.repository.head
    assert not GitObject.objects.filter(sha1=bob.repository.head).exists()


def test_fetch_and_list_branches(tmp_path, http_session, clock):
    alice = make_controller(tmp_path, "alice", http_session, clock)
    bob = make_controller(tmp_path, "bob", http_session, clock)
    alice.commit_change("docs/readme.md", "# hi", "docs")
    alice.commit_change("src/app.py", "print()", "code")
    alice.push()

    assert bob.fetch() == {"refs/remotes/origin/main": alice.repository.head}
    assert bob.content_at("origin/main", "docs/readme.md") == b"# hi"
    assert [c.message for _, c in bob.remote_history()] == ["code", "docs"]
    assert bob.remote_branches() == ["main"]
    assert bob.remote_branches(url=f"{REMOTE_BASE}/empty") == []


def test_push_with_credentials(tmp_path, http_session, clock, settings):
    settings.PY_SYNC_CREDENTIALS = {"alice": "s3cret"}

    anonymous = make_controller(tmp_path, "anon", http_session, clock)
    anonymous.commit_change("a.txt", "a", "init")
    outcome = anonymous.push()
    assert isinstance(outcome, TransportFailure)
    assert anonymous.state is SyncState.FAILED

    alice = make_controller(tmp_path, "alice", http_session, clock, credentials=Credentials("alice", "s3cret"))
    alice.commit_change("a.txt", "a", "init")
    assert isinstance(alice.push(), Accepted)


def test_fetch_auth_failure_raises(tmp_path, http_session, clock, settings):
    settings.PY_SYNC_CREDENTIALS = {"alice": "s3cret"}
    bob = make_controller(tmp_path, "bob", http_session, clock, credentials=Credentials("alice", "wrong"))
    with pytest.raises(TransportError):
        bob.fetch()


def test_credentials_repr_hides_secret():
    assert "s3cret" not in repr(Credentials("alice", "s3cret"))


def test_sha256_repository_round_trip(tmp_path, http_session, clock):
    repo = Repository.init(str(tmp_path / "wide"), hash_algorithm="sha256",
                           remotes={"origin": f"{REMOTE_BASE}/wide"})
    controller = SyncController(repo, transport=HttpTransport(repo, session=http_session), clock=clock)
    head = controller.commit_change("a.txt", "a", "init")
    assert len(head) == 64
    assert isinstance(controller.push(), Accepted)
    assert Reference.objects.get(repo__name="wide").commit_hash == head


def test_push_after_moving_origin_to_another_repository(tmp_path, http_session, clock):
    alice = make_controller(tmp_path, "alice", http_session, clock)
    alice.commit_change("a.txt", "a", "init")
    alice.push()

    # config edited by hand, so the old tracking ref survives
    alice.repository.config.remotes["origin"] = f"{REMOTE_BASE}/moved"
    alice.repository.config.save()
    head = alice.commit_change("b.txt", "b", "second file")

    assert alice.push() == Accepted(head, "refs/heads/main")
    assert GitObject.objects.filter(repo__name="moved").count() == 6
    assert [c["message"] for c in http_session.get(f"{REMOTE_BASE}/moved/commits/").json()["commits"]] == [
        "second file", "init",
    ]


def test_fetch_prunes_branches_the_remote_dropped(tmp_path, http_session, clock):
    alice = make_controller(tmp_path, "alice", http_session, clock)
    alice.commit_change("a.txt", "a", "init")
    alice.push()
    alice.refs.set("refs/remotes/origin/gone", alice.repository.head)

    assert alice.fetch() == {"refs/remotes/origin/main": alice.repository.head}
    assert "refs/remotes/origin/gone" not in alice.refs
