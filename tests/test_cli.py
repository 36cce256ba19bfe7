import pytest

from py_sync.cli import main
from py_sync.repository import Repository


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.delenv("PY_SYNC_USERNAME", raising=False)
    monkeypatch.delenv("PY_SYNC_TOKEN", raising=False)
    path = tmp_path / "work"
    path.mkdir()
    monkeypatch.chdir(path)
    return path


def test_init_commit_log_show(workdir, capsys):
    assert main(["init"]) == 0
    assert (workdir / ".py_sync" / "objects").is_dir()

    assert main(["commit", "-p", "a.txt", "-c", "hello", "-m", "init"]) == 0
    assert (workdir / "a.txt").read_bytes() == b"hello"
    (workdir / "a.txt").write_text("edited on disk")
    assert main(["commit", "-p", "a.txt", "-m", "from the working tree"]) == 0
    capsys.readouterr()

    main(["log"])
    out = capsys.readouterr().out
    assert out.index("from the working tree") < out.index("init")

    main(["show", "-p", "a.txt", "--rev", "HEAD~1"])
    assert capsys.readouterr().out == "hello"

    main(["diff", "--rev", "HEAD~1"])
    assert capsys.readouterr().out.strip() == "modify a.txt"


def test_commit_requires_path_and_message(workdir):
    main(["init"])
    with pytest.raises(SystemExit) as excinfo:
        main(["commit", "-m", "no path"])
    assert excinfo.value.code == 2


def test_errors_exit_with_status_one(workdir, capsys):
    main(["init"])
    with pytest.raises(SystemExit) as excinfo:
        main(["log"])
    assert excinfo.value.code == 1
    assert "HEAD does not point to a commit" in capsys.readouterr().err


def test_push_and_reject(tmp_path, workdir, monkeypatch, capsys):
    remote = Repository.init(str(tmp_path / "remote"))
    other = Repository.init(str(tmp_path / "other"), remotes={"origin": remote.root})

    main(["init"])
    main(["remote", "-u", remote.root])
    main(["commit", "-p", "a.txt", "-c", "mine", "-m", "mine"])
    capsys.readouterr()
    assert main(["push"]) == 0
    assert "Pushed" in capsys.readouterr().out

    monkeypatch.chdir(other.root)
    main(["commit", "-p", "a.txt", "-c", "theirs", "-m", "theirs"])
    capsys.readouterr()
    assert main(["push"]) == 1
    out = capsys.readouterr().out
    assert "Push rejected (non-fast-forward)" in out
    assert "modify a.txt" in out

    main(["branches"])
    assert capsys.readouterr().out.splitlines() == ["Branches in remote repository:", "main"]


def test_remote_bare_name_uses_default_server(workdir, capsys):
    main(["init"])
    main(["remote", "-u", "diary"])
    assert Repository(str(workdir)).config.remote_url("origin") == "http://localhost:8000/api/sync/diary"


def test_changes_prints_new_content(workdir, capsys):
    main(["init"])
    main(["commit", "-p", "a.txt", "-c", "hello\nworld", "-m", "init"])
    main(["commit", "-p", "b.txt", "-c", "bee", "-m", "second"])
    capsys.readouterr()

    main(["changes"])
    assert capsys.readouterr().out.splitlines() == ["  add b.txt", "    bee"]

    main(["changes", "--rev", "HEAD~1"])
    assert capsys.readouterr().out.splitlines() == ["  add a.txt", "    hello", "    world"]
