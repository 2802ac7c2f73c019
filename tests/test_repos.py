import logging
import shutil
from collections.abc import Iterator
from pathlib import Path

import pytest

from repo_watcher.fs import INotify
from repo_watcher.repos import RepoSet

Mask = INotify.Mask


@pytest.fixture
def root(tmp_path: Path) -> Path:
    root = tmp_path / "repos"
    root.mkdir()
    return root


@pytest.fixture
def inotify() -> Iterator[INotify]:
    inotify = INotify()
    yield inotify
    inotify.close()


@pytest.fixture
def repo_set(inotify: INotify) -> RepoSet:
    return RepoSet(inotify, Path("src"), Mask.CLOSE_WRITE)


def make_repo(root: Path, name: str) -> Path:
    repo = root / name
    (repo / "src").mkdir(parents=True)
    return repo


def test_add(root: Path, repo_set: RepoSet, inotify: INotify) -> None:
    repo = make_repo(root, "alpha")

    assert repo_set.try_add(repo)

    assert repo in repo_set
    assert list(repo_set) == [repo]
    assert inotify.watched_paths() == {repo / "src"}


def test_add_twice_is_idempotent(
    root: Path, repo_set: RepoSet, inotify: INotify, caplog: pytest.LogCaptureFixture
) -> None:
    repo = make_repo(root, "alpha")
    caplog.set_level(logging.INFO)

    assert repo_set.try_add(repo)
    assert not repo_set.try_add(repo)

    assert len(repo_set) == 1
    assert inotify.watched_paths() == {repo / "src"}
    assert caplog.messages.count(f"Adding repo: {repo}") == 1


def test_add_equivalent_spellings(root: Path, repo_set: RepoSet) -> None:
    repo = make_repo(root, "alpha")

    assert repo_set.try_add(f"{root}//alpha/")
    assert not repo_set.try_add(root / "beta" / ".." / "alpha")

    assert list(repo_set) == [repo]


def test_add_without_watch_path(
    root: Path, repo_set: RepoSet, inotify: INotify
) -> None:
    (root / "alpha").mkdir()

    assert not repo_set.try_add(root / "alpha")

    assert len(repo_set) == 0
    assert inotify.watched_paths() == set()


def test_add_watch_path_is_file(root: Path, repo_set: RepoSet) -> None:
    (root / "alpha").mkdir()
    (root / "alpha" / "src").touch()

    assert not repo_set.try_add(root / "alpha")
    assert len(repo_set) == 0


def test_add_missing(root: Path, repo_set: RepoSet) -> None:
    assert not repo_set.try_add(root / "missing")


def test_add_file(root: Path, repo_set: RepoSet) -> None:
    (root / "file").touch()
    assert not repo_set.try_add(root / "file")


def test_add_rechecks_existence(root: Path, repo_set: RepoSet) -> None:
    repo = make_repo(root, "alpha")
    (repo / "src").rmdir()
    assert not repo_set.try_add(repo)

    (repo / "src").mkdir()
    assert repo_set.try_add(repo)


def test_remove(root: Path, repo_set: RepoSet, inotify: INotify) -> None:
    repo = make_repo(root, "alpha")
    repo_set.try_add(repo)

    assert repo_set.try_remove(repo)

    assert repo not in repo_set
    assert inotify.watched_paths() == set()


def test_remove_after_directory_deleted(
    root: Path, repo_set: RepoSet, inotify: INotify
) -> None:
    repo = make_repo(root, "alpha")
    repo_set.try_add(repo)
    shutil.rmtree(repo)

    assert repo_set.try_remove(repo)

    assert len(repo_set) == 0
    assert inotify.watched_paths() == set()


def test_remove_non_member(
    root: Path, repo_set: RepoSet, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG)
    repo = make_repo(root, "alpha")

    assert not repo_set.try_remove(repo)
    assert not repo_set.try_remove(root / "missing")

    assert not [m for m in caplog.messages if m.startswith("Removing repo")]


def test_remove_twice(root: Path, repo_set: RepoSet) -> None:
    repo = make_repo(root, "alpha")
    repo_set.try_add(repo)

    assert repo_set.try_remove(repo)
    assert not repo_set.try_remove(repo)


def test_remove_equivalent_spelling(root: Path, repo_set: RepoSet) -> None:
    repo = make_repo(root, "alpha")
    repo_set.try_add(repo)

    assert repo_set.try_remove(f"{root}/./alpha/")
    assert len(repo_set) == 0


def test_readd_after_remove(root: Path, repo_set: RepoSet, inotify: INotify) -> None:
    repo = make_repo(root, "alpha")
    repo_set.try_add(repo)
    repo_set.try_remove(repo)

    assert repo_set.try_add(repo)
    assert inotify.watched_paths() == {repo / "src"}


def test_sync(root: Path, repo_set: RepoSet) -> None:
    alpha = make_repo(root, "alpha")
    beta = make_repo(root, "beta")
    repo_set.try_add(alpha)
    repo_set.try_add(beta)
    shutil.rmtree(beta)
    gamma = make_repo(root, "gamma")

    repo_set.sync(sorted(root.iterdir()))

    assert list(repo_set) == [alpha, gamma]


def test_contains_rejects_other_types(repo_set: RepoSet) -> None:
    assert 3 not in repo_set


def test_discard_target(
    root: Path, repo_set: RepoSet, inotify: INotify, caplog: pytest.LogCaptureFixture
) -> None:
    repo = make_repo(root, "alpha")
    other = make_repo(root, "beta")
    repo_set.try_add(repo)
    repo_set.try_add(other)
    caplog.set_level(logging.INFO)

    assert repo_set.discard_target(repo / "src") == repo

    assert list(repo_set) == [other]
    assert f"Removing repo: {repo} ({repo / 'src'} is gone)" in caplog.messages


def test_discard_target_non_member(root: Path, repo_set: RepoSet) -> None:
    repo = make_repo(root, "alpha")
    assert repo_set.discard_target(repo / "src") is None


def test_readd_after_discard_target(
    root: Path, repo_set: RepoSet, inotify: INotify
) -> None:
    repo = make_repo(root, "alpha")
    repo_set.try_add(repo)
    shutil.rmtree(repo / "src")
    # The kernel drops the watch along with the directory.
    inotify.remove_watch(repo / "src")
    repo_set.discard_target(repo / "src")

    (repo / "src").mkdir()

    assert repo_set.try_add(repo)
    assert inotify.watched_paths() == {repo / "src"}
