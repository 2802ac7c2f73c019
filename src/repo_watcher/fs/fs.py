"""High-level filesystem operations."""

import logging
import os
import re
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)


def canonical(path: Path | str) -> Path:
    """Canonical spelling of `path` used for comparisons and membership keys.

    The result is absolute with `.`, `..`, repeated and trailing separators
    collapsed. Symlinks are not resolved: paths reported by removal events no
    longer exist, so only a lexical normalization maps them back to the key
    they were added under.
    """
    return Path(os.path.abspath(path))


def watch_target(repo_path: Path, watch_path: Path) -> Path:
    """The directory inside `repo_path` whose contents are watched."""
    return canonical(repo_path / watch_path)


def is_repo(path: Path, watch_path: Path) -> bool:
    """Returns True if `path` is a directory containing `watch_path` as a directory."""
    return path.is_dir() and watch_target(path, watch_path).is_dir()


def deepest_existing(repo_path: Path, watch_path: Path) -> Path:
    """The deepest existing directory on the way from `repo_path` to its watch target.

    Equals the watch target itself once `repo_path` qualifies as a repository.
    """
    directory = canonical(repo_path)
    for part in watch_path.parts:
        child = canonical(directory / part)
        if not child.is_dir():
            break
        directory = child
    return directory


def entries(root: Path) -> Iterator[Path]:
    """Yields the direct children of `root`, or nothing if it cannot be listed."""
    try:
        children = sorted(root.iterdir())
    except OSError as e:
        logger.error(f"Could not list {root}: {e}")
        return
    yield from children


def repos(root: Path, watch_path: Path) -> Iterator[Path]:
    """Yields the children of `root` that currently qualify as repositories."""
    for path in entries(root):
        if is_repo(path, watch_path):
            yield canonical(path)


def resolve_repo(path: Path, repos_root: Path, pattern: re.Pattern[str]) -> Path | None:
    """Maps a changed file back to the repository that owns it.

    Returns None unless `path` is an existing regular file whose name matches
    `pattern` and which lies strictly below a child of `repos_root`. Otherwise
    returns that child, i.e. ``repos_root / <first segment below repos_root>``.

    Paths that vanished between the event and this call are treated like any
    other non-match.
    """
    if not pattern.search(path.name):
        return None
    if not os.path.isfile(path):
        return None

    root = canonical(repos_root)
    directory = canonical(path).parent
    try:
        relative = directory.relative_to(root)
    except ValueError:
        logger.debug(f"Ignoring {path}: not inside {root}")
        return None
    if not relative.parts:
        # File sits directly in the repos root, not inside a repository.
        return None
    return root / relative.parts[0]
