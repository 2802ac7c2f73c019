"""Registry of the repositories currently being watched."""

import logging
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path

from .fs import INotify, canonical, is_repo, watch_target

logger = logging.getLogger(__name__)


class RepoSet:
    """Set of watched repository roots, keyed by canonical path.

    A path is a member exactly when the inotify watch on its watch subpath is
    registered with `watcher`. Membership and the watch list only change
    together, under `self._lock`.
    """

    def __init__(self, watcher: INotify, watch_path: Path, mask: INotify.Mask) -> None:
        self.watcher = watcher
        self.watch_path = watch_path
        self.mask = mask
        self._lock = threading.Lock()
        self._members: set[Path] = set()

    def try_add(self, repo_path: Path | str) -> bool:
        """Start watching `repo_path` if it qualifies and is not yet watched.

        Returns True if the repository was added.
        """
        path = canonical(repo_path)
        with self._lock:
            if path in self._members or not is_repo(path, self.watch_path):
                return False
            target = watch_target(path, self.watch_path)
            try:
                self.watcher.add_watch(target, self.mask)
            except OSError as e:
                # Directory vanished or became unreadable since the check.
                logger.error(f"Could not watch {target}: {e}")
                return False
            self._members.add(path)
        logger.info(f"Adding repo: {path}")
        return True

    def try_remove(self, repo_path: Path | str) -> bool:
        """Stop watching `repo_path`. No-op for paths that are not watched.

        Returns True if the repository was removed.
        """
        path = canonical(repo_path)
        with self._lock:
            if path not in self._members:
                return False
            target = watch_target(path, self.watch_path)
            self._members.discard(path)
            try:
                self.watcher.remove_watch(target)
            except OSError as e:
                logger.error(f"Could not stop watching {target}: {e}")
        logger.info(f"Removing repo: {path}")
        return True

    def discard_target(self, target: Path) -> Path | None:
        """Drop the member whose watch on `target` no longer exists.

        For watches the kernel removed on its own, e.g. because `target` was
        deleted. Returns the repository that was dropped, if any.
        """
        target = canonical(target)
        with self._lock:
            for path in self._members:
                if watch_target(path, self.watch_path) == target:
                    break
            else:
                return None
            self._members.discard(path)
        logger.info(f"Removing repo: {path} ({target} is gone)")
        return path

    def sync(self, candidates: Iterable[Path]) -> None:
        """Reconcile membership against a fresh listing of the repos root."""
        for path in candidates:
            self.try_add(path)
        for path in self:
            if not path.is_dir():
                self.try_remove(path)

    def __contains__(self, repo_path: object) -> bool:
        if not isinstance(repo_path, (str, Path)):
            return False
        path = canonical(repo_path)
        with self._lock:
            return path in self._members

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __iter__(self) -> Iterator[Path]:
        """Iterates over a sorted snapshot of the members."""
        with self._lock:
            snapshot = sorted(self._members)
        return iter(snapshot)
