"""Watches a directory of repositories and runs a command on matching changes.

Two inotify instances are used. The root instance watches the repos root
itself, and its events decide which repositories are in the `RepoSet`. The
file instance holds one watch per repository (on the repository's watch
subpath), and its events trigger the configured command.

A directory under the root that does not contain the watch subpath yet (e.g.
right after ``mkdir`` or while ``git clone`` is still populating it) is
pending. The root instance also watches the deepest existing directory on its
way to the watch subpath, and the directory is checked again whenever
something is created there.

Each instance is drained by its own coroutine. Within a coroutine events are
handled strictly one after another, including the command run they trigger.
"""

import asyncio
import logging
from pathlib import Path

from . import fs
from .config import Config
from .fs import Event, INotify
from .repos import RepoSet
from .shell import CommandError, Runner, run_command

logger = logging.getLogger(__name__)

Mask = INotify.Mask

ROOT_MASK = (
    Mask.CREATE
    | Mask.MOVED_TO
    | Mask.ATTRIB
    | Mask.MOVED_FROM
    | Mask.DELETE
    | Mask.ONLYDIR
)
"""Events on the repos root that can change which repositories exist."""

PENDING_MASK = Mask.CREATE | Mask.MOVED_TO | Mask.ONLYDIR
"""Events inside a pending directory that may complete its watch subpath."""

ADD_MASK = Mask.CREATE | Mask.MOVED_TO | Mask.ATTRIB
REMOVE_MASK = Mask.MOVED_FROM | Mask.DELETE


class StartupError(RuntimeError):
    """The watcher could not enter its steady state."""


class RepoWatcher:
    """Owns the repository registry and both event loops."""

    def __init__(self, config: Config, runner: Runner = run_command) -> None:
        self.config = config
        self.runner = runner
        self.root_watcher = INotify()
        self.file_watcher = INotify()
        self.repos = RepoSet(
            self.file_watcher, config.watch_path, config.events | Mask.ONLYDIR
        )
        # Directories under the root that do not qualify yet, mapped to the
        # directory watched on their behalf. Only touched from the event loop.
        self.pending: dict[Path, Path] = {}

    def start(self) -> None:
        """Watch the repos root and register the repositories already in it.

        Raises StartupError if the repos root is unusable.
        """
        root = self.config.repos_root
        if not root.exists():
            raise StartupError(f"Repos root does not exist: {root}")
        if not root.is_dir():
            raise StartupError(f"Repos root is not a directory: {root}")
        try:
            self.root_watcher.add_watch(root, ROOT_MASK)
        except OSError as e:
            raise StartupError(f"Could not watch repos root {root}: {e}") from e

        logger.info(
            f"Watching {root} for repositories containing {self.config.watch_path}"
        )
        for path in fs.entries(root):
            self.track(path)

    def close(self) -> None:
        """Release both inotify instances. The loops must not be running."""
        self.root_watcher.close()
        self.file_watcher.close()

    async def run(self) -> None:
        """Start, then process events until cancelled."""
        self.start()
        await self.watch()

    async def watch(self) -> None:
        """Run both event loops concurrently. Requires `start()` first."""
        await asyncio.gather(self.watch_root(), self.watch_files())

    async def watch_root(self) -> None:
        async for event in self.root_watcher.events():
            self.process_root_event(event)

    async def watch_files(self) -> None:
        async for event in self.file_watcher.events():
            await self.process_file_event(event)

    def track(self, path: Path) -> None:
        """Add `path` to the repositories, or keep it pending until it qualifies.

        Directories that are gone, and paths that are not directories, are
        dropped from the pending set.
        """
        path = fs.canonical(path)
        while True:
            if self.repos.try_add(path) or path in self.repos:
                self.untrack(path)
                return
            if not path.is_dir():
                self.untrack(path)
                return
            directory = fs.deepest_existing(path, self.config.watch_path)
            if self.pending.get(path) == directory:
                return
            self.untrack(path)
            try:
                self.root_watcher.add_watch(directory, PENDING_MASK)
            except FileNotFoundError:
                # Removed in the meantime. Its removal event is on the way.
                return
            except OSError as e:
                logger.error(f"Could not watch {directory}: {e}")
                return
            logger.debug(f"Waiting for {path / self.config.watch_path}")
            self.pending[path] = directory
            # Check again for anything created before the watch was in place.

    def untrack(self, path: Path) -> None:
        """Stop waiting for `path` to qualify."""
        if (directory := self.pending.pop(path, None)) is None:
            return
        try:
            self.root_watcher.remove_watch(directory)
        except OSError as e:
            logger.error(f"Could not stop watching {directory}: {e}")

    def rescan(self) -> None:
        """Reconcile repositories and pending directories with a fresh listing."""
        candidates = list(fs.entries(self.config.repos_root))
        self.repos.sync(candidates)
        for path in [*candidates, *self.pending]:
            self.track(path)

    def process_root_event(self, event: Event) -> None:
        logger.debug(f"Root event: {event}")
        root = self.config.repos_root
        if Mask.Q_OVERFLOW in event.mask:
            logger.warning("Repos root event queue overflowed. Rescanning.")
            self.rescan()
            return
        if event.path is None:
            return
        if Mask.IGNORED in event.mask:
            self.process_dropped_watch(event.path)
            return
        try:
            relative = event.path.relative_to(root)
        except ValueError:
            return
        if not relative.parts:
            return
        path = root / relative.parts[0]
        if len(relative.parts) > 1:
            # Something appeared inside a pending directory.
            if path in self.pending:
                self.track(path)
        elif event.mask & ADD_MASK:
            self.track(path)
        elif event.mask & REMOVE_MASK:
            self.repos.try_remove(path)
            self.untrack(path)

    def process_dropped_watch(self, directory: Path) -> None:
        """Handle a root instance watch that the kernel removed on its own."""
        if directory == self.config.repos_root:
            logger.error(f"Repos root {directory} is no longer watched.")
            return
        for path, watched in list(self.pending.items()):
            if watched == directory:
                del self.pending[path]
                self.track(path)

    async def process_file_event(self, event: Event) -> None:
        logger.debug(f"File event: {event}")
        if event.path is None:
            if Mask.Q_OVERFLOW in event.mask:
                logger.warning("File event queue overflowed. Changes were missed.")
            return
        if Mask.IGNORED in event.mask:
            # The watch subpath itself went away. Wait for it to come back.
            if (repo := self.repos.discard_target(event.path)) is not None:
                self.track(repo)
            return
        repo = fs.resolve_repo(
            event.path, self.config.repos_root, self.config.watch_regexp
        )
        if repo is None:
            return
        await self.execute(repo)

    async def execute(self, repo: Path) -> None:
        """Run the configured command in `repo`, logging the outcome."""
        command = self.config.execute
        logger.info(f'Executing "{command}" in "{repo}"')
        try:
            output = await self.runner(command, repo)
        except CommandError:
            # Already reported by the runner.
            return
        except OSError as e:
            logger.error(f'Could not execute "{command}" in "{repo}": {e}')
            return
        if output:
            logger.info(output.rstrip("\n"))
