"""Async wrapper around Linux inotify API.

https://man7.org/linux/man-pages/man7/inotify.7.html for full inotify
documentation.

Inspired by https://github.com/chrisjbillington/inotify_simple

"""

import asyncio
import logging
import os
import struct
from asyncio import Queue
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager
from ctypes import CDLL, get_errno
from ctypes.util import find_library
from dataclasses import dataclass
from enum import Flag
from errno import EINTR, EINVAL
from functools import wraps
from pathlib import Path
from platform import system
from typing import ParamSpec, cast

P = ParamSpec("P")

logger = logging.getLogger(__name__)


def retry_on_eintr(f: Callable[P, int]) -> Callable[P, int]:
    """Decorator to retry libc-style function on EINTR."""

    @wraps(f)
    def inner(*args: P.args, **kwargs: P.kwargs) -> int:
        while True:
            if (result := f(*args, **kwargs)) != -1:
                return result
            if (errno := get_errno()) != EINTR:
                raise OSError(errno, os.strerror(errno))

    return inner


def libc() -> CDLL:
    """Standard C Library shared object."""
    return CDLL(find_library("c"), use_errno=True)


@retry_on_eintr
def inotify_init1(flags: int) -> int:
    if system() != "Linux":
        raise NotImplementedError
    return cast(int, libc().inotify_init1(flags))


@retry_on_eintr
def inotify_add_watch(fd: int, path: bytes, mask: int) -> int:
    if system() != "Linux":
        raise NotImplementedError
    return cast(int, libc().inotify_add_watch(fd, path, mask))


@retry_on_eintr
def inotify_rm_watch(fd: int, watch_descriptor: int) -> int:
    if system() != "Linux":
        raise NotImplementedError
    return cast(int, libc().inotify_rm_watch(fd, watch_descriptor))


@dataclass
class Event:
    """Corresponds roughly to the inotify_event struct."""

    mask: "INotify.Mask"
    """Bit mask detailing what triggered this event."""

    path: Path | None
    """Path the event relates to (e.g. the file name of a newly created file).

    None for events that are not tied to a watch, i.e. queue overflow.
    """


@asynccontextmanager
async def async_fd_reader(fd: int) -> AsyncIterator[AsyncIterator[bytes]]:
    """Context manager for monitoring a file descriptor for read events with asyncio."""
    queue = Queue[bytes]()

    async def gen() -> AsyncIterator[bytes]:
        """Stream data from queue."""
        while True:
            yield await queue.get()

    loop = asyncio.get_running_loop()
    # The descriptor stays open afterwards; its owner closes it.
    with os.fdopen(fd, "rb", closefd=False) as f:

        def on_readable() -> None:
            # Non-blocking reads return None when there is nothing left.
            if data := f.read():
                queue.put_nowait(data)

        loop.add_reader(fd, on_readable)
        try:
            yield gen()
        finally:
            loop.remove_reader(fd)


class INotify:
    """Wrapper around an inotify instance."""

    class Mask(Flag):
        """Inotify flags as defined in ``inotify.h`` but with ``IN_`` prefix omitted."""

        ACCESS = 0x00000001  # File was accessed
        MODIFY = 0x00000002  # File was modified
        ATTRIB = 0x00000004  # Metadata changed
        CLOSE_WRITE = 0x00000008  # Writable file was closed
        CLOSE_NOWRITE = 0x00000010  # Unwritable file closed
        OPEN = 0x00000020  # File was opened
        MOVED_FROM = 0x00000040  # File was moved from X
        MOVED_TO = 0x00000080  # File was moved to Y
        CREATE = 0x00000100  # Subfile was created
        DELETE = 0x00000200  # Subfile was deleted
        DELETE_SELF = 0x00000400  # Self was deleted
        MOVE_SELF = 0x00000800  # Self was moved

        UNMOUNT = 0x00002000  # Backing fs was unmounted
        Q_OVERFLOW = 0x00004000  # Event queue overflowed
        IGNORED = 0x00008000  # File was ignored

        ONLYDIR = 0x01000000  # only watch the path if it is a directory
        DONT_FOLLOW = 0x02000000  # don't follow a sym link
        EXCL_UNLINK = 0x04000000  # exclude events on unlinked objects
        MASK_ADD = 0x20000000  # add to the mask of an already existing watch
        ISDIR = 0x40000000  # event occurred against dir
        ONESHOT = 0x80000000  # only send event once

    def __init__(self) -> None:
        # Don't transfer file descriptor to subprocesses, and set it up for
        # non-blocking reads.
        self.fd = inotify_init1(os.O_CLOEXEC | os.O_NONBLOCK)
        # Maps watch descriptor values to their Path, and back.
        self.watch_descriptor_to_path: dict[int, Path] = {}
        self.path_to_watch_descriptor: dict[Path, int] = {}

    def add_watch(self, path: Path, mask: "INotify.Mask") -> int:
        """Adds a new path to the inotify watch set.

        Adding a path that is already watched replaces its mask and returns
        the existing descriptor.
        """
        descriptor = inotify_add_watch(self.fd, os.fsencode(path), mask.value)
        self.watch_descriptor_to_path[descriptor] = path
        self.path_to_watch_descriptor[path] = descriptor
        return descriptor

    def remove_watch(self, path: Path) -> None:
        """Removes a path from the inotify watch set.

        Unknown paths are ignored. The kernel drops the watch on its own when
        the watched directory is deleted, so EINVAL from the removal is not an
        error.
        """
        if (descriptor := self.path_to_watch_descriptor.pop(path, None)) is None:
            return
        self.watch_descriptor_to_path.pop(descriptor, None)
        try:
            inotify_rm_watch(self.fd, descriptor)
        except OSError as error:
            if error.errno != EINVAL:
                raise
            logger.debug(f"Watch on {path} was already removed by the kernel.")

    def watched_paths(self) -> set[Path]:
        return set(self.path_to_watch_descriptor)

    def close(self) -> None:
        """Release the inotify instance and all of its watches."""
        if self.fd == -1:
            return
        os.close(self.fd)
        self.fd = -1
        self.watch_descriptor_to_path.clear()
        self.path_to_watch_descriptor.clear()

    async def events(self) -> AsyncIterator[Event]:
        """Asynchronous generator for inotify events."""
        async with async_fd_reader(self.fd) as reader:
            async for data in reader:
                for event in self.parse_events(data):
                    yield event

    def _forget(self, watch_descriptor: int) -> Path | None:
        """Drops a watch the kernel has removed.

        Returns its path, unless the path has since been watched again under a
        new descriptor.
        """
        if (path := self.watch_descriptor_to_path.pop(watch_descriptor, None)) is None:
            return None
        if self.path_to_watch_descriptor.get(path) != watch_descriptor:
            return None
        del self.path_to_watch_descriptor[path]
        return path

    def parse_events(self, data: bytes) -> Iterator[Event]:
        """Parse data from inotify file descriptor into a series of Event objects.

        We assume `data` does not contain any partial event structs.

        Events for descriptors that are no longer registered (e.g. events
        already queued when `remove_watch` was called) are dropped. When the
        kernel removes a watch on its own (the watched directory was deleted
        or its filesystem unmounted), an IGNORED event carrying the watched
        path is yielded.
        """
        EVENT_FORMAT = "iIII"
        EVENT_SIZE = struct.calcsize(EVENT_FORMAT)
        pos = 0
        while pos < len(data):
            watch_descriptor, mask, cookie, name_length = struct.unpack_from(
                EVENT_FORMAT, data, pos
            )
            pos += EVENT_SIZE
            raw_name = data[pos : (pos + name_length)]
            pos += name_length
            event_mask = INotify.Mask(mask)

            if INotify.Mask.Q_OVERFLOW in event_mask:
                yield Event(mask=event_mask, path=None)
                continue
            if INotify.Mask.IGNORED in event_mask:
                # Watches removed through remove_watch are already forgotten.
                if (watched := self._forget(watch_descriptor)) is not None:
                    yield Event(mask=event_mask, path=watched)
                continue
            base_path = self.watch_descriptor_to_path.get(watch_descriptor)
            if base_path is None:
                continue

            # Name is null-terminated if non-empty, but may contain arbitrary extra
            # null bytes at the end.
            if (end := raw_name.find(0)) != -1:
                raw_name = raw_name[:end]
            # Event path is relative to the path corresponding to the watch descriptor
            yield Event(mask=event_mask, path=base_path / os.fsdecode(raw_name))
