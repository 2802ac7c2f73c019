from .fs import (
    canonical,
    deepest_existing,
    entries,
    is_repo,
    repos,
    resolve_repo,
    watch_target,
)
from .inotify import Event, INotify

__all__ = [
    "Event",
    "INotify",
    "canonical",
    "deepest_existing",
    "entries",
    "is_repo",
    "repos",
    "resolve_repo",
    "watch_target",
]
