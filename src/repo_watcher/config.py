"""Watcher configuration."""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import reduce
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit import TOMLDocument
from tomlkit.exceptions import ParseError
from tomlkit.items import Item

from .dirs import app_dir
from .fs import INotify, canonical

logger = logging.getLogger(__name__)

Mask = INotify.Mask

CONFIG_FILE_NAME = "repo-watcher.toml"

EVENT_KINDS = (
    Mask.ACCESS,
    Mask.MODIFY,
    Mask.ATTRIB,
    Mask.CLOSE_WRITE,
    Mask.CLOSE_NOWRITE,
    Mask.OPEN,
    Mask.MOVED_FROM,
    Mask.MOVED_TO,
    Mask.CREATE,
    Mask.DELETE,
)
"""File event kinds that may be selected with the ``events`` key."""

DEFAULT_EVENTS = Mask.CLOSE_WRITE | Mask.MOVED_TO
"""One event per completed write, and one per file renamed into place."""


class ConfigError(ValueError):
    """Configuration could not be read or is invalid."""


def parse_events(names: Iterable[str]) -> INotify.Mask:
    """Combine event kind names (e.g. ``["CLOSE_WRITE", "moved_to"]``) into a mask."""
    allowed = {m.name: m for m in EVENT_KINDS}
    masks = []
    for name in names:
        if (mask := allowed.get(str(name).upper())) is None:
            raise ConfigError(
                f"Unknown event kind {name!r}. Expected one of: {', '.join(allowed)}"
            )
        masks.append(mask)
    if not masks:
        raise ConfigError("At least one event kind is required.")
    return reduce(Mask.__or__, masks)


@dataclass(frozen=True)
class Config:
    """Settings for a watcher. Immutable once loaded."""

    repos_root: Path
    """Directory whose children are the repositories."""

    watch_path: Path
    """Subpath inside each repository to watch, relative to the repository."""

    watch_regexp: re.Pattern[str]
    """Pattern searched for in the basename of changed files."""

    execute: str
    """Shell command line run in the repository after a matching change."""

    events: INotify.Mask = DEFAULT_EVENTS
    """File events inside watched subpaths that count as a change."""

    log_dir: Path = field(default_factory=Path.cwd)
    """Directory holding ``info.log`` and ``error.log``."""

    @staticmethod
    def from_toml(document: TOMLDocument, base_dir: Path | None = None) -> "Config":
        """Build a Config from a parsed TOML document.

        Relative ``repos_root`` and ``log_dir`` values are interpreted relative
        to `base_dir`, which defaults to the current directory.
        """
        base_dir = base_dir or Path.cwd()

        def get(key: str, default: Any = None) -> Any:
            value = document.get(key, default)
            if value is None:
                raise ConfigError(f"Missing required key {key!r}.")
            if isinstance(value, Item):
                value = value.unwrap()
            return value

        def get_str(key: str, default: str | None = None) -> str:
            value = get(key, default)
            if not isinstance(value, str):
                raise ConfigError(f"{key!r} must be a string, not {value!r}.")
            return value

        watch_path = Path(get_str("watch_path"))
        if watch_path.is_absolute():
            raise ConfigError(f"'watch_path' must be relative: {watch_path}")

        regexp = get_str("watch_regexp")
        try:
            pattern = re.compile(regexp)
        except re.error as e:
            raise ConfigError(f"Invalid 'watch_regexp' {regexp!r}: {e}") from e

        events = get("events", ["CLOSE_WRITE", "MOVED_TO"])
        if not isinstance(events, list):
            raise ConfigError(f"'events' must be a list, not {events!r}.")

        return Config(
            repos_root=canonical(base_dir / get_str("repos_root")),
            watch_path=watch_path,
            watch_regexp=pattern,
            execute=get_str("execute"),
            events=parse_events(events),
            log_dir=canonical(base_dir / get_str("log_dir", ".")),
        )

    @staticmethod
    def load(path: Path) -> "Config":
        """Read and validate the TOML configuration file at `path`."""
        logger.debug(f"Loading config file: {path}")
        try:
            with path.open("r") as f:
                document = tomlkit.load(f)
        except OSError as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e
        except ParseError as e:
            raise ConfigError(f"Malformed config file {path}: {e}") from e
        return Config.from_toml(document, base_dir=canonical(path).parent)

    def to_toml(self) -> TOMLDocument:
        document = tomlkit.document()
        document["repos_root"] = str(self.repos_root)
        document["watch_path"] = str(self.watch_path)
        document["watch_regexp"] = self.watch_regexp.pattern
        document["execute"] = self.execute
        document["events"] = [m.name for m in EVENT_KINDS if m in self.events]
        document["log_dir"] = str(self.log_dir)
        return document


def find_config_path(start_dir: Path | None = None) -> Path:
    """Search for an existing config file.

    Starts searching in `start_dir` (the current directory by default), and
    then continues to iterate through parent directories. If no existing file
    is found, a path to (a possibly non-existent) config file in the user's
    config directory is used.
    """
    start_dir = start_dir or Path.cwd()
    candidates = [
        d / CONFIG_FILE_NAME
        for d in (
            start_dir,
            *start_dir.parents,
            app_dir,
        )
    ]
    for path in candidates:
        logger.debug(f"Trying config file candidate: {path}")
        if path.exists():
            logger.info(f"Using config file: {path}")
            return path
    fallback = candidates[-1]
    logger.info(f"No existing config file found. Will use {fallback}")
    return fallback
