"""Code common to modules in this package."""

from collections.abc import Iterable
from pathlib import Path
from platform import system
from sys import exit
from typing import Any

import rich_click as click
from rich import print
from rich.markup import escape
from rich.table import Table

from ..config import Config, ConfigError, find_config_path
from .shared_state import SharedState


def repos_table(config: Config, repos: Iterable[Path]) -> Table:
    """Render repositories and the directory watched in each into a table."""
    table = Table("Repository", "Watched directory")
    for repo in repos:
        table.add_row(escape(str(repo)), escape(str(repo / config.watch_path)))
    return table


def load_config() -> Config:
    """Loads the configuration selected on the command line.

    If the file is missing or invalid, we exit the process with an error.
    """
    state = click.get_current_context().ensure_object(SharedState)
    path = state.config_path or find_config_path()
    try:
        return Config.load(path)
    except ConfigError as e:
        print(f":thumbs_down: {escape(str(e))}")
        exit(1)


class Command(click.RichCommand):
    """
    click.Command subclass with custom features.

    If ``linux_only=True`` is provided in __init__, this command will exit
    immediately when run on a non-Linux platform.
    """

    linux_only: bool

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.linux_only = kwargs.pop("linux_only", False)
        if self.linux_only:
            kwargs["epilog"] = "This command is only supported on Linux"
        super().__init__(*args, **kwargs)

    def invoke(self, context: click.Context) -> Any:
        if self.linux_only and system() != "Linux":
            exit("This command is only supported on Linux currently.")
        return super().invoke(context)


class Group(click.RichGroup):
    """click.Group subclass that uses our Command class."""

    command_class = Command

    def list_commands(self, context: click.Context) -> list[str]:
        """List commands in declaration order."""
        return list(self.commands)
