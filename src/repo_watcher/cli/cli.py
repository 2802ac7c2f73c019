"""User-facing command-line interface using `click`.

This is effectively the top-level code when the tool is executed as a program.

Any code directly interfacing with `rich` is housed here to avoid standalone
parts of the code being tied up with console output.

"""

import asyncio
import logging
from pathlib import Path
from sys import exit

import rich_click as click
import tomlkit
from rich import print
from rich.markup import escape
from rich_click import option

from .. import VERSION, fs
from ..logs import setup_logging
from ..watcher import RepoWatcher, StartupError
from . import Group, load_config, repos_table
from .decorators import pass_shared_state
from .shared_state import SharedState

logger = logging.getLogger(__name__)

PROGRAM_NAME = "repo-watcher"
"""Program name in help messages."""


def set_log_level(context: click.Context, param: click.Parameter, level: str) -> str:
    """Eager callback for --log-level flag."""
    setup_logging(level)
    return level


@click.version_option(VERSION, "--version", "-v", prog_name=PROGRAM_NAME)
@click.group(
    cls=Group,
    context_settings=dict(
        help_option_names=["-h", "--help"], auto_envvar_prefix="REPO_WATCHER"
    ),
    epilog=f"Version: {VERSION}",
)
@option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    show_envvar=True,
    help="Path to configuration TOML file. If not specified, repo-watcher.toml is "
    "searched for in the current directory, its parents, and the user config "
    "directory.",
)
@option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    callback=set_log_level,
    is_eager=True,
    show_envvar=True,
    help="Only display logs at or above this level.",
)
@pass_shared_state
def main(state: SharedState, config_path: Path | None, log_level: str) -> None:
    """Run a command in repositories whose files change."""
    state.config_path = config_path
    state.log_level = log_level.upper()


@main.command(linux_only=True)
@option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for info.log and error.log. "
    "Overrides ``log_dir`` from the config file.",
)
@pass_shared_state
def watch(state: SharedState, log_dir: Path | None) -> None:
    """
    Watch repositories and run the configured command on changes.

    Every directory directly inside ``repos_root`` that contains ``watch_path``
    is a repository. Whenever a file inside a repository's ``watch_path`` is
    written and its name matches ``watch_regexp``, ``execute`` is run with
    ``sh -c`` inside that repository.

    Repositories created or removed while this command runs are picked up
    automatically.
    """
    config = load_config()
    log_dir = log_dir or config.log_dir
    setup_logging(state.log_level, log_dir)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Could not create log directory {log_dir}: {e}")

    watcher = RepoWatcher(config)
    try:
        asyncio.run(watcher.run())
    except StartupError as e:
        logger.error(str(e))
        print(f":thumbs_down: {escape(str(e))}")
        exit(1)
    except KeyboardInterrupt:
        print("Watch [magenta]cancelled[/magenta] by keyboard interrupt.")
    finally:
        watcher.close()


@main.command
def repos() -> None:
    """List the repositories that would currently be watched."""
    config = load_config()
    root = config.repos_root
    if not root.is_dir():
        print(
            f":thumbs_down: Repos root [red]{escape(str(root))}[/] is not a directory."
        )
        exit(1)
    if found := list(fs.repos(root, config.watch_path)):
        print(repos_table(config, found))
    else:
        print(
            f":person_shrugging: [blue]No[/] repositories containing "
            f"{escape(str(config.watch_path))} found in {escape(str(root))}."
        )


@main.command
def config() -> None:
    """Show the resolved configuration."""
    click.echo(tomlkit.dumps(load_config().to_toml()), nl=False)


if __name__ == "__main__":
    main()
