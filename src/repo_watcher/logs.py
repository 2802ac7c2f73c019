"""Logging setup: rich console output plus per-kind append-only log files."""

import logging
from contextlib import suppress
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


class KindFileHandler(logging.Handler):
    """Appends each record's message to ``info.log`` or ``error.log``.

    Records at ERROR and above go to ``error.log``, everything else to
    ``info.log``. Files are opened per record in append mode and created on
    demand.

    Writing is best-effort: if a log file cannot be opened or written, the
    record is dropped without raising or reporting, so a full disk or a
    read-only log directory never interrupts the watch loops. Characters the
    file encoding cannot represent (e.g. undecodable bytes in file names) are
    written as backslash escapes. Any other failure goes to `handleError`.
    """

    def __init__(self, log_dir: Path, level: int | str = logging.NOTSET) -> None:
        super().__init__(level)
        self.log_dir = log_dir

    def path_for(self, record: logging.LogRecord) -> Path:
        kind = "error" if record.levelno >= logging.ERROR else "info"
        return self.log_dir / f"{kind}.log"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = record.getMessage() + "\n"
            path = self.path_for(record)
            with suppress(OSError):
                with path.open("a", encoding="utf-8", errors="backslashreplace") as f:
                    f.write(line)
        except Exception:
            self.handleError(record)


def setup_logging(level: str = "INFO", log_dir: Path | None = None) -> None:
    """Send logs to the console through `rich`, and to `log_dir` if given."""
    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            markup=False,
            omit_repeated_times=False,
        ),
    ]
    if log_dir is not None:
        handlers.append(KindFileHandler(log_dir, level=logging.INFO))
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )
