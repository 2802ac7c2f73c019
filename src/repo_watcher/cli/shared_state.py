"""State passed through `click` commands."""
from dataclasses import dataclass
from pathlib import Path


@dataclass
class SharedState:
    config_path: Path | None = None
    """Explicit config file. If None, the file is searched for."""

    log_level: str = "INFO"
