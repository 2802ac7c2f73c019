import rich
import pytest


@pytest.fixture(autouse=True)
def wide_console() -> None:
    """Keep long temporary paths on a single line in captured output."""
    rich.reconfigure(width=1000)
