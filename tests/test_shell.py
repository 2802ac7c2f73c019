import asyncio
import logging
from pathlib import Path

import pytest

from repo_watcher.shell import CommandError, run_command


def test_run_command_output(tmp_path: Path) -> None:
    output = asyncio.run(run_command("echo hello", tmp_path))
    assert output == "hello\n"


def test_run_command_working_directory(tmp_path: Path) -> None:
    output = asyncio.run(run_command("pwd", tmp_path))
    assert Path(output.strip()) == tmp_path


def test_run_command_shell_syntax(tmp_path: Path) -> None:
    (tmp_path / "a.txt").touch()
    output = asyncio.run(run_command("ls *.txt | wc -l && echo done", tmp_path))
    assert output.split() == ["1", "done"]


def test_run_command_failure(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR)
    with pytest.raises(CommandError) as info:
        asyncio.run(run_command("echo out; echo err >&2; exit 3", tmp_path))

    assert info.value.returncode == 3
    assert info.value.output == "out\n"
    assert info.value.stderr == "err\n"
    assert "exited with status 3" in str(info.value)
    assert any("stderr:\nerr" in m for m in caplog.messages)


def test_run_command_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        asyncio.run(run_command("true", tmp_path / "missing"))
