# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import os
import subprocess
from typing import List, Optional, Protocol

from fuse_abort.types import ExitCode


class ShellCommandOut(Protocol):
    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    def check_returncode(self) -> None: ...


def handle_subprocess_exception(exc: Exception) -> ShellCommandOut:
    if isinstance(exc, subprocess.TimeoutExpired):
        return subprocess.CompletedProcess(
            args=[exc.cmd],
            returncode=ExitCode.TIMEOUT.value,
            stdout="Error command timeout because of timeout setting.\n",
        )
    elif isinstance(exc, FileNotFoundError):
        path = os.environ.get("PATH", "")
        return subprocess.CompletedProcess(
            args=[exc.filename] if exc.filename else [],
            returncode=ExitCode.COMMAND_NOT_FOUND.value,
            stdout=f"Error: could not find executable '{exc.filename}'. Current PATH: {path}\n",
        )
    else:
        return subprocess.CompletedProcess(
            args=[],
            returncode=ExitCode.ERROR.value,
            stdout=f"Error: subprocess could not be run: {exc}\n",
        )


def run_command(
    cmd: List[str], timeout_secs: Optional[int] = None
) -> subprocess.CompletedProcess:
    """Run `cmd` without a shell, returning its combined stdout and stderr as a string."""
    return subprocess.run(
        cmd,
        encoding="utf-8",
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        timeout=timeout_secs,
    )
