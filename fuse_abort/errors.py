# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Failures which terminate a fuse-abort run."""

from typing import Optional

from fuse_abort.types import ExitCode


class FuseAbortError(Exception):
    """Base class for fatal errors. `exit_code` is the process exit status."""

    exit_code: int = ExitCode.ERROR.value


class MountInfoParseError(FuseAbortError):
    def __init__(self, line: str, reason: str):
        super().__init__(f"Malformed mountinfo line ({reason}): {line!r}")
        self.line = line


class MountInfoReadError(FuseAbortError):
    def __init__(self, path: str, cause: OSError):
        super().__init__(f"Could not read mount table {path}: {cause}")
        self.path = path


class ControlFsMountError(FuseAbortError):
    """Mounting the fusectl filesystem failed.

    The exit status of the `mount` command is propagated to the caller.
    """

    def __init__(self, control_dir: str, returncode: int, output: Optional[str]):
        detail = (output or "").strip()
        msg = f"Failed to mount fusectl at {control_dir} (exit status {returncode})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.control_dir = control_dir
        if returncode < 0:
            # killed by signal -returncode, reported as 128 + signum like a shell
            self.exit_code = 128 - returncode
        else:
            self.exit_code = returncode or ExitCode.ERROR.value
        self.output = output


class AbortWriteError(FuseAbortError):
    def __init__(self, abort_file: str, cause: OSError):
        super().__init__(f"Failed to write abort file {abort_file}: {cause}")
        self.abort_file = abort_file
        self.errno = cause.errno
