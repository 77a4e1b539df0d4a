# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Resolve a FUSE mountpoint to its connection and abort it through fusectl.

Writing to `<control dir>/<minor>/abort` makes the kernel tear down the connection:
blocked requests are woken up with ENOTCONN and the mountpoint can be unmounted even
when the userspace daemon serving it is unresponsive.

The mount table is read without any locking, so mounts created or removed by other
processes while this runs may be missed.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

import click

from fuse_abort.errors import AbortWriteError, ControlFsMountError
from fuse_abort.mountinfo import DEFAULT_MOUNTINFO_PATH, MountInfoFileClient
from fuse_abort.schemas.mount import ConnectionId, MountInfo
from fuse_abort.subprocess import (
    handle_subprocess_exception,
    run_command,
    ShellCommandOut,
)

DEFAULT_CONTROL_DIR = "/sys/fs/fuse/connections"
CONTROL_FS_TYPE = "fusectl"


class FuseControl(Protocol):
    def get_mount_info(self, logger: logging.Logger) -> Iterable[MountInfo]: ...

    def mount_control_fs(
        self, control_dir: str, timeout_secs: int, logger: logging.Logger
    ) -> ShellCommandOut: ...

    def write_abort(
        self, abort_file: str, message: str, logger: logging.Logger
    ) -> None: ...


@dataclass
class FuseControlImpl:
    mountinfo_path: str = DEFAULT_MOUNTINFO_PATH

    def get_mount_info(self, logger: logging.Logger) -> Iterable[MountInfo]:
        logger.debug(f"Reading mount table from {self.mountinfo_path}")
        return MountInfoFileClient(self.mountinfo_path).get_all_mount_info()

    def mount_control_fs(
        self, control_dir: str, timeout_secs: int, logger: logging.Logger
    ) -> ShellCommandOut:
        cmd = ["mount", "-t", CONTROL_FS_TYPE, CONTROL_FS_TYPE, control_dir]
        logger.info(f"Running command {' '.join(cmd)}")
        try:
            return run_command(cmd, timeout_secs)
        except (subprocess.TimeoutExpired, OSError) as e:
            return handle_subprocess_exception(e)

    def write_abort(
        self, abort_file: str, message: str, logger: logging.Logger
    ) -> None:
        logger.info(f"Writing to {abort_file}")
        with open(abort_file, "w", errors="surrogateescape") as f:
            f.write(message + "\n")


def is_control_fs_mounted(mounts: Iterable[MountInfo], control_dir: str) -> bool:
    return any(m.mount_point == Path(control_dir) for m in mounts)


def ensure_control_fs_mounted(
    obj: FuseControl, control_dir: str, timeout_secs: int, logger: logging.Logger
) -> bool:
    """Mount fusectl at `control_dir` unless it is already mounted there.

    Returns True if a mount was performed.

    Raises:
        ControlFsMountError if the mount command fails.
    """
    if is_control_fs_mounted(obj.get_mount_info(logger), control_dir):
        click.echo("FUSECTL IS MOUNTED")
        logger.debug(f"{CONTROL_FS_TYPE} already mounted at {control_dir}")
        return False

    click.echo("MOUNT FUSECTL")
    ret = obj.mount_control_fs(control_dir, timeout_secs=timeout_secs, logger=logger)
    if ret.returncode != 0:
        raise ControlFsMountError(control_dir, ret.returncode, ret.stdout)
    logger.info(f"Mounted {CONTROL_FS_TYPE} at {control_dir}")
    return True


def find_fuse_mounts(mounts: Iterable[MountInfo], target_path: str) -> List[MountInfo]:
    """FUSE mounts whose mount point contains `target_path` as a substring.

    Matching is textual, so "/mnt/a" also selects "/mnt/ab" and "/data/mnt/a".
    """
    return [
        m
        for m in mounts
        if "fuse" in m.filesystem_type and target_path in m.mount_point.as_posix()
    ]


def resolve_connection_id(
    mounts: Iterable[MountInfo], target_path: str, logger: logging.Logger
) -> Optional[ConnectionId]:
    """Return the connection id of the last listed FUSE mount matching `target_path`,
    or None if nothing matches.
    """
    matches = find_fuse_mounts(mounts, target_path)
    if not matches:
        logger.debug(f"No FUSE mount matches {target_path}")
        return None

    if len(matches) > 1:
        candidates = ", ".join(
            f"{m.mount_point.as_posix()} ({m.device_id})" for m in matches
        )
        logger.warning(
            f"{len(matches)} FUSE mounts match {target_path}: {candidates}. "
            f"Using the last listed one."
        )
    chosen = matches[-1]
    logger.debug(
        f"Resolved {target_path} to {chosen.mount_point.as_posix()} "
        f"({chosen.filesystem_type}, device {chosen.device_id})"
    )
    return ConnectionId(chosen.minor)


def abort_file_path(control_dir: str, connection_id: ConnectionId) -> str:
    return os.path.join(control_dir, str(connection_id), "abort")


def abort_connection(
    obj: FuseControl,
    control_dir: str,
    connection_id: ConnectionId,
    target_path: str,
    logger: logging.Logger,
) -> str:
    """Abort the FUSE connection `connection_id`.

    The status line is echoed and written to the abort file. Any process with I/O
    pending on the mount gets an error.

    Raises:
        AbortWriteError if the abort file cannot be written, e.g. the connection is
        already gone or the caller lacks permission.
    """
    abort_file = abort_file_path(control_dir, connection_id)
    message = f"UMOUNT FUSE DIR={target_path} MINOR={connection_id}"
    click.echo(message)
    try:
        obj.write_abort(abort_file, message, logger=logger)
    except OSError as e:
        raise AbortWriteError(abort_file, e) from e
    logger.info(f"Aborted FUSE connection {connection_id} for {target_path}")
    return abort_file


def force_unmount(
    obj: FuseControl,
    target_path: str,
    control_dir: str,
    timeout_secs: int,
    logger: logging.Logger,
) -> Optional[ConnectionId]:
    """Ensure fusectl is mounted, then abort the connection behind `target_path`.

    Returns the aborted connection id, or None if `target_path` is not a FUSE mount.
    """
    ensure_control_fs_mounted(obj, control_dir, timeout_secs, logger)

    connection_id = resolve_connection_id(
        obj.get_mount_info(logger), target_path, logger
    )
    if connection_id is None:
        click.echo(f"{target_path} IS NOT MOUNTED")
        return None

    abort_connection(obj, control_dir, connection_id, target_path, logger)
    return connection_id
