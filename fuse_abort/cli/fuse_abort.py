# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Force-unmount a FUSE mountpoint by aborting its connection through fusectl."""

import logging
import sys
from typing import Optional

import click
from typeguard import typechecked

from fuse_abort._version import __version__
from fuse_abort.click import (
    log_folder_option,
    log_level_option,
    timeout_option,
    toml_config_option,
)
from fuse_abort.errors import FuseAbortError
from fuse_abort.mountinfo import DEFAULT_MOUNTINFO_PATH
from fuse_abort.resolver import (
    DEFAULT_CONTROL_DIR,
    force_unmount,
    FuseControl,
    FuseControlImpl,
)
from fuse_abort.types import ExitCode, LOG_LEVEL
from fuse_abort.utils.logging import init_logger

LOGGER_NAME = "fuse_abort"


def usage(prog: str) -> str:
    return f"Please input mount directory\nthe usage: {prog} <MOUNT DIR>"


@click.command(epilog=f"fuse-abort version: {__version__}")
@toml_config_option("fuse_abort")
@click.argument("mount_dir", required=False)
@click.option(
    "--control-dir",
    type=click.Path(file_okay=False),
    default=DEFAULT_CONTROL_DIR,
    show_default=True,
    help="Where the fusectl filesystem is (or will be) mounted.",
)
@click.option(
    "--mountinfo",
    type=click.Path(dir_okay=False),
    default=DEFAULT_MOUNTINFO_PATH,
    show_default=True,
    help="The mount table to read.",
)
@timeout_option
@log_level_option
@log_folder_option
@click.version_option(__version__)
@click.pass_obj
@typechecked
def main(
    obj: Optional[FuseControl],
    mount_dir: Optional[str],
    control_dir: str,
    mountinfo: str,
    timeout: int,
    log_level: LOG_LEVEL,
    log_folder: Optional[str],
) -> None:
    """Abort the FUSE connection serving MOUNT_DIR so that it can be unmounted.

    MOUNT_DIR is matched as a substring against the mount points of all FUSE
    mounts; if several match, the last one listed in the mount table is aborted.
    """
    if not mount_dir:
        click.echo(usage(click.get_current_context().command_path))
        sys.exit(ExitCode.ERROR.value)

    logger, handler = init_logger(
        logger_name=LOGGER_NAME,
        log_dir=log_folder,
        log_name=LOGGER_NAME + ".log",
        log_level=getattr(logging, log_level),
    )
    try:
        if obj is None:
            obj = FuseControlImpl(mountinfo_path=mountinfo)

        logger.debug(
            f"fuse-abort: mount_dir: {mount_dir}, control_dir: {control_dir}, mountinfo: {mountinfo}"
        )
        try:
            connection_id = force_unmount(
                obj,
                target_path=mount_dir,
                control_dir=control_dir,
                timeout_secs=timeout,
                logger=logger,
            )
        except FuseAbortError as e:
            logger.error(str(e))
            click.echo(f"Error: {e}", err=True)
            sys.exit(e.exit_code)

        if connection_id is None:
            logger.info(f"{mount_dir} is not a FUSE mount, nothing to abort")
        sys.exit(ExitCode.OK.value)
    finally:
        logger.removeHandler(handler)
        handler.close()


if __name__ == "__main__":
    main()
