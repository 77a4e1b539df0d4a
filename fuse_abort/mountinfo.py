# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import logging
import re
from pathlib import Path
from typing import Iterable, Iterator, Protocol

from fuse_abort.errors import MountInfoParseError, MountInfoReadError
from fuse_abort.schemas.mount import MountInfo

logger = logging.getLogger(__name__)

DEFAULT_MOUNTINFO_PATH = "/proc/self/mountinfo"

# 6 columns before the optional fields, then the separator, fs type and mount source
_MIN_FIELDS = 9
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")
_DEVICE_ID = re.compile(r"^\d+:\d+$")


class MountInfoClient(Protocol):
    """A low-level reader of the process mount table."""

    def get_all_mount_info(self) -> Iterable[MountInfo]:
        """Get /proc/self/mountinfo data"""


def unescape(field: str) -> str:
    r"""Decode the octal escapes the kernel uses for whitespace and backslashes.

    Examples:
    >>> unescape(r"/mnt/my\040dir")
    '/mnt/my dir'
    """
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def as_mount_info(line: str) -> MountInfo:
    mount_info = line.split()
    if len(mount_info) < _MIN_FIELDS:
        raise MountInfoParseError(line, "too few fields")
    try:
        separator_idx = mount_info.index("-", 6)
    except ValueError:
        raise MountInfoParseError(line, "missing '-' separator") from None
    if len(mount_info) < separator_idx + 3:
        raise MountInfoParseError(line, "too few fields after separator")
    if not _DEVICE_ID.match(mount_info[2]):
        raise MountInfoParseError(line, "device id is not major:minor")
    try:
        mount_id = int(mount_info[0])
        parent_id = int(mount_info[1])
    except ValueError:
        raise MountInfoParseError(line, "non-numeric mount id") from None
    return MountInfo(
        mount_id=mount_id,
        parent_id=parent_id,
        device_id=mount_info[2],
        root=Path(unescape(mount_info[3])),
        mount_point=Path(unescape(mount_info[4])),
        mount_options=mount_info[5].split(","),
        optional_fields=mount_info[6:separator_idx],
        filesystem_type=mount_info[separator_idx + 1],
        mount_source=unescape(mount_info[separator_idx + 2]),
        # some filesystems report no super options at all
        super_options=(
            mount_info[separator_idx + 3].split(",")
            if len(mount_info) > separator_idx + 3
            else []
        ),
    )


def parse_mount_info(lines: Iterable[str]) -> Iterator[MountInfo]:
    """Parse mount table rows, skipping blank and malformed ones."""
    for line in lines:
        if not line.strip():
            continue
        try:
            mount = as_mount_info(line)
        except MountInfoParseError as e:
            logger.warning(f"Skipping mount table row: {e}")
            continue
        yield mount


class MountInfoFileClient(MountInfoClient):
    def __init__(self, path: str = DEFAULT_MOUNTINFO_PATH):
        self.path = path

    def get_all_mount_info(self) -> Iterable[MountInfo]:
        # Read eagerly so a failing read surfaces here instead of mid-iteration.
        try:
            # mount points are raw bytes apart from the octal escapes
            with open(self.path, "r", encoding="utf-8", errors="surrogateescape") as file:
                lines = file.readlines()
        except OSError as e:
            raise MountInfoReadError(self.path, e) from e
        return list(parse_mount_info(lines))
