# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from enum import Enum
from typing import Literal

LOG_LEVEL = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ExitCode(Enum):
    """Exit statuses of the fuse-abort command.

    Statuses follow the shell conventions of the tool this replaces: 1 for usage and
    generic failures, 127 when a required executable cannot be found. A failing
    `mount` command propagates its own status instead.
    """

    OK = 0
    ERROR = 1
    COMMAND_NOT_FOUND = 127
    TIMEOUT = 128
