# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
from importlib import resources

import pytest

from fuse_abort.tests import data

SAMPLE_MOUNTINFO = "sample-proc-self-mountinfo-output.txt"


def read_data(name: str) -> str:
    return resources.files(data).joinpath(name).read_text()


@pytest.fixture
def sample_mount_table() -> str:
    return read_data(SAMPLE_MOUNTINFO)
