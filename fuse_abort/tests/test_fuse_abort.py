# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
import errno
import logging
from pathlib import Path
from typing import List

import pytest
from click.testing import CliRunner

from fuse_abort._version import __version__
from fuse_abort.cli.fuse_abort import main
from fuse_abort.tests.fakes import FakeFuseControl, FakeShellCommandOut

FUSECTL_LINE = "27 26 0:37 / /sys/fs/fuse/connections rw,relatime - fusectl fusectl rw"
ROOT_LINE = "24 1 259:2 / / rw,relatime shared:1 - ext4 /dev/root rw"

# keep the tests independent of a config file installed on the host
NO_CONFIG = ["--config", "/dev/null"]


def table(*lines: str) -> str:
    return "\n".join(lines) + "\n"


@pytest.mark.parametrize("args", [[], [""]])
def test_missing_mount_dir(args: List[str]) -> None:
    runner = CliRunner()
    obj = FakeFuseControl(mount_table=table(ROOT_LINE))

    result = runner.invoke(main, NO_CONFIG + args, obj=obj, prog_name="fuse-abort")

    assert result.exit_code == 1
    assert result.stdout == (
        "Please input mount directory\nthe usage: fuse-abort <MOUNT DIR>\n"
    )
    assert obj.mount_calls == []
    assert obj.aborts == {}


def test_not_mounted() -> None:
    runner = CliRunner()
    obj = FakeFuseControl(mount_table=table(ROOT_LINE, FUSECTL_LINE))

    result = runner.invoke(main, NO_CONFIG + ["/mnt/fuse"], obj=obj)

    assert result.exit_code == 0
    assert result.stdout == "FUSECTL IS MOUNTED\n/mnt/fuse IS NOT MOUNTED\n"
    assert obj.mount_calls == []
    assert obj.aborts == {}


def test_abort_single_match() -> None:
    runner = CliRunner()
    obj = FakeFuseControl(
        mount_table=table(
            ROOT_LINE, FUSECTL_LINE, "40 24 0:7 / /mnt/fuse rw - fuse.sshfs h:/ rw"
        )
    )

    result = runner.invoke(main, NO_CONFIG + ["/mnt/fuse"], obj=obj)

    assert result.exit_code == 0
    assert obj.mount_calls == []
    assert obj.aborts == {
        "/sys/fs/fuse/connections/7/abort": "UMOUNT FUSE DIR=/mnt/fuse MINOR=7"
    }
    assert result.stdout.splitlines()[-1] == "UMOUNT FUSE DIR=/mnt/fuse MINOR=7"


def test_abort_last_listed_match(caplog: pytest.LogCaptureFixture) -> None:
    runner = CliRunner()
    obj = FakeFuseControl(
        mount_table=table(
            FUSECTL_LINE,
            "40 24 0:3 / /mnt/fuse rw - fuse.sshfs h:/ rw",
            "41 24 0:9 / /mnt/fuse/nested rw - fuse.sshfs h:/ rw",
        )
    )

    result = runner.invoke(main, NO_CONFIG + ["/mnt/fuse"], obj=obj)

    assert result.exit_code == 0
    assert list(obj.aborts) == ["/sys/fs/fuse/connections/9/abort"]
    assert "2 FUSE mounts match /mnt/fuse" in caplog.text


def test_mounts_control_fs_when_missing() -> None:
    runner = CliRunner()
    obj = FakeFuseControl(
        mount_table=table(ROOT_LINE, "40 24 0:7 / /mnt/fuse rw - fuse h rw")
    )

    result = runner.invoke(
        main, NO_CONFIG + ["/mnt/fuse", "--control-dir", "/ctl"], obj=obj
    )

    assert result.exit_code == 0
    assert obj.mount_calls == ["/ctl"]
    assert result.stdout.splitlines()[0] == "MOUNT FUSECTL"
    assert list(obj.aborts) == ["/ctl/7/abort"]


def test_mount_failure_propagates_status(caplog: pytest.LogCaptureFixture) -> None:
    runner = CliRunner()
    obj = FakeFuseControl(
        mount_table=table(ROOT_LINE, "40 24 0:7 / /mnt/fuse rw - fuse h rw"),
        mount_out=FakeShellCommandOut(returncode=32, stdout="mount: permission denied"),
    )

    result = runner.invoke(main, NO_CONFIG + ["/mnt/fuse"], obj=obj)

    assert result.exit_code == 32
    assert isinstance(result.exception, SystemExit)
    assert obj.aborts == {}
    assert "permission denied" in result.stderr
    assert "Failed to mount fusectl" in caplog.text


@pytest.mark.parametrize("err", [errno.ENOENT, errno.EACCES])
def test_abort_write_failure(err: int) -> None:
    runner = CliRunner()
    obj = FakeFuseControl(
        mount_table=table(FUSECTL_LINE, "40 24 0:7 / /mnt/fuse rw - fuse h rw"),
        abort_error=OSError(err, "failed"),
    )

    result = runner.invoke(main, NO_CONFIG + ["/mnt/fuse"], obj=obj)

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Failed to write abort file /sys/fs/fuse/connections/7/abort" in result.stderr


def test_malformed_rows_are_skipped() -> None:
    runner = CliRunner()
    obj = FakeFuseControl(
        mount_table=table(
            FUSECTL_LINE, "garbage", "40 24 0:7 / /mnt/fuse rw - fuse.sshfs h:/ rw"
        )
    )

    result = runner.invoke(main, NO_CONFIG + ["/mnt/fuse"], obj=obj)

    assert result.exit_code == 0
    assert list(obj.aborts) == ["/sys/fs/fuse/connections/7/abort"]
    assert "Skipping mount table row" in result.stderr
    assert "Malformed mountinfo line" in result.stderr


def test_non_utf8_mount_point_elsewhere(tmp_path: Path) -> None:
    control_dir = tmp_path / "connections"
    (control_dir / "7").mkdir(parents=True)
    mountinfo = tmp_path / "mountinfo"
    mountinfo.write_bytes(
        table(
            f"27 26 0:37 / {control_dir} rw,relatime - fusectl fusectl rw",
            "33 24 259:3 / /mnt/caf\udce9 rw - ext4 /dev/sdb1 rw",
            "40 24 0:7 / /mnt/fuse rw - fuse.sshfs h:/ rw",
        ).encode("utf-8", errors="surrogateescape")
    )
    runner = CliRunner()

    result = runner.invoke(
        main,
        NO_CONFIG
        + [
            "/mnt/fuse",
            "--control-dir",
            str(control_dir),
            "--mountinfo",
            str(mountinfo),
        ],
    )

    assert result.exit_code == 0
    assert (control_dir / "7" / "abort").read_text() == (
        "UMOUNT FUSE DIR=/mnt/fuse MINOR=7\n"
    )


def test_end_to_end(tmp_path: Path) -> None:
    """Run against a mount table file and a fake control directory."""
    control_dir = tmp_path / "connections"
    (control_dir / "7").mkdir(parents=True)
    mountinfo = tmp_path / "mountinfo"
    mountinfo.write_text(
        table(
            ROOT_LINE,
            f"27 26 0:37 / {control_dir} rw,relatime - fusectl fusectl rw",
            "40 24 0:7 / /mnt/fuse rw - fuse.sshfs h:/ rw",
        )
    )
    args = NO_CONFIG + [
        "/mnt/fuse",
        "--control-dir",
        str(control_dir),
        "--mountinfo",
        str(mountinfo),
    ]
    runner = CliRunner()

    result = runner.invoke(main, args)

    assert result.exit_code == 0
    assert (control_dir / "7" / "abort").read_text() == (
        "UMOUNT FUSE DIR=/mnt/fuse MINOR=7\n"
    )

    # once the kernel has dropped the connection, a second run reports the failure
    (control_dir / "7" / "abort").unlink()
    (control_dir / "7").rmdir()
    result = runner.invoke(main, args)

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Failed to write abort file" in result.stderr


def test_log_folder(tmp_path: Path) -> None:
    runner = CliRunner()
    obj = FakeFuseControl(mount_table=table(FUSECTL_LINE))

    result = runner.invoke(
        main,
        NO_CONFIG
        + ["/mnt/fuse", "--log-folder", str(tmp_path), "--log-level", "DEBUG"],
        obj=obj,
    )

    assert result.exit_code == 0
    log = (tmp_path / "fuse_abort.log").read_text()
    assert "No FUSE mount matches /mnt/fuse" in log
    assert result.stderr == ""


def test_handlers_are_detached() -> None:
    runner = CliRunner()
    obj = FakeFuseControl(mount_table=table(FUSECTL_LINE))
    before = list(logging.getLogger("fuse_abort").handlers)

    runner.invoke(main, NO_CONFIG + ["/mnt/fuse"], obj=obj)

    assert logging.getLogger("fuse_abort").handlers == before


def test_config_file(tmp_path: Path) -> None:
    config = tmp_path / "config.toml"
    config.write_text(
        """
        [fuse_abort]
        control_dir = "/from/config"
        """
    )
    runner = CliRunner()
    obj = FakeFuseControl(mount_table=table("40 24 0:7 / /mnt/fuse rw - fuse h rw"))

    result = runner.invoke(main, ["--config", str(config), "/mnt/fuse"], obj=obj)

    assert result.exit_code == 0
    assert obj.mount_calls == ["/from/config"]
    assert list(obj.aborts) == ["/from/config/7/abort"]


def test_config_file_overridden_by_command_line(tmp_path: Path) -> None:
    config = tmp_path / "config.toml"
    config.write_text('[fuse_abort]\ncontrol_dir = "/from/config"\n')
    runner = CliRunner()
    obj = FakeFuseControl(mount_table=table("40 24 0:7 / /mnt/fuse rw - fuse h rw"))

    result = runner.invoke(
        main,
        ["/mnt/fuse", "--control-dir", "/from/cli", "--config", str(config)],
        obj=obj,
    )

    assert result.exit_code == 0
    assert obj.mount_calls == ["/from/cli"]


@pytest.mark.parametrize(
    "contents",
    [
        "this is not toml",
        '[other]\ncontrol_dir = "/x"\n',
        'fuse_abort = "not a table"\n',
    ],
)
def test_bad_config_file(tmp_path: Path, contents: str) -> None:
    config = tmp_path / "config.toml"
    config.write_text(contents)
    runner = CliRunner()
    obj = FakeFuseControl(mount_table=table(FUSECTL_LINE))

    result = runner.invoke(main, ["--config", str(config), "/mnt/fuse"], obj=obj)

    assert result.exit_code == 2
    assert obj.mount_calls == []


def test_version() -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout
