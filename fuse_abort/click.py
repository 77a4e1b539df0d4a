# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.
"""Shared click options for fuse-abort commands."""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, get_args, Mapping, TypeVar, Union

import click
import tomli
from typeguard import typechecked
from typing_extensions import ParamSpec

from fuse_abort.types import LOG_LEVEL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/fuse-abort/config.toml"

log_level_option = click.option(
    "--log-level",
    type=click.Choice(get_args(LOG_LEVEL)),
    default="WARNING",
    show_default=True,
    help="Logging verbosity level. DEBUG traces every step.",
)

log_folder_option = click.option(
    "--log-folder",
    type=click.Path(file_okay=False),
    default=None,
    help="The directory where logs will be stored. Logs go to stderr if omitted.",
)

timeout_option = click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=30,
    show_default=True,
    help="Seconds until the mount command times out.",
)


def ensure_dict(value: Any) -> Dict[str, Any]:
    if not isinstance(value, Mapping):
        raise TypeError(f"Expected a table, but got {type(value).__name__}")
    return dict(value)


_Tv = TypeVar("_Tv")
_ClickCallback = Callable[[click.Context, click.Parameter, _Tv], None]


def _set_default_map(name: str) -> _ClickCallback[Path]:
    @typechecked
    def cb(ctx: click.Context, param: click.Parameter, path: Path) -> None:
        if not path.exists() or path == Path("/dev/null"):
            return

        logger.info(f"Reading config from {path}...")
        with path.open("rb") as f:
            try:
                conf = tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise click.BadParameter(
                    f"{path} does not contain valid TOML.",
                    ctx=ctx,
                    param=param,
                ) from e
        try:
            default_map = ensure_dict(conf[name])
        except KeyError as e:
            raise click.BadParameter(
                f"'{name}' is not a top-level table name in {path}. Valid names: {list(conf.keys())}",
                ctx=ctx,
                param=param,
            ) from e
        except TypeError as e:
            raise click.BadParameter(
                f"'{name}' in {path} is not a table.", ctx=ctx, param=param
            ) from e
        logger.info(f"Loaded table '{name}'.")

        ctx.default_map = {**(ctx.default_map or {}), **default_map}

    return cb


_P = ParamSpec("_P")
_R = TypeVar("_R")


def toml_config_option(
    name: str,
    *,
    default_config_path: Union[str, Path] = DEFAULT_CONFIG_PATH,
) -> Callable[[Callable[_P, _R]], Callable[_P, _R]]:
    """Load default option values from a TOML config file.
    Adds a `--config` option to the given command which takes a path. A non-existent
    path or `/dev/null` is treated as an empty table.

    Precedence (lowest to highest):
    * `default` argument to `click.option`
    * the value in the config file
    * value passed at the command line

    Parameters:
        name: The top-level table name in the config file containing the default values
            to use.
        default_config_path: The path from which to load the config if the option is
            omitted at the command line.
    """

    def decorator(f: Callable[_P, _R]) -> Callable[_P, _R]:
        return click.option(
            "--config",
            type=click.Path(dir_okay=False, path_type=Path),
            callback=_set_default_map(name),
            default=default_config_path,
            show_default=True,
            # evaluated before the other options so that their defaults come from it
            is_eager=True,
            expose_value=False,
            help=(
                f"Load option values from table '{name}' in the given TOML config file. "
                "A non-existent path or '/dev/null' are ignored and treated as empty tables."
            ),
        )(f)

    return decorator
