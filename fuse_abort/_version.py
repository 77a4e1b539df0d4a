import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def get_version() -> str:
    if "__file__" in globals():
        root = Path(__file__).absolute().parent
        try:
            version = (root / "version.txt").read_text().strip()
            return version
        except OSError:
            logger.info("Could not find version.txt file", exc_info=True)

    env_version = os.environ.get("FUSE_ABORT_VERSION")
    if env_version is not None:
        return env_version

    # never fail the command because the version is unknown
    return "unknown"


__version__ = get_version()
