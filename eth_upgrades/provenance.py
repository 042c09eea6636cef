"""Source code provenance of deployments.

Which git commit were the deployed contracts compiled from.
"""

import logging
import subprocess
from pathlib import Path
from shutil import which
from typing import Optional

logger = logging.getLogger(__name__)


#: Recorded when we are not inside a git checkout
UNKNOWN_COMMIT_HASH = "unknown"


def get_latest_commit_hash(repo_path: Optional[Path] = None) -> str:
    """Get the current git commit hash.

    Best effort. Deployments must not fail because they are run
    from a tarball or a container without git.

    :param repo_path:
        Git checkout, current working directory by default

    :return:
        Full commit hash or :py:data:`UNKNOWN_COMMIT_HASH`
    """
    git = which("git")
    if git is None:
        logger.warning("No git command in path, cannot record the commit hash")
        return UNKNOWN_COMMIT_HASH

    try:
        result = subprocess.run(
            [git, "rev-parse", "HEAD"],
            cwd=repo_path,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("git rev-parse failed: %s", e)
        return UNKNOWN_COMMIT_HASH

    if result.returncode != 0:
        logger.warning("Not a git checkout: %s", repo_path or Path.cwd())
        return UNKNOWN_COMMIT_HASH

    return result.stdout.decode("utf-8").strip() or UNKNOWN_COMMIT_HASH
