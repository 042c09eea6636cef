"""Bunch of random utilities."""

import datetime
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import coloredlogs
from eth_typing import HexAddress, HexStr
from eth_utils import is_hex_address
from filelock import FileLock
from web3 import Web3


logger = logging.getLogger(__name__)


#: Ethereum 0x0000000000000000000000000000000000000000 address as a string.
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalise_address(address: str | HexAddress) -> str:
    """Lower case an address for comparisons and dictionary keys.

    All equality checks between addresses go through this function,
    so that checksummed and non-checksummed input compare equal.
    """
    assert type(address) == str, f"address is {type(address)}, expected str"
    assert is_hex_address(address), f"Not a hex address: {address}"
    return address.lower()


def same_address(a: str | HexAddress, b: str | HexAddress) -> bool:
    """Case-insensitive address equality."""
    return normalise_address(a) == normalise_address(b)


def is_zero_address(address: str | HexAddress) -> bool:
    return normalise_address(address) == ZERO_ADDRESS


def checksum(address: str | HexAddress) -> HexAddress:
    """Convert to checksummed format we store in the ledger."""
    return HexAddress(HexStr(Web3.to_checksum_address(address)))


def utc_now_iso() -> str:
    """Current UTC time in the same ISO 8601 format as Javascript ``Date.toISOString()``.

    Example output: ``2024-11-05T10:21:33.123Z``
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    std_out_log_level: Optional[int] = None,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in deployment scripts
    - Tune down some noisy dependency library logging

    :param default_log_level:
        Used when ``LOG_LEVEL`` environment variable is not set.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if not std_out_log_level:
        std_out_log_level = numeric_level

    if simplified_logging:
        fmt = "%(message)s"
    else:
        fmt = "%(asctime)s %(name)-44s %(message)s"
    date_fmt = "%H:%M:%S"

    coloredlogs.install(level=std_out_log_level, fmt=fmt, datefmt=date_fmt)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()


@contextmanager
def wait_other_writers(path: Path | str, timeout: int = 120):
    """Wait other potential writers writing the same file.

    - Deployment ledger files can be shared between several
      deployment runs on the same machine, e.g. libraries deployed
      from one terminal and the proxy from another

    Example:

    .. code-block:: python

        with wait_other_writers(ledger_path):
            entries = json.loads(ledger_path.read_text())
            entries.append(new_entry)
            ledger_path.write_text(json.dumps(entries))

    :param path:
        File that is being written

    :param timeout:
        How many seconds wait to acquire the lock file.

        Default 2 minutes.

    :raise filelock.Timeout:
        If the file writer is stuck with the lock.
    """

    if isinstance(path, str):
        path = Path(path)

    assert isinstance(path, Path), f"Not Path object: {path}"

    assert path.is_absolute(), f"Did not get an absolute path: {path}\nPlease use absolute paths for lock files to prevent polluting the local working directory."

    # If we are writing to a new folder, create any parent paths
    os.makedirs(path.parent, exist_ok=True)

    # https://stackoverflow.com/a/60281933/315168
    lock_file = path.parent / (path.name + ".lock")

    lock = FileLock(lock_file, timeout=timeout)

    if lock.is_locked:
        logger.info(
            "File %s locked for writing, waiting %f seconds",
            path,
            timeout,
        )

    with lock:
        yield
