"""Utility function tests."""

import datetime
import logging

import pytest

from eth_upgrades.utils import ZERO_ADDRESS, checksum, is_zero_address, same_address, setup_console_logging, utc_now_iso, wait_other_writers

from tests.conftest import DEPLOYER


def test_same_address():
    assert same_address(DEPLOYER, DEPLOYER.lower())
    assert not same_address(DEPLOYER, ZERO_ADDRESS)
    assert is_zero_address(ZERO_ADDRESS)
    assert checksum(DEPLOYER.lower()) == DEPLOYER


def test_same_address_not_an_address():
    with pytest.raises(AssertionError):
        same_address("ProjectLibrary", DEPLOYER)


def test_utc_now_iso():
    """Same format as Javascript Date.toISOString()."""
    timestamp = utc_now_iso()
    assert timestamp.endswith("Z")
    parsed = datetime.datetime.strptime(timestamp, "%Y-%m-%dT%H:%M:%S.%fZ")
    now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    assert abs(now - parsed) < datetime.timedelta(minutes=1)


def test_setup_console_logging(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "info")
    logger = setup_console_logging()
    assert logger is logging.getLogger()
    assert logging.getLogger("web3.RequestManager").level == logging.WARNING


def test_wait_other_writers(tmp_path):
    path = tmp_path / "nested" / "31337.json"
    with wait_other_writers(path):
        path.write_text("{}")
    assert path.read_text() == "{}"


def test_wait_other_writers_relative_path():
    with pytest.raises(AssertionError):
        with wait_other_writers("deployments/31337.json"):
            pass
