"""Verification gate and ERC-1967 slot tests."""

import pytest
from web3 import Web3

from eth_upgrades.chain import ChainEnvironment
from eth_upgrades.env import MissingChainConfiguration
from eth_upgrades.erc_1967 import ADMIN_SLOT, IMPLEMENTATION_SLOT, get_admin_address, get_implementation_address
from eth_upgrades.testing import MockChain
from eth_upgrades.utils import ZERO_ADDRESS
from eth_upgrades.verification import (
    AddressNotAContract,
    ChainIdMismatch,
    UpgradeVerificationError,
    address_changed,
    code_exists,
    preflight,
    verify_chain_identity,
    verify_proxy_slots,
)

from tests.conftest import DEPLOYER

PROXY = Web3.to_checksum_address("0xb8618eaeebff1c817e3dd32a2e27ece62c9d2317")
ADMIN = Web3.to_checksum_address("0x5fbdb2315678afecb367f032d93f642f64180aa3")
IMPLEMENTATION = Web3.to_checksum_address("0xe7f1725e7734ce288f8367e1bb143e90bb3f0512")
OTHER_IMPLEMENTATION = Web3.to_checksum_address("0x9fe46736679d2d9a65f0992f2272de9f3c7fa6e0")


def test_preflight(environment: ChainEnvironment):
    assert preflight(31337, {31337: environment}) is environment


def test_preflight_unknown_chain(environment: ChainEnvironment):
    with pytest.raises(MissingChainConfiguration) as exc_info:
        preflight(1287, {31337: environment})
    assert exc_info.value.chain_id == 1287


@pytest.mark.parametrize("json_rpc_url, deployer", [("", DEPLOYER), ("http://localhost:8545", "")])
def test_preflight_incomplete_environment(json_rpc_url: str, deployer: str):
    """Configured chain without an endpoint or a deployer is refused."""
    environment = ChainEnvironment(chain_id=31337, json_rpc_url=json_rpc_url, deployer=deployer)
    with pytest.raises(MissingChainConfiguration) as exc_info:
        preflight(31337, {31337: environment})
    assert exc_info.value.chain_id == 31337


def test_verify_chain_identity(environment: ChainEnvironment):
    verify_chain_identity(MockChain(chain_id=31337), environment)


def test_verify_chain_identity_mismatch(environment: ChainEnvironment):
    """Connected to Moonbase Alpha while configured for a local node."""
    with pytest.raises(ChainIdMismatch) as exc_info:
        verify_chain_identity(MockChain(chain_id=1287), environment)
    # Configuration problem as far as the caller is concerned
    assert isinstance(exc_info.value, MissingChainConfiguration)


def test_code_exists():
    chain = MockChain()
    chain.set_code(IMPLEMENTATION, b"\x60\x80")
    assert code_exists(chain, IMPLEMENTATION.lower()) == b"\x60\x80"

    with pytest.raises(AddressNotAContract):
        code_exists(chain, OTHER_IMPLEMENTATION)

    # EOA
    with pytest.raises(AddressNotAContract):
        code_exists(chain, DEPLOYER)


def test_address_changed():
    address_changed(IMPLEMENTATION, OTHER_IMPLEMENTATION.lower(), OTHER_IMPLEMENTATION)


def test_address_changed_same_implementation():
    """Upgrading to the current implementation is fine as long as the result is right."""
    address_changed(IMPLEMENTATION, IMPLEMENTATION, IMPLEMENTATION)


def test_address_changed_mismatch():
    with pytest.raises(UpgradeVerificationError) as exc_info:
        address_changed(IMPLEMENTATION, IMPLEMENTATION, OTHER_IMPLEMENTATION)
    assert exc_info.value.expected == OTHER_IMPLEMENTATION
    assert exc_info.value.actual == IMPLEMENTATION


def test_verify_proxy_slots():
    verify_proxy_slots(PROXY, ADMIN, IMPLEMENTATION)

    with pytest.raises(UpgradeVerificationError):
        verify_proxy_slots(PROXY, ZERO_ADDRESS, IMPLEMENTATION)

    with pytest.raises(UpgradeVerificationError):
        verify_proxy_slots(PROXY, ADMIN, ZERO_ADDRESS)

    with pytest.raises(UpgradeVerificationError):
        verify_proxy_slots(PROXY, ADMIN, PROXY.lower())


def test_read_erc_1967_slots():
    chain = MockChain()
    chain.storage[(PROXY.lower(), IMPLEMENTATION_SLOT)] = b"\x00" * 12 + bytes.fromhex(IMPLEMENTATION[2:])
    # Some nodes return the slot value without leading zeroes
    chain.storage[(PROXY.lower(), ADMIN_SLOT)] = bytes.fromhex(ADMIN[2:])

    assert get_implementation_address(chain, PROXY) == IMPLEMENTATION
    assert get_admin_address(chain, PROXY) == ADMIN


def test_read_empty_slot():
    assert get_implementation_address(MockChain(), PROXY) == ZERO_ADDRESS
