"""Verification gates.

Stateless checks run between deployment steps. A failed check
aborts the workflow before anything is written to the deployment ledger.
"""

import logging
from typing import Mapping, Optional

from eth_typing import HexAddress

from eth_upgrades.chain import ChainAccess, ChainEnvironment
from eth_upgrades.env import MissingChainConfiguration
from eth_upgrades.utils import is_zero_address, same_address


logger = logging.getLogger(__name__)


class AddressNotAContract(Exception):
    """There is no bytecode at the address we were given."""

    def __init__(self, msg: str, address: HexAddress | str):
        super().__init__(msg)
        self.address = address


class UpgradeVerificationError(Exception):
    """On-chain proxy state does not match what we intended."""

    def __init__(self, msg: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(msg)
        self.expected = expected
        self.actual = actual


class ChainIdMismatch(MissingChainConfiguration):
    """The JSON-RPC node serves a different chain than configured."""


def preflight(chain_id: int, networks: Mapping[int, ChainEnvironment]) -> ChainEnvironment:
    """Check we know how to reach the chain before doing anything.

    :param networks:
        Configured chain environments by chain id

    :raise MissingChainConfiguration:
        No endpoint or deployer for this chain
    """
    environment = networks.get(chain_id)
    if environment is None:
        raise MissingChainConfiguration(f"No network configuration for chain {chain_id}, configured chains are {sorted(networks)}", chain_id=chain_id)

    if not environment.json_rpc_url or not environment.deployer:
        raise MissingChainConfiguration(f"Chain {chain_id} lacks JSON-RPC URL or deployer", chain_id=chain_id)

    return environment


def verify_chain_identity(chain: ChainAccess, environment: ChainEnvironment):
    """Make sure we did not connect to the wrong node.

    :raise ChainIdMismatch:
        Node chain id differs from the environment
    """
    node_chain_id = chain.get_chain_id()
    if node_chain_id != environment.chain_id:
        raise ChainIdMismatch(f"JSON-RPC node reports chain {node_chain_id}, but we are configured for {environment.chain_id}", chain_id=environment.chain_id)


def code_exists(chain: ChainAccess, address: HexAddress | str) -> bytes:
    """Check there is a smart contract at the address.

    :return:
        Deployed bytecode

    :raise AddressNotAContract:
        Empty bytecode
    """
    code = chain.get_code(address)
    if not code:
        logger.error("No contract code at %s", address)
        raise AddressNotAContract(f"No contract found at: {address}", address=address)
    return code


def address_changed(before: HexAddress | str, after: HexAddress | str, expected: HexAddress | str):
    """Check the on-chain value after an upgrade.

    ``before`` is informative only. Pointing a proxy to its current
    implementation again is a valid upgrade, as long as ``after`` is what we expected.

    :raise UpgradeVerificationError:
        ``after`` is not ``expected``
    """
    if not same_address(after, expected):
        logger.error("Upgrade verification failed. Before: %s, after: %s, expected: %s", before, after, expected)
        raise UpgradeVerificationError(f"Upgrade verification failed: expected {expected}, got {after}", expected=expected, actual=after)


def verify_proxy_slots(
    proxy_address: HexAddress | str,
    admin_address: HexAddress | str,
    implementation_address: HexAddress | str,
):
    """Sanity check ERC-1967 slots read back from a freshly deployed proxy.

    :raise UpgradeVerificationError:
        Admin or implementation is zero or points to the proxy itself
    """
    for label, value in (("admin", admin_address), ("implementation", implementation_address)):
        if is_zero_address(value):
            raise UpgradeVerificationError(f"Proxy {proxy_address} has zero {label} address", actual=value)
        if same_address(value, proxy_address):
            raise UpgradeVerificationError(f"Proxy {proxy_address} {label} address points to the proxy itself", actual=value)
