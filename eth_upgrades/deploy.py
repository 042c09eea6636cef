"""Deploy linked contracts and resolve deployment targets.

Deployment targets are a tagged choice:

- :py:class:`Existing`: an address of an already deployed contract we attach to

- :py:class:`Fresh`: a descriptor we deploy a new contract from

:py:func:`resolve_target` is the only place that decides between the two.
"""

import logging
from dataclasses import dataclass
from typing import TypeAlias

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import Web3Exception

from eth_upgrades.abi import encode_constructor_args
from eth_upgrades.chain import ChainAccess, ChainEnvironment
from eth_upgrades.implementation import ImplementationDescriptor
from eth_upgrades.revert_reason import OnChainRevert
from eth_upgrades.utils import checksum
from eth_upgrades.verification import code_exists

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Existing:
    """Attach to a contract already on-chain."""

    address: HexAddress | str


@dataclass(slots=True, frozen=True)
class Fresh:
    """Deploy a new contract."""

    descriptor: ImplementationDescriptor


#: Where an implementation or a library comes from
DeploymentTarget: TypeAlias = Existing | Fresh


def submit_transaction(chain: ChainAccess, tx: dict, action: str) -> dict:
    """Broadcast a transaction and wait until it is included.

    Never retries. Rebroadcasting a deployment could deploy the same thing twice.

    :param action:
        Human readable description for logs and errors

    :return:
        Transaction receipt

    :raise OnChainRevert:
        The node refused the transaction or it reverted
    """
    try:
        tx_hash = chain.send_transaction(tx)
    except OnChainRevert:
        raise
    except (ValueError, Web3Exception) as e:
        raise OnChainRevert.from_error(e, action) from e

    logger.info("%s: tx %s, waiting for inclusion", action, Web3.to_hex(tx_hash))

    try:
        receipt = chain.wait_for_inclusion(tx_hash)
    except OnChainRevert:
        raise
    except (ValueError, Web3Exception) as e:
        raise OnChainRevert.from_error(e, action) from e

    if receipt["status"] != 1:
        raise OnChainRevert(f"{action} failed, tx hash is {Web3.to_hex(tx_hash)}", tx_hash=HexBytes(tx_hash))

    return receipt


def deploy_contract(
    chain: ChainAccess,
    environment: ChainEnvironment,
    descriptor: ImplementationDescriptor,
    *constructor_args,
) -> HexAddress:
    """Deploy a contract from a linked descriptor.

    Does not call any initializer. Implementation contracts behind
    proxies must only ever be initialised through the proxy.

    :param constructor_args:
        Other arguments to pass to the contract's constructor

    :return:
        Checksummed address of the new contract

    :raise OnChainRevert:
        Deployment reverted
    """
    data = descriptor.bytecode + encode_constructor_args(descriptor.abi, constructor_args).hex()
    tx = {
        "from": environment.deployer,
        "data": data,
    }
    receipt = submit_transaction(chain, tx, f"Deploy {descriptor.contract_name}")
    address = receipt.get("contractAddress")
    assert address, f"Deployment receipt for {descriptor.contract_name} has no contract address: {receipt}"
    logger.info("Deployed %s at %s", descriptor.contract_name, address)
    return checksum(address)


def resolve_target(
    chain: ChainAccess,
    environment: ChainEnvironment,
    target: DeploymentTarget,
) -> tuple[HexAddress, bool]:
    """Get an address for a deployment target.

    - :py:class:`Existing` never sends a transaction, only checks there is code

    - :py:class:`Fresh` deploys without calling any initializer

    :return:
        Tuple (address, was deployed now)

    :raise AddressNotAContract:
        Existing address has no code
    """
    match target:
        case Existing(address=address):
            code_exists(chain, address)
            return checksum(address), False
        case Fresh(descriptor=descriptor):
            return deploy_contract(chain, environment, descriptor), True
        case _:
            raise AssertionError(f"Unknown deployment target: {target}")
