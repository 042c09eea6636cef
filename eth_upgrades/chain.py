"""Chain access.

The deployment core talks to the blockchain only through
the small :py:class:`ChainAccess` surface defined here.

- :py:class:`Web3ChainAccess` implements it on the top of a web3.py connection

- :py:class:`eth_upgrades.testing.MockChain` implements it in memory for unit tests
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Protocol, Union

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3._utils.transactions import fill_transaction_defaults

from eth_upgrades.confirmation import wait_transaction_to_complete
from eth_upgrades.revert_reason import OnChainRevert, fetch_transaction_revert_reason
from eth_upgrades.tx import sign_deployment_transaction, strip_none_fields


logger = logging.getLogger(__name__)


#: Manually maintained shorthand names for the chains we deploy on.
#:
#: Used to map chain ids to ``JSON_RPC_<NAME>`` environment variables.
CHAIN_NAMES = {
    1: "Ethereum",
    1000: "Westend",
    1287: "Moonbase_Alpha",
    31337: "Localhost",
    11155111: "Sepolia",
    # Ethereum Tester default chain id
    131277322940537: "Tester",
}


@dataclass(slots=True, frozen=True)
class ChainEnvironment:
    """Which chain we are deploying to and as whom.

    Immutable for the duration of a workflow run.
    Passed explicitly to every component instead of relying on
    a global "current network", so one process can target
    several chains one after another.
    """

    #: EVM chain id
    chain_id: int

    #: JSON-RPC endpoint
    json_rpc_url: str

    #: Deployer account address.
    #:
    #: All transactions of a workflow are sent from this account.
    deployer: HexAddress

    def __post_init__(self):
        assert type(self.chain_id) == int, f"Chain id must be int: {self.chain_id}"

    def get_chain_name(self) -> str:
        return CHAIN_NAMES.get(self.chain_id, f"Chain {self.chain_id}")


class ChainAccess(Protocol):
    """What the deployment core needs from a blockchain connection."""

    def get_code(self, address: HexAddress | str) -> bytes:
        """Deployed bytecode at the address, empty for EOAs and empty accounts."""

    def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        """Raw 32 bytes storage slot value."""

    def send_transaction(self, tx: dict) -> HexBytes:
        """Broadcast a transaction.

        :raise OnChainRevert:
            If the node refuses the transaction
        """

    def wait_for_inclusion(self, tx_hash: HexBytes) -> dict:
        """Block until the transaction is mined and return its receipt.

        :raise OnChainRevert:
            If the transaction reverted
        """

    def get_block_number(self) -> int:
        """Latest block number."""

    def get_chain_id(self) -> int:
        """Chain id the node reports."""


class Web3ChainAccess:
    """:py:class:`ChainAccess` over a web3.py connection.

    The deployer can be

    - An address unlocked on the node (Anvil, Hardhat node, Ethereum Tester)

    - A :py:class:`eth_account.signers.local.LocalAccount` that signs transactions locally

    Example:

    .. code-block:: python

        web3 = Web3(HTTPProvider(environment.json_rpc_url))
        chain = Web3ChainAccess(web3, Account.from_key(os.environ["PRIVATE_KEY"]))
    """

    def __init__(
        self,
        web3: Web3,
        deployer: Union[HexAddress, str, LocalAccount],
        poll_delay=datetime.timedelta(seconds=1),
    ):
        assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
        self.web3 = web3
        self.deployer = deployer
        self.poll_delay = poll_delay

    def __repr__(self):
        return f"<Web3ChainAccess chain:{self.web3.eth.chain_id} deployer:{self.deployer_address}>"

    @property
    def deployer_address(self) -> HexAddress:
        if isinstance(self.deployer, LocalAccount):
            return self.deployer.address
        return Web3.to_checksum_address(self.deployer)

    def get_code(self, address: HexAddress | str) -> bytes:
        return bytes(self.web3.eth.get_code(Web3.to_checksum_address(address)))

    def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        return bytes(self.web3.eth.get_storage_at(Web3.to_checksum_address(address), slot))

    def get_block_number(self) -> int:
        return self.web3.eth.block_number

    def get_chain_id(self) -> int:
        return self.web3.eth.chain_id

    def send_transaction(self, tx: dict) -> HexBytes:
        tx = strip_none_fields(tx)
        tx.setdefault("from", self.deployer_address)

        if isinstance(self.deployer, LocalAccount):
            # Sign locally
            tx["nonce"] = self.web3.eth.get_transaction_count(self.deployer.address)
            tx["chainId"] = self.web3.eth.chain_id
            tx = fill_transaction_defaults(self.web3, tx)
            raw_bytes = sign_deployment_transaction(self.deployer, tx)
            tx_hash = self.web3.eth.send_raw_transaction(raw_bytes)
        else:
            # Delegate signing to the node
            tx_hash = self.web3.eth.send_transaction(tx)

        logger.info("Broadcasted tx %s from %s, nonce %s", Web3.to_hex(tx_hash), tx["from"], tx.get("nonce", "<node>"))
        return HexBytes(tx_hash)

    def wait_for_inclusion(self, tx_hash: HexBytes) -> dict:
        receipt = wait_transaction_to_complete(self.web3, tx_hash, poll_delay=self.poll_delay)
        if receipt["status"] != 1:
            reason = fetch_transaction_revert_reason(self.web3, tx_hash)
            raise OnChainRevert(f"Transaction {Web3.to_hex(tx_hash)} reverted: {reason}", reason=reason, tx_hash=HexBytes(tx_hash))
        return dict(receipt)
