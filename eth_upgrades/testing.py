"""Unit test helpers.

- :py:class:`MockChain` is an in-memory :py:class:`eth_upgrades.chain.ChainAccess`
  that understands just enough of OpenZeppelin transparent proxies
  to run deployment and upgrade workflows without a node

- :py:func:`write_hardhat_artifact` creates fake Hardhat compilation output
"""

import json
from pathlib import Path
from typing import Optional

import eth_abi
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_upgrades.erc_1967 import ADMIN_SLOT, IMPLEMENTATION_SLOT
from eth_upgrades.utils import normalise_address

#: ``ProxyAdmin.upgradeAndCall(address,address,bytes)`` selector
UPGRADE_AND_CALL_SELECTOR = bytes(Web3.keccak(text="upgradeAndCall(address,address,bytes)")[0:4])

#: Runtime code marker of simulated ProxyAdmin contracts
PROXY_ADMIN_CODE = b"ProxyAdmin"


def _address_slot_value(address: str) -> bytes:
    return bytes(HexBytes(address)).rjust(32, b"\x00")


class MockChain:
    """A dummy chain for unit testing.

    - Contract creation stores the creation data as the contract code

    - Creation data starting with ``proxy_bytecode`` is a transparent proxy:
      the constructor ``(logic, initialOwner, data)`` is decoded,
      a ProxyAdmin owned by ``initialOwner`` is created
      and ERC-1967 slots are written

    - Transactions to a ProxyAdmin are ``upgradeAndCall()`` and
      are checked like the real contract does

    - Reverts are raised as ``ValueError`` the same way web3.py surfaces
      a JSON-RPC error from the node

    We get the explicit control to simulate failures with :py:attr:`revert_next`
    and :py:attr:`hijack_upgrades_to`.
    """

    def __init__(self, chain_id: int = 31337, proxy_bytecode: Optional[str] = None, block_number: int = 1):
        self.chain_id = chain_id
        self.proxy_bytecode = bytes(HexBytes(proxy_bytecode)) if proxy_bytecode else None

        #: Next block number
        self.simulated_block_number = block_number

        self.codes: dict[str, bytes] = {}
        self.storage: dict[tuple[str, int], bytes] = {}

        #: ProxyAdmin -> owner
        self.admin_owners: dict[str, str] = {}

        #: Proxy -> call data delegated to the implementation, in order
        self.delegated_calls: dict[str, list[bytes]] = {}

        self.receipts: dict[bytes, dict] = {}

        #: Every transaction we accepted, in order
        self.sent_transactions: list[dict] = []

        #: Revert the next transaction with this reason
        self.revert_next: Optional[str] = None

        #: Simulate a misbehaving ProxyAdmin that writes this address on upgrades
        self.hijack_upgrades_to: Optional[str] = None

        self.created_count = 0

    def __repr__(self):
        return f"<MockChain chain:{self.chain_id} block:{self.simulated_block_number} contracts:{len(self.codes)}>"

    def create_address(self, sender: str) -> HexAddress:
        """Deterministic fresh address."""
        self.created_count += 1
        digest = Web3.keccak(text=f"{normalise_address(sender)}:{self.created_count}")
        return Web3.to_checksum_address("0x" + bytes(digest[-20:]).hex())

    def set_code(self, address: str, code: bytes):
        """Put a contract on the chain, e.g. to simulate an existing deployment."""
        self.codes[normalise_address(address)] = bytes(code)

    def get_code(self, address: HexAddress | str) -> bytes:
        return self.codes.get(normalise_address(address), b"")

    def get_storage_at(self, address: HexAddress | str, slot: int) -> bytes:
        return self.storage.get((normalise_address(address), slot), b"\x00" * 32)

    def get_block_number(self) -> int:
        return self.simulated_block_number - 1

    def get_chain_id(self) -> int:
        return self.chain_id

    def get_deployment_transactions(self) -> list[dict]:
        """Accepted contract creation transactions."""
        return [tx for tx in self.sent_transactions if not tx.get("to")]

    def _revert(self, reason: str):
        raise ValueError({"code": 3, "message": f"execution reverted: {reason}"})

    def _create_proxy(self, sender: str, proxy_address: str, constructor_data: bytes):
        logic, initial_owner, init_data = eth_abi.decode(["address", "address", "bytes"], constructor_data)

        if not self.get_code(logic):
            self._revert(f"ERC1967InvalidImplementation({logic})")

        admin_address = self.create_address(proxy_address)
        self.set_code(admin_address, PROXY_ADMIN_CODE)
        self.admin_owners[normalise_address(admin_address)] = normalise_address(initial_owner)

        key = normalise_address(proxy_address)
        self.storage[(key, IMPLEMENTATION_SLOT)] = _address_slot_value(logic)
        self.storage[(key, ADMIN_SLOT)] = _address_slot_value(admin_address)
        self.delegated_calls[key] = [bytes(init_data)] if init_data else []

    def _upgrade_and_call(self, sender: str, admin_address: str, data: bytes):
        if data[0:4] != UPGRADE_AND_CALL_SELECTOR:
            self._revert(f"Unknown ProxyAdmin function {data[0:4].hex()}")

        owner = self.admin_owners[normalise_address(admin_address)]
        if owner != normalise_address(sender):
            self._revert(f"OwnableUnauthorizedAccount({sender})")

        proxy, implementation, call_data = eth_abi.decode(["address", "address", "bytes"], data[4:])
        proxy_key = normalise_address(proxy)

        if self.get_storage_at(proxy, ADMIN_SLOT) != _address_slot_value(admin_address):
            self._revert("Proxy is not managed by this ProxyAdmin")

        if not self.get_code(implementation):
            self._revert(f"ERC1967InvalidImplementation({implementation})")

        written = self.hijack_upgrades_to or implementation
        self.storage[(proxy_key, IMPLEMENTATION_SLOT)] = _address_slot_value(written)
        if call_data:
            self.delegated_calls.setdefault(proxy_key, []).append(bytes(call_data))

    def send_transaction(self, tx: dict) -> HexBytes:
        assert tx.get("from"), f"Transaction has no sender: {tx}"
        sender = tx["from"]
        data = bytes(HexBytes(tx.get("data", b"")))
        to = tx.get("to")

        if self.revert_next is not None:
            reason = self.revert_next
            self.revert_next = None
            self._revert(reason)

        contract_address = None
        if not to:
            contract_address = self.create_address(sender)
            if self.proxy_bytecode and data.startswith(self.proxy_bytecode):
                self._create_proxy(sender, contract_address, data[len(self.proxy_bytecode) :])
                self.set_code(contract_address, self.proxy_bytecode)
            else:
                self.set_code(contract_address, data)
        elif normalise_address(to) in self.admin_owners:
            self._upgrade_and_call(sender, to, data)

        self.sent_transactions.append(dict(tx))

        tx_hash = HexBytes(Web3.keccak(text=f"tx:{len(self.sent_transactions)}"))
        self.receipts[bytes(tx_hash)] = {
            "transactionHash": tx_hash,
            "status": 1,
            "blockNumber": self.simulated_block_number,
            "from": sender,
            "to": to,
            "contractAddress": contract_address,
        }
        self.simulated_block_number += 1
        return tx_hash

    def wait_for_inclusion(self, tx_hash: HexBytes) -> dict:
        return self.receipts[bytes(tx_hash)]


def write_hardhat_artifact(
    artifacts_path: Path,
    source_name: str,
    contract_name: str,
    abi: list,
    bytecode: str,
    link_references: Optional[dict] = None,
) -> Path:
    """Write a Hardhat style compilation artifact.

    Written to ``<artifacts_path>/<source_name>/<contract_name>.json``
    as Hardhat does.

    :return:
        Path to the artifact file
    """
    path = artifacts_path / source_name / f"{contract_name}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    artifact = {
        "_format": "hh-sol-artifact-1",
        "contractName": contract_name,
        "sourceName": source_name,
        "abi": abi,
        "bytecode": bytecode,
        "deployedBytecode": bytecode,
        "linkReferences": link_references or {},
        "deployedLinkReferences": link_references or {},
    }
    path.write_text(json.dumps(artifact, indent=2), encoding="utf-8")
    return path
