"""Shared fixtures.

Fake Hardhat artifacts mimic our contracts:

- ``ProjectHubUpgradeable`` links ``ProjectLibrary`` and ``LaunchpoolLibrary``
- ``TransparentUpgradeableProxy`` from OpenZeppelin 5.x
- ``MockERC20`` test token

Bytecode is not real EVM code. :py:class:`eth_upgrades.testing.MockChain`
only needs to recognise the proxy creation.
"""

from pathlib import Path

import pytest
from web3 import Web3

from eth_upgrades.chain import ChainEnvironment
from eth_upgrades.implementation import ImplementationFactory
from eth_upgrades.ledger import DeploymentLedger, InMemoryLedgerStore
from eth_upgrades.library import LibraryResolver
from eth_upgrades.proxy import ProxyLifecycleManager
from eth_upgrades.testing import MockChain, write_hardhat_artifact

#: Hardhat node account #0
DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

COMMIT_HASH = "3f2c1a9e0b7d4c6a8e2f1b3d5c7a9e0b2d4f6a8c"

XCM_ORACLE = Web3.to_checksum_address("0x288154c87db809bc0d702cb46de40e5041b22071")
V_ASSET_A = Web3.to_checksum_address("0x" + "a" * 40)
V_ASSET_B = Web3.to_checksum_address("0x" + "b" * 40)
NATIVE_ASSET = Web3.to_checksum_address("0x7a4ebae8ca815b9f52f23a8ac9a2f707d4d4ff81")

PROJECT_LIBRARY_PLACEHOLDER = "__$" + "5e" * 17 + "$__"
LAUNCHPOOL_LIBRARY_PLACEHOLDER = "__$" + "c3" * 17 + "$__"

PROJECT_HUB_BYTECODE = "0x6080604052" + PROJECT_LIBRARY_PLACEHOLDER + "5b" + LAUNCHPOOL_LIBRARY_PLACEHOLDER + "00"

PROJECT_HUB_LINK_REFERENCES = {
    "contracts/libraries/ProjectLibrary.sol": {"ProjectLibrary": [{"start": 5, "length": 20}]},
    "contracts/libraries/LaunchpoolLibrary.sol": {"LaunchpoolLibrary": [{"start": 26, "length": 20}]},
}

PROJECT_HUB_ABI = [
    {"type": "constructor", "inputs": [], "stateMutability": "nonpayable"},
    {
        "type": "function",
        "name": "initialize",
        "inputs": [
            {"name": "_xcmOracle", "type": "address", "internalType": "address"},
            {"name": "_owner", "type": "address", "internalType": "address"},
            {"name": "_vAssets", "type": "address[]", "internalType": "address[]"},
            {"name": "_nativeAssets", "type": "address[]", "internalType": "address[]"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "setXCMOracleAddress",
        "inputs": [{"name": "_xcmOracle", "type": "address", "internalType": "address"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
]

PROXY_BYTECODE = "0x60a0604052"

PROXY_ABI = [
    {
        "type": "constructor",
        "inputs": [
            {"name": "_logic", "type": "address", "internalType": "address"},
            {"name": "initialOwner", "type": "address", "internalType": "address"},
            {"name": "_data", "type": "bytes", "internalType": "bytes"},
        ],
        "stateMutability": "payable",
    },
]

MOCK_ERC20_ABI = [
    {
        "type": "constructor",
        "inputs": [
            {"name": "name", "type": "string", "internalType": "string"},
            {"name": "symbol", "type": "string", "internalType": "string"},
        ],
        "stateMutability": "nonpayable",
    },
]


def write_project_artifacts(artifacts_path: Path):
    write_hardhat_artifact(artifacts_path, "contracts/libraries/ProjectLibrary.sol", "ProjectLibrary", [], "0x6080604052600101")
    write_hardhat_artifact(artifacts_path, "contracts/libraries/LaunchpoolLibrary.sol", "LaunchpoolLibrary", [], "0x6080604052600201")
    write_hardhat_artifact(
        artifacts_path,
        "contracts/ProjectHubUpgradeable.sol",
        "ProjectHubUpgradeable",
        PROJECT_HUB_ABI,
        PROJECT_HUB_BYTECODE,
        PROJECT_HUB_LINK_REFERENCES,
    )
    write_hardhat_artifact(
        artifacts_path,
        "@openzeppelin/contracts/proxy/transparent/TransparentUpgradeableProxy.sol",
        "TransparentUpgradeableProxy",
        PROXY_ABI,
        PROXY_BYTECODE,
    )
    write_hardhat_artifact(artifacts_path, "contracts/mocks/MockERC20.sol", "MockERC20", MOCK_ERC20_ABI, "0x608060405260ee")


@pytest.fixture()
def artifacts_path(tmp_path) -> Path:
    """Hardhat output directory with our fake artifacts."""
    path = tmp_path / "out-hardhat"
    write_project_artifacts(path)
    return path


@pytest.fixture()
def chain() -> MockChain:
    return MockChain(chain_id=31337, proxy_bytecode=PROXY_BYTECODE)


@pytest.fixture()
def environment() -> ChainEnvironment:
    return ChainEnvironment(chain_id=31337, json_rpc_url="http://localhost:8545", deployer=DEPLOYER)


@pytest.fixture()
def ledger() -> DeploymentLedger:
    return DeploymentLedger(InMemoryLedgerStore())


@pytest.fixture()
def commit_hash_source():
    return lambda: COMMIT_HASH


@pytest.fixture()
def factory(artifacts_path) -> ImplementationFactory:
    return ImplementationFactory(artifacts_path)


@pytest.fixture()
def resolver(chain, environment, factory, ledger, commit_hash_source) -> LibraryResolver:
    return LibraryResolver(chain, environment, factory, ledger, commit_hash_source)


@pytest.fixture()
def manager(chain, environment, artifacts_path, ledger, commit_hash_source) -> ProxyLifecycleManager:
    return ProxyLifecycleManager(chain, environment, artifacts_path, ledger, commit_hash_source)


@pytest.fixture()
def libraries(resolver) -> dict:
    """Freshly deployed ProjectLibrary and LaunchpoolLibrary."""
    records = resolver.resolve_all({"ProjectLibrary": None, "LaunchpoolLibrary": None})
    return {r.name: r.address for r in records}


@pytest.fixture()
def initializer_args() -> list:
    return [XCM_ORACLE, DEPLOYER, [V_ASSET_A, V_ASSET_B], [NATIVE_ASSET]]
