"""Complete deployment workflows.

Glue the components together the way our deployment scripts use them:

- :py:func:`deploy_linked_proxy`: libraries, implementation and a new proxy in one go

- :py:func:`upgrade_linked_proxy`: repoint an existing proxy, either to an already deployed
  implementation or to a freshly built one

- :py:func:`deploy_recorded_contract`: a plain non-proxied contract, e.g. test tokens

Example deployment script:

.. code-block:: python

    from eth_upgrades.utils import setup_console_logging
    from eth_upgrades.workflow import connect_chain, deploy_linked_proxy, open_ledger

    setup_console_logging(default_log_level="info")
    chain, environment = connect_chain(1287)

    record = deploy_linked_proxy(
        chain,
        environment,
        open_ledger(),
        "ProjectHubUpgradeable",
        initializer_args=[
            "0x288154C87Db809bc0d702CB46De40E5041b22071",
            environment.deployer,
            ["0xD02D73E05b002Cb8EB7BEf9DF8Ed68ed39752465"],
            ["0x7a4ebae8cA815b9F52F23a8AC9A2f707D4d4ff81"],
        ],
        libraries={
            "ProjectLibrary": "0x8BDB2E6F6dD2172178BCba5529C3D5dFe96B1538",
            "LaunchpoolLibrary": None,
        },
    )
    print(f"Proxy at {record.proxy_address}")
"""

import logging
import os
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from eth_typing import HexAddress
from web3 import HTTPProvider, Web3

from eth_upgrades.chain import ChainAccess, ChainEnvironment, Web3ChainAccess
from eth_upgrades.deploy import DeploymentTarget, Existing, Fresh, deploy_contract
from eth_upgrades.env import read_artifacts_path, read_chain_environment, read_deployer_account, read_ledger_path
from eth_upgrades.implementation import ImplementationFactory
from eth_upgrades.ledger import DeploymentLedger, DeploymentLedgerEntry, EntryKind, JSONFileLedgerStore
from eth_upgrades.library import LibraryResolver
from eth_upgrades.provenance import get_latest_commit_hash
from eth_upgrades.proxy import ProxyLifecycleManager, ProxyRecord
from eth_upgrades.verification import verify_chain_identity

logger = logging.getLogger(__name__)


def connect_chain(chain_id: int, environ: Mapping[str, str] = os.environ) -> tuple[Web3ChainAccess, ChainEnvironment]:
    """Set up a JSON-RPC connection from environment variables.

    Signs locally when ``PRIVATE_KEY`` is set, otherwise uses
    ``DEPLOYER_ADDRESS`` unlocked on the node.

    :raise MissingChainConfiguration:
        No JSON-RPC URL or deployer for the chain
    """
    environment = read_chain_environment(chain_id, environ)
    web3 = Web3(HTTPProvider(environment.json_rpc_url))
    account = read_deployer_account(environ)
    chain = Web3ChainAccess(web3, account or environment.deployer)
    logger.info("Connected to %s, deployer %s", environment.get_chain_name(), environment.deployer)
    return chain, environment


def open_ledger(environ: Mapping[str, str] = os.environ) -> DeploymentLedger:
    """JSON file ledger at ``DEPLOYMENT_LEDGER_PATH``."""
    return DeploymentLedger(JSONFileLedgerStore(read_ledger_path(environ)))


def deploy_linked_proxy(
    chain: ChainAccess,
    environment: ChainEnvironment,
    ledger: DeploymentLedger,
    contract_name: str,
    initializer_args: Sequence,
    libraries: Mapping[str, Optional[HexAddress | str]],
    initializer: str = "initialize",
    initial_owner: Optional[HexAddress | str] = None,
    artifacts_path: Optional[Path] = None,
    reuse_recorded: bool = False,
    commit_hash_source: Callable[[], str] = get_latest_commit_hash,
) -> ProxyRecord:
    """Deploy a library-linked contract behind a new transparent proxy.

    :param libraries:
        Library name -> existing address, or ``None`` to deploy a new library

    :param artifacts_path:
        Hardhat output, ``HARDHAT_ARTIFACTS_PATH`` by default

    :param reuse_recorded:
        Reuse libraries from the ledger instead of deploying them again
    """
    verify_chain_identity(chain, environment)

    artifacts_path = artifacts_path or read_artifacts_path()
    factory = ImplementationFactory(artifacts_path)
    resolver = LibraryResolver(chain, environment, factory, ledger, commit_hash_source)

    logger.info("Deploying %s on %s, libraries %s", contract_name, environment.get_chain_name(), list(libraries))
    resolved = resolver.resolve_all(libraries, reuse_recorded=reuse_recorded)
    descriptor = factory.build(contract_name, resolved)

    manager = ProxyLifecycleManager(chain, environment, artifacts_path, ledger, commit_hash_source)
    return manager.deploy_proxy(descriptor, initializer_args, initializer=initializer, initial_owner=initial_owner)


def upgrade_linked_proxy(
    chain: ChainAccess,
    environment: ChainEnvironment,
    ledger: DeploymentLedger,
    proxy_address: HexAddress | str,
    contract_name: Optional[str] = None,
    libraries: Optional[Mapping[str, Optional[HexAddress | str]]] = None,
    implementation_address: Optional[HexAddress | str] = None,
    call_data: bytes = b"",
    artifacts_path: Optional[Path] = None,
    commit_hash_source: Callable[[], str] = get_latest_commit_hash,
) -> ProxyRecord:
    """Upgrade a proxy we deployed earlier.

    Two ways to use this:

    - Give ``implementation_address`` to switch to an already deployed implementation

    - Give ``contract_name`` and ``libraries`` to build and deploy a new implementation

    :param contract_name:
        Contract to build. With ``implementation_address`` only used as the ledger name.

    :param libraries:
        Libraries for the new build, name -> address or ``None`` to deploy
    """
    assert (implementation_address is None) or (libraries is None), "Give either implementation_address or libraries, not both"

    verify_chain_identity(chain, environment)

    artifacts_path = artifacts_path or read_artifacts_path()

    target: DeploymentTarget
    if implementation_address is not None:
        target = Existing(implementation_address)
    else:
        assert contract_name, "contract_name needed to build a new implementation"
        factory = ImplementationFactory(artifacts_path)
        resolver = LibraryResolver(chain, environment, factory, ledger, commit_hash_source)
        resolved = resolver.resolve_all(libraries or {})
        target = Fresh(factory.build(contract_name, resolved))

    manager = ProxyLifecycleManager(chain, environment, artifacts_path, ledger, commit_hash_source)
    return manager.upgrade_proxy(proxy_address, target, contract_name=contract_name, call_data=call_data)


def deploy_recorded_contract(
    chain: ChainAccess,
    environment: ChainEnvironment,
    ledger: DeploymentLedger,
    contract_name: str,
    *constructor_args,
    ledger_name: Optional[str] = None,
    libraries: Optional[Mapping[str, HexAddress | str]] = None,
    artifacts_path: Optional[Path] = None,
    commit_hash_source: Callable[[], str] = get_latest_commit_hash,
) -> HexAddress:
    """Deploy a non-upgradeable contract and record it.

    Example:

    .. code-block:: python

        token = deploy_recorded_contract(chain, environment, ledger, "MockERC20", "Voucher Imagination", "VI", ledger_name="MockVToken")

    :param ledger_name:
        Name in the ledger when one artifact is deployed several times

    :return:
        Contract address
    """
    verify_chain_identity(chain, environment)

    factory = ImplementationFactory(artifacts_path or read_artifacts_path())
    descriptor = factory.build(contract_name, libraries)
    address = deploy_contract(chain, environment, descriptor, *constructor_args)

    name = ledger_name or descriptor.contract_name
    chain_id = environment.chain_id
    ledger.append(
        chain_id,
        DeploymentLedgerEntry(
            kind=EntryKind.contract,
            name=name,
            address=address,
            commit_hash=commit_hash_source(),
            deployer=environment.deployer,
            version=ledger.next_version(chain_id, name),
            linked_libraries=descriptor.libraries or None,
            is_upgrade_safe=False,
        ),
    )
    return address
