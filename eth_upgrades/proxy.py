"""Transparent proxy deployment and upgrade lifecycle.

- `OpenZeppelin transparent proxy pattern <https://docs.openzeppelin.com/contracts/5.x/api/proxy#TransparentUpgradeableProxy>`__:
  a dedicated ``ProxyAdmin`` contract is the only account that can repoint the proxy

- Implementation contracts are deployed standalone and never initialised directly,
  only through the proxy

- Every successful deployment and upgrade is verified by reading the ERC-1967 slots back,
  and only then recorded in the deployment ledger

A proxy goes through states

.. code-block:: text

    uninitialized -> deployed -> upgrading -> upgraded | failed
                                 ^                       |
                                 +-----------------------+
"""

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from eth_typing import HexAddress

from eth_upgrades.abi import encode_function_call, encode_with_signature, get_artifact, get_named_function_args
from eth_upgrades.chain import ChainAccess, ChainEnvironment
from eth_upgrades.deploy import DeploymentTarget, Fresh, deploy_contract, resolve_target, submit_transaction
from eth_upgrades.erc_1967 import get_admin_address, get_implementation_address
from eth_upgrades.implementation import ImplementationDescriptor
from eth_upgrades.ledger import DeploymentLedger, DeploymentLedgerEntry, EntryKind, Upgradeability
from eth_upgrades.provenance import get_latest_commit_hash
from eth_upgrades.utils import ZERO_ADDRESS, checksum, normalise_address, same_address
from eth_upgrades.verification import (
    address_changed,
    code_exists,
    verify_chain_identity,
    verify_proxy_slots,
)

logger = logging.getLogger(__name__)


#: Hardhat artifact name of the proxy contract
TRANSPARENT_PROXY_CONTRACT = "TransparentUpgradeableProxy"

#: OpenZeppelin 5.x ``ProxyAdmin`` upgrade entry point
UPGRADE_AND_CALL_SIGNATURE = "upgradeAndCall(address,address,bytes)"


class ProxyState(enum.Enum):
    uninitialized = "uninitialized"
    deployed = "deployed"
    upgrading = "upgrading"
    upgraded = "upgraded"
    failed = "failed"


@dataclass(slots=True)
class ProxyRecord:
    """What we know about a proxy.

    Created at the first deployment, or loaded from the chain for existing proxies.
    Never deleted.
    """

    #: The proxy users interact with
    proxy_address: HexAddress

    #: ProxyAdmin contract.
    #:
    #: Read once from the ERC-1967 admin slot and reused for every upgrade.
    admin_address: HexAddress

    #: Where the proxy delegates now
    current_implementation_address: HexAddress

    #: Implementation contract name, if known
    contract_name: Optional[str] = None

    #: Earlier implementations, oldest first
    upgrade_history: list[HexAddress] = field(default_factory=list)

    state: ProxyState = ProxyState.uninitialized

    #: Libraries linked into the current implementation, if known
    linked_libraries: Optional[dict] = None


class ProxyLifecycleManager:
    """Deploy and upgrade transparent proxies.

    Example:

    .. code-block:: python

        manager = ProxyLifecycleManager(chain, environment, Path("out-hardhat"), ledger)

        descriptor = factory.build("ProjectHubUpgradeable", libraries)
        record = manager.deploy_proxy(descriptor, [xcm_oracle, deployer, v_assets, native_assets])

        # Later, with new code
        new_descriptor = factory.build("ProjectHubUpgradeable", libraries)
        record = manager.upgrade_proxy(record.proxy_address, Fresh(new_descriptor))

    All transactions are sent from ``environment.deployer`` one after another.
    Running two managers with the same deployer account at the same time is not supported.
    """

    def __init__(
        self,
        chain: ChainAccess,
        environment: ChainEnvironment,
        artifacts_path: Path,
        ledger: DeploymentLedger,
        commit_hash_source: Callable[[], str] = get_latest_commit_hash,
        proxy_contract_name: str = TRANSPARENT_PROXY_CONTRACT,
    ):
        assert isinstance(artifacts_path, Path), f"Expected Path, got {type(artifacts_path)}"
        self.chain = chain
        self.environment = environment
        self.artifacts_path = artifacts_path
        self.ledger = ledger
        self.commit_hash_source = commit_hash_source
        self.proxy_contract_name = proxy_contract_name

        #: Normalised proxy address -> record
        self.proxies: dict[str, ProxyRecord] = {}

    def __repr__(self):
        return f"<ProxyLifecycleManager chain:{self.environment.chain_id} proxies:{len(self.proxies)}>"

    def get_proxy_descriptor(self) -> ImplementationDescriptor:
        """Proxy contract bytecode. Proxies do not link libraries."""
        artifact = get_artifact(self.artifacts_path, self.proxy_contract_name)
        return ImplementationDescriptor(
            contract_name=self.proxy_contract_name,
            abi=artifact["abi"],
            bytecode=artifact["bytecode"],
        )

    def deploy_proxy(
        self,
        descriptor: ImplementationDescriptor,
        initializer_args: Sequence,
        initializer: str = "initialize",
        initial_owner: Optional[HexAddress | str] = None,
        version: str = "v1",
    ) -> ProxyRecord:
        """Deploy a new proxy with its first implementation.

        - Deploys the implementation without initialising it

        - Deploys the proxy; its constructor delegates the initializer call,
          so the initializer runs exactly once, in the proxy storage context

        - Reads admin and implementation back from the proxy

        :param descriptor:
            Linked implementation

        :param initializer_args:
            Arguments for the initializer function

        :param initializer:
            Initializer function name

        :param initial_owner:
            Owner of the ProxyAdmin the proxy creates. Deployer by default.

        :return:
            Record of the new proxy in ``deployed`` state

        :raise OnChainRevert:
            A deployment transaction reverted

        :raise UpgradeVerificationError:
            Proxy slots do not look right after the deployment
        """

        verify_chain_identity(self.chain, self.environment)

        # Encode everything before sending the first transaction
        initializer_args = list(initializer_args)
        init_data = encode_function_call(descriptor.abi, initializer, initializer_args)
        named_args = get_named_function_args(descriptor.abi, initializer, initializer_args)
        proxy_descriptor = self.get_proxy_descriptor()
        owner = checksum(initial_owner or self.environment.deployer)

        logger.info("Deploying %s proxy, initializer %s, owner %s", descriptor.contract_name, initializer, owner)

        implementation_address = deploy_contract(self.chain, self.environment, descriptor)
        proxy_address = deploy_contract(self.chain, self.environment, proxy_descriptor, implementation_address, owner, init_data)

        admin_address = get_admin_address(self.chain, proxy_address)
        current_implementation = get_implementation_address(self.chain, proxy_address)
        verify_proxy_slots(proxy_address, admin_address, current_implementation)
        address_changed(ZERO_ADDRESS, current_implementation, implementation_address)

        record = ProxyRecord(
            proxy_address=proxy_address,
            admin_address=admin_address,
            current_implementation_address=current_implementation,
            contract_name=descriptor.contract_name,
            state=ProxyState.deployed,
            linked_libraries=dict(descriptor.libraries),
        )
        self.proxies[normalise_address(proxy_address)] = record

        logger.info("%s proxy deployed to %s, admin %s, implementation %s", descriptor.contract_name, proxy_address, admin_address, current_implementation)

        self.ledger.append(
            self.environment.chain_id,
            DeploymentLedgerEntry(
                kind=EntryKind.proxy_deployment,
                name=descriptor.contract_name,
                address=current_implementation,
                commit_hash=self.commit_hash_source(),
                deployer=self.environment.deployer,
                version=version,
                linked_libraries=descriptor.libraries,
                is_upgrade_safe=True,
                upgradeability=Upgradeability(
                    proxy_address=proxy_address,
                    proxy_admin_address=admin_address,
                    implementation_address=current_implementation,
                    initializer_args=named_args,
                ),
            ),
        )

        return record

    def load_proxy(self, proxy_address: HexAddress | str, contract_name: Optional[str] = None) -> ProxyRecord:
        """Create a record for a proxy we did not deploy in this process.

        Admin and implementation come from the chain,
        name, libraries and history from the ledger.

        :raise AddressNotAContract:
            Nothing deployed at the proxy address
        """
        code_exists(self.chain, proxy_address)
        proxy_address = checksum(proxy_address)
        chain_id = self.environment.chain_id

        admin_address = get_admin_address(self.chain, proxy_address)
        current_implementation = get_implementation_address(self.chain, proxy_address)
        verify_proxy_slots(proxy_address, admin_address, current_implementation)

        history = self.ledger.implementation_history(chain_id, proxy_address)
        if history and same_address(history[-1], current_implementation):
            history = history[:-1]
        elif history:
            logger.warning("Ledger is behind the chain for proxy %s. Last recorded implementation %s, on-chain %s", proxy_address, history[-1], current_implementation)

        latest = self.ledger.latest_for_proxy(chain_id, proxy_address)
        if contract_name is None and latest is not None:
            contract_name = latest.name

        record = ProxyRecord(
            proxy_address=proxy_address,
            admin_address=admin_address,
            current_implementation_address=current_implementation,
            contract_name=contract_name,
            upgrade_history=[checksum(a) for a in history],
            state=ProxyState.upgraded if history else ProxyState.deployed,
            linked_libraries=dict(latest.linked_libraries) if latest and latest.linked_libraries is not None else None,
        )
        self.proxies[normalise_address(proxy_address)] = record
        logger.info("Loaded proxy %s, admin %s, implementation %s, %d earlier implementations", proxy_address, admin_address, current_implementation, len(history))
        return record

    def get_proxy(self, proxy_address: HexAddress | str) -> ProxyRecord:
        """Cached proxy record, loaded on the first use."""
        record = self.proxies.get(normalise_address(proxy_address))
        if record is None:
            record = self.load_proxy(proxy_address)
        return record

    def upgrade_proxy(
        self,
        proxy_address: HexAddress | str,
        target: DeploymentTarget,
        contract_name: Optional[str] = None,
        call_data: bytes = b"",
        version: Optional[str] = None,
    ) -> ProxyRecord:
        """Point a proxy to a new implementation.

        Goes through ``ProxyAdmin.upgradeAndCall(proxy, implementation, call_data)``.
        Upgrading to the current implementation is allowed and verified like any other upgrade.

        :param target:
            :py:class:`eth_upgrades.deploy.Existing` implementation address
            or :py:class:`eth_upgrades.deploy.Fresh` descriptor to deploy

        :param contract_name:
            Name for the ledger when upgrading to an existing address.
            Defaults to the name we know for the proxy.

        :param call_data:
            Optional call executed through the proxy after the upgrade.
            No call by default.

        :param version:
            Ledger version label, by default increment the last one recorded for the proxy

        :return:
            Updated record in ``upgraded`` state

        :raise AddressNotAContract:
            Existing target has no code

        :raise OnChainRevert:
            Deployment or upgrade transaction reverted, e.g. deployer does not own the ProxyAdmin

        :raise UpgradeVerificationError:
            Proxy does not point to the new implementation after the upgrade.
            Nothing is written to the ledger.

        :raise LedgerWriteError:
            Upgrade happened on-chain but could not be recorded
        """

        verify_chain_identity(self.chain, self.environment)

        record = self.get_proxy(proxy_address)
        assert record.state != ProxyState.upgrading, f"Proxy {record.proxy_address} is already being upgraded"

        if isinstance(target, Fresh):
            name = target.descriptor.contract_name
            linked_libraries = target.descriptor.libraries
        else:
            name = contract_name or record.contract_name
            linked_libraries = None
        assert name, f"Contract name for proxy {record.proxy_address} unknown, give contract_name"

        old_implementation = get_implementation_address(self.chain, record.proxy_address)
        logger.info("Upgrading proxy %s, current implementation %s", record.proxy_address, old_implementation)

        record.state = ProxyState.upgrading
        try:
            new_implementation, deployed = resolve_target(self.chain, self.environment, target)
            if deployed:
                logger.info("New implementation deployed to %s", new_implementation)

            tx = {
                "from": self.environment.deployer,
                "to": record.admin_address,
                "data": encode_with_signature(UPGRADE_AND_CALL_SIGNATURE, [record.proxy_address, new_implementation, call_data]),
            }
            submit_transaction(self.chain, tx, f"Upgrade proxy {record.proxy_address} via ProxyAdmin {record.admin_address}")

            final_implementation = get_implementation_address(self.chain, record.proxy_address)
            address_changed(old_implementation, final_implementation, new_implementation)
        except Exception:
            # Transport errors too, failed proxies can be upgraded again
            record.state = ProxyState.failed
            raise

        record.state = ProxyState.upgraded
        record.upgrade_history.append(old_implementation)
        record.current_implementation_address = final_implementation
        record.contract_name = name
        record.linked_libraries = dict(linked_libraries) if linked_libraries is not None else None

        logger.info("Upgrade completed. Previous implementation: %s, new implementation: %s", old_implementation, final_implementation)

        chain_id = self.environment.chain_id
        self.ledger.append(
            chain_id,
            DeploymentLedgerEntry(
                kind=EntryKind.proxy_upgrade,
                name=name,
                address=final_implementation,
                commit_hash=self.commit_hash_source(),
                deployer=self.environment.deployer,
                version=version or self.ledger.next_proxy_version(chain_id, record.proxy_address),
                linked_libraries=linked_libraries,
                is_upgrade_safe=True,
                upgradeability=Upgradeability(
                    proxy_address=record.proxy_address,
                    proxy_admin_address=record.admin_address,
                    implementation_address=final_implementation,
                    initializer_args={"callData": "0x" + call_data.hex()} if call_data else None,
                ),
            ),
        )

        return record
