"""Link-library resolution.

Solidity libraries with external functions are deployed as separate
contracts and their addresses are baked into the bytecode of contracts using them.
Before building an implementation we need an address for each library:
either one given by the operator, or a fresh deployment.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from eth_typing import HexAddress

from eth_upgrades.chain import ChainAccess, ChainEnvironment
from eth_upgrades.deploy import DeploymentTarget, Existing, Fresh, resolve_target
from eth_upgrades.implementation import ImplementationFactory
from eth_upgrades.ledger import DeploymentLedger, DeploymentLedgerEntry, EntryKind
from eth_upgrades.provenance import get_latest_commit_hash

logger = logging.getLogger(__name__)


class Provenance(enum.Enum):
    """Where a library address came from."""

    deployed = "deployed"
    reused = "reused"


@dataclass(slots=True, frozen=True)
class LibraryRecord:
    """A library with a known on-chain address."""

    name: str
    address: HexAddress
    provenance: Provenance


class LibraryResolver:
    """Resolve link-libraries to addresses.

    Example:

    .. code-block:: python

        resolver = LibraryResolver(chain, environment, ImplementationFactory(artifacts_path), ledger)
        project_lib = resolver.resolve_or_deploy("ProjectLibrary", "0x8BDB2E6F6dD2172178BCba5529C3D5dFe96B1538")
        launchpool_lib = resolver.resolve_or_deploy("LaunchpoolLibrary")
        assert project_lib.provenance == Provenance.reused
        assert launchpool_lib.provenance == Provenance.deployed
    """

    def __init__(
        self,
        chain: ChainAccess,
        environment: ChainEnvironment,
        factory: ImplementationFactory,
        ledger: Optional[DeploymentLedger] = None,
        commit_hash_source: Callable[[], str] = get_latest_commit_hash,
    ):
        self.chain = chain
        self.environment = environment
        self.factory = factory
        self.ledger = ledger
        self.commit_hash_source = commit_hash_source

    def _get_target(self, name: str, existing_address: Optional[str], reuse_recorded: bool) -> DeploymentTarget:
        if existing_address is not None:
            logger.info("Library %s retrieved from address %s", name, existing_address)
            return Existing(existing_address)

        if reuse_recorded and self.ledger is not None:
            entry = self.ledger.latest(self.environment.chain_id, name)
            if entry is not None and entry.kind == EntryKind.library:
                logger.info("Library %s reused from the ledger, deployed at %s on %s", name, entry.address, entry.deployment_time)
                return Existing(entry.address)

        return Fresh(self.factory.build(name))

    def resolve_or_deploy(
        self,
        name: str,
        existing_address: Optional[HexAddress | str] = None,
        reuse_recorded: bool = False,
    ) -> LibraryRecord:
        """Get an address for a library.

        Giving ``existing_address`` never sends a transaction.

        :param name:
            Library contract name

        :param existing_address:
            Attach to this already deployed library

        :param reuse_recorded:
            If no address is given, try the latest ledger entry for the library before deploying

        :raise AddressNotAContract:
            There is no code at the given or recorded address

        :raise OnChainRevert:
            Library deployment failed
        """
        target = self._get_target(name, existing_address, reuse_recorded)
        address, deployed = resolve_target(self.chain, self.environment, target)

        if not deployed:
            return LibraryRecord(name=name, address=address, provenance=Provenance.reused)

        logger.info("Library %s deployed to %s", name, address)

        if self.ledger is not None:
            chain_id = self.environment.chain_id
            self.ledger.append(
                chain_id,
                DeploymentLedgerEntry(
                    kind=EntryKind.library,
                    name=name,
                    address=address,
                    commit_hash=self.commit_hash_source(),
                    deployer=self.environment.deployer,
                    version=self.ledger.next_version(chain_id, name),
                    is_upgrade_safe=True,
                ),
            )

        return LibraryRecord(name=name, address=address, provenance=Provenance.deployed)

    def resolve_all(
        self,
        libraries: Mapping[str, Optional[HexAddress | str]],
        reuse_recorded: bool = False,
    ) -> list[LibraryRecord]:
        """Resolve several libraries in the given order.

        :param libraries:
            Library name -> existing address, or ``None`` to deploy
        """
        return [self.resolve_or_deploy(name, address, reuse_recorded=reuse_recorded) for name, address in libraries.items()]
