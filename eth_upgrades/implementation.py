"""Build deployable implementation contracts with their libraries linked in."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

from eth_typing import HexAddress

from eth_upgrades.abi import find_unlinked_placeholders, get_artifact, link_libraries_hardhat, UnlinkedLibraryError
from eth_upgrades.utils import checksum

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ImplementationDescriptor:
    """A contract ready to be deployed.

    All library placeholders have been substituted.
    """

    #: Contract name as in the Hardhat artifact
    contract_name: str

    #: Contract ABI
    abi: list = field(repr=False)

    #: Linked creation bytecode, 0x prefixed hex
    bytecode: str = field(repr=False)

    #: Library name -> address used in linking
    libraries: dict = field(default_factory=dict)

    def __post_init__(self):
        assert self.bytecode.startswith("0x"), f"Bytecode must be 0x prefixed hex: {self.bytecode[0:10]}"
        if find_unlinked_placeholders(self.bytecode):
            raise UnlinkedLibraryError(f"{self.contract_name} bytecode is not fully linked")
        # Our own copy, so the caller cannot mutate a built descriptor
        object.__setattr__(self, "libraries", dict(self.libraries))


class ImplementationFactory:
    """Create :py:class:`ImplementationDescriptor` from Hardhat artifacts.

    Example:

    .. code-block:: python

        factory = ImplementationFactory(Path("out-hardhat"))
        descriptor = factory.build(
            "ProjectHubUpgradeable",
            {
                "ProjectLibrary": project_lib.address,
                "LaunchpoolLibrary": launchpool_lib.address,
            },
        )
    """

    def __init__(self, artifacts_path: Path):
        assert isinstance(artifacts_path, Path), f"Expected Path, got {type(artifacts_path)}"
        self.artifacts_path = artifacts_path

    def build(
        self,
        contract_name: str,
        libraries: Mapping[str, HexAddress | str] | Iterable | None = None,
    ) -> ImplementationDescriptor:
        """Link libraries into a contract bytecode.

        Happens before any transaction is built, so a missing library
        never results in a broken contract on-chain.

        :param contract_name:
            Hardhat contract name

        :param libraries:
            Library name -> address mapping, or resolved :py:class:`eth_upgrades.library.LibraryRecord` list

        :raise UnlinkedLibraryError:
            A library referenced by the bytecode was not given
        """

        if libraries is None:
            libraries = {}
        elif not isinstance(libraries, Mapping):
            libraries = {r.name: r.address for r in libraries}

        artifact = get_artifact(self.artifacts_path, contract_name)
        link_references = artifact.get("linkReferences", {})

        bytecode = link_libraries_hardhat(artifact["bytecode"], link_references, libraries)

        referenced = {name for refs in link_references.values() for name in refs}
        used = {}
        for name, address in libraries.items():
            short_name = name.split(":")[-1]
            if short_name in referenced:
                used[short_name] = checksum(address)
            else:
                logger.warning("Library %s is not used by %s, ignoring", name, contract_name)

        logger.info("Built %s, linked libraries %s", contract_name, used)

        return ImplementationDescriptor(
            contract_name=artifact.get("contractName", contract_name.split(":")[-1]),
            abi=artifact["abi"],
            bytecode=bytecode,
            libraries=used,
        )
