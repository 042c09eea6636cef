"""Append-only deployment ledger.

Every library, contract, proxy deployment and proxy upgrade we do
is recorded as an immutable :py:class:`DeploymentLedgerEntry`,
one ordered list per chain.

Storage is pluggable through :py:class:`LedgerStore`:

- :py:class:`JSONFileLedgerStore` keeps one JSON document per chain id on disk

- :py:class:`InMemoryLedgerStore` for tests

The document format is

.. code-block:: json

    {
      "chainId": 31337,
      "entries": [
        {
          "name": "ProjectHubUpgradeable",
          "type": "contract",
          "action": "proxy-deployment",
          "address": "0x...",
          "commitHash": "3f2c1a...",
          "deploymentTime": "2024-11-05T10:21:33.123Z",
          "deployer": "0x...",
          "version": "v1",
          "linkedLibraries": {"ProjectLibrary": "0x..."},
          "isUpgradeSafe": true,
          "upgradeability": {
            "pattern": "transparent",
            "proxyAddress": "0x...",
            "proxyAdminAddress": "0x...",
            "implementationAddress": "0x...",
            "initializerArgs": {"_owner": "0x..."}
          }
        }
      ]
    }
"""

import copy
import dataclasses
import enum
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from eth_upgrades.utils import same_address, utc_now_iso, wait_other_writers

logger = logging.getLogger(__name__)


class LedgerWriteError(Exception):
    """Could not persist a ledger entry.

    Raised only after the on-chain action has already happened,
    so the chain and the ledger need a manual reconciliation.
    """


class EntryKind(enum.Enum):
    """What kind of action a ledger entry records."""

    library = "library"
    contract = "contract"
    proxy_deployment = "proxy-deployment"
    proxy_upgrade = "proxy-upgrade"

    def get_document_type(self) -> str:
        """Value of the ``type`` field in the ledger document."""
        if self == EntryKind.library:
            return "library"
        return "contract"


@dataclass(slots=True, frozen=True)
class Upgradeability:
    """Proxy information of a proxied contract entry."""

    proxy_address: str
    proxy_admin_address: str
    implementation_address: str
    pattern: str = "transparent"

    #: Named initializer arguments, only for the first deployment
    initializer_args: Any = None

    def to_json_dict(self) -> dict:
        data = {
            "pattern": self.pattern,
            "proxyAddress": self.proxy_address,
            "proxyAdminAddress": self.proxy_admin_address,
            "implementationAddress": self.implementation_address,
        }
        if self.initializer_args is not None:
            data["initializerArgs"] = self.initializer_args
        return data

    @classmethod
    def from_json_dict(cls, data: dict) -> "Upgradeability":
        return cls(
            pattern=data.get("pattern", "transparent"),
            proxy_address=data["proxyAddress"],
            proxy_admin_address=data["proxyAdminAddress"],
            implementation_address=data["implementationAddress"],
            initializer_args=data.get("initializerArgs"),
        )


@dataclass(slots=True, frozen=True)
class DeploymentLedgerEntry:
    """One recorded deployment action.

    Immutable. :py:meth:`DeploymentLedger.append` returns a copy
    with the deployment time filled in.
    """

    #: Tagged union discriminator
    kind: EntryKind

    #: Contract or library name
    name: str

    #: Deployed address. For proxied contracts this is the implementation address.
    address: str

    #: Git commit the contracts were compiled from
    commit_hash: str

    #: Deployer account
    deployer: str

    #: ``v1``, ``v2``...
    version: str

    is_upgrade_safe: bool = True

    #: Library name -> address
    linked_libraries: Optional[dict] = None

    #: Set for proxy deployments and upgrades
    upgradeability: Optional[Upgradeability] = None

    #: ISO 8601 UTC, assigned by the ledger
    deployment_time: Optional[str] = None

    def __post_init__(self):
        assert isinstance(self.kind, EntryKind), f"Got {type(self.kind)}"
        assert self.name, "Entry has no name"
        assert self.address, "Entry has no address"
        if self.kind in (EntryKind.proxy_deployment, EntryKind.proxy_upgrade):
            assert self.upgradeability is not None, f"{self.kind.value} entry needs upgradeability information"
        if self.linked_libraries is not None:
            object.__setattr__(self, "linked_libraries", dict(self.linked_libraries))

    def to_json_dict(self) -> dict:
        """Ledger document format of this entry."""
        data = {
            "name": self.name,
            "type": self.kind.get_document_type(),
            "action": self.kind.value,
            "address": self.address,
            "commitHash": self.commit_hash,
            "deploymentTime": self.deployment_time,
            "deployer": self.deployer,
            "version": self.version,
        }
        if self.linked_libraries is not None:
            data["linkedLibraries"] = dict(self.linked_libraries)
        data["isUpgradeSafe"] = self.is_upgrade_safe
        if self.upgradeability is not None:
            data["upgradeability"] = self.upgradeability.to_json_dict()
        return data

    @classmethod
    def from_json_dict(cls, data: dict) -> "DeploymentLedgerEntry":
        """Read an entry from the ledger document.

        Entries written before ``action`` was recorded get their kind inferred.
        """
        upgradeability = data.get("upgradeability")
        if upgradeability is not None:
            upgradeability = Upgradeability.from_json_dict(upgradeability)

        action = data.get("action")
        if action:
            kind = EntryKind(action)
        elif data.get("type") == "library":
            kind = EntryKind.library
        elif upgradeability is None:
            kind = EntryKind.contract
        elif upgradeability.initializer_args is not None:
            kind = EntryKind.proxy_deployment
        else:
            kind = EntryKind.proxy_upgrade

        return cls(
            kind=kind,
            name=data["name"],
            address=data["address"],
            commit_hash=data.get("commitHash", ""),
            deployer=data.get("deployer", ""),
            version=data.get("version", ""),
            is_upgrade_safe=data.get("isUpgradeSafe", True),
            linked_libraries=data.get("linkedLibraries"),
            upgradeability=upgradeability,
            deployment_time=data.get("deploymentTime"),
        )


def dump_ledger_document(chain_id: int, entries: list[DeploymentLedgerEntry]) -> str:
    """Serialise a chain's entries as a ledger JSON document."""
    document = {
        "chainId": chain_id,
        "entries": [e.to_json_dict() for e in entries],
    }
    return json.dumps(document, indent=2)


def load_ledger_document(text: str) -> list[DeploymentLedgerEntry]:
    """Deserialise a ledger JSON document.

    Also reads legacy documents that are a bare list of entries.
    """
    document = json.loads(text)
    if isinstance(document, list):
        raw_entries = document
    else:
        raw_entries = document.get("entries", [])
    return [DeploymentLedgerEntry.from_json_dict(e) for e in raw_entries]


class LedgerStore(Protocol):
    """Storage backend of :py:class:`DeploymentLedger`."""

    def append(self, chain_id: int, entry: DeploymentLedgerEntry):
        """Persist one more entry at the end of the chain's list.

        :raise LedgerWriteError:
            Could not persist
        """

    def all(self, chain_id: int) -> list[DeploymentLedgerEntry]:
        """All entries of a chain in append order."""


class InMemoryLedgerStore:
    """Ledger store for unit tests.

    Keeps entries in their document form, like :py:class:`JSONFileLedgerStore`,
    so every read returns fresh copies.
    """

    def __init__(self):
        self.documents: dict[int, list[dict]] = {}

    def append(self, chain_id: int, entry: DeploymentLedgerEntry):
        self.documents.setdefault(chain_id, []).append(copy.deepcopy(entry.to_json_dict()))

    def all(self, chain_id: int) -> list[DeploymentLedgerEntry]:
        return [DeploymentLedgerEntry.from_json_dict(copy.deepcopy(d)) for d in self.documents.get(chain_id, [])]


class JSONFileLedgerStore:
    """One JSON file per chain in a directory.

    - Files are named ``<chain id>.json``

    - Writes are serialised with a lock file and done by atomic replace,
      so a crash mid-write never leaves a truncated ledger
    """

    def __init__(self, path: Path):
        assert isinstance(path, Path), f"Expected Path, got {type(path)}"
        self.path = path.absolute()

    def __repr__(self):
        return f"<JSONFileLedgerStore {self.path}>"

    def get_chain_file(self, chain_id: int) -> Path:
        assert type(chain_id) == int, f"Chain id must be int: {chain_id}"
        return self.path / f"{chain_id}.json"

    def _read(self, fname: Path) -> list[DeploymentLedgerEntry]:
        if not fname.exists():
            return []
        return load_ledger_document(fname.read_text(encoding="utf-8"))

    def append(self, chain_id: int, entry: DeploymentLedgerEntry):
        fname = self.get_chain_file(chain_id)
        try:
            with wait_other_writers(fname):
                entries = self._read(fname)
                entries.append(entry)
                text = dump_ledger_document(chain_id, entries)
                temp_fname = fname.with_suffix(".json.tmp")
                temp_fname.write_text(text, encoding="utf-8")
                os.replace(temp_fname, fname)
        except (OSError, TypeError, ValueError) as e:
            raise LedgerWriteError(f"Could not write ledger entry {entry.name} at {entry.address} to {fname}: {e}") from e

    def all(self, chain_id: int) -> list[DeploymentLedgerEntry]:
        return self._read(self.get_chain_file(chain_id))


class DeploymentLedger:
    """Append-only record of deployment actions.

    The only writer of the ledger store.

    Example:

    .. code-block:: python

        ledger = DeploymentLedger(JSONFileLedgerStore(Path("deployments")))
        entry = ledger.latest(31337, "ProjectLibrary")
        if entry:
            print(f"ProjectLibrary was deployed at {entry.address} on {entry.deployment_time}")
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def append(self, chain_id: int, entry: DeploymentLedgerEntry) -> DeploymentLedgerEntry:
        """Record a new entry.

        Existing entries are never touched.

        :return:
            The stored entry, with deployment time assigned if it was not given

        :raise LedgerWriteError:
            Store failed
        """
        assert isinstance(entry, DeploymentLedgerEntry), f"Got {type(entry)}"
        if entry.deployment_time is None:
            entry = dataclasses.replace(entry, deployment_time=utc_now_iso())
        self.store.append(chain_id, entry)
        logger.info("Ledger chain %d: recorded %s %s at %s, version %s", chain_id, entry.kind.value, entry.name, entry.address, entry.version)
        return entry

    def all(self, chain_id: int) -> list[DeploymentLedgerEntry]:
        return self.store.all(chain_id)

    def latest(self, chain_id: int, name: str) -> Optional[DeploymentLedgerEntry]:
        """Most recent entry by a contract or library name."""
        for entry in reversed(self.all(chain_id)):
            if entry.name == name:
                return entry
        return None

    def latest_for_proxy(self, chain_id: int, proxy_address: str) -> Optional[DeploymentLedgerEntry]:
        """Most recent deployment or upgrade entry of a proxy."""
        for entry in reversed(self.all(chain_id)):
            if entry.upgradeability and same_address(entry.upgradeability.proxy_address, proxy_address):
                return entry
        return None

    def implementation_history(self, chain_id: int, proxy_address: str) -> list[str]:
        """All implementation addresses recorded for a proxy, oldest first."""
        return [e.upgradeability.implementation_address for e in self.all(chain_id) if e.upgradeability and same_address(e.upgradeability.proxy_address, proxy_address)]

    def next_version(self, chain_id: int, name: str) -> str:
        """Version label for the next deployment of a name.

        ``v1`` for the first one, then increment the last recorded ``vN``.
        """
        entries = [e for e in self.all(chain_id) if e.name == name]
        return _increment_version(entries)

    def next_proxy_version(self, chain_id: int, proxy_address: str) -> str:
        """Version label for the next implementation behind a proxy."""
        entries = [e for e in self.all(chain_id) if e.upgradeability and same_address(e.upgradeability.proxy_address, proxy_address)]
        return _increment_version(entries)


def _increment_version(entries: list[DeploymentLedgerEntry]) -> str:
    if not entries:
        return "v1"
    match = re.fullmatch(r"v(\d+)", entries[-1].version)
    if match:
        return f"v{int(match.group(1)) + 1}"
    # Older entries were recorded with a literal "increment" placeholder
    return f"v{len(entries) + 1}"
