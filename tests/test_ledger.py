"""Deployment ledger tests."""

import dataclasses
import json
from pathlib import Path

import pytest

from eth_upgrades.ledger import (
    DeploymentLedger,
    DeploymentLedgerEntry,
    EntryKind,
    InMemoryLedgerStore,
    JSONFileLedgerStore,
    LedgerWriteError,
    Upgradeability,
    dump_ledger_document,
    load_ledger_document,
)

from tests.conftest import COMMIT_HASH, DEPLOYER

PROXY = "0xB8618EaEEbFf1c817e3DD32A2e27Ece62C9d2317"
ADMIN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
IMPLEMENTATION_1 = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
IMPLEMENTATION_2 = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"


def make_library_entry(name="ProjectLibrary", address="0x8BDB2E6F6dD2172178BCba5529C3D5dFe96B1538", version="v1") -> DeploymentLedgerEntry:
    return DeploymentLedgerEntry(
        kind=EntryKind.library,
        name=name,
        address=address,
        commit_hash=COMMIT_HASH,
        deployer=DEPLOYER,
        version=version,
    )


def make_proxy_entries() -> list[DeploymentLedgerEntry]:
    deployment = DeploymentLedgerEntry(
        kind=EntryKind.proxy_deployment,
        name="ProjectHubUpgradeable",
        address=IMPLEMENTATION_1,
        commit_hash=COMMIT_HASH,
        deployer=DEPLOYER,
        version="v1",
        linked_libraries={"ProjectLibrary": "0x8BDB2E6F6dD2172178BCba5529C3D5dFe96B1538"},
        upgradeability=Upgradeability(
            proxy_address=PROXY,
            proxy_admin_address=ADMIN,
            implementation_address=IMPLEMENTATION_1,
            initializer_args={"_owner": DEPLOYER, "_vAssets": ["0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"]},
        ),
    )
    upgrade = DeploymentLedgerEntry(
        kind=EntryKind.proxy_upgrade,
        name="ProjectHubUpgradeable",
        address=IMPLEMENTATION_2,
        commit_hash=COMMIT_HASH,
        deployer=DEPLOYER,
        version="v2",
        upgradeability=Upgradeability(
            proxy_address=PROXY,
            proxy_admin_address=ADMIN,
            implementation_address=IMPLEMENTATION_2,
        ),
    )
    return [deployment, upgrade]


def test_append_keeps_order():
    """N appends give N entries in order, each with a timestamp assigned."""
    ledger = DeploymentLedger(InMemoryLedgerStore())
    inputs = [make_library_entry(version=f"v{i}") for i in range(1, 6)]

    returned = [ledger.append(31337, e) for e in inputs]

    stored = ledger.all(31337)
    assert len(stored) == 5
    assert stored == returned
    for original, entry in zip(inputs, stored):
        assert entry.deployment_time is not None
        assert entry.deployment_time.endswith("Z")
        assert entry.version == original.version
        assert entry.address == original.address


def test_append_keeps_given_timestamp():
    """Imported entries keep their original time."""
    ledger = DeploymentLedger(InMemoryLedgerStore())
    entry = dataclasses.replace(make_library_entry(), deployment_time="2024-11-05T10:21:33.123Z")
    stored = ledger.append(31337, entry)
    assert stored == entry
    assert ledger.all(31337)[0].deployment_time == "2024-11-05T10:21:33.123Z"


def test_appended_entry_cannot_be_changed_in_place():
    """Mutating returned entries does not touch what the ledger holds."""
    ledger = DeploymentLedger(InMemoryLedgerStore())
    deployment = make_proxy_entries()[0]
    returned = ledger.append(31337, deployment)

    returned.linked_libraries["ProjectLibrary"] = DEPLOYER
    returned.upgradeability.initializer_args["_owner"] = "tampered"
    read_back = ledger.all(31337)[0]
    read_back.linked_libraries["ProjectLibrary"] = DEPLOYER
    read_back.upgradeability.initializer_args["_vAssets"].append(DEPLOYER)

    stored = ledger.all(31337)[0]
    assert stored.linked_libraries == {"ProjectLibrary": "0x8BDB2E6F6dD2172178BCba5529C3D5dFe96B1538"}
    assert stored.upgradeability.initializer_args == {"_owner": DEPLOYER, "_vAssets": ["0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"]}


def test_chains_are_separate():
    ledger = DeploymentLedger(InMemoryLedgerStore())
    ledger.append(31337, make_library_entry())
    ledger.append(1287, make_library_entry())
    ledger.append(1287, make_library_entry(name="LaunchpoolLibrary"))
    assert len(ledger.all(31337)) == 1
    assert len(ledger.all(1287)) == 2
    assert ledger.all(1) == []


def test_latest():
    ledger = DeploymentLedger(InMemoryLedgerStore())
    ledger.append(31337, make_library_entry(version="v1", address="0x8BDB2E6F6dD2172178BCba5529C3D5dFe96B1538"))
    ledger.append(31337, make_library_entry(name="LaunchpoolLibrary"))
    ledger.append(31337, make_library_entry(version="v2", address="0x97C6A41de7b975eE772779bA8bEE60D7A71cb53F"))

    latest = ledger.latest(31337, "ProjectLibrary")
    assert latest.version == "v2"
    assert latest.address == "0x97C6A41de7b975eE772779bA8bEE60D7A71cb53F"
    assert ledger.latest(31337, "ProjectHubUpgradeable") is None


def test_next_version():
    ledger = DeploymentLedger(InMemoryLedgerStore())
    assert ledger.next_version(31337, "ProjectLibrary") == "v1"
    ledger.append(31337, make_library_entry(version="v1"))
    assert ledger.next_version(31337, "ProjectLibrary") == "v2"
    # Entries written by the old scripts
    ledger.append(31337, make_library_entry(version="increment"))
    assert ledger.next_version(31337, "ProjectLibrary") == "v3"


def test_proxy_queries():
    ledger = DeploymentLedger(InMemoryLedgerStore())
    ledger.append(31337, make_library_entry())
    for e in make_proxy_entries():
        ledger.append(31337, e)

    assert ledger.implementation_history(31337, PROXY.lower()) == [IMPLEMENTATION_1, IMPLEMENTATION_2]
    assert ledger.latest_for_proxy(31337, PROXY).address == IMPLEMENTATION_2
    assert ledger.next_proxy_version(31337, PROXY) == "v3"
    assert ledger.latest_for_proxy(31337, ADMIN) is None


def test_proxy_entry_needs_upgradeability():
    with pytest.raises(AssertionError):
        DeploymentLedgerEntry(
            kind=EntryKind.proxy_upgrade,
            name="ProjectHubUpgradeable",
            address=IMPLEMENTATION_2,
            commit_hash=COMMIT_HASH,
            deployer=DEPLOYER,
            version="v2",
        )


def test_document_round_trip():
    """Serialise and deserialise gives identical entries."""
    ledger = DeploymentLedger(InMemoryLedgerStore())
    ledger.append(31337, make_library_entry())
    for e in make_proxy_entries():
        ledger.append(31337, e)
    entries = ledger.all(31337)

    text = dump_ledger_document(31337, entries)
    assert load_ledger_document(text) == entries

    document = json.loads(text)
    assert document["chainId"] == 31337
    deployment = document["entries"][1]
    assert deployment["type"] == "contract"
    assert deployment["action"] == "proxy-deployment"
    assert deployment["commitHash"] == COMMIT_HASH
    assert deployment["isUpgradeSafe"] is True
    assert deployment["upgradeability"]["pattern"] == "transparent"
    assert deployment["upgradeability"]["proxyAdminAddress"] == ADMIN
    assert deployment["upgradeability"]["initializerArgs"]["_owner"] == DEPLOYER
    assert "initializerArgs" not in document["entries"][2]["upgradeability"]
    assert "linkedLibraries" not in document["entries"][0]


def test_legacy_document():
    """Bare list documents without action field are readable."""
    legacy = [e.to_json_dict() for e in [make_library_entry(), *make_proxy_entries()]]
    for e in legacy:
        del e["action"]

    entries = load_ledger_document(json.dumps(legacy))
    assert [e.kind for e in entries] == [EntryKind.library, EntryKind.proxy_deployment, EntryKind.proxy_upgrade]


def test_json_file_store(tmp_path: Path):
    """Ledger survives reopening from disk."""
    path = tmp_path / "deployments"
    ledger = DeploymentLedger(JSONFileLedgerStore(path))
    ledger.append(31337, make_library_entry())
    for e in make_proxy_entries():
        ledger.append(31337, e)
    ledger.append(1287, make_library_entry())

    assert (path / "31337.json").exists()
    assert (path / "1287.json").exists()
    assert not (path / "31337.json.tmp").exists()

    reopened = DeploymentLedger(JSONFileLedgerStore(path))
    assert reopened.all(31337) == ledger.all(31337)
    assert len(reopened.all(31337)) == 3
    assert len(reopened.all(1287)) == 1
    assert reopened.all(1) == []


def test_json_file_store_write_error(tmp_path: Path):
    """Cannot create the ledger directory."""
    blocker = tmp_path / "deployments"
    blocker.write_text("not a directory")
    ledger = DeploymentLedger(JSONFileLedgerStore(blocker))
    with pytest.raises(LedgerWriteError):
        ledger.append(31337, make_library_entry())
