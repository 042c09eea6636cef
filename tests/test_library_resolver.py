"""Link-library resolution tests."""

import pytest
from web3 import Web3

from eth_upgrades.ledger import DeploymentLedger, EntryKind
from eth_upgrades.library import LibraryResolver, Provenance
from eth_upgrades.revert_reason import OnChainRevert
from eth_upgrades.testing import MockChain
from eth_upgrades.verification import AddressNotAContract

from tests.conftest import COMMIT_HASH, DEPLOYER

EXISTING_LIB = Web3.to_checksum_address("0x97c6a41de7b975ee772779ba8bee60d7a71cb53f")


def test_existing_library_no_deployment(chain: MockChain, resolver: LibraryResolver, ledger: DeploymentLedger):
    """Attaching to a deployed library does not send transactions."""
    chain.set_code(EXISTING_LIB, b"\x60\x80")

    record = resolver.resolve_or_deploy("ProjectLibrary", EXISTING_LIB.lower())

    assert record.provenance == Provenance.reused
    assert record.address == EXISTING_LIB
    assert chain.sent_transactions == []
    assert ledger.all(31337) == []


def test_existing_library_without_code(chain: MockChain, resolver: LibraryResolver, ledger: DeploymentLedger):
    """Wrong address is caught before anything happens."""
    with pytest.raises(AddressNotAContract) as exc_info:
        resolver.resolve_or_deploy("ProjectLibrary", EXISTING_LIB)

    assert exc_info.value.address == EXISTING_LIB
    assert chain.sent_transactions == []
    assert ledger.all(31337) == []


def test_fresh_library(chain: MockChain, resolver: LibraryResolver, ledger: DeploymentLedger):
    """Missing library is deployed and recorded."""
    record = resolver.resolve_or_deploy("LaunchpoolLibrary")

    assert record.provenance == Provenance.deployed
    assert chain.get_code(record.address) == bytes.fromhex("6080604052600201")
    assert len(chain.get_deployment_transactions()) == 1

    entries = ledger.all(31337)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.kind == EntryKind.library
    assert entry.name == "LaunchpoolLibrary"
    assert entry.address == record.address
    assert entry.commit_hash == COMMIT_HASH
    assert entry.deployer == DEPLOYER
    assert entry.version == "v1"
    assert entry.deployment_time is not None


def test_redeploy_increments_version(resolver: LibraryResolver, ledger: DeploymentLedger):
    first = resolver.resolve_or_deploy("ProjectLibrary")
    second = resolver.resolve_or_deploy("ProjectLibrary")
    assert first.address != second.address
    assert [e.version for e in ledger.all(31337)] == ["v1", "v2"]


def test_reuse_recorded_library(chain: MockChain, resolver: LibraryResolver, ledger: DeploymentLedger):
    """Libraries deployed by an earlier run are picked from the ledger."""
    deployed = resolver.resolve_or_deploy("ProjectLibrary")
    tx_count = len(chain.sent_transactions)

    reused = resolver.resolve_or_deploy("ProjectLibrary", reuse_recorded=True)

    assert reused.provenance == Provenance.reused
    assert reused.address == deployed.address
    assert len(chain.sent_transactions) == tx_count
    assert len(ledger.all(31337)) == 1


def test_reuse_recorded_nothing_recorded(resolver: LibraryResolver):
    record = resolver.resolve_or_deploy("ProjectLibrary", reuse_recorded=True)
    assert record.provenance == Provenance.deployed


def test_resolve_all(chain: MockChain, resolver: LibraryResolver):
    """Mix of existing and fresh libraries, in the given order."""
    chain.set_code(EXISTING_LIB, b"\x60\x80")

    records = resolver.resolve_all({"ProjectLibrary": EXISTING_LIB, "LaunchpoolLibrary": None})

    assert [r.name for r in records] == ["ProjectLibrary", "LaunchpoolLibrary"]
    assert [r.provenance for r in records] == [Provenance.reused, Provenance.deployed]
    assert len(chain.get_deployment_transactions()) == 1


def test_deployment_revert(chain: MockChain, resolver: LibraryResolver, ledger: DeploymentLedger):
    """Failed library deployment is not recorded."""
    chain.revert_next = "out of gas"
    with pytest.raises(OnChainRevert) as exc_info:
        resolver.resolve_or_deploy("ProjectLibrary")

    assert exc_info.value.reason == "out of gas"
    assert isinstance(exc_info.value.__cause__, ValueError)
    assert ledger.all(31337) == []
