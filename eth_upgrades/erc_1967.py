"""ERC-1967 proxy storage slots.

- `EIP-1967 <https://eips.ethereum.org/EIPS/eip-1967>`__

- OpenZeppelin transparent and UUPS proxies store their implementation and admin here
"""

from eth_typing import HexAddress
from web3 import Web3

from eth_upgrades.chain import ChainAccess

#: ``bytes32(uint256(keccak256('eip1967.proxy.implementation')) - 1)``
IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

#: ``bytes32(uint256(keccak256('eip1967.proxy.admin')) - 1)``
ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103


def read_address_slot(chain: ChainAccess, address: HexAddress | str, slot: int) -> HexAddress:
    """Read a storage slot holding an address.

    :return:
        Checksummed address, zero address if the slot is empty
    """
    value = chain.get_storage_at(address, slot)
    assert len(value) <= 32, f"Storage slot value too long: {value!r}"
    # Take the last 20 bytes as the address
    value = bytes(value).rjust(32, b"\x00")
    return Web3.to_checksum_address("0x" + value[-20:].hex())


def get_implementation_address(chain: ChainAccess, proxy_address: HexAddress | str) -> HexAddress:
    """Where the proxy currently delegates its calls."""
    return read_address_slot(chain, proxy_address, IMPLEMENTATION_SLOT)


def get_admin_address(chain: ChainAccess, proxy_address: HexAddress | str) -> HexAddress:
    """ProxyAdmin contract that has the sole authority to upgrade the proxy."""
    return read_address_slot(chain, proxy_address, ADMIN_SLOT)
