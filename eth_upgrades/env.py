"""Read deployment configuration from environment variables.

- ``JSON_RPC_<CHAIN_NAME>``: JSON-RPC URL of a chain, see :py:data:`eth_upgrades.chain.CHAIN_NAMES`

- ``PRIVATE_KEY`` or comma separated ``PRIVATE_KEYS``: deployer key, first one is used

- ``DEPLOYER_ADDRESS``: deployer account unlocked on the node, when no private key is given

- ``DEPLOYMENT_LEDGER_PATH``: directory of per-chain deployment ledger files

- ``HARDHAT_ARTIFACTS_PATH``: Hardhat compilation output directory
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from eth_upgrades.chain import CHAIN_NAMES, ChainEnvironment


#: Where ledger files go unless told otherwise
DEFAULT_LEDGER_PATH = Path("deployments")

#: Matches ``paths.artifacts`` in our Hardhat config
DEFAULT_ARTIFACTS_PATH = Path("out-hardhat")


class MissingChainConfiguration(Exception):
    """No JSON-RPC endpoint or deployer identity configured for a chain."""

    def __init__(self, msg: str, chain_id: Optional[int] = None):
        super().__init__(msg)
        self.chain_id = chain_id


def get_json_rpc_env(chain_id: int) -> str:
    """Get the JSON-RPC URL environment variable based on the chain id.

    - Map chain id to a name and from there to environment variables.
    """
    chain_name = CHAIN_NAMES.get(chain_id)
    if not chain_name:
        raise MissingChainConfiguration(f"CHAIN_NAMES not configured for chain {chain_id}", chain_id=chain_id)
    return f"JSON_RPC_{chain_name.upper()}"


def read_json_rpc_url(chain_id: int, environ: Mapping[str, str] = os.environ) -> str:
    """Read JSON-RPC URL from environment variable based on the chain id.

    :raise MissingChainConfiguration:
        If the environment variable is not set for the given chain.
    """
    assert type(chain_id) is int, f"Chain ID must be an integer: {type(chain_id)}"
    env_var = get_json_rpc_env(chain_id)
    json_rpc_url = environ.get(env_var)
    if not json_rpc_url:
        raise MissingChainConfiguration(f"Environment variable {env_var} is not set for chain {chain_id}", chain_id=chain_id)
    return json_rpc_url


def read_deployer_account(environ: Mapping[str, str] = os.environ) -> Optional[LocalAccount]:
    """Read the deployer private key.

    :return:
        Local account or ``None`` if no key is configured
    """
    private_key = environ.get("PRIVATE_KEY")
    if not private_key:
        keys = [k.strip() for k in environ.get("PRIVATE_KEYS", "").split(",") if k.strip()]
        private_key = keys[0] if keys else None

    if not private_key:
        return None

    return Account.from_key(private_key)


def read_chain_environment(chain_id: int, environ: Mapping[str, str] = os.environ) -> ChainEnvironment:
    """Build a chain environment from environment variables.

    :raise MissingChainConfiguration:
        No JSON-RPC URL or deployer identity
    """
    json_rpc_url = read_json_rpc_url(chain_id, environ)

    account = read_deployer_account(environ)
    if account:
        deployer = account.address
    else:
        deployer = environ.get("DEPLOYER_ADDRESS")

    if not deployer:
        raise MissingChainConfiguration(f"Set PRIVATE_KEY or DEPLOYER_ADDRESS to deploy on chain {chain_id}", chain_id=chain_id)

    return ChainEnvironment(
        chain_id=chain_id,
        json_rpc_url=json_rpc_url,
        deployer=Web3.to_checksum_address(deployer),
    )


def read_ledger_path(environ: Mapping[str, str] = os.environ) -> Path:
    return Path(environ.get("DEPLOYMENT_LEDGER_PATH", DEFAULT_LEDGER_PATH)).absolute()


def read_artifacts_path(environ: Mapping[str, str] = os.environ) -> Path:
    return Path(environ.get("HARDHAT_ARTIFACTS_PATH", DEFAULT_ARTIFACTS_PATH)).absolute()
