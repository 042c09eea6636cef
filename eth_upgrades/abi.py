"""ABI and bytecode handling for Hardhat compilation artifacts.

Provides functions to load Hardhat artifacts, encode function calls
and constructor arguments, and link Solidity libraries into bytecode.
Loaded artifacts are cached for the speedup.
"""

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import eth_abi
from eth_utils import function_abi_to_4byte_selector
from web3 import Web3

from eth_upgrades.utils import normalise_address

logger = logging.getLogger(__name__)

# How big is our artifact cache
_CACHE_SIZE = 512

#: Library placeholder left by the Solidity compiler in unlinked bytecode.
#:
#: ``__$<34 hex chars of keccak(fully qualified name)>$__`` since solc 0.5,
#: ``__<padded library name>__`` before that.
#: Hex never contains underscores, so any 40 char ``__…__`` window is a placeholder.
PLACEHOLDER_PATTERN = re.compile(r"__.{36}__")


class UnlinkedLibraryError(Exception):
    """Bytecode still references libraries we do not have addresses for.

    Deploying such bytecode would give a contract that reverts
    whenever it calls the library.
    """

    def __init__(self, msg: str, missing: Optional[list[str]] = None):
        super().__init__(msg)
        self.missing = missing or []


@lru_cache(maxsize=_CACHE_SIZE)
def get_artifact(artifacts_path: Path, contract_name: str) -> dict:
    """Read a Hardhat compilation artifact.

    Hardhat writes artifacts as ``<artifacts>/<source path>/<ContractName>.json``.

    Example:

    .. code-block:: python

        artifact = get_artifact(Path("out-hardhat"), "ProjectHubUpgradeable")
        abi = artifact["abi"]
        bytecode = artifact["bytecode"]
        link_references = artifact["linkReferences"]

    Any results are cached.

    :param artifacts_path:
        Hardhat ``paths.artifacts`` directory

    :param contract_name:
        Contract name, or fully qualified ``contracts/Foo.sol:Foo`` if the name is ambiguous

    :return:
        Artifact JSON as a dict
    """

    assert isinstance(artifacts_path, Path), f"Expected Path, got {type(artifacts_path)}"

    if ":" in contract_name:
        source_name, name = contract_name.split(":", 1)
        candidates = [artifacts_path / source_name / f"{name}.json"]
        candidates = [c for c in candidates if c.exists()]
    else:
        candidates = sorted(artifacts_path.rglob(f"{contract_name}.json"))

    if not candidates:
        raise FileNotFoundError(f"No Hardhat artifact for {contract_name} in {artifacts_path}")

    assert len(candidates) == 1, f"Contract name {contract_name} is ambiguous, use a fully qualified name. Candidates: {candidates}"

    with open(candidates[0], "rt", encoding="utf-8") as f:
        artifact = json.load(f)

    assert "abi" in artifact and "bytecode" in artifact, f"Not a Hardhat artifact: {candidates[0]}"
    return artifact


def _get_abi_type(param: dict) -> str:
    """Turn ABI parameter definition to a type string eth_abi understands."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_get_abi_type(c) for c in param["components"])
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def get_abi_input_types(fn_abi: dict) -> list[str]:
    return [_get_abi_type(p) for p in fn_abi.get("inputs", [])]


def get_function_abi_by_name(abi: list[dict], function_name: str, arg_count: Optional[int] = None) -> dict | None:
    """Get function ABI by its name.

    :param arg_count:
        Pick an overloaded function by its number of arguments
    """
    for item in abi:
        if item.get("type") == "function" and item.get("name") == function_name:
            if arg_count is None or len(item.get("inputs", [])) == arg_count:
                return item
    return None  # Return None if function is not found


def get_constructor_abi(abi: list[dict]) -> dict | None:
    for item in abi:
        if item.get("type") == "constructor":
            return item
    return None


def encode_function_call(abi: list[dict], function_name: str, args: Sequence) -> bytes:
    """Encode function selector + its arguments as data payload.

    :return:
        Solidity's function selector + argument payload.
    """
    assert type(args) in (tuple, list), f"Got {type(args)}"
    fn_abi = get_function_abi_by_name(abi, function_name, len(args))
    assert fn_abi, f"Could not find function {function_name} taking {len(args)} arguments in ABI"
    selector = function_abi_to_4byte_selector(fn_abi)
    return selector + eth_abi.encode(get_abi_input_types(fn_abi), list(args))


def encode_constructor_args(abi: list[dict], args: Sequence) -> bytes:
    """Encode constructor arguments to be appended to the creation bytecode."""
    assert type(args) in (tuple, list), f"Got {type(args)}"
    constructor_abi = get_constructor_abi(abi)
    if constructor_abi is None:
        assert len(args) == 0, f"Contract has no constructor, but got args {args}"
        return b""
    return eth_abi.encode(get_abi_input_types(constructor_abi), list(args))


def encode_with_signature(function_signature: str, args: Sequence) -> bytes:
    """Mimic Solidity's abi.encodeWithSignature() in Python.

    Example:

    .. code-block:: python

        payload = encode_with_signature("upgradeAndCall(address,address,bytes)", [proxy, implementation, b""])
        assert type(payload) == bytes

    :param function_signature:
        Solidity function signature that can be hashed to a selector.

        ABI fill be extractd from this signature.

    :param args:
        Argument values to be encoded.
    """

    assert type(args) in (tuple, list)

    function_selector = Web3.keccak(text=function_signature)[0:4]
    selector_text = function_signature[function_signature.find("(") + 1 : function_signature.rfind(")")]
    arg_types = selector_text.split(",") if selector_text else []
    encoded_args = eth_abi.encode(arg_types, list(args))
    return bytes(function_selector) + encoded_args


def humanise_solidity_value(v: Any) -> Any:
    """Make a Solidity argument value JSON friendly.

    - Bytes as 0x prefixed hex
    - Tuples as lists
    - Big integers stay ints
    """
    if type(v) in (list, tuple):
        return [humanise_solidity_value(x) for x in v]
    if isinstance(v, dict):
        return {k: humanise_solidity_value(x) for k, x in v.items()}
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    return v


def get_named_function_args(abi: list[dict], function_name: str, args: Sequence) -> dict:
    """Pair function call arguments with their Solidity parameter names.

    Used to record initializer arguments in the deployment ledger.

    Example:

    .. code-block:: python

        named = get_named_function_args(abi, "initialize", [oracle, owner, [vtoken], [native]])
        # {"_xcmOracle": "0x...", "_owner": "0x...", "_vAssets": [...], "_nativeAssets": [...]}

    Unnamed parameters get ``arg<index>`` keys.
    """
    fn_abi = get_function_abi_by_name(abi, function_name, len(args))
    assert fn_abi, f"Could not find function {function_name} taking {len(args)} arguments in ABI"
    named = {}
    for idx, (param, value) in enumerate(zip(fn_abi.get("inputs", []), args)):
        name = param.get("name") or f"arg{idx}"
        named[name] = humanise_solidity_value(value)
    return named


def find_unlinked_placeholders(bytecode: str) -> list[str]:
    """List library placeholders still left in the bytecode."""
    return PLACEHOLDER_PATTERN.findall(bytecode)


def link_libraries_hardhat(bytecode: str, link_references: dict, libraries: Mapping[str, str]) -> str:
    """Link Solidity libraries into Hardhat artifact bytecode.

    :param bytecode:
        Raw bytecode of a Solidity contract.

        Get from artifact.

        Bytecode must be a in string format, because placeholders are not parseable hex.

    :param link_references:
        Byte offsets we need to replace by library addresses,
        keyed by source file and library name.

        Get from artifact ``linkReferences``.

    :param libraries:
        Library name -> deployed address.

        Names can be plain ``ProjectLibrary`` or fully qualified ``src/ProjectLibrary.sol:ProjectLibrary``.

    :return:
        Linked bytecode as 0x prefixed hex string

    :raise UnlinkedLibraryError:
        If we do not have an address for a referenced library,
        or placeholders remain after linking
    """

    assert type(bytecode) == str, f"Got {type(bytecode)}"

    hex_blob = bytecode[2:] if bytecode.startswith("0x") else bytecode

    missing = []

    for source_name, ref_data in link_references.items():
        # 'src/libraries/ProjectLibrary.sol': {'ProjectLibrary': [{'length': 20, 'start': 4405}, {'length': 20, 'start': 5081}]},
        for library_name, ref_array in ref_data.items():
            address = libraries.get(f"{source_name}:{library_name}") or libraries.get(library_name)
            if not address:
                missing.append(library_name)
                continue

            address_hex = normalise_address(address)[2:]
            for ref in ref_array:
                start = ref["start"]
                length = ref["length"]
                assert length == 20, f"Unexpected link reference length {length} for {library_name}"
                hex_blob = hex_blob[: start * 2] + address_hex + hex_blob[(start + length) * 2 :]

    if missing:
        raise UnlinkedLibraryError(f"No addresses given for libraries: {', '.join(sorted(set(missing)))}", missing=sorted(set(missing)))

    leftover = find_unlinked_placeholders(hex_blob)
    if leftover:
        raise UnlinkedLibraryError(f"Bytecode has {len(leftover)} unresolved library placeholders after linking: {leftover}", missing=leftover)

    return "0x" + hex_blob
