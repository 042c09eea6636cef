"""Revert reason extraction.

Transaction failures reach us as transport level exceptions
whose payload depends on the JSON-RPC node we talk to.
Here we try to dig a human readable revert reason out of them.

Further reading

- `Web3.py Patterns: Revert Reason Lookups <https://snakecharmers.ethereum.org/web3py-revert-reason-parsing/>`_

"""

import logging
import re
from typing import Any, Optional, Union

import eth_abi
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

logger = logging.getLogger(__name__)


#: Solidity ``Error(string)`` selector
ERROR_STRING_SELECTOR = "08c379a0"

#: Solidity ``Panic(uint256)`` selector
PANIC_SELECTOR = "4e487b71"

#: Known text formats of different nodes, most specific first
_REASON_PATTERNS = [
    # Hardhat node
    re.compile(r"reverted with reason string '(?P<reason>.*?)'", re.DOTALL),
    re.compile(r"reverted with custom error '(?P<reason>.*?)'", re.DOTALL),
    re.compile(r"reverted with panic code (?P<reason>\S+)", re.DOTALL),
    # Ganache
    re.compile(r"VM Exception while processing transaction: revert (?P<reason>.+)", re.DOTALL),
    # Geth, Anvil, Erigon
    re.compile(r"execution reverted: (?P<reason>.+)", re.DOTALL),
]

_HEX_PAYLOAD = re.compile(r"0x(?:" + ERROR_STRING_SELECTOR + "|" + PANIC_SELECTOR + r")[0-9a-fA-F]*")


class OnChainRevert(Exception):
    """A transaction was rejected or reverted by the chain.

    - Raised both when the node refuses the transaction at broadcast
      (gas estimation hits a revert) and when the mined receipt has status 0

    - Never retried by this package, as rebroadcasting may double deploy
      libraries or implementations
    """

    def __init__(self, msg: str, reason: Optional[str] = None, tx_hash: Optional[HexBytes] = None):
        super().__init__(msg)
        self.reason = reason
        self.tx_hash = tx_hash

    @classmethod
    def from_error(cls, e: Exception, action: str = "Transaction") -> "OnChainRevert":
        """Wrap a transport error.

        Caller should ``raise OnChainRevert.from_error(e) from e`` to keep the original error attached.
        """
        reason = decode_revert_reason(e)
        if reason:
            msg = f"{action} reverted: {reason}"
        else:
            msg = f"{action} failed: {e}"
        return cls(msg, reason=reason)


def decode_error_data(data: Union[str, bytes, HexBytes]) -> Optional[str]:
    """Decode ABI encoded revert data.

    Understands ``Error(string)`` and ``Panic(uint256)``.

    :return:
        Decoded reason or ``None`` if the payload is something else, like a custom error
    """
    if isinstance(data, (bytes, HexBytes)):
        data = Web3.to_hex(data)

    if not isinstance(data, str) or not data.startswith("0x") or len(data) < 10:
        return None

    selector = data[2:10].lower()
    payload = bytes.fromhex(data[10:])
    try:
        if selector == ERROR_STRING_SELECTOR:
            (reason,) = eth_abi.decode(["string"], payload)
            return reason
        if selector == PANIC_SELECTOR:
            (code,) = eth_abi.decode(["uint256"], payload)
            return f"Panic({hex(code)})"
    except Exception as e:
        # Truncated or otherwise broken payload
        logger.debug("Could not decode revert data %s: %s", data, e)
    return None


def decode_revert_reason_text(text: str) -> Optional[str]:
    """Find a revert reason in an error message string."""

    match = _HEX_PAYLOAD.search(text)
    if match:
        decoded = decode_error_data(match.group(0))
        if decoded:
            return decoded

    for pattern in _REASON_PATTERNS:
        match = pattern.search(text)
        if match:
            reason = match.group("reason").strip()
            # Geth appends the raw payload after the message in some versions
            return reason.strip("'\"}")

    return None


def decode_revert_reason(error: Any) -> Optional[str]:
    """Best-effort revert reason decoding from a transport error.

    Handles

    - :py:class:`web3.exceptions.ContractLogicError` with ``data``

    - ``ValueError`` carrying a JSON-RPC error dict ``{"code", "message", "data"}`` (Ganache, Anvil)

    - ``ValueError`` carrying a plain string (BNB Chain + geth)

    - Anything else we can turn to a string

    :param error:
        Exception, JSON-RPC error dict or error message

    :return:
        Revert reason or ``None`` if we could not extract it
    """

    if isinstance(error, ContractLogicError):
        data = getattr(error, "data", None)
        if data:
            decoded = decode_error_data(data)
            if decoded:
                return decoded
        message = getattr(error, "message", None) or (error.args[0] if error.args else "")
        return decode_revert_reason_text(str(message)) or (str(message) or None)

    if isinstance(error, (ValueError, Web3Exception)) and error.args:
        return decode_revert_reason(error.args[0])

    if isinstance(error, dict):
        data = error.get("data")
        if isinstance(data, dict):
            # Hardhat nests the payload one level deeper
            data = data.get("data")
        if data:
            decoded = decode_error_data(data)
            if decoded:
                return decoded
        message = error.get("message")
        if message:
            return decode_revert_reason_text(message)
        return None

    if isinstance(error, str):
        return decode_revert_reason_text(error)

    if isinstance(error, Exception):
        return decode_revert_reason_text(str(error))

    return None


def fetch_transaction_revert_reason(
    web3: Web3,
    tx_hash: Union[HexBytes, str],
    unknown_error_message="<could not extract the revert reason>",
) -> str:
    """Gets a transaction revert reason by replaying it.

    Ethereum nodes do not store the transaction failure reason in any database or index.
    We replay the transaction against the current state. No archive node is needed,
    but the revert reason might be wrong if the state has moved on.

    :param web3: Our JSON-RPC connection

    :param tx_hash: Transaction hash of which reason we extract by simulation.

    :param unknown_error_message:
        Return this message if the revert reason extraction fails.

    :return: The revert reason or the placeholder message if we could not extract the reason somehow.
    """

    tx = web3.eth.get_transaction(tx_hash)

    replay_tx = {
        "from": tx["from"],
        "value": tx["value"],
        "data": tx.get("data", tx.get("input")),
        "gas": tx["gas"],
    }

    # Contract creation has no to address
    if tx.get("to"):
        replay_tx["to"] = tx["to"]

    try:
        web3.eth.call(replay_tx)
    except (ValueError, Web3Exception) as e:
        logger.debug("Revert exception result is: %s", e)
        return decode_revert_reason(e) or unknown_error_message

    logger.error("Transaction %s succeeded when replayed for its revert reason, maybe the chain state has moved", Web3.to_hex(HexBytes(tx_hash)))
    return unknown_error_message
