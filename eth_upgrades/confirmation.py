"""Block confirmation monitoring.

- Wait for a broadcasted transaction to be included in a block

- We never give up waiting: once a deployment or upgrade transaction is out,
  abandoning it would leave the deployment ledger out of sync with the chain
"""

import datetime
import logging
import time
from typing import Union

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound


logger = logging.getLogger(__name__)


def wait_transaction_to_complete(
    web3: Web3,
    tx_hash: Union[HexBytes, str],
    confirmation_block_count: int = 0,
    poll_delay=datetime.timedelta(seconds=1),
    warning_after=datetime.timedelta(minutes=5),
) -> dict:
    """Watch a transaction until it is included in a block.

    Use simple poll loop. There is no timeout:
    the loop switches to louder logging after ``warning_after``
    so that the operator can decide what to do with a stuck transaction.

    Example:

    .. code-block:: python

        tx_hash = web3.eth.send_raw_transaction(raw_bytes)
        receipt = wait_transaction_to_complete(web3, tx_hash)
        assert receipt["status"] == 1  # tx success

    :param tx_hash:
        Transaction hash

    :param confirmation_block_count:
        How many blocks wait for the transaction receipt to settle.
        Set to zero to return as soon as we see the first transaction receipt.

    :return:
        Transaction receipt
    """

    assert isinstance(poll_delay, datetime.timedelta)
    assert isinstance(warning_after, datetime.timedelta)
    assert isinstance(confirmation_block_count, int)

    tx_hash = HexBytes(tx_hash)
    started_at = time.monotonic()
    logger.info("Waiting tx %s to confirm in %d blocks", Web3.to_hex(tx_hash), confirmation_block_count)

    while True:
        try:
            receipt = web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as e:
            # BNB Chain get does this instead of returning None
            logger.debug("Transaction not found yet: %s", e)
            receipt = None

        if time.monotonic() - started_at > warning_after.total_seconds():
            tx_log_level = logging.WARNING
        else:
            tx_log_level = logging.DEBUG

        if receipt:
            tx_confirmations = web3.eth.block_number - receipt["blockNumber"]
            if tx_confirmations >= confirmation_block_count:
                logger.log(
                    tx_log_level,
                    "Confirmed tx %s with %d confirmations",
                    Web3.to_hex(tx_hash),
                    tx_confirmations,
                )
                return receipt
            logger.log(tx_log_level, "Still waiting more confirmations. Tx %s with %d confirmations, %d needed", Web3.to_hex(tx_hash), tx_confirmations, confirmation_block_count)
        else:
            logger.log(tx_log_level, "Tx %s not yet included, waited %f seconds", Web3.to_hex(tx_hash), time.monotonic() - started_at)

        time.sleep(poll_delay.total_seconds())
