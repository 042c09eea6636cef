"""Deployment transaction helpers."""

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes


def strip_none_fields(tx: dict) -> dict:
    """Remove unset fields so that web3 can fill in its defaults.

    A contract creation must not carry ``to`` at all.
    """
    return {k: v for k, v in tx.items() if v is not None}


def sign_deployment_transaction(account: LocalAccount, tx: dict) -> HexBytes:
    """Sign a fully filled transaction with the deployer's private key.

    :param tx:
        Transaction with nonce, gas, fee and chain id set

    :return:
        Raw transaction bytes for ``eth_sendRawTransaction``
    """
    assert "nonce" in tx, f"Nonce missing: {tx}"
    assert "chainId" in tx, f"Chain id missing: {tx}"
    signed_tx = account.sign_transaction(tx)
    # eth_account renamed rawTransaction -> raw_transaction
    raw_bytes = getattr(signed_tx, "raw_transaction", None)
    if raw_bytes is None:
        raw_bytes = signed_tx.rawTransaction
    return HexBytes(raw_bytes)
