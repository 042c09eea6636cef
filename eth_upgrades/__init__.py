"""eth_upgrades package root.

Deploy and upgrade library-linked transparent proxy contracts
and keep an append-only deployment ledger of every action.

See :py:mod:`eth_upgrades.workflow` for the entry points.
"""
