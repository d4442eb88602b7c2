# ipledger/__init__.py
"""
ipledger — filesystem-backed ledger of IP address reservations.
One directory per pool, one file per reserved address, shared safely between
short-lived processes without a daemon.

Compatible with the on-disk layout of the CNI host-local IPAM disk store.
"""

__version__ = "0.1.0.dev0"
