# ipledger/storage/__init__.py
"""
Storage backends for address reservation ledgers.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ipledger.core.address import IPAddress
from ipledger.core.encoding import Owner
from ipledger.core.types import Reservation

DATA_DIR_ENV = "IPLEDGER_DATA_DIR"
DEFAULT_DATA_DIR = Path("/var/lib/cni/networks")


class StoreError(Exception):
    """Base class for ledger errors that are not plain OS errors."""


class LastReservedNotFound(StoreError):
    """The last-reservation pointer was never written or cannot be read."""


class PointerWriteError(StoreError):
    """The reservation succeeded but the last-reservation pointer was not updated."""

    def __init__(self, address: IPAddress, cause: OSError):
        super().__init__(f"Reserved {address} but failed to record it as last reserved: {cause}")
        self.address = address


class LockTimeout(StoreError):
    """The pool lock could not be acquired in time."""


class AddressStore(ABC):
    """Abstract base for all reservation ledger implementations.

    Single calls are self-contained; sequences that must be atomic as a whole
    (pointer read-then-reserve, scan-then-release) need the pool lock held
    around them.
    """

    @abstractmethod
    def reserve(self, owner: Owner, address) -> bool:
        pass

    @abstractmethod
    def last_reserved_address(self) -> Optional[IPAddress]:
        pass

    @abstractmethod
    def release(self, address) -> None:
        pass

    @abstractmethod
    def release_by_owner(self, owner: Owner) -> List[str]:
        pass

    @abstractmethod
    def find_by_owner(self, owner: Owner) -> Optional[IPAddress]:
        pass

    @abstractmethod
    def list_reservations(self) -> List[Reservation]:
        pass

    @abstractmethod
    def locked(self, timeout: Optional[float] = None):
        """Context manager holding the pool lock for the enclosed block."""

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def resolve_data_dir(data_dir: str | Path | None = None) -> Path:
    """Resolve the pool root in this order:
    1. explicit argument
    2. IPLEDGER_DATA_DIR environment variable
    3. default: /var/lib/cni/networks
    """
    if data_dir is None:
        env_path = os.environ.get(DATA_DIR_ENV)
        data_dir = env_path if env_path else DEFAULT_DATA_DIR
    return Path(data_dir).expanduser().resolve()


def validate_pool_name(pool: str) -> str:
    """Pool names map to one directory under the root, never a nested path."""
    if not pool or pool in (".", "..") or "/" in pool or "\0" in pool:
        raise ValueError(f"Invalid pool name: {pool!r}")
    return pool


def create_store(uri: str, pool: str) -> AddressStore:
    if uri.startswith("disk://"):
        from .disk import DiskStore
        raw_path = uri[len("disk://"):]
        if not raw_path:
            raise ValueError(f"Missing path in storage URI: {uri}")
        return DiskStore(pool, data_dir=raw_path)

    elif uri.startswith("memory://"):
        raise NotImplementedError("Memory backend coming soon")
    elif "://" in uri:
        raise ValueError(f"Unsupported storage URI: {uri}")
    elif uri.strip():
        # Plain directory path → disk store rooted there
        from .disk import DiskStore
        return DiskStore(pool, data_dir=uri.strip())
    else:
        raise ValueError("Empty storage URI")


from .lock import PoolLock
from .disk import DiskStore, LAST_IP_FILE

__all__ = [
    "AddressStore",
    "DiskStore",
    "PoolLock",
    "StoreError",
    "LastReservedNotFound",
    "PointerWriteError",
    "LockTimeout",
    "LAST_IP_FILE",
    "create_store",
    "resolve_data_dir",
    "validate_pool_name",
]
