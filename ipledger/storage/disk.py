# ipledger/storage/disk.py
import contextlib
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from ipledger.core.address import IPAddress, canonical_address, parse_address, try_parse_address
from ipledger.core.encoding import Owner, owner_to_bytes
from ipledger.core.types import Reservation
from . import (
    AddressStore,
    LastReservedNotFound,
    PointerWriteError,
    resolve_data_dir,
    validate_pool_name,
)
from .lock import PoolLock

logger = logging.getLogger(__name__)

LAST_IP_FILE = "last_reserved_ip"

# Directories need the traversal bit; files only read/write
DIR_MODE = 0o755
FILE_MODE = 0o644

ScanErrorHook = Callable[[str, OSError], None]


def skip_record(name: str, exc: OSError) -> None:
    """Scan error hook that logs and moves on to the next record."""
    logger.debug("Skipping unreadable record %s: %s", name, exc)


class DiskStore(AddressStore):
    """
    Reservation ledger for one pool, stored as one file per address.

    <data_dir>/<pool>/<address>          owner token bytes, no newline
    <data_dir>/<pool>/last_reserved_ip   address text of the latest reservation

    Nothing is cached between calls; every operation reads the directory.
    """

    def __init__(self, pool: str, data_dir: str | Path | None = None):
        self.pool = validate_pool_name(pool)
        self.data_dir = resolve_data_dir(data_dir)
        self.path = self.data_dir / self.pool
        self.path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        self.lock = PoolLock(self.path)

    def __repr__(self) -> str:
        return f"DiskStore(pool={self.pool!r}, data_dir={str(self.data_dir)!r})"

    @contextlib.contextmanager
    def locked(self, timeout: Optional[float] = None):
        self.lock.acquire(timeout=timeout)
        try:
            yield self
        finally:
            self.lock.release()

    def reserve(self, owner: Owner, address) -> bool:
        """
        Create the record for `address` owned by `owner`.
        Returns False if the address is already reserved.

        The exclusive create makes this safe against concurrent reservers of the
        same address even without the pool lock; the pointer update is not.
        """
        addr = parse_address(address)
        name = str(addr)
        token = owner_to_bytes(owner)
        record = self.path / name

        try:
            fd = os.open(record, os.O_RDWR | os.O_CREAT | os.O_EXCL, FILE_MODE)
        except FileExistsError:
            logger.debug("Address %s already reserved in pool %s", name, self.pool)
            return False

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(token)
        except OSError:
            # No ownerless records left behind
            with contextlib.suppress(OSError):
                record.unlink()
            raise

        try:
            self._write_pointer(name)
        except OSError as e:
            raise PointerWriteError(addr, e) from e

        logger.debug("Reserved %s in pool %s", name, self.pool)
        return True

    def _write_pointer(self, name: str) -> None:
        pointer = self.path / LAST_IP_FILE
        tmp = self.path / f".{LAST_IP_FILE}.{os.getpid()}.{threading.get_ident()}.tmp"
        try:
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(name)
            os.replace(tmp, pointer)
        except OSError:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise

    def last_reserved_address(self) -> Optional[IPAddress]:
        """
        Address of the most recent successful reserve().
        This is a hint only: the address may since have been released.

        Raises LastReservedNotFound if the pointer is missing or unreadable.
        Returns None if its content does not parse as an address.
        """
        try:
            data = (self.path / LAST_IP_FILE).read_bytes()
        except OSError as e:
            raise LastReservedNotFound(f"Failed to retrieve last reserved ip: {e}") from e

        addr = try_parse_address(data)
        if addr is None:
            logger.warning("Unparseable %s in pool %s: %r", LAST_IP_FILE, self.pool, data[:64])
        return addr

    def release(self, address) -> None:
        """Remove the record for `address`. FileNotFoundError if it was not reserved."""
        name = canonical_address(address)
        (self.path / name).unlink()
        logger.debug("Released %s in pool %s", name, self.pool)

    def release_by_owner(self, owner: Owner) -> List[str]:
        """
        Remove every record held by `owner` and return the removed names.

        Records that cannot be read or removed are skipped so the rest still
        get reclaimed; only a failure to list the pool itself is raised.
        """
        token = owner_to_bytes(owner)
        removed = []
        for name, content in self.scan(on_error=skip_record):
            if content != token:
                continue
            try:
                (self.path / name).unlink()
            except OSError as e:
                skip_record(name, e)
                continue
            removed.append(name)
            logger.debug("Released %s in pool %s", name, self.pool)
        return removed

    def find_by_owner(self, owner: Owner) -> Optional[IPAddress]:
        """
        Address held by `owner`, or None.
        With several matches the last one in scan (name) order wins.
        """
        token = owner_to_bytes(owner)
        found = None
        for name, content in self.scan(on_error=skip_record):
            if content != token:
                continue
            addr = try_parse_address(name)
            if addr is not None:
                found = addr
        return found

    def list_reservations(self) -> List[Reservation]:
        reservations = []
        for name, content in self.scan(on_error=skip_record):
            addr = try_parse_address(name)
            if addr is None:
                continue
            reservations.append(Reservation(address=addr, owner=content))
        reservations.sort(key=lambda r: (r.address.version, r.address))
        return reservations

    def scan(self, on_error: Optional[ScanErrorHook] = None) -> Iterator[Tuple[str, bytes]]:
        """
        Lazily yield (name, content) for each record file, in name order.

        The pointer file, hidden/temporary files and subdirectories are not
        records. A record that cannot be read is passed to `on_error` and the
        scan continues; without a hook the error is raised. Errors listing the
        pool directory always propagate.
        """
        with os.scandir(self.path) as it:
            entries = sorted(it, key=lambda e: e.name)

        for entry in entries:
            if entry.name == LAST_IP_FILE or entry.name.startswith("."):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    continue
                content = Path(entry.path).read_bytes()
            except OSError as e:
                if on_error is None:
                    raise
                on_error(entry.name, e)
                continue
            yield entry.name, content

    def close(self) -> None:
        self.lock.close()
