# ipledger/core/types.py
from dataclasses import dataclass

from ipledger.core.address import IPAddress
from ipledger.core.encoding import owner_to_text


@dataclass(frozen=True)
class Reservation:
    """A single reservation record: address held by an opaque owner token."""
    address: IPAddress
    owner: bytes

    def to_dict(self) -> dict:
        """Helper for canonical export."""
        return {
            "address": str(self.address),
            "owner": owner_to_text(self.owner),
        }
