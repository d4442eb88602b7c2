# ipledger/core/encoding.py
from typing import Union

Owner = Union[str, bytes]


def owner_to_bytes(owner: Owner) -> bytes:
    """Owner tokens are stored as raw bytes; text owners are UTF-8 encoded."""
    if isinstance(owner, bytes):
        return owner
    if isinstance(owner, str):
        return owner.encode("utf-8")
    raise TypeError(f"Owner must be str or bytes, not {type(owner).__name__}")


def owner_to_text(owner: bytes) -> str:
    """Readable form of an owner token (invalid UTF-8 shown as \\x escapes)."""
    return owner.decode("utf-8", errors="backslashreplace")
