"""
Binary layouts of the program's accounts.

Accounts are borsh-encoded and prefixed with an 8-byte discriminator,
``sha256("account:<Name>")[:8]``. Strings are a little-endian u32 length
followed by UTF-8 bytes.
"""

import hashlib
import struct
from typing import Optional, Tuple

from solders.pubkey import Pubkey

from .models import GrantRecord, ResourceRecord


DISCRIMINATOR_LENGTH = 8
PUBKEY_LENGTH = 32

# discriminator + api_id + owner + calls_remaining(u32) + active + bump
ACCESS_KEY_SIZE = 8 + 32 + 32 + 4 + 1 + 1
ACCESS_KEY_API_ID_OFFSET = DISCRIMINATOR_LENGTH


class LayoutError(ValueError):
    """Account data does not match the expected layout."""


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:DISCRIMINATOR_LENGTH]


API_REGISTRY_DISCRIMINATOR = account_discriminator("ApiRegistry")
ACCESS_KEY_DISCRIMINATOR = account_discriminator("AccessKey")


class _Reader:
    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise LayoutError(f"account data truncated at offset {self.offset}")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def unpack(self, fmt: str) -> Tuple:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))

    def pubkey(self) -> str:
        return str(Pubkey.from_bytes(self.take(PUBKEY_LENGTH)))

    def string(self) -> str:
        (length,) = self.unpack("<I")
        try:
            return self.take(length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise LayoutError(f"invalid UTF-8 string: {e}") from e

    def boolean(self) -> bool:
        (value,) = self.unpack("<B")
        if value > 1:
            raise LayoutError(f"invalid bool byte {value}")
        return bool(value)


def _check_discriminator(data: bytes, expected: bytes, name: str) -> _Reader:
    if data[:DISCRIMINATOR_LENGTH] != expected:
        raise LayoutError(f"account is not a {name}")
    return _Reader(data, DISCRIMINATOR_LENGTH)


def decode_api_registry(resource_id: str, data: bytes) -> ResourceRecord:
    reader = _check_discriminator(data, API_REGISTRY_DISCRIMINATOR, "ApiRegistry")
    owner = reader.pubkey()
    name = reader.string()
    backend_url = reader.string()
    (rate_limit,) = reader.unpack("<I")
    price_per_call, total_calls, total_earnings = reader.unpack("<QQQ")
    paused = reader.boolean()
    return ResourceRecord(
        resource_id=resource_id,
        owner=owner,
        name=name,
        backend_url=backend_url,
        rate_limit=rate_limit,
        price_per_call=price_per_call,
        total_calls=total_calls,
        total_earnings=total_earnings,
        paused=paused,
    )


def decode_access_key(grant_id: str, data: bytes, resource_id: Optional[str] = None) -> GrantRecord:
    reader = _check_discriminator(data, ACCESS_KEY_DISCRIMINATOR, "AccessKey")
    api_id = reader.pubkey()
    holder = reader.pubkey()
    (calls_remaining,) = reader.unpack("<I")
    active = reader.boolean()
    return GrantRecord(
        grant_id=grant_id,
        resource_id=resource_id or api_id,
        holder=holder,
        active=active,
        calls_remaining=calls_remaining,
    )
