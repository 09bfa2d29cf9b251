"""
Program-derived address helpers.

Every ledger record lives at an address derived from fixed seeds and the
program id, so the gateway can locate a record without an index:

- registry:   ("api_registry", owner, name)
- access key: ("access_key", registry, holder)
- usage log:  ("usage_log", registry, holder)
"""

from typing import Sequence, Union

from solders.pubkey import Pubkey

from shared.errors import ValidationError


REGISTRY_SEED = b"api_registry"
ACCESS_KEY_SEED = b"access_key"
USAGE_LOG_SEED = b"usage_log"

# Seeds longer than this are rejected by the runtime.
MAX_SEED_LENGTH = 32

AddressLike = Union[str, Pubkey]


def to_pubkey(value: AddressLike) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    return Pubkey.from_string(value)


class AddressDeriver:
    """Derives record addresses for one program id."""

    def __init__(self, program_id: AddressLike):
        self.program_id = to_pubkey(program_id)

    def _find(self, seeds: Sequence[bytes]) -> str:
        for seed in seeds:
            if len(seed) > MAX_SEED_LENGTH:
                raise ValidationError(
                    f"Address seed exceeds {MAX_SEED_LENGTH} bytes",
                    details={"seed_length": len(seed)}
                )
        address, _bump = Pubkey.find_program_address(list(seeds), self.program_id)
        return str(address)

    def registry_address(self, owner: AddressLike, name: str) -> str:
        return self._find([REGISTRY_SEED, bytes(to_pubkey(owner)), name.encode("utf-8")])

    def grant_address(self, resource_id: AddressLike, holder: AddressLike) -> str:
        return self._find([ACCESS_KEY_SEED, bytes(to_pubkey(resource_id)), bytes(to_pubkey(holder))])

    def usage_log_address(self, resource_id: AddressLike, holder: AddressLike) -> str:
        return self._find([USAGE_LOG_SEED, bytes(to_pubkey(resource_id)), bytes(to_pubkey(holder))])
