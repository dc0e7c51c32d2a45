"""
Hash functions for memberdao.

SHA-256 digests used to chain audit events together.
"""

import json
from dataclasses import dataclass
from typing import Any, Union

from cryptography.hazmat.primitives import hashes


@dataclass(frozen=True)
class Hash:
    """Immutable hash value with comparison and string representation."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != 32:
            raise ValueError("Hash must be exactly 32 bytes")

    def __str__(self) -> str:
        return self.value.hex()

    def __repr__(self) -> str:
        return f"Hash('{self.value.hex()}')"

    @classmethod
    def zero(cls) -> "Hash":
        """Create a zero hash (all zeros)."""
        return cls(b"\x00" * 32)

    def to_hex(self) -> str:
        """Convert hash to hexadecimal string."""
        return self.value.hex()


class SHA256Hasher:
    """SHA-256 hasher backed by the ``cryptography`` primitives."""

    @staticmethod
    def hash(data: Union[bytes, str]) -> Hash:
        """
        Hash data using SHA-256.

        Args:
            data: Data to hash (bytes or string)

        Returns:
            Hash object containing the SHA-256 hash
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        digest = hashes.Hash(hashes.SHA256())
        digest.update(data)
        return Hash(digest.finalize())

    @staticmethod
    def hash_json(data: Any) -> Hash:
        """Hash the canonical (sorted-key) JSON encoding of ``data``."""
        encoded = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
        return SHA256Hasher.hash(encoded)
