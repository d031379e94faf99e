"""
Phrase fingerprints: digest computation and their on-disk shard layout.
"""
import hashlib
from typing import List

DIGEST_ALGORITHM = "sha256"
GROUP_SIZE = 3  # 16^3 = at most 4096 entries per directory


def new_hasher(algorithm: str = DIGEST_ALGORITHM):
    """Return an incremental hasher; feeding it a phrase in pieces gives ``fingerprint(phrase)``."""
    return hashlib.new(algorithm)


def fingerprint(data: bytes, algorithm: str = DIGEST_ALGORITHM) -> bytes:
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return hasher.digest()


def digest_size(algorithm: str = DIGEST_ALGORITHM) -> int:
    return new_hasher(algorithm).digest_size


def to_hex(fp: bytes) -> str:
    # Upper-case hex sorts exactly like the raw digest bytes
    return fp.hex().upper()


def from_hex(text: str) -> bytes:
    return bytes.fromhex(text)


def shard_parts(fp: bytes, group_size: int = GROUP_SIZE) -> List[str]:
    """Split the hex form of a fingerprint into directory names.

    For instance "ABCDEFGHIJ" with ``group_size=3`` becomes
    ``["ABC", "DEF", "GHI", "J"]``: one directory level per group, which keeps
    the number of entries in any directory below filesystem limits (ext3 allows
    32000 subdirectories).
    """
    hex_value = to_hex(fp)
    return [hex_value[i:i + group_size] for i in range(0, len(hex_value), group_size)]


def shard_depth(size: int, group_size: int = GROUP_SIZE) -> int:
    """Number of directory levels for a digest of ``size`` bytes."""
    return -(-(size * 2) // group_size)
