"""
Content digests for stored documents.

SHA-256 via the cryptography hash primitives, hex-encoded.
"""

from cryptography.hazmat.primitives.hashes import SHA256, Hash

# Hex characters of the digest embedded in a document identifier
ID_SUFFIX_LENGTH = 6


def sha256_hex(data: bytes) -> str:
    """Return the hex-encoded SHA-256 digest of ``data``."""
    digest = Hash(SHA256())
    digest.update(data)
    return digest.finalize().hex()


def id_suffix(hash_hex: str) -> str:
    """The short digest prefix used as the last part of an identifier."""
    return hash_hex[:ID_SUFFIX_LENGTH]
