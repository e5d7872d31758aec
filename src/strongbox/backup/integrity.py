"""SHA-256 content checksums for backup plaintext."""

import hashlib
import hmac


def checksum(data: bytes) -> str:
    """Return the SHA-256 hex digest of data."""
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: bytes, expected_checksum: str) -> bool:
    """Verify SHA-256 checksum of data matches expected hex digest.

    A malformed expected value (non-ASCII, wrong length) simply fails.
    """
    expected = str(expected_checksum).encode("utf-8")
    return hmac.compare_digest(checksum(data).encode("ascii"), expected)
