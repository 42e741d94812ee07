"""Content fingerprints used as cache and deduplication keys."""

from __future__ import annotations

from hashlib import sha256

FINGERPRINT_LENGTH = 64


def fingerprint(text: str) -> str:
    """Return the SHA-256 hex digest of the exact UTF-8 bytes of ``text``.

    No normalisation is applied, so strings that differ only in whitespace or
    Unicode composition get different fingerprints. Lone surrogates (which JSON
    permits) are encoded as-is instead of raising.
    """

    return sha256(text.encode("utf-8", "surrogatepass")).hexdigest()
