"""
crypto.py: the few primitives the file server needs from `cryptography`.

Why this exists:
- Keep credential comparison in one place so the gate never does a plain `==`
  on a password (timing leaks the matching prefix length).
- Give /info a content digest without every caller building hash objects.

Notes:
- Passwords are compared as UTF-8 bytes; the table stores them in clear text,
  there is no hashing step.
- Digests are lowercase hex strings so they drop straight into a text reply.
"""

from cryptography.hazmat.primitives import constant_time, hashes

# Read files for hashing in 1 MiB pieces.
DIGEST_CHUNK = 1024 * 1024


# -------------------------
# Credential comparison
# -------------------------

def credentials_match(expected: str, supplied: str) -> bool:
    """Case-sensitive exact match in constant time (for equal lengths)."""
    return constant_time.bytes_eq(expected.encode("utf-8"), supplied.encode("utf-8"))


# -------------------------
# Digests
# -------------------------

def sha256_hex(data: bytes) -> str:
    """SHA-256 of an in-memory blob, hex encoded."""
    h = hashes.Hash(hashes.SHA256())
    h.update(data)
    return h.finalize().hex()


def sha256_file(path) -> str:
    """SHA-256 of a file on disk, read in chunks."""
    h = hashes.Hash(hashes.SHA256())
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(DIGEST_CHUNK), b""):
            h.update(chunk)
    return h.finalize().hex()
