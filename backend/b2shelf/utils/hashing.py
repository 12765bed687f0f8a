"""SHA-1 content hashing (B2 verifies uploads against X-Bz-Content-Sha1)."""

import hashlib


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()
