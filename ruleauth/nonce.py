"""CSRF state nonces for the redirect login flow.

Nonces are drawn from ``secrets`` (the OS CSPRNG) and hex encoded, so
they are URL-safe and fixed length.
"""

from __future__ import annotations

import hmac
import secrets


NONCE_BYTES = 32


def generate_nonce(num_bytes: int = NONCE_BYTES) -> str:
    """Generate an unguessable state nonce.

    Parameters
    ----------
    num_bytes : int
        Bytes of entropy (default 32). Values below 32 are rejected.

    Returns
    -------
    str
        ``2 * num_bytes`` lowercase hex characters.
    """
    if num_bytes < NONCE_BYTES:
        msg = f"Nonce needs at least {NONCE_BYTES} bytes of entropy, got {num_bytes}"
        raise ValueError(msg)
    return secrets.token_hex(num_bytes)


def nonces_match(expected: str | None, received: str | None) -> bool:
    """Compare two nonces in constant time.

    Missing or empty values never match.
    """
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
