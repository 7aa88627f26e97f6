"""Plejd session crypto.

Authentication is a challenge-response over the auth characteristic: the
device hands out a 16-byte challenge, the gateway answers with
``sha256(key ^ challenge)`` folded in half.

Payloads on the data and last-data characteristics are XORed with a single
16-byte keystream block, ``AES-128-ECB(key, addr + addr + addr[:4])``, where
``addr`` is the peer radio address in reversed byte order. The block is reused
cyclically for longer payloads, so encryption and decryption are the same
operation.
"""

from __future__ import annotations

import hashlib
import re

from Crypto.Cipher import AES

from plejdble.core.errors import ConfigValidationError

KEY_SIZE = 16
ADDRESS_SIZE = 6

_HEX_RE = re.compile(r"^[0-9a-f]+$")


def _xor(left: bytes, right: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(left, right))


def parse_crypto_key(value: str) -> bytes:
    """Decode the hex crypto key, ignoring dashes and whitespace."""
    normalized = value.strip().lower().replace("-", "").replace(" ", "")
    if not _HEX_RE.match(normalized) or len(normalized) % 2 != 0:
        raise ConfigValidationError("crypto_key must be a hex string")
    key = bytes.fromhex(normalized)
    if len(key) != KEY_SIZE:
        raise ConfigValidationError(
            f"crypto_key must decode to {KEY_SIZE} bytes, got {len(key)}"
        )
    return key


def create_challenge_response(key: bytes, challenge: bytes) -> bytes:
    """
    Answer an auth challenge.

    Args:
        key: Raw 16-byte crypto key
        challenge: Challenge read back from the auth characteristic

    Returns:
        16-byte response to write to the auth characteristic
    """
    intermediate = hashlib.sha256(_xor(key, challenge)).digest()
    return _xor(intermediate[:16], intermediate[16:])


def keystream(key: bytes, address: bytes) -> bytes:
    block = address + address + address[:4]
    cipher = AES.new(key, AES.MODE_ECB)
    return cipher.encrypt(block)


def encrypt_decrypt(key: bytes, address: bytes, data: bytes) -> bytes:
    """XOR ``data`` with the session keystream (index ``i % 16``)."""
    stream = keystream(key, address)
    return bytes(b ^ stream[i % KEY_SIZE] for i, b in enumerate(data))
