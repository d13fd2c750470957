"""Counter-mode stream cipher over single field elements (keystream = hash2(key, counter))."""
from __future__ import annotations

from typing import Tuple

from services.crypto_core.field import P
from services.crypto_core.poseidon2 import hash2

BALANCE_COUNTER = 0
NULLIFIER_COUNTER = 1
NOTE_AMOUNT_COUNTER = 0

_MAX_COUNTER = 2**32 - 1


def keystream(key: int, counter: int) -> int:
    if not 0 <= counter <= _MAX_COUNTER:
        raise ValueError(f"counter out of u32 range: {counter}")
    return hash2(key, counter)


def encrypt(plaintext: int, key: int, counter: int) -> int:
    return (plaintext + keystream(key, counter)) % P


def decrypt(ciphertext: int, key: int, counter: int) -> int:
    return (ciphertext - keystream(key, counter)) % P


def encrypt_state(balance: int, nullifier: int, view_key: int) -> Tuple[int, int]:
    return (
        encrypt(balance, view_key, BALANCE_COUNTER),
        encrypt(nullifier, view_key, NULLIFIER_COUNTER),
    )


def decrypt_state(ct_balance: int, ct_nullifier: int, view_key: int) -> Tuple[int, int]:
    return (
        decrypt(ct_balance, view_key, BALANCE_COUNTER),
        decrypt(ct_nullifier, view_key, NULLIFIER_COUNTER),
    )


__all__ = [
    "BALANCE_COUNTER",
    "NULLIFIER_COUNTER",
    "NOTE_AMOUNT_COUNTER",
    "keystream",
    "encrypt",
    "decrypt",
    "encrypt_state",
    "decrypt_state",
]
