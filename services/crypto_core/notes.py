from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple

from services.crypto_core import babyjub
from services.crypto_core.babyjub import Point
from services.crypto_core.commitments import commit2, scalar_add
from services.crypto_core.poseidon2 import hash1, hash2, hash3
from services.crypto_core.poseidon_ctr import NOTE_AMOUNT_COUNTER, decrypt, encrypt

# "ephemeral_key"
EPHEMERAL_DOMAIN = int.from_bytes(b"ephemeral_key", "big")


def ephemeral_scalar(spending_key: int, new_nonce_commitment: int) -> int:
    k = hash3(spending_key, new_nonce_commitment, EPHEMERAL_DOMAIN) % babyjub.SUBGROUP_ORDER
    return k or 1


def shared_key(my_scalar: int, peer_public: Point) -> int:
    if not babyjub.on_curve(peer_public) or peer_public.is_identity():
        raise ValueError("peer public key is not a valid curve point")
    s = babyjub.mul(peer_public, my_scalar % babyjub.SUBGROUP_ORDER)
    return hash2(s.x, s.y)


def note_blinding(shared: int) -> int:
    return hash1(shared)


@dataclass(frozen=True)
class SealedNote:
    sender_public: Point
    encrypted_amount: int
    commitment: Point


def seal_note(amount: int, sender_scalar: int, recipient_public: Point) -> Tuple[SealedNote, int]:
    """Build the note for ``recipient_public``. Returns the note and its blinding."""
    shared = shared_key(sender_scalar, recipient_public)
    blinding = note_blinding(shared)
    note = SealedNote(
        sender_public=babyjub.public_key(sender_scalar),
        encrypted_amount=encrypt(amount, shared, NOTE_AMOUNT_COUNTER),
        commitment=commit2(amount, blinding),
    )
    return note, blinding


def open_note(sender_public: Point, encrypted_amount: int, receiving_scalar: int) -> Tuple[int, int]:
    shared = shared_key(receiving_scalar, sender_public)
    return decrypt(encrypted_amount, shared, NOTE_AMOUNT_COUNTER), note_blinding(shared)


def open_notes(notes: Iterable[Tuple[Point, int, Point]], receiving_scalar: int) -> Tuple[int, int]:
    """Sum the openings of (sender_public, encrypted_amount, commitment) triples.

    Raises ValueError if any note does not open to its posted commitment.
    """
    m_sum, r_sum = 0, 0
    for sender_public, encrypted_amount, commitment in notes:
        m, r = open_note(sender_public, encrypted_amount, receiving_scalar)
        if commit2(m, r) != commitment:
            raise ValueError("note does not open to its commitment")
        m_sum, r_sum = scalar_add(m_sum, m), scalar_add(r_sum, r)
    return m_sum, r_sum


__all__ = [
    "EPHEMERAL_DOMAIN",
    "ephemeral_scalar",
    "shared_key",
    "note_blinding",
    "SealedNote",
    "seal_note",
    "open_note",
    "open_notes",
]
