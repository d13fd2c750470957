"""
Poseidon2 over the BN254 scalar field, width 4.

Parameters: 8 external rounds (4 + 4), 56 internal rounds, S-box x^5.
Round constants come from the Grain LFSR instantiated with the permutation
parameters, the same way the reference parameter scripts produce them.

The fixed-arity hashes absorb up to three inputs into one permutation:

    state = [in_0, .., in_{n-1}, 0 .., n * 2^64]
    hash  = permute(state)[0]
"""
from __future__ import annotations

from collections import deque
from functools import lru_cache
from typing import List, Sequence, Tuple

from services.crypto_core.field import P

T = 4
ROUNDS_F = 8
ROUNDS_P = 56
ALPHA = 5
FIELD_BITS = 254

MAT_EXTERNAL = (
    (5, 7, 1, 3),
    (4, 6, 1, 1),
    (1, 3, 5, 7),
    (1, 1, 4, 6),
)

MAT_DIAG = (
    0x10DC6E9C006EA38B04B1E03B4BD9490C0D03F98929CA1D7FB56821FD19D3B6E7,
    0x0C28145B6A44DF3E0149B3D0A30B3BB599DF9756D4DD9B84A86B38CFB45A740B,
    0x00544B8338791518B2C7645A50392798B21F75BB60E3596170067D00141CAC15,
    0x222C01175718386F2E2E82EB122789E352E105A3B8FA852613BC534433EE428B,
)

IV_SHIFT = 64


class _Grain:
    """Self-shrinking Grain LFSR seeded with the permutation parameters."""

    def __init__(self, field: int, sbox: int, n: int, t: int, r_f: int, r_p: int) -> None:
        bits: List[int] = []
        for value, width in ((field, 2), (sbox, 4), (n, 12), (t, 12), (r_f, 10), (r_p, 10)):
            bits.extend(int(b) for b in format(value, f"0{width}b"))
        bits.extend([1] * 30)
        self._state = deque(bits, maxlen=80)
        for _ in range(160):
            self._step()

    def _step(self) -> int:
        s = self._state
        bit = s[62] ^ s[51] ^ s[38] ^ s[23] ^ s[13] ^ s[0]
        s.append(bit)
        return bit

    def bit(self) -> int:
        first = self._step()
        while first == 0:
            self._step()
            first = self._step()
        return self._step()

    def field_element(self, n: int, modulus: int) -> int:
        while True:
            v = 0
            for _ in range(n):
                v = (v << 1) | self.bit()
            if v < modulus:
                return v


@lru_cache(maxsize=1)
def round_constants() -> Tuple[Tuple[int, ...], ...]:
    grain = _Grain(1, 0, FIELD_BITS, T, ROUNDS_F, ROUNDS_P)
    rows = []
    for r in range(ROUNDS_F + ROUNDS_P):
        if ROUNDS_F // 2 <= r < ROUNDS_F // 2 + ROUNDS_P:
            # one constant per internal round, on the first lane
            rows.append((grain.field_element(FIELD_BITS, P),) + (0,) * (T - 1))
        else:
            rows.append(tuple(grain.field_element(FIELD_BITS, P) for _ in range(T)))
    return tuple(rows)


def _sbox(x: int) -> int:
    x2 = x * x % P
    return x2 * x2 % P * x % P


def _external(state: List[int]) -> List[int]:
    return [sum(m * s for m, s in zip(row, state)) % P for row in MAT_EXTERNAL]


def _internal(state: List[int]) -> List[int]:
    total = sum(state)
    return [(s * d + total) % P for s, d in zip(state, MAT_DIAG)]


def permute(inputs: Sequence[int]) -> List[int]:
    if len(inputs) != T:
        raise ValueError(f"poseidon2 state must have {T} elements")
    rc = round_constants()
    half = ROUNDS_F // 2
    state = _external([x % P for x in inputs])

    for r in range(half):
        state = _external([_sbox((s + c) % P) for s, c in zip(state, rc[r])])

    for r in range(half, half + ROUNDS_P):
        state[0] = _sbox((state[0] + rc[r][0]) % P)
        state = _internal(state)

    for r in range(half + ROUNDS_P, ROUNDS_F + ROUNDS_P):
        state = _external([_sbox((s + c) % P) for s, c in zip(state, rc[r])])

    return state


def _hash(inputs: Sequence[int]) -> int:
    n = len(inputs)
    state = [x % P for x in inputs] + [0] * (T - 1 - n) + [n << IV_SHIFT]
    return permute(state)[0]


def hash1(a: int) -> int:
    return _hash((a,))


def hash2(a: int, b: int) -> int:
    return _hash((a, b))


def hash3(a: int, b: int, c: int) -> int:
    return _hash((a, b, c))


__all__ = ["permute", "round_constants", "hash1", "hash2", "hash3"]
