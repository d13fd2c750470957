"""
Pedersen commitments over Baby Jubjub.

    commit5(m1, m2, m3, m4, r) = m1*G + m2*H + m3*D + m4*K + r*J
    commit2(m, r)              = m*G + r*D

Scalars are taken modulo the subgroup order, so commitments are additively
homomorphic: commit(a) + commit(b) == commit(a + b) with sums in that ring.
Openings never carry a literal zero: a value meaning "zero" is encoded as 1 and
shares carry a +1 offset.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, NamedTuple

from services.crypto_core import babyjub
from services.crypto_core.babyjub import IDENTITY, SUBGROUP_ORDER, Point

ENCODING_OFFSET = 1


class Generators(NamedTuple):
    G: Point
    H: Point
    D: Point
    K: Point
    J: Point


GENERATORS = Generators(*(babyjub.hash_to_generator(tag) for tag in (b"G", b"H", b"D", b"K", b"J")))


def encode(value: int) -> int:
    if value < 0:
        raise ValueError("cannot encode a negative value")
    return value + ENCODING_OFFSET


def decode(encoded: int) -> int:
    if encoded < ENCODING_OFFSET:
        raise ValueError(f"encoded value below offset: {encoded}")
    return encoded - ENCODING_OFFSET


def scalar(x: int) -> int:
    return x % SUBGROUP_ORDER


def scalar_add(a: int, b: int) -> int:
    return (a + b) % SUBGROUP_ORDER


def _checked(point: Point) -> Point:
    if point.is_identity():
        raise ValueError("commitment collapsed to the group identity")
    return point


def commit5(m1: int, m2: int, m3: int, m4: int, r: int) -> Point:
    g = GENERATORS
    return _checked(
        babyjub.multi_mul(
            [
                (g.G, scalar(m1)),
                (g.H, scalar(m2)),
                (g.D, scalar(m3)),
                (g.K, scalar(m4)),
                (g.J, scalar(r)),
            ]
        )
    )


def commit2(m: int, r: int) -> Point:
    return _checked(babyjub.multi_mul([(GENERATORS.G, scalar(m)), (GENERATORS.D, scalar(r))]))


def shift(point: Point, amount: int = 0, lock: int = 0) -> Point:
    """Add ``amount*G + lock*K`` to a commitment without knowing its opening."""
    out = point
    if amount:
        out = babyjub.add(out, babyjub.mul(GENERATORS.G, scalar(amount)))
    if lock:
        out = babyjub.add(out, babyjub.mul(GENERATORS.K, scalar(lock)))
    return out


def aggregate(points: Iterable[Point]) -> Point:
    acc = IDENTITY
    for p in points:
        acc = babyjub.add(acc, p)
    return acc


@dataclass(frozen=True)
class Opening:
    """Five-scalar opening of a balance commitment (all values encoded)."""

    shares: int
    nullifier: int
    spending_key: int
    unlocks_at: int
    blinding: int

    def commit(self) -> Point:
        return commit5(self.shares, self.nullifier, self.spending_key, self.unlocks_at, self.blinding)

    @property
    def balance(self) -> int:
        return decode(self.shares)


@dataclass(frozen=True)
class Aggregate:
    """Running homomorphic sum of commit2 points with its two scalar accumulators."""

    point: Point
    m_sum: int
    r_sum: int
    count: int = 1

    @classmethod
    def of(cls, m: int, r: int) -> "Aggregate":
        return cls(commit2(m, r), scalar(m), scalar(r), 1)

    @classmethod
    def first(cls, point: Point, m: int, r: int) -> "Aggregate":
        return cls(point, scalar(m), scalar(r), 1)

    def fold(self, point: Point, m: int, r: int) -> "Aggregate":
        return Aggregate(
            babyjub.add(self.point, point),
            scalar_add(self.m_sum, m),
            scalar_add(self.r_sum, r),
            self.count + 1,
        )

    def is_consistent(self) -> bool:
        return commit2(self.m_sum, self.r_sum) == self.point


__all__ = [
    "ENCODING_OFFSET",
    "Generators",
    "GENERATORS",
    "encode",
    "decode",
    "scalar",
    "scalar_add",
    "commit5",
    "commit2",
    "shift",
    "aggregate",
    "Opening",
    "Aggregate",
]
