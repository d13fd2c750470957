"""
Baby Jubjub, the twisted Edwards curve embedded in the BN254 scalar field.

    a*x^2 + y^2 = 1 + d*x^2*y^2

Points are exposed as affine ``Point(x, y)`` tuples. Internally additions run in
extended coordinates (X:Y:T:Z) so a scalar multiplication costs a single field
inversion. The unified addition law is complete on this curve (a is a square, d
is not) so doubling and the identity need no special cases.
"""
from __future__ import annotations

import hashlib
from functools import lru_cache
from typing import Iterable, NamedTuple, Tuple

from services.crypto_core.field import P, inv, is_square, sqrt

A = 168700
D = 168696

# order of the prime subgroup; the full group has order 8 * SUBGROUP_ORDER
SUBGROUP_ORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041
COFACTOR = 8

GENERATOR_DOMAIN = b"shielded-ledger/generator/v1/"


class Point(NamedTuple):
    x: int
    y: int

    def is_identity(self) -> bool:
        return self.x == 0 and self.y == 1


IDENTITY = Point(0, 1)

# Base point used for public keys (EIP-2494 Base8)
BASE8 = Point(
    5299619240641551281634865583518297030282874472190772894086521144482721001553,
    16950150798460657717958625567821834550301663161624707787222815936182638968203,
)

_Ext = Tuple[int, int, int, int]


def _to_ext(p: Point) -> _Ext:
    return (p.x, p.y, p.x * p.y % P, 1)


def _from_ext(e: _Ext) -> Point:
    X, Y, _, Z = e
    zi = inv(Z)
    return Point(X * zi % P, Y * zi % P)


def _ext_add(p: _Ext, q: _Ext) -> _Ext:
    X1, Y1, T1, Z1 = p
    X2, Y2, T2, Z2 = q
    a = X1 * X2 % P
    b = Y1 * Y2 % P
    c = D * T1 % P * T2 % P
    d = Z1 * Z2 % P
    e = ((X1 + Y1) * (X2 + Y2) - a - b) % P
    f = (d - c) % P
    g = (d + c) % P
    h = (b - A * a) % P
    return (e * f % P, g * h % P, e * h % P, f * g % P)


def on_curve(p: Point) -> bool:
    x, y = p.x % P, p.y % P
    x2, y2 = x * x % P, y * y % P
    return (A * x2 + y2) % P == (1 + D * x2 % P * y2) % P


def add(p: Point, q: Point) -> Point:
    return _from_ext(_ext_add(_to_ext(p), _to_ext(q)))


def neg(p: Point) -> Point:
    return Point((-p.x) % P, p.y)


def sub(p: Point, q: Point) -> Point:
    return add(p, neg(q))


def mul(p: Point, k: int) -> Point:
    """Scalar multiplication by a non-negative integer (left-to-right double-and-add)."""
    if k < 0:
        raise ValueError("negative scalar")
    if k == 0 or p.is_identity():
        return IDENTITY
    base = _to_ext(p)
    acc = _to_ext(IDENTITY)
    for bit in bin(k)[2:]:
        acc = _ext_add(acc, acc)
        if bit == "1":
            acc = _ext_add(acc, base)
    return _from_ext(acc)


def multi_mul(terms: Iterable[Tuple[Point, int]]) -> Point:
    acc = _to_ext(IDENTITY)
    for point, k in terms:
        acc = _ext_add(acc, _to_ext(mul(point, k)))
    return _from_ext(acc)


def in_subgroup(p: Point) -> bool:
    return on_curve(p) and mul(p, SUBGROUP_ORDER).is_identity()


def public_key(secret_scalar: int) -> Point:
    k = secret_scalar % SUBGROUP_ORDER
    if k == 0:
        raise ValueError("private scalar reduces to zero")
    return mul(BASE8, k)


def _lift_x(x: int):
    x2 = x * x % P
    den = (1 - D * x2) % P
    if den == 0:
        return None
    y2 = (1 - A * x2) * inv(den) % P
    if not is_square(y2):
        return None
    return Point(x, sqrt(y2))


@lru_cache(maxsize=None)
def hash_to_generator(tag: bytes) -> Point:
    """Derive a subgroup generator nobody knows the discrete log of.

    Try-and-increment over SHA-256(domain || tag || counter), then clear the
    cofactor.
    """
    counter = 0
    while True:
        digest = hashlib.sha256(GENERATOR_DOMAIN + tag + counter.to_bytes(4, "big")).digest()
        counter += 1
        candidate = _lift_x(int.from_bytes(digest, "big") % P)
        if candidate is None:
            continue
        g = mul(candidate, COFACTOR)
        if g.is_identity():
            continue
        return g


__all__ = [
    "A",
    "D",
    "SUBGROUP_ORDER",
    "COFACTOR",
    "Point",
    "IDENTITY",
    "BASE8",
    "on_curve",
    "add",
    "neg",
    "sub",
    "mul",
    "multi_mul",
    "in_subgroup",
    "public_key",
    "hash_to_generator",
]
