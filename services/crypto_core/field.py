from __future__ import annotations

from typing import Iterable, Union

# BN254 scalar field
P = 21888242871839275222246405745257275088548364400416034343698204186575808495617

FieldLike = Union[int, str, bytes]


def fe(x: FieldLike) -> int:
    """Coerce an int, hex string or big-endian bytes into a canonical residue."""
    if isinstance(x, bool):
        raise ValueError("bool is not a field element")
    if isinstance(x, int):
        return x % P
    if isinstance(x, bytes):
        return int.from_bytes(x, "big") % P
    if isinstance(x, str):
        return from_hex(x)
    raise ValueError(f"cannot coerce {type(x).__name__} to field element")


def is_canonical(x: int) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and 0 <= x < P


def add(a: int, b: int) -> int:
    return (a + b) % P


def sub(a: int, b: int) -> int:
    return (a - b) % P


def mul(a: int, b: int) -> int:
    return (a * b) % P


def neg(a: int) -> int:
    return (-a) % P


def inv(a: int) -> int:
    a %= P
    if a == 0:
        raise ZeroDivisionError("0 has no inverse in the field")
    return pow(a, -1, P)


def div(a: int, b: int) -> int:
    return mul(a, inv(b))


def fsum(values: Iterable[int]) -> int:
    total = 0
    for v in values:
        total += v
    return total % P


def _two_adicity(n: int):
    s = 0
    while n % 2 == 0:
        n //= 2
        s += 1
    return s, n


_S, _Q = _two_adicity(P - 1)


def _non_residue() -> int:
    z = 2
    while pow(z, (P - 1) // 2, P) != P - 1:
        z += 1
    return z


_Z = _non_residue()


def is_square(a: int) -> bool:
    a %= P
    return a == 0 or pow(a, (P - 1) // 2, P) == 1


def sqrt(a: int) -> int:
    """Tonelli-Shanks square root. Raises ValueError for non-residues.

    Of the two roots the smaller one is returned so the result is stable.
    """
    a %= P
    if a == 0:
        return 0
    if not is_square(a):
        raise ValueError("not a quadratic residue")
    m = _S
    c = pow(_Z, _Q, P)
    t = pow(a, _Q, P)
    r = pow(a, (_Q + 1) // 2, P)
    while t != 1:
        i, t2 = 0, t
        while t2 != 1:
            t2 = t2 * t2 % P
            i += 1
        b = pow(c, 1 << (m - i - 1), P)
        m = i
        c = b * b % P
        t = t * c % P
        r = r * b % P
    return min(r, P - r)


def to_hex(x: int) -> str:
    return "0x" + format(x % P, "064x")


def from_hex(s: str) -> int:
    s = s.strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    if not s or len(s) > 64:
        raise ValueError(f"bad field hex: {s!r}")
    v = int(s, 16)
    if v >= P:
        raise ValueError("value is not a canonical field element")
    return v


def to_bytes(x: int) -> bytes:
    return (x % P).to_bytes(32, "big")


__all__ = [
    "P",
    "fe",
    "is_canonical",
    "add",
    "sub",
    "mul",
    "neg",
    "inv",
    "div",
    "fsum",
    "is_square",
    "sqrt",
    "to_hex",
    "from_hex",
    "to_bytes",
]
