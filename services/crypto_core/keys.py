"""Key schedule: everything a user derives from one secret for one (chain, asset) pair."""
from __future__ import annotations

from dataclasses import dataclass

from services.crypto_core import babyjub
from services.crypto_core.babyjub import Point
from services.crypto_core.poseidon2 import hash2, hash3

# "viewing_key" as a field element
VIEW_KEY_DOMAIN = int.from_bytes(b"viewing_key", "big")
# "receiving_key"
RECEIVING_KEY_DOMAIN = int.from_bytes(b"receiving_key", "big")


def spending_key(secret: int, chain_id: int, asset_id: int) -> int:
    return hash3(secret, chain_id, asset_id)


def view_key(secret: int) -> int:
    return hash2(VIEW_KEY_DOMAIN, secret)


def nonce_commitment(spending_key_: int, nonce: int, asset_id: int) -> int:
    if nonce < 0:
        raise ValueError("nonce must be non-negative")
    return hash3(spending_key_, nonce, asset_id)


def leaf_of(point: Point) -> int:
    return hash2(point.x, point.y)


def receiving_scalar(spending_key_: int) -> int:
    k = hash2(RECEIVING_KEY_DOMAIN, spending_key_) % babyjub.SUBGROUP_ORDER
    return k or 1


@dataclass(frozen=True)
class KeySet:
    secret: int
    chain_id: int
    asset_id: int
    spending_key: int
    view_key: int
    receiving_scalar: int
    receiving_public: Point

    @classmethod
    def derive(cls, secret: int, chain_id: int, asset_id: int) -> "KeySet":
        sk = spending_key(secret, chain_id, asset_id)
        rs = receiving_scalar(sk)
        return cls(
            secret=secret,
            chain_id=chain_id,
            asset_id=asset_id,
            spending_key=sk,
            view_key=view_key(secret),
            receiving_scalar=rs,
            receiving_public=babyjub.public_key(rs),
        )

    def nonce_commitment(self, nonce: int) -> int:
        return nonce_commitment(self.spending_key, nonce, self.asset_id)


__all__ = [
    "VIEW_KEY_DOMAIN",
    "RECEIVING_KEY_DOMAIN",
    "spending_key",
    "view_key",
    "nonce_commitment",
    "leaf_of",
    "receiving_scalar",
    "KeySet",
]
