"""
Ordered public-input layouts, one per statement.

Each class names its fields in ``LAYOUT`` order; ``as_tuple`` flattens points to
(x, y). The tuple is what the proof oracle sees, so field order is part of the
wire contract and must not change.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Tuple

from services.crypto_core.babyjub import Point
from services.crypto_core.field import is_canonical
from services.ledger.errors import AuthenticationFailure


class _PublicInputs:
    STATEMENT: ClassVar[str] = ""
    LAYOUT: ClassVar[Tuple[str, ...]] = ()

    def as_tuple(self) -> Tuple[int, ...]:
        out = []
        for name in self.LAYOUT:
            attr, _, coord = name.partition(".")
            value = getattr(self, attr)
            out.append(getattr(value, coord) if coord else value)
        return tuple(out)

    def validate(self) -> Tuple[int, ...]:
        values = self.as_tuple()
        for name, v in zip(self.LAYOUT, values):
            if not is_canonical(v):
                raise AuthenticationFailure(
                    f"public input {name} is not a canonical field element", statement=self.STATEMENT
                )
        return values


@dataclass(frozen=True)
class CreateInputs(_PublicInputs):
    STATEMENT: ClassVar[str] = "create"
    LAYOUT: ClassVar[Tuple[str, ...]] = (
        "asset_id",
        "chain_id",
        "minted_shares",
        "commitment.x",
        "commitment.y",
        "new_nonce_commitment",
        "discovery_entry.x",
        "discovery_entry.y",
    )

    asset_id: int
    chain_id: int
    minted_shares: int
    commitment: Point
    new_nonce_commitment: int
    discovery_entry: Point


@dataclass(frozen=True)
class AddFundsInputs(_PublicInputs):
    STATEMENT: ClassVar[str] = "add_funds"
    LAYOUT: ClassVar[Tuple[str, ...]] = (
        "asset_id",
        "amount",
        "chain_id",
        "expected_root",
        "lock_until",
        "commitment.x",
        "commitment.y",
        "new_nonce_commitment",
        "encrypted_balance",
        "encrypted_nullifier",
        "discovery_entry.x",
        "discovery_entry.y",
    )

    asset_id: int
    amount: int
    chain_id: int
    expected_root: int
    lock_until: int
    commitment: Point
    new_nonce_commitment: int
    encrypted_balance: int
    encrypted_nullifier: int
    discovery_entry: Point


@dataclass(frozen=True)
class WithdrawInputs(_PublicInputs):
    STATEMENT: ClassVar[str] = "withdraw"
    LAYOUT: ClassVar[Tuple[str, ...]] = (
        "asset_id",
        "amount",
        "chain_id",
        "expected_root",
        "declared_time",
        "calldata_hash",
        "receiver_address",
        "relayer_fee",
        "commitment.x",
        "commitment.y",
        "new_nonce_commitment",
        "encrypted_balance",
        "encrypted_nullifier",
        "discovery_entry.x",
        "discovery_entry.y",
    )

    asset_id: int
    amount: int
    chain_id: int
    expected_root: int
    declared_time: int
    calldata_hash: int
    receiver_address: int
    relayer_fee: int
    commitment: Point
    new_nonce_commitment: int
    encrypted_balance: int
    encrypted_nullifier: int
    discovery_entry: Point


@dataclass(frozen=True)
class TransferInputs(_PublicInputs):
    STATEMENT: ClassVar[str] = "transfer"
    LAYOUT: ClassVar[Tuple[str, ...]] = (
        "asset_id",
        "amount",
        "chain_id",
        "expected_root",
        "relayer_fee",
        "receiver_public.x",
        "receiver_public.y",
        "commitment.x",
        "commitment.y",
        "new_nonce_commitment",
        "encrypted_balance",
        "encrypted_nullifier",
        "encrypted_note_amount",
        "sender_public.x",
        "sender_public.y",
        "note_commitment.x",
        "note_commitment.y",
        "discovery_entry.x",
        "discovery_entry.y",
    )

    asset_id: int
    amount: int
    chain_id: int
    expected_root: int
    relayer_fee: int
    receiver_public: Point
    commitment: Point
    new_nonce_commitment: int
    encrypted_balance: int
    encrypted_nullifier: int
    encrypted_note_amount: int
    sender_public: Point
    note_commitment: Point
    discovery_entry: Point


_ABSORB_LAYOUT = (
    "asset_id",
    "chain_id",
    "expected_root",
    "note_stack.x",
    "note_stack.y",
    "owner_public.x",
    "owner_public.y",
    "relayer_fee",
    "commitment.x",
    "commitment.y",
    "new_nonce_commitment",
    "encrypted_balance",
    "encrypted_nullifier",
    "discovery_entry.x",
    "discovery_entry.y",
)


@dataclass(frozen=True)
class AbsorbInputs(_PublicInputs):
    STATEMENT: ClassVar[str] = "absorb"
    LAYOUT: ClassVar[Tuple[str, ...]] = _ABSORB_LAYOUT

    asset_id: int
    chain_id: int
    expected_root: int
    note_stack: Point
    owner_public: Point
    relayer_fee: int
    commitment: Point
    new_nonce_commitment: int
    encrypted_balance: int
    encrypted_nullifier: int
    discovery_entry: Point


@dataclass(frozen=True)
class AbsorbWithdrawInputs(AbsorbInputs):
    STATEMENT: ClassVar[str] = "absorb_withdraw"
    LAYOUT: ClassVar[Tuple[str, ...]] = _ABSORB_LAYOUT + (
        "amount",
        "declared_time",
        "calldata_hash",
        "receiver_address",
    )

    amount: int
    declared_time: int
    calldata_hash: int
    receiver_address: int


@dataclass(frozen=True)
class AbsorbTransferInputs(AbsorbInputs):
    STATEMENT: ClassVar[str] = "absorb_transfer"
    LAYOUT: ClassVar[Tuple[str, ...]] = _ABSORB_LAYOUT + (
        "amount",
        "receiver_public.x",
        "receiver_public.y",
        "encrypted_note_amount",
        "sender_public.x",
        "sender_public.y",
        "note_commitment.x",
        "note_commitment.y",
    )

    amount: int
    receiver_public: Point
    encrypted_note_amount: int
    sender_public: Point
    note_commitment: Point


STATEMENTS = {
    cls.STATEMENT: cls
    for cls in (
        CreateInputs,
        AddFundsInputs,
        WithdrawInputs,
        TransferInputs,
        AbsorbInputs,
        AbsorbWithdrawInputs,
        AbsorbTransferInputs,
    )
}


__all__ = [
    "CreateInputs",
    "AddFundsInputs",
    "WithdrawInputs",
    "TransferInputs",
    "AbsorbInputs",
    "AbsorbWithdrawInputs",
    "AbsorbTransferInputs",
    "STATEMENTS",
]
