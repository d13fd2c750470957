"""
What each transition proves about its private witness.

The ledger never trusts the client's arithmetic: it rebuilds the previous leaf
from the claimed opening, checks its membership under the claimed root, and
recomputes every public output from the witness. The ``next_*`` helpers are
shared with the client-side builder so both sides agree on the encodings.
"""
from __future__ import annotations

from typing import Optional, Tuple

from services.crypto_core import babyjub
from services.crypto_core.babyjub import Point
from services.crypto_core.commitments import ENCODING_OFFSET, Opening, commit2, decode
from services.crypto_core.keys import KeySet, leaf_of
from services.crypto_core.lean_imt import MerkleProof
from services.crypto_core.notes import ephemeral_scalar, seal_note
from services.crypto_core.poseidon_ctr import encrypt_state
from services.ledger.errors import InvariantViolation, TimeWindowViolation
from services.ledger.public_inputs import (
    AbsorbInputs,
    AbsorbTransferInputs,
    AbsorbWithdrawInputs,
    AddFundsInputs,
    CreateInputs,
    TransferInputs,
    WithdrawInputs,
)
from services.ledger.witness import Witness

# an encoded balance must keep at least this much above the debit
SPEND_MARGIN = ENCODING_OFFSET + 1


def has_spendable(available_shares: int, amount: int, fee: int) -> bool:
    return available_shares >= amount + fee + SPEND_MARGIN


def opening_after_deposit(prev: Opening, amount: int, lock_until: int, new_nc: int) -> Opening:
    return Opening(prev.shares + amount, prev.nullifier, prev.spending_key, prev.unlocks_at + lock_until, new_nc)


def opening_after_spend(
    prev: Opening, absorbed: int, debit: int, new_nc: int, clear_lock: bool = True
) -> Opening:
    return Opening(
        prev.shares + absorbed - debit,
        prev.nullifier + debit,
        prev.spending_key,
        ENCODING_OFFSET if clear_lock else prev.unlocks_at,
        new_nc,
    )


def genesis_opening(keys: KeySet) -> Opening:
    return Opening(ENCODING_OFFSET, ENCODING_OFFSET, keys.spending_key, ENCODING_OFFSET, keys.nonce_commitment(0))


def _require(cond: bool, message: str, **context) -> None:
    if not cond:
        raise InvariantViolation(message, **context)


def _keys(inputs, w: Witness) -> KeySet:
    return KeySet.derive(w.secret, inputs.chain_id, inputs.asset_id)


def _check_membership(proof: Optional[MerkleProof], leaf: int, root: int, what: str) -> None:
    _require(proof is not None, f"missing {what} membership proof")
    _require(proof.leaf == leaf, f"{what} opening does not reconstruct the claimed leaf")
    _require(proof.verify(root=root), f"{what} leaf is not a member under the claimed root")


def _check_previous(inputs, w: Witness, keys: KeySet) -> Opening:
    prev = w.previous
    _require(prev is not None, "missing previous opening")
    _require(w.nonce >= 0, "negative nonce")
    _require(prev.spending_key == keys.spending_key, "opening is bound to another spending key")
    _require(prev.blinding == keys.nonce_commitment(w.nonce), "opening blinding is not the nonce commitment")
    _require(
        min(prev.shares, prev.nullifier, prev.unlocks_at) >= ENCODING_OFFSET,
        "opening carries an unencoded zero",
    )
    _require(
        inputs.new_nonce_commitment == keys.nonce_commitment(w.nonce + 1),
        "new nonce commitment does not follow the previous nonce",
    )
    _check_membership(w.membership, leaf_of(prev.commit()), inputs.expected_root, "previous")
    return prev


def _check_outputs(inputs, keys: KeySet, disclosed: Opening, committed: Opening) -> None:
    _require(inputs.commitment == committed.commit(), "commitment does not match the new opening")
    enc_balance, enc_nullifier = encrypt_state(decode(disclosed.shares), decode(disclosed.nullifier), keys.view_key)
    _require(
        (inputs.encrypted_balance, inputs.encrypted_nullifier) == (enc_balance, enc_nullifier),
        "encrypted state does not match the new opening",
    )


def _check_lock(prev: Opening, at: int) -> None:
    unlocks = decode(prev.unlocks_at)
    if unlocks > at:
        raise TimeWindowViolation("funds are still locked", unlocks_at=unlocks, at=at)


def _check_note(inputs, keys: KeySet) -> None:
    _require(babyjub.on_curve(inputs.receiver_public), "receiver key is not on the curve")
    note, _ = seal_note(
        inputs.amount, ephemeral_scalar(keys.spending_key, inputs.new_nonce_commitment), inputs.receiver_public
    )
    _require(inputs.sender_public == note.sender_public, "sender key does not match the ephemeral key")
    _require(inputs.note_commitment == note.commitment, "note commitment does not match the amount")
    _require(inputs.encrypted_note_amount == note.encrypted_amount, "note ciphertext does not match the amount")


def check_create(inputs: CreateInputs, w: Witness) -> None:
    keys = _keys(inputs, w)
    genesis = genesis_opening(keys)
    _require(inputs.new_nonce_commitment == genesis.blinding, "create must use nonce 0")
    _require(inputs.commitment == genesis.commit(), "commitment does not match the genesis opening")


def check_add_funds(inputs: AddFundsInputs, w: Witness) -> Opening:
    keys = _keys(inputs, w)
    prev = _check_previous(inputs, w, keys)
    if inputs.lock_until:
        _require(prev.unlocks_at == ENCODING_OFFSET, "a lock can only be set on unlocked funds")
    carried = Opening(prev.shares, prev.nullifier, prev.spending_key, prev.unlocks_at, inputs.new_nonce_commitment)
    # ciphertexts carry the pre-deposit balance, the ledger adds the minted shares
    _check_outputs(inputs, keys, prev, carried)
    return opening_after_deposit(prev, inputs.amount, inputs.lock_until, inputs.new_nonce_commitment)


def _check_spend(inputs, keys: KeySet, prev: Opening, absorbed: int, amount: int, lock_at: Optional[int]) -> Opening:
    fee = inputs.relayer_fee
    available = prev.shares + absorbed
    _require(
        has_spendable(available, amount, fee),
        "insufficient balance",
        available_shares=available,
        amount=amount,
        fee=fee,
    )
    if lock_at is not None:
        _check_lock(prev, lock_at)
    new = opening_after_spend(prev, absorbed, amount + fee, inputs.new_nonce_commitment, clear_lock=lock_at is not None)
    _check_outputs(inputs, keys, new, new)
    return new


def check_withdraw(inputs: WithdrawInputs, w: Witness) -> Opening:
    keys = _keys(inputs, w)
    prev = _check_previous(inputs, w, keys)
    return _check_spend(inputs, keys, prev, 0, inputs.amount, inputs.declared_time)


def check_transfer(inputs: TransferInputs, w: Witness, now: int) -> Opening:
    keys = _keys(inputs, w)
    prev = _check_previous(inputs, w, keys)
    new = _check_spend(inputs, keys, prev, 0, inputs.amount, now)
    _check_note(inputs, keys)
    return new


def _check_stack_opening(inputs: AbsorbInputs, w: Witness, keys: KeySet) -> int:
    _require(w.receiving_scalar == keys.receiving_scalar, "receiving key does not belong to this account")
    _require(babyjub.public_key(w.receiving_scalar) == inputs.owner_public, "owner key does not match")
    _require(0 < w.note_amount < 2**128, "note stack amount out of range")
    _require(commit2(w.note_amount, w.note_blinding) == inputs.note_stack, "note stack opening mismatch")
    _check_membership(w.note_membership, leaf_of(inputs.note_stack), inputs.expected_root, "note stack")
    return w.note_amount


def check_absorb(inputs: AbsorbInputs, w: Witness, now: int) -> Tuple[Opening, int]:
    """Returns the new opening and the absorbed amount."""
    keys = _keys(inputs, w)
    prev = _check_previous(inputs, w, keys)
    absorbed = _check_stack_opening(inputs, w, keys)

    if isinstance(inputs, AbsorbWithdrawInputs):
        new = _check_spend(inputs, keys, prev, absorbed, inputs.amount, inputs.declared_time)
    elif isinstance(inputs, AbsorbTransferInputs):
        new = _check_spend(inputs, keys, prev, absorbed, inputs.amount, now)
        _check_note(inputs, keys)
    else:
        new = _check_spend(inputs, keys, prev, absorbed, 0, None)
    return new, absorbed


def stack_point_after(current: Optional[Point], note_commitment: Point) -> Point:
    return note_commitment if current is None else babyjub.add(current, note_commitment)


__all__ = [
    "SPEND_MARGIN",
    "has_spendable",
    "opening_after_deposit",
    "opening_after_spend",
    "genesis_opening",
    "check_create",
    "check_add_funds",
    "check_withdraw",
    "check_transfer",
    "check_absorb",
    "stack_point_after",
]
