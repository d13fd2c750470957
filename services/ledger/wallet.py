"""
Client-side transition builder.

A ``Wallet`` holds one user's keys for one (chain, asset) pair and the opening
of its latest commitment, and turns intents (deposit, withdraw, pay) into
``TransitionRequest`` objects the ledger accepts. ``prepare_*`` methods only
build; the plain methods build, submit and adopt the resulting state.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from services.crypto_core.babyjub import Point
from services.crypto_core.commitments import Opening, commit2, decode
from services.crypto_core.keys import KeySet, leaf_of
from services.crypto_core.lean_imt import MerkleProof
from services.crypto_core.notes import ephemeral_scalar, open_notes, seal_note
from services.crypto_core.poseidon_ctr import encrypt_state
from services.ledger import statements
from services.ledger.ledger import Ledger
from services.ledger.proof_oracle import bind_proof
from services.ledger.public_inputs import (
    AbsorbInputs,
    AbsorbTransferInputs,
    AbsorbWithdrawInputs,
    AddFundsInputs,
    CreateInputs,
    TransferInputs,
    WithdrawInputs,
)
from services.ledger.state import Transition
from services.ledger.witness import PublicInputs, TransferLeg, TransitionRequest, Witness, WithdrawLeg


@dataclass(frozen=True)
class Prepared:
    request: TransitionRequest
    nonce: int
    opening: Opening


def _request(inputs: PublicInputs, witness: Witness) -> TransitionRequest:
    return TransitionRequest(inputs, bind_proof(inputs.STATEMENT, inputs.as_tuple()), witness)


class Wallet:
    def __init__(
        self,
        secret: int,
        chain_id: int,
        asset_id: int,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.keys = KeySet.derive(secret, chain_id, asset_id)
        self.clock = clock or (lambda: int(time.time()))
        self.nonce: Optional[int] = None
        self.opening: Optional[Opening] = None

    @property
    def asset_id(self) -> int:
        return self.keys.asset_id

    @property
    def chain_id(self) -> int:
        return self.keys.chain_id

    @property
    def receiving_public(self) -> Point:
        return self.keys.receiving_public

    @property
    def balance(self) -> int:
        if self.opening is None:
            return 0
        return self.opening.balance

    def resume(self, nonce: int, opening: Opening) -> None:
        self.nonce = nonce
        self.opening = opening

    def adopt(self, prepared: Prepared) -> None:
        self.resume(prepared.nonce, prepared.opening)

    def submit(self, ledger: Ledger, prepared: Prepared) -> Transition:
        t = ledger.submit(prepared.request)
        self.adopt(prepared)
        return t

    # ---------- helpers ----------
    def _require_state(self) -> Opening:
        if self.opening is None or self.nonce is None:
            raise ValueError("wallet has no state yet; create or resume first")
        return self.opening

    def _membership(self, ledger: Ledger, leaf: int) -> MerkleProof:
        index = ledger.leaf_index(self.asset_id, leaf)
        if index < 0:
            raise ValueError("leaf not found in the ledger tree")
        return ledger.generate_proof(self.asset_id, index)

    def _previous(self, ledger: Ledger):
        prev = self._require_state()
        proof = self._membership(ledger, leaf_of(prev.commit()))
        new_nc = self.keys.nonce_commitment(self.nonce + 1)
        witness = Witness(self.keys.secret, nonce=self.nonce, previous=prev, membership=proof)
        return prev, proof, new_nc, witness

    def _encrypted(self, opening: Opening):
        return encrypt_state(decode(opening.shares), decode(opening.nullifier), self.keys.view_key)

    # ---------- create ----------
    def prepare_create(self, minted_shares: int = 0) -> Prepared:
        genesis = statements.genesis_opening(self.keys)
        nc0 = genesis.blinding
        inputs = CreateInputs(
            asset_id=self.asset_id,
            chain_id=self.chain_id,
            minted_shares=minted_shares,
            commitment=genesis.commit(),
            new_nonce_commitment=nc0,
            discovery_entry=commit2(1, nc0),
        )
        opening = statements.opening_after_deposit(genesis, minted_shares, 0, nc0)
        return Prepared(_request(inputs, Witness(self.keys.secret)), 0, opening)

    def create(self, ledger: Ledger, minted_shares: int = 0) -> Transition:
        return self.submit(ledger, self.prepare_create(minted_shares))

    # ---------- add funds ----------
    def prepare_add_funds(self, ledger: Ledger, amount: int, lock_until: int = 0) -> Prepared:
        prev, proof, new_nc, witness = self._previous(ledger)
        carried = Opening(prev.shares, prev.nullifier, prev.spending_key, prev.unlocks_at, new_nc)
        enc_balance, enc_nullifier = self._encrypted(prev)
        inputs = AddFundsInputs(
            asset_id=self.asset_id,
            amount=amount,
            chain_id=self.chain_id,
            expected_root=proof.root,
            lock_until=lock_until,
            commitment=carried.commit(),
            new_nonce_commitment=new_nc,
            encrypted_balance=enc_balance,
            encrypted_nullifier=enc_nullifier,
            discovery_entry=commit2(1, new_nc),
        )
        opening = statements.opening_after_deposit(prev, amount, lock_until, new_nc)
        return Prepared(_request(inputs, witness), self.nonce + 1, opening)

    def add_funds(self, ledger: Ledger, amount: int, lock_until: int = 0) -> Transition:
        return self.submit(ledger, self.prepare_add_funds(ledger, amount, lock_until))

    # ---------- withdraw ----------
    def prepare_withdraw(
        self,
        ledger: Ledger,
        amount: int,
        receiver_address: int,
        relayer_fee: int = 0,
        calldata_hash: int = 0,
        declared_time: Optional[int] = None,
    ) -> Prepared:
        prev, proof, new_nc, witness = self._previous(ledger)
        new = statements.opening_after_spend(prev, 0, amount + relayer_fee, new_nc)
        enc_balance, enc_nullifier = self._encrypted(new)
        inputs = WithdrawInputs(
            asset_id=self.asset_id,
            amount=amount,
            chain_id=self.chain_id,
            expected_root=proof.root,
            declared_time=self.clock() if declared_time is None else declared_time,
            calldata_hash=calldata_hash,
            receiver_address=receiver_address,
            relayer_fee=relayer_fee,
            commitment=new.commit(),
            new_nonce_commitment=new_nc,
            encrypted_balance=enc_balance,
            encrypted_nullifier=enc_nullifier,
            discovery_entry=commit2(1, new_nc),
        )
        return Prepared(_request(inputs, witness), self.nonce + 1, new)

    def withdraw(self, ledger: Ledger, amount: int, receiver_address: int, **kwargs) -> Transition:
        return self.submit(ledger, self.prepare_withdraw(ledger, amount, receiver_address, **kwargs))

    # ---------- transfer ----------
    def prepare_transfer(
        self, ledger: Ledger, amount: int, receiver_public: Point, relayer_fee: int = 0
    ) -> Prepared:
        prev, proof, new_nc, witness = self._previous(ledger)
        new = statements.opening_after_spend(prev, 0, amount + relayer_fee, new_nc)
        enc_balance, enc_nullifier = self._encrypted(new)
        note, _ = seal_note(amount, ephemeral_scalar(self.keys.spending_key, new_nc), receiver_public)
        inputs = TransferInputs(
            asset_id=self.asset_id,
            amount=amount,
            chain_id=self.chain_id,
            expected_root=proof.root,
            relayer_fee=relayer_fee,
            receiver_public=receiver_public,
            commitment=new.commit(),
            new_nonce_commitment=new_nc,
            encrypted_balance=enc_balance,
            encrypted_nullifier=enc_nullifier,
            encrypted_note_amount=note.encrypted_amount,
            sender_public=note.sender_public,
            note_commitment=note.commitment,
            discovery_entry=commit2(1, new_nc),
        )
        return Prepared(_request(inputs, witness), self.nonce + 1, new)

    def transfer(self, ledger: Ledger, amount: int, receiver_public: Point, relayer_fee: int = 0) -> Transition:
        return self.submit(ledger, self.prepare_transfer(ledger, amount, receiver_public, relayer_fee))

    # ---------- absorb ----------
    def pending_notes(self, ledger: Ledger):
        """(amount, blinding) of the note stack addressed to this wallet, or None."""
        stack = ledger.note_stack(self.asset_id, self.receiving_public)
        if stack is None:
            return None
        m, r = open_notes(
            ((n.sender_public, n.encrypted_amount, n.commitment) for n in stack.notes),
            self.keys.receiving_scalar,
        )
        return stack, m, r

    def prepare_absorb(
        self,
        ledger: Ledger,
        relayer_fee: int = 0,
        withdraw: Optional[WithdrawLeg] = None,
        transfer: Optional[TransferLeg] = None,
    ) -> Prepared:
        if withdraw is not None and transfer is not None:
            raise ValueError("absorb takes at most one follow-up leg")
        pending = self.pending_notes(ledger)
        if pending is None:
            raise ValueError("no pending notes to absorb")
        stack, m, r = pending

        prev, proof, new_nc, base = self._previous(ledger)
        stack_proof = self._membership(ledger, stack.leaf)
        witness = Witness(
            base.secret,
            nonce=base.nonce,
            previous=prev,
            membership=proof,
            receiving_scalar=self.keys.receiving_scalar,
            note_amount=m,
            note_blinding=r,
            note_membership=stack_proof,
        )

        leg_amount = 0
        if withdraw is not None:
            leg_amount = withdraw.amount
        elif transfer is not None:
            leg_amount = transfer.amount
        has_leg = withdraw is not None or transfer is not None
        new = statements.opening_after_spend(prev, m, leg_amount + relayer_fee, new_nc, clear_lock=has_leg)
        enc_balance, enc_nullifier = self._encrypted(new)

        common = dict(
            asset_id=self.asset_id,
            chain_id=self.chain_id,
            expected_root=proof.root,
            note_stack=stack.point,
            owner_public=self.receiving_public,
            relayer_fee=relayer_fee,
            commitment=new.commit(),
            new_nonce_commitment=new_nc,
            encrypted_balance=enc_balance,
            encrypted_nullifier=enc_nullifier,
            discovery_entry=commit2(1, new_nc),
        )
        if withdraw is not None:
            inputs = AbsorbWithdrawInputs(
                **common,
                amount=withdraw.amount,
                declared_time=self.clock() if withdraw.declared_time is None else withdraw.declared_time,
                calldata_hash=withdraw.calldata_hash,
                receiver_address=withdraw.receiver_address,
            )
        elif transfer is not None:
            note, _ = seal_note(
                transfer.amount, ephemeral_scalar(self.keys.spending_key, new_nc), transfer.receiver_public
            )
            inputs = AbsorbTransferInputs(
                **common,
                amount=transfer.amount,
                receiver_public=transfer.receiver_public,
                encrypted_note_amount=note.encrypted_amount,
                sender_public=note.sender_public,
                note_commitment=note.commitment,
            )
        else:
            inputs = AbsorbInputs(**common)
        return Prepared(_request(inputs, witness), self.nonce + 1, new)

    def absorb(self, ledger: Ledger, **kwargs) -> Transition:
        return self.submit(ledger, self.prepare_absorb(ledger, **kwargs))


__all__ = ["Prepared", "Wallet"]
