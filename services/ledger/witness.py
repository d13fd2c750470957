from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from services.crypto_core.babyjub import Point
from services.crypto_core.commitments import Opening
from services.crypto_core.lean_imt import MerkleProof
from services.ledger.public_inputs import (
    AbsorbInputs,
    AbsorbTransferInputs,
    AbsorbWithdrawInputs,
    AddFundsInputs,
    CreateInputs,
    TransferInputs,
    WithdrawInputs,
)

PublicInputs = Union[
    CreateInputs,
    AddFundsInputs,
    WithdrawInputs,
    TransferInputs,
    AbsorbInputs,
    AbsorbWithdrawInputs,
    AbsorbTransferInputs,
]


@dataclass(frozen=True)
class Witness:
    """Private side of a transition.

    ``nonce``/``previous``/``membership`` describe the state being consumed;
    the ``note_*`` fields open the note stack being absorbed.
    """

    secret: int
    nonce: int = 0
    previous: Optional[Opening] = None
    membership: Optional[MerkleProof] = None
    receiving_scalar: Optional[int] = None
    note_amount: int = 0
    note_blinding: int = 0
    note_membership: Optional[MerkleProof] = None


@dataclass(frozen=True)
class TransitionRequest:
    inputs: PublicInputs
    proof: bytes
    witness: Witness

    @property
    def statement(self) -> str:
        return self.inputs.STATEMENT


@dataclass(frozen=True)
class WithdrawLeg:
    amount: int
    receiver_address: int
    calldata_hash: int = 0
    declared_time: Optional[int] = None


@dataclass(frozen=True)
class TransferLeg:
    amount: int
    receiver_public: Point


__all__ = ["PublicInputs", "Witness", "TransitionRequest", "WithdrawLeg", "TransferLeg"]
