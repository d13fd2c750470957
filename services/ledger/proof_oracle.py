from __future__ import annotations

import hashlib
import hmac
from typing import Protocol, Sequence

from services.crypto_core.field import to_bytes
from services.ledger.public_inputs import STATEMENTS


class ProofOracle(Protocol):
    def verify(self, statement: str, public_inputs: Sequence[int], proof: bytes) -> bool:
        ...


def bind_proof(statement: str, public_inputs: Sequence[int]) -> bytes:
    h = hashlib.sha256()
    h.update(b"shielded-ledger/proof/v1|" + statement.encode("utf-8") + b"|")
    for v in public_inputs:
        h.update(to_bytes(v))
    return h.digest()


class BindingProofOracle:
    """Accepts a proof iff it is the SHA-256 binding of the exact public-input tuple.

    Stands in for a succinct-proof verifier: it authenticates the public inputs
    and nothing else; the statement itself is checked by the ledger.
    """

    def verify(self, statement: str, public_inputs: Sequence[int], proof: bytes) -> bool:
        layout = STATEMENTS.get(statement)
        if layout is None or len(public_inputs) != len(layout.LAYOUT):
            return False
        if not isinstance(proof, (bytes, bytearray)):
            return False
        return hmac.compare_digest(bytes(proof), bind_proof(statement, public_inputs))


__all__ = ["ProofOracle", "bind_proof", "BindingProofOracle"]
