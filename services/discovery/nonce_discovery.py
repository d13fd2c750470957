"""
Nonce discovery: rebuild a user's nonce position and balance history for one
asset from the secret alone and the ledger's public read surface.

The scan walks nonce commitments 0, 1, 2, ... while they are marked used,
decrypting each state with the view key. An absent nonce ends the scan only
after ``lookahead`` further nonces are also absent. Every membership query
counts against ``max_steps``; running out raises ``DiscoveryExhausted`` with a
checkpoint the caller can resume from.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from services.crypto_core.commitments import Aggregate, Opening, commit2, encode
from services.crypto_core.keys import KeySet
from services.crypto_core.poseidon_ctr import decrypt_state
from services.ledger.errors import DiscoveryExhausted, InvariantViolation
from services.ledger.state import DiscoveryEntry, EncryptedState, OperationInfo, OperationKind

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

DEFAULT_MAX_STEPS = 1024
DEFAULT_LOOKAHEAD = 1


class MembershipOracle(Protocol):
    def is_used(self, asset_id: int, value: int) -> bool:
        ...

    def read_encrypted_state(self, asset_id: int, nonce_commitment: int) -> Optional[EncryptedState]:
        ...

    def read_operation_kind(self, asset_id: int, nonce_commitment: int) -> Optional[OperationInfo]:
        ...

    def discovery_aggregate(self, asset_id: int) -> Optional[Aggregate]:
        ...

    def discovery_entries(self, asset_id: int, start: int = 0, limit: Optional[int] = None) -> List[DiscoveryEntry]:
        ...


@dataclass(frozen=True)
class BalanceEntry:
    nonce: int
    nonce_commitment: int
    kind: OperationKind
    balance: int
    nullifier: int
    minted_shares: int
    lock_until: int
    clears_lock: bool
    encrypted_balance: int
    encrypted_nullifier: int


@dataclass(frozen=True)
class DiscoveryCheckpoint:
    next_nonce: int = 0
    history: Tuple[BalanceEntry, ...] = ()
    gaps: Tuple[int, ...] = ()
    aggregate: Optional[Aggregate] = None


@dataclass(frozen=True)
class DiscoveryResult:
    current_nonce: Optional[int]
    history: Tuple[BalanceEntry, ...]
    gaps: Tuple[int, ...]
    aggregate: Optional[Aggregate]
    checkpoint: DiscoveryCheckpoint
    steps: int

    @property
    def registered(self) -> bool:
        return self.current_nonce is not None

    @property
    def balance(self) -> int:
        return self.history[-1].balance if self.history else 0

    @property
    def next_nonce(self) -> int:
        return 0 if self.current_nonce is None else self.current_nonce + 1


class NonceDiscovery:
    def __init__(
        self,
        oracle: MembershipOracle,
        secret: int,
        chain_id: int,
        asset_id: int,
        max_steps: int = DEFAULT_MAX_STEPS,
        lookahead: int = DEFAULT_LOOKAHEAD,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be >= 1")
        if lookahead < 0:
            raise ValueError("lookahead must be >= 0")
        self.oracle = oracle
        self.keys = KeySet.derive(secret, chain_id, asset_id)
        self.max_steps = max_steps
        self.lookahead = lookahead

    @property
    def asset_id(self) -> int:
        return self.keys.asset_id

    def _decode(self, nonce: int, nc: int) -> BalanceEntry:
        state = self.oracle.read_encrypted_state(self.asset_id, nc)
        info = self.oracle.read_operation_kind(self.asset_id, nc)
        if state is None or info is None:
            raise InvariantViolation("used nonce commitment has no stored state", nonce=nonce)
        if state.plaintext:
            balance, nullifier = state.balance, state.nullifier
        else:
            balance, nullifier = decrypt_state(state.balance, state.nullifier, self.keys.view_key)
            if info.kind.mints:
                balance += info.minted_shares
        return BalanceEntry(
            nonce=nonce,
            nonce_commitment=nc,
            kind=info.kind,
            balance=balance,
            nullifier=nullifier,
            minted_shares=info.minted_shares,
            lock_until=info.lock_until,
            clears_lock=info.clears_lock,
            encrypted_balance=state.balance,
            encrypted_nullifier=state.nullifier,
        )

    def scan(self, checkpoint: Optional[DiscoveryCheckpoint] = None) -> DiscoveryResult:
        cp = checkpoint or DiscoveryCheckpoint()
        if cp.aggregate is not None and (cp.aggregate.count != len(cp.history) or not cp.aggregate.is_consistent()):
            raise InvariantViolation("checkpoint aggregate does not match its history")

        nonce = cp.next_nonce
        history: List[BalanceEntry] = list(cp.history)
        gaps: List[int] = list(cp.gaps)
        aggregate = cp.aggregate
        steps = 0

        def query(n: int) -> bool:
            nonlocal steps
            if steps >= self.max_steps:
                resume = DiscoveryCheckpoint(nonce, tuple(history), tuple(gaps), aggregate)
                LOG.warning("discovery exhausted asset=%s at nonce=%d after %d steps", self.asset_id, nonce, steps)
                raise DiscoveryExhausted(
                    "discovery step budget exhausted", checkpoint=resume, nonce=nonce, steps=steps
                )
            steps += 1
            return self.oracle.is_used(self.asset_id, self.keys.nonce_commitment(n))

        while True:
            if query(nonce):
                nc = self.keys.nonce_commitment(nonce)
                history.append(self._decode(nonce, nc))
                entry = commit2(1, nc)
                aggregate = Aggregate.first(entry, 1, nc) if aggregate is None else aggregate.fold(entry, 1, nc)
                nonce += 1
                continue

            found = None
            for ahead in range(1, self.lookahead + 1):
                if query(nonce + ahead):
                    found = nonce + ahead
                    break
            if found is None:
                break
            LOG.warning("discovery gap asset=%s nonces %d..%d", self.asset_id, nonce, found - 1)
            gaps.extend(range(nonce, found))
            nonce = found

        current = history[-1].nonce if history else None
        return DiscoveryResult(
            current_nonce=current,
            history=tuple(history),
            gaps=tuple(gaps),
            aggregate=aggregate,
            checkpoint=DiscoveryCheckpoint(nonce, tuple(history), tuple(gaps), aggregate),
            steps=steps,
        )


def reconstruct_opening(result: DiscoveryResult, keys: KeySet) -> Opening:
    """Opening of the latest commitment, enough to build the next transition."""
    if not result.history:
        raise ValueError("nothing discovered yet")
    lock = 0
    for entry in result.history:
        if entry.clears_lock:
            lock = 0
        elif entry.lock_until:
            lock = entry.lock_until
    last = result.history[-1]
    return Opening(
        encode(last.balance),
        encode(last.nullifier),
        keys.spending_key,
        encode(lock),
        keys.nonce_commitment(last.nonce),
    )


@dataclass
class DiscoveryAggregator:
    """Public follower of an asset's discovery entries; needs no secret.

    Folds entries incrementally from ``cursor`` and checks itself against the
    aggregate the ledger publishes.
    """

    oracle: MembershipOracle
    asset_id: int
    cursor: int = 0
    aggregate: Optional[Aggregate] = None
    _seen: Dict[int, int] = field(default_factory=dict, repr=False)

    def sync(self, batch: int = 256) -> Optional[Aggregate]:
        if batch < 1:
            raise ValueError("batch must be >= 1")
        while True:
            entries = self.oracle.discovery_entries(self.asset_id, start=self.cursor, limit=batch)
            for e in entries:
                if e.point != commit2(1, e.nonce_commitment):
                    raise InvariantViolation("discovery entry does not open to its nonce commitment", index=self.cursor)
                if self.aggregate is None:
                    self.aggregate = Aggregate.first(e.point, 1, e.nonce_commitment)
                else:
                    self.aggregate = self.aggregate.fold(e.point, 1, e.nonce_commitment)
                self._seen[e.nonce_commitment] = self.cursor
                self.cursor += 1
            if len(entries) < batch:
                return self.aggregate

    def matches_ledger(self) -> bool:
        published = self.oracle.discovery_aggregate(self.asset_id)
        if published is None or self.aggregate is None:
            return published is None and self.aggregate is None
        return (
            published.point == self.aggregate.point
            and published.m_sum == self.aggregate.m_sum
            and published.r_sum == self.aggregate.r_sum
            and published.count == self.aggregate.count
        )

    def covers(self, result: DiscoveryResult) -> bool:
        """True if every nonce in ``result`` was posted publicly, in order."""
        positions = [self._seen.get(e.nonce_commitment) for e in result.history]
        if any(p is None for p in positions):
            return False
        return positions == sorted(positions)


__all__ = [
    "DEFAULT_MAX_STEPS",
    "DEFAULT_LOOKAHEAD",
    "MembershipOracle",
    "BalanceEntry",
    "DiscoveryCheckpoint",
    "DiscoveryResult",
    "NonceDiscovery",
    "reconstruct_opening",
    "DiscoveryAggregator",
]
