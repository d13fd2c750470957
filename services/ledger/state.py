"""
Per-asset ledger state and the committed ``Transition`` record.

A ``Transition`` carries every public effect of an accepted operation, so
applying the same sequence of transitions to an empty ``AssetLedger``
reproduces the state exactly. The event log stores nothing else.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from services.crypto_core import babyjub
from services.crypto_core.babyjub import Point
from services.crypto_core.commitments import Aggregate
from services.crypto_core.field import from_hex, to_hex
from services.crypto_core.keys import leaf_of
from services.crypto_core.lean_imt import LeanIMT


LOCK_CLEARING_STATEMENTS = frozenset({"withdraw", "transfer", "absorb_withdraw", "absorb_transfer"})


class OperationKind(str, Enum):
    CREATE = "create"
    ADD_FUNDS = "add_funds"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    ABSORB = "absorb"

    @property
    def mints(self) -> bool:
        return self in (OperationKind.CREATE, OperationKind.ADD_FUNDS)


@dataclass(frozen=True)
class HistoricalRoot:
    root: int
    depth: int
    size: int


@dataclass(frozen=True)
class EncryptedState:
    balance: int
    nullifier: int
    # Create stores the minted balance in the clear
    plaintext: bool = False


@dataclass(frozen=True)
class OperationInfo:
    kind: OperationKind
    minted_shares: int = 0
    lock_until: int = 0
    statement: str = ""

    @property
    def clears_lock(self) -> bool:
        return self.statement in LOCK_CLEARING_STATEMENTS


@dataclass(frozen=True)
class DiscoveryEntry:
    point: Point
    nonce_commitment: int


@dataclass(frozen=True)
class IncomingNote:
    sender_public: Point
    encrypted_amount: int
    commitment: Point


@dataclass
class NoteStack:
    """Pending notes for one recipient.

    ``point`` is the homomorphic sum that goes into the tree; ``notes`` keeps the
    ciphertexts the recipient needs to open it. Both reset when the stack is
    absorbed.
    """

    recipient: Point
    point: Point
    notes: List[IncomingNote] = field(default_factory=list)

    @property
    def leaf(self) -> int:
        return leaf_of(self.point)


@dataclass(frozen=True)
class Payout:
    receiver_address: int
    amount: int
    relayer_fee: int
    calldata_hash: int = 0


@dataclass(frozen=True)
class Transition:
    kind: OperationKind
    statement: str
    asset_id: int
    nonce_commitment: int
    leaves: Tuple[int, ...]
    encrypted_state: EncryptedState
    info: OperationInfo
    discovery_entry: Point
    timestamp: int
    note_recipient: Optional[Point] = None
    note: Optional[IncomingNote] = None
    absorbed_recipient: Optional[Point] = None
    absorbed_leaf: Optional[int] = None
    payout: Optional[Payout] = None
    relayer_fee: int = 0

    def to_dict(self) -> Dict[str, Any]:
        def pt(p: Optional[Point]):
            return None if p is None else [to_hex(p.x), to_hex(p.y)]

        return {
            "kind": self.kind.value,
            "statement": self.statement,
            "asset_id": self.asset_id,
            "nonce_commitment": to_hex(self.nonce_commitment),
            "leaves": [to_hex(v) for v in self.leaves],
            "encrypted_state": {
                "balance": to_hex(self.encrypted_state.balance),
                "nullifier": to_hex(self.encrypted_state.nullifier),
                "plaintext": self.encrypted_state.plaintext,
            },
            "info": {
                "kind": self.info.kind.value,
                "minted_shares": self.info.minted_shares,
                "lock_until": self.info.lock_until,
                "statement": self.info.statement,
            },
            "discovery_entry": pt(self.discovery_entry),
            "timestamp": self.timestamp,
            "note_recipient": pt(self.note_recipient),
            "note": None
            if self.note is None
            else {
                "sender_public": pt(self.note.sender_public),
                "encrypted_amount": to_hex(self.note.encrypted_amount),
                "commitment": pt(self.note.commitment),
            },
            "absorbed_recipient": pt(self.absorbed_recipient),
            "absorbed_leaf": None if self.absorbed_leaf is None else to_hex(self.absorbed_leaf),
            "payout": None
            if self.payout is None
            else {
                "receiver_address": to_hex(self.payout.receiver_address),
                "amount": self.payout.amount,
                "relayer_fee": self.payout.relayer_fee,
                "calldata_hash": to_hex(self.payout.calldata_hash),
            },
            "relayer_fee": self.relayer_fee,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Transition":
        def pt(v) -> Optional[Point]:
            return None if v is None else Point(from_hex(v[0]), from_hex(v[1]))

        es = d["encrypted_state"]
        info = d["info"]
        note = d.get("note")
        payout = d.get("payout")
        absorbed_leaf = d.get("absorbed_leaf")
        return cls(
            kind=OperationKind(d["kind"]),
            statement=d["statement"],
            asset_id=int(d["asset_id"]),
            nonce_commitment=from_hex(d["nonce_commitment"]),
            leaves=tuple(from_hex(v) for v in d["leaves"]),
            encrypted_state=EncryptedState(
                from_hex(es["balance"]), from_hex(es["nullifier"]), bool(es.get("plaintext", False))
            ),
            info=OperationInfo(
                OperationKind(info["kind"]),
                int(info["minted_shares"]),
                int(info["lock_until"]),
                info.get("statement", ""),
            ),
            discovery_entry=pt(d["discovery_entry"]),
            timestamp=int(d["timestamp"]),
            note_recipient=pt(d.get("note_recipient")),
            note=None
            if note is None
            else IncomingNote(pt(note["sender_public"]), from_hex(note["encrypted_amount"]), pt(note["commitment"])),
            absorbed_recipient=pt(d.get("absorbed_recipient")),
            absorbed_leaf=None if absorbed_leaf is None else from_hex(absorbed_leaf),
            payout=None
            if payout is None
            else Payout(
                from_hex(payout["receiver_address"]),
                int(payout["amount"]),
                int(payout["relayer_fee"]),
                from_hex(payout["calldata_hash"]),
            ),
            relayer_fee=int(d.get("relayer_fee", 0)),
        )


@dataclass
class AssetLedger:
    asset_id: int
    max_depth: int = 32
    tree: LeanIMT = field(init=False)
    root_log: List[HistoricalRoot] = field(default_factory=list)
    roots: Dict[int, HistoricalRoot] = field(default_factory=dict)
    used: Set[int] = field(default_factory=set)
    states: Dict[int, EncryptedState] = field(default_factory=dict)
    operations: Dict[int, OperationInfo] = field(default_factory=dict)
    note_stacks: Dict[Point, NoteStack] = field(default_factory=dict)
    # None until the first discovery entry is posted
    discovery: Optional[Aggregate] = None
    discovery_entries: List[DiscoveryEntry] = field(default_factory=list)
    log: List[Transition] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.tree = LeanIMT(max_depth=self.max_depth)

    def _insert(self, leaf: int) -> None:
        self.tree.insert(leaf)
        snapshot = HistoricalRoot(self.tree.root, self.tree.depth, self.tree.size)
        self.root_log.append(snapshot)
        self.roots.setdefault(snapshot.root, snapshot)

    def apply(self, t: Transition) -> None:
        for leaf in t.leaves:
            self._insert(leaf)
        self.used.add(t.nonce_commitment)
        self.states[t.nonce_commitment] = t.encrypted_state
        self.operations[t.nonce_commitment] = t.info

        nc = t.nonce_commitment
        if self.discovery is None:
            self.discovery = Aggregate.first(t.discovery_entry, 1, nc)
        else:
            self.discovery = self.discovery.fold(t.discovery_entry, 1, nc)
        self.discovery_entries.append(DiscoveryEntry(t.discovery_entry, nc))

        if t.absorbed_recipient is not None:
            self.used.add(t.absorbed_leaf)
            self.note_stacks.pop(t.absorbed_recipient, None)

        if t.note is not None:
            stack = self.note_stacks.get(t.note_recipient)
            if stack is None:
                stack = NoteStack(t.note_recipient, t.note.commitment)
                self.note_stacks[t.note_recipient] = stack
            else:
                stack.point = babyjub.add(stack.point, t.note.commitment)
            stack.notes.append(t.note)

        self.log.append(t)


__all__ = [
    "LOCK_CLEARING_STATEMENTS",
    "OperationKind",
    "HistoricalRoot",
    "EncryptedState",
    "OperationInfo",
    "DiscoveryEntry",
    "IncomingNote",
    "NoteStack",
    "Payout",
    "Transition",
    "AssetLedger",
]
