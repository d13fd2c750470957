"""
CommitmentLedger: per-asset trees, historical roots, used commitments and
encrypted states, plus the five state transitions.

Every transition runs its checks first and mutates nothing until all of them
pass. The commit (listeners, then in-memory apply) happens under the asset's
lock, so a transition is either fully visible or not at all. Assets never
share a lock.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from services.crypto_core.babyjub import Point
from services.crypto_core.commitments import Aggregate, commit2, shift
from services.crypto_core.keys import leaf_of
from services.crypto_core.lean_imt import MerkleProof
from services.ledger import statements
from services.ledger.config import LedgerConfig
from services.ledger.errors import (
    AuthenticationFailure,
    InvariantViolation,
    LedgerError,
    ReplayDetected,
    StaleOrUnknownRoot,
    TimeWindowViolation,
)
from services.ledger.proof_oracle import BindingProofOracle, ProofOracle
from services.ledger.public_inputs import (
    AbsorbInputs,
    AbsorbTransferInputs,
    AbsorbWithdrawInputs,
    AddFundsInputs,
    CreateInputs,
    TransferInputs,
    WithdrawInputs,
)
from services.ledger.state import (
    AssetLedger,
    DiscoveryEntry,
    EncryptedState,
    HistoricalRoot,
    IncomingNote,
    NoteStack,
    OperationInfo,
    OperationKind,
    Payout,
    Transition,
)
from services.ledger.witness import TransitionRequest

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

MAX_AMOUNT = 2**128
MAX_LOCK = 2**64

Listener = Callable[[Transition, List[HistoricalRoot]], None]


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value < high:
        raise InvariantViolation(f"{name} out of range", **{name: value})


class Ledger:
    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        proof_oracle: Optional[ProofOracle] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.config = config or LedgerConfig()
        self.proof_oracle = proof_oracle or BindingProofOracle()
        self.clock = clock or (lambda: int(time.time()))
        self._assets: Dict[int, AssetLedger] = {}
        self._registry_lock = threading.Lock()
        self._listeners: List[Listener] = []

    # ---------- plumbing ----------
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def asset_ids(self) -> List[int]:
        return sorted(self._assets)

    def _asset(self, asset_id: int) -> AssetLedger:
        with self._registry_lock:
            state = self._assets.get(asset_id)
            if state is None:
                state = AssetLedger(asset_id, max_depth=self.config.max_tree_depth)
                self._assets[asset_id] = state
            return state

    def _peek(self, asset_id: int) -> AssetLedger:
        return self._assets.get(asset_id) or AssetLedger(asset_id, max_depth=self.config.max_tree_depth)

    def _authenticate(self, request: TransitionRequest) -> None:
        inputs = request.inputs
        values = inputs.validate()
        if inputs.chain_id != self.config.chain_id:
            raise AuthenticationFailure(
                "chain id mismatch", expected=self.config.chain_id, got=inputs.chain_id
            )
        if not self.proof_oracle.verify(inputs.STATEMENT, values, request.proof):
            raise AuthenticationFailure("proof does not verify against the public inputs", statement=inputs.STATEMENT)

    def _check_root(self, state: AssetLedger, root: int) -> None:
        if root not in state.roots:
            raise StaleOrUnknownRoot("root was never produced by this tree", asset_id=state.asset_id)

    def _check_fresh(self, state: AssetLedger, inputs) -> None:
        nc = inputs.new_nonce_commitment
        if nc in state.used:
            raise ReplayDetected("nonce commitment already used", asset_id=state.asset_id)
        if inputs.discovery_entry != commit2(1, nc):
            raise InvariantViolation("discovery entry does not commit to the new nonce commitment")

    def _check_leaves(self, state: AssetLedger, leaves) -> None:
        if len(set(leaves)) != len(leaves) or any(state.tree.has(leaf) for leaf in leaves):
            raise ReplayDetected("leaf already inserted", asset_id=state.asset_id)
        if state.tree.size + len(leaves) > 2**self.config.max_tree_depth:
            raise InvariantViolation("tree is full", asset_id=state.asset_id)

    def _check_time(self, declared: int) -> None:
        now = self.clock()
        if abs(declared - now) > self.config.time_tolerance_sec:
            raise TimeWindowViolation(
                "declared time outside tolerance", declared=declared, ledger_time=now
            )

    def _commit(self, state: AssetLedger, t: Transition) -> Transition:
        roots = [HistoricalRoot(*snap) for snap in state.tree.preview(t.leaves)]
        # persist first so a failing listener leaves memory untouched
        for listener in self._listeners:
            listener(t, roots)
        state.apply(t)
        LOG.info(
            "accepted %s asset=%s leaves=%d size=%d",
            t.statement,
            t.asset_id,
            len(t.leaves),
            state.tree.size,
        )
        return t

    def _run(self, request: TransitionRequest, body: Callable[[AssetLedger], Transition]) -> Transition:
        try:
            self._authenticate(request)
            state = self._asset(request.inputs.asset_id)
            with state.lock:
                return body(state)
        except LedgerError as e:
            LOG.warning("rejected %s: %s (%s)", request.statement, e.message, e.code)
            raise

    # ---------- transitions ----------
    def submit(self, request: TransitionRequest) -> Transition:
        handlers = {
            CreateInputs: self.create,
            AddFundsInputs: self.add_funds,
            WithdrawInputs: self.withdraw,
            TransferInputs: self.transfer,
            AbsorbInputs: self.absorb,
            AbsorbWithdrawInputs: self.absorb,
            AbsorbTransferInputs: self.absorb,
        }
        handler = handlers.get(type(request.inputs))
        if handler is None:
            raise AuthenticationFailure("unknown statement", statement=type(request.inputs).__name__)
        return handler(request)

    def create(self, request: TransitionRequest) -> Transition:
        inputs: CreateInputs = request.inputs

        def body(state: AssetLedger) -> Transition:
            _check_range("minted_shares", inputs.minted_shares, 0, MAX_AMOUNT)
            self._check_fresh(state, inputs)
            point = shift(inputs.commitment, amount=inputs.minted_shares)
            self._check_leaves(state, [leaf_of(point)])
            statements.check_create(inputs, request.witness)
            return self._commit(
                state,
                Transition(
                    kind=OperationKind.CREATE,
                    statement=inputs.STATEMENT,
                    asset_id=inputs.asset_id,
                    nonce_commitment=inputs.new_nonce_commitment,
                    leaves=(leaf_of(point),),
                    encrypted_state=EncryptedState(inputs.minted_shares, 0, plaintext=True),
                    info=OperationInfo(
                        OperationKind.CREATE, minted_shares=inputs.minted_shares, statement=inputs.STATEMENT
                    ),
                    discovery_entry=inputs.discovery_entry,
                    timestamp=self.clock(),
                ),
            )

        return self._run(request, body)

    def add_funds(self, request: TransitionRequest) -> Transition:
        inputs: AddFundsInputs = request.inputs

        def body(state: AssetLedger) -> Transition:
            _check_range("amount", inputs.amount, 1, MAX_AMOUNT)
            _check_range("lock_until", inputs.lock_until, 0, MAX_LOCK)
            self._check_root(state, inputs.expected_root)
            self._check_fresh(state, inputs)
            point = shift(inputs.commitment, amount=inputs.amount, lock=inputs.lock_until)
            self._check_leaves(state, [leaf_of(point)])
            statements.check_add_funds(inputs, request.witness)
            return self._commit(
                state,
                Transition(
                    kind=OperationKind.ADD_FUNDS,
                    statement=inputs.STATEMENT,
                    asset_id=inputs.asset_id,
                    nonce_commitment=inputs.new_nonce_commitment,
                    leaves=(leaf_of(point),),
                    encrypted_state=EncryptedState(inputs.encrypted_balance, inputs.encrypted_nullifier),
                    info=OperationInfo(
                        OperationKind.ADD_FUNDS,
                        minted_shares=inputs.amount,
                        lock_until=inputs.lock_until,
                        statement=inputs.STATEMENT,
                    ),
                    discovery_entry=inputs.discovery_entry,
                    timestamp=self.clock(),
                ),
            )

        return self._run(request, body)

    def withdraw(self, request: TransitionRequest) -> Transition:
        inputs: WithdrawInputs = request.inputs

        def body(state: AssetLedger) -> Transition:
            _check_range("amount", inputs.amount, 1, MAX_AMOUNT)
            _check_range("relayer_fee", inputs.relayer_fee, 0, MAX_AMOUNT)
            self._check_root(state, inputs.expected_root)
            self._check_fresh(state, inputs)
            self._check_leaves(state, [leaf_of(inputs.commitment)])
            self._check_time(inputs.declared_time)
            statements.check_withdraw(inputs, request.witness)
            return self._commit(
                state,
                Transition(
                    kind=OperationKind.WITHDRAW,
                    statement=inputs.STATEMENT,
                    asset_id=inputs.asset_id,
                    nonce_commitment=inputs.new_nonce_commitment,
                    leaves=(leaf_of(inputs.commitment),),
                    encrypted_state=EncryptedState(inputs.encrypted_balance, inputs.encrypted_nullifier),
                    info=OperationInfo(OperationKind.WITHDRAW, statement=inputs.STATEMENT),
                    discovery_entry=inputs.discovery_entry,
                    timestamp=self.clock(),
                    payout=Payout(inputs.receiver_address, inputs.amount, inputs.relayer_fee, inputs.calldata_hash),
                    relayer_fee=inputs.relayer_fee,
                ),
            )

        return self._run(request, body)

    def transfer(self, request: TransitionRequest) -> Transition:
        inputs: TransferInputs = request.inputs

        def body(state: AssetLedger) -> Transition:
            _check_range("amount", inputs.amount, 1, MAX_AMOUNT)
            _check_range("relayer_fee", inputs.relayer_fee, 0, MAX_AMOUNT)
            self._check_root(state, inputs.expected_root)
            self._check_fresh(state, inputs)
            current = state.note_stacks.get(inputs.receiver_public)
            stack_point = statements.stack_point_after(
                None if current is None else current.point, inputs.note_commitment
            )
            self._check_leaves(state, [leaf_of(inputs.commitment), leaf_of(stack_point)])
            statements.check_transfer(inputs, request.witness, self.clock())
            return self._commit(
                state,
                Transition(
                    kind=OperationKind.TRANSFER,
                    statement=inputs.STATEMENT,
                    asset_id=inputs.asset_id,
                    nonce_commitment=inputs.new_nonce_commitment,
                    leaves=(leaf_of(inputs.commitment), leaf_of(stack_point)),
                    encrypted_state=EncryptedState(inputs.encrypted_balance, inputs.encrypted_nullifier),
                    info=OperationInfo(OperationKind.TRANSFER, statement=inputs.STATEMENT),
                    discovery_entry=inputs.discovery_entry,
                    timestamp=self.clock(),
                    note_recipient=inputs.receiver_public,
                    note=IncomingNote(inputs.sender_public, inputs.encrypted_note_amount, inputs.note_commitment),
                    relayer_fee=inputs.relayer_fee,
                ),
            )

        return self._run(request, body)

    def absorb(self, request: TransitionRequest) -> Transition:
        inputs: AbsorbInputs = request.inputs

        def body(state: AssetLedger) -> Transition:
            _check_range("relayer_fee", inputs.relayer_fee, 0, MAX_AMOUNT)
            follow_amount = getattr(inputs, "amount", None)
            if follow_amount is not None:
                _check_range("amount", follow_amount, 1, MAX_AMOUNT)
            self._check_root(state, inputs.expected_root)
            self._check_fresh(state, inputs)

            stack_leaf = leaf_of(inputs.note_stack)
            if stack_leaf in state.used:
                raise ReplayDetected("note stack already absorbed", asset_id=state.asset_id)
            stored = state.note_stacks.get(inputs.owner_public)
            if stored is None:
                raise InvariantViolation("no pending notes for this key", asset_id=state.asset_id)
            if stored.point != inputs.note_stack:
                raise StaleOrUnknownRoot("note stack changed since the proof was built", asset_id=state.asset_id)

            leaves = [leaf_of(inputs.commitment)]
            note_recipient = note = payout = None
            if isinstance(inputs, AbsorbTransferInputs):
                # the absorbed stack is reset before the new note lands
                current = None if inputs.receiver_public == inputs.owner_public else state.note_stacks.get(
                    inputs.receiver_public
                )
                stack_point = statements.stack_point_after(
                    None if current is None else current.point, inputs.note_commitment
                )
                leaves.append(leaf_of(stack_point))
                note_recipient = inputs.receiver_public
                note = IncomingNote(inputs.sender_public, inputs.encrypted_note_amount, inputs.note_commitment)
            elif isinstance(inputs, AbsorbWithdrawInputs):
                payout = Payout(inputs.receiver_address, inputs.amount, inputs.relayer_fee, inputs.calldata_hash)
            self._check_leaves(state, leaves)

            if isinstance(inputs, AbsorbWithdrawInputs):
                self._check_time(inputs.declared_time)
            statements.check_absorb(inputs, request.witness, self.clock())

            return self._commit(
                state,
                Transition(
                    kind=OperationKind.ABSORB,
                    statement=inputs.STATEMENT,
                    asset_id=inputs.asset_id,
                    nonce_commitment=inputs.new_nonce_commitment,
                    leaves=tuple(leaves),
                    encrypted_state=EncryptedState(inputs.encrypted_balance, inputs.encrypted_nullifier),
                    info=OperationInfo(OperationKind.ABSORB, statement=inputs.STATEMENT),
                    discovery_entry=inputs.discovery_entry,
                    timestamp=self.clock(),
                    note_recipient=note_recipient,
                    note=note,
                    absorbed_recipient=inputs.owner_public,
                    absorbed_leaf=stack_leaf,
                    payout=payout,
                    relayer_fee=inputs.relayer_fee,
                ),
            )

        return self._run(request, body)

    def restore(self, t: Transition) -> None:
        """Re-apply a previously committed transition (event-log replay)."""
        state = self._asset(t.asset_id)
        with state.lock:
            if t.nonce_commitment in state.used:
                raise ReplayDetected("transition already applied", asset_id=t.asset_id)
            self._check_leaves(state, t.leaves)
            state.apply(t)

    # ---------- tree query surface ----------
    def root(self, asset_id: int) -> Optional[int]:
        return self._peek(asset_id).tree.root

    def depth(self, asset_id: int) -> int:
        return max(self._peek(asset_id).tree.depth, self.config.min_proof_depth)

    def size(self, asset_id: int) -> int:
        return self._peek(asset_id).tree.size

    def is_historical_root(self, asset_id: int, root: int) -> bool:
        return root in self._peek(asset_id).roots

    def historical_root(self, asset_id: int, root: int) -> Optional[HistoricalRoot]:
        return self._peek(asset_id).roots.get(root)

    def root_log(self, asset_id: int) -> List[HistoricalRoot]:
        return list(self._peek(asset_id).root_log)

    def leaves(self, asset_id: int) -> List[int]:
        return self._peek(asset_id).tree.leaves

    def generate_proof(self, asset_id: int, index: int) -> MerkleProof:
        state = self._peek(asset_id)
        with state.lock:
            return state.tree.generate_proof(index, depth=self.depth(asset_id))

    def leaf_index(self, asset_id: int, leaf: int) -> int:
        return self._peek(asset_id).tree.index_of(leaf)

    # ---------- membership surface ----------
    def is_used(self, asset_id: int, value: int) -> bool:
        return value in self._peek(asset_id).used

    def read_encrypted_state(self, asset_id: int, nonce_commitment: int) -> Optional[EncryptedState]:
        return self._peek(asset_id).states.get(nonce_commitment)

    def read_operation_kind(self, asset_id: int, nonce_commitment: int) -> Optional[OperationInfo]:
        return self._peek(asset_id).operations.get(nonce_commitment)

    def discovery_aggregate(self, asset_id: int) -> Optional[Aggregate]:
        return self._peek(asset_id).discovery

    def discovery_entries(
        self, asset_id: int, start: int = 0, limit: Optional[int] = None
    ) -> List[DiscoveryEntry]:
        entries = self._peek(asset_id).discovery_entries
        end = len(entries) if limit is None else start + limit
        return list(entries[start:end])

    def note_stack(self, asset_id: int, recipient: Point) -> Optional[NoteStack]:
        return self._peek(asset_id).note_stacks.get(recipient)

    def incoming_notes(self, asset_id: int, recipient: Point) -> List[IncomingNote]:
        stack = self.note_stack(asset_id, recipient)
        return [] if stack is None else list(stack.notes)

    def operation_log(self, asset_id: int) -> List[Transition]:
        return list(self._peek(asset_id).log)


__all__ = ["MAX_AMOUNT", "MAX_LOCK", "Ledger"]
