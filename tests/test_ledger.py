import dataclasses

import pytest

from services.crypto_core import babyjub
from services.crypto_core.commitments import commit2, decode, encode
from services.crypto_core.field import P
from services.crypto_core.keys import leaf_of
from services.crypto_core.poseidon2 import hash2
from services.ledger.errors import (
    AuthenticationFailure,
    InvariantViolation,
    ReplayDetected,
    StaleOrUnknownRoot,
    TimeWindowViolation,
)
from services.ledger.proof_oracle import bind_proof
from services.ledger.state import OperationKind
from services.ledger.witness import TransferLeg, TransitionRequest, WithdrawLeg

from tests.conftest import ASSET_ID, T0

RECEIVER = 0xBEEF


def _rebind(request, **changes):
    inputs = dataclasses.replace(request.inputs, **changes)
    return TransitionRequest(inputs, bind_proof(inputs.STATEMENT, inputs.as_tuple()), request.witness)


def test_create_inserts_genesis_leaf(ledger, alice):
    t = alice.create(ledger, 100)
    assert t.kind is OperationKind.CREATE
    assert ledger.size(ASSET_ID) == 1
    assert ledger.leaves(ASSET_ID) == [leaf_of(alice.opening.commit())]
    assert alice.balance == 100
    assert alice.nonce == 0
    assert ledger.is_used(ASSET_ID, alice.keys.nonce_commitment(0))

    state = ledger.read_encrypted_state(ASSET_ID, alice.keys.nonce_commitment(0))
    assert state.plaintext
    assert state.balance == 100


def test_every_root_stays_historical(ledger, alice):
    alice.create(ledger, 10)
    first = ledger.root(ASSET_ID)
    alice.add_funds(ledger, 5)
    assert ledger.root(ASSET_ID) != first
    assert ledger.is_historical_root(ASSET_ID, first)
    assert [r.size for r in ledger.root_log(ASSET_ID)] == [1, 2]


def test_withdraw_of_entire_balance_fails_then_one_less_succeeds(ledger, alice):
    alice.create(ledger, 50)
    assert alice.opening.shares == 51
    root, size = ledger.root(ASSET_ID), ledger.size(ASSET_ID)

    with pytest.raises(InvariantViolation):
        alice.withdraw(ledger, 50, RECEIVER)
    assert (ledger.root(ASSET_ID), ledger.size(ASSET_ID)) == (root, size)
    assert alice.nonce == 0

    t = alice.withdraw(ledger, 49, RECEIVER)
    assert alice.opening.shares == 2
    assert decode(alice.opening.nullifier) == 49
    assert t.payout.amount == 49
    assert t.payout.receiver_address == RECEIVER


def test_relayer_fee_is_debited(ledger, alice):
    alice.create(ledger, 100)
    t = alice.withdraw(ledger, 10, RECEIVER, relayer_fee=3)
    assert alice.balance == 87
    assert t.relayer_fee == 3


def test_replay_is_rejected(ledger, alice):
    alice.create(ledger, 10)
    prepared = alice.prepare_add_funds(ledger, 5)
    alice.submit(ledger, prepared)
    with pytest.raises(ReplayDetected):
        ledger.submit(prepared.request)


def test_create_twice_is_replay(ledger, alice, make_wallet):
    alice.create(ledger, 10)
    with pytest.raises(ReplayDetected):
        make_wallet(7).create(ledger, 10)


def test_unknown_root_is_recoverable(ledger, alice):
    alice.create(ledger, 10)
    prepared = alice.prepare_withdraw(ledger, 1, RECEIVER)
    request = _rebind(prepared.request, expected_root=hash2(1, 2))
    with pytest.raises(StaleOrUnknownRoot) as exc:
        ledger.submit(request)
    assert exc.value.recoverable


def test_tampered_inputs_fail_authentication(ledger, alice):
    alice.create(ledger, 10)
    prepared = alice.prepare_withdraw(ledger, 1, RECEIVER)
    inputs = dataclasses.replace(prepared.request.inputs, amount=2)
    with pytest.raises(AuthenticationFailure):
        ledger.submit(TransitionRequest(inputs, prepared.request.proof, prepared.request.witness))


def test_forged_previous_opening_is_rejected(ledger, alice):
    alice.create(ledger, 10)
    root, size = ledger.root(ASSET_ID), ledger.size(ASSET_ID)
    prepared = alice.prepare_withdraw(ledger, 5, RECEIVER)
    forged = dataclasses.replace(prepared.request.witness.previous, shares=encode(1000))
    witness = dataclasses.replace(prepared.request.witness, previous=forged)
    with pytest.raises(InvariantViolation):
        ledger.submit(TransitionRequest(prepared.request.inputs, prepared.request.proof, witness))
    assert (ledger.root(ASSET_ID), ledger.size(ASSET_ID)) == (root, size)
    assert not ledger.is_used(ASSET_ID, prepared.request.inputs.new_nonce_commitment)


def test_duplicate_leaf_is_caught_before_time_window(ledger, alice, clock):
    alice.create(ledger, 10)
    existing = alice.opening.commit()
    prepared = alice.prepare_withdraw(ledger, 1, RECEIVER)
    request = _rebind(prepared.request, commitment=existing, declared_time=clock.now + 10_000)
    with pytest.raises(ReplayDetected):
        ledger.submit(request)
    assert ledger.size(ASSET_ID) == 1


def test_non_canonical_input_fails_authentication(ledger, alice):
    prepared = alice.prepare_create(0)
    with pytest.raises(AuthenticationFailure):
        ledger.submit(_rebind(prepared.request, minted_shares=P))


def test_chain_mismatch(ledger, make_wallet):
    with pytest.raises(AuthenticationFailure):
        make_wallet(7, chain_id=5).create(ledger, 10)
    assert ledger.size(ASSET_ID) == 0


def test_discovery_entry_must_open_to_nonce_commitment(ledger, alice):
    alice.create(ledger, 10)
    prepared = alice.prepare_add_funds(ledger, 5)
    with pytest.raises(InvariantViolation):
        ledger.submit(_rebind(prepared.request, discovery_entry=commit2(1, 12345)))


def test_declared_time_outside_tolerance(ledger, alice, clock):
    alice.create(ledger, 10)
    with pytest.raises(TimeWindowViolation):
        alice.withdraw(ledger, 1, RECEIVER, declared_time=clock.now + 1000)
    alice.withdraw(ledger, 1, RECEIVER, declared_time=clock.now + 200)


def test_locked_funds(ledger, alice, clock):
    alice.create(ledger, 0)
    alice.add_funds(ledger, 100, lock_until=T0 + 3600)
    assert decode(alice.opening.unlocks_at) == T0 + 3600

    with pytest.raises(TimeWindowViolation):
        alice.withdraw(ledger, 10, RECEIVER)
    # a lock cannot be stacked on locked funds
    with pytest.raises(InvariantViolation):
        alice.add_funds(ledger, 1, lock_until=T0 + 7200)
    # plain deposits keep the lock
    alice.add_funds(ledger, 1)
    assert decode(alice.opening.unlocks_at) == T0 + 3600

    clock.advance(3600)
    alice.withdraw(ledger, 10, RECEIVER)
    assert decode(alice.opening.unlocks_at) == 0
    assert alice.balance == 91


def test_locked_funds_block_transfer(ledger, alice, bob):
    alice.create(ledger, 0)
    alice.add_funds(ledger, 100, lock_until=T0 + 60)
    with pytest.raises(TimeWindowViolation):
        alice.transfer(ledger, 5, bob.receiving_public)


def test_transfer_then_absorb(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    t = alice.transfer(ledger, 30, bob.receiving_public)
    assert len(t.leaves) == 2
    assert ledger.size(ASSET_ID) == 4
    assert alice.balance == 70
    assert len(ledger.incoming_notes(ASSET_ID, bob.receiving_public)) == 1

    stack, m, _ = bob.pending_notes(ledger)
    assert m == 30
    assert ledger.leaf_index(ASSET_ID, stack.leaf) == 3

    t = bob.absorb(ledger)
    assert t.statement == "absorb"
    assert bob.balance == 30
    assert ledger.note_stack(ASSET_ID, bob.receiving_public) is None
    assert ledger.is_used(ASSET_ID, stack.leaf)
    with pytest.raises(ValueError):
        bob.prepare_absorb(ledger)


def test_notes_accumulate_on_one_stack(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.transfer(ledger, 10, bob.receiving_public)
    alice.transfer(ledger, 15, bob.receiving_public)
    stack, m, _ = bob.pending_notes(ledger)
    assert m == 25
    assert len(stack.notes) == 2
    bob.absorb(ledger)
    assert bob.balance == 25


def test_note_stack_holds_only_pending_notes(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.transfer(ledger, 10, bob.receiving_public)
    alice.transfer(ledger, 15, bob.receiving_public)
    stack = ledger.note_stack(ASSET_ID, bob.receiving_public)
    assert stack.point == babyjub.add(stack.notes[0].commitment, stack.notes[1].commitment)

    bob.absorb(ledger)
    alice.transfer(ledger, 5, bob.receiving_public)
    stack = ledger.note_stack(ASSET_ID, bob.receiving_public)
    assert len(stack.notes) == 1
    assert stack.point == stack.notes[0].commitment


def test_stale_note_stack_is_recoverable(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.transfer(ledger, 10, bob.receiving_public)
    prepared = bob.prepare_absorb(ledger)
    alice.transfer(ledger, 5, bob.receiving_public)
    with pytest.raises(StaleOrUnknownRoot):
        ledger.submit(prepared.request)
    bob.absorb(ledger)
    assert bob.balance == 15


def test_absorbed_stack_cannot_be_absorbed_again(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.transfer(ledger, 10, bob.receiving_public)
    prepared = bob.prepare_absorb(ledger)
    bob.submit(ledger, prepared)
    root, size = ledger.root(ASSET_ID), ledger.size(ASSET_ID)

    nc = bob.keys.nonce_commitment(bob.nonce + 1)
    again = _rebind(prepared.request, new_nonce_commitment=nc, discovery_entry=commit2(1, nc))
    with pytest.raises(ReplayDetected) as exc:
        ledger.submit(again)
    assert "note stack" in exc.value.message
    assert (ledger.root(ASSET_ID), ledger.size(ASSET_ID)) == (root, size)
    assert bob.balance == 10


def test_absorb_and_withdraw(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.transfer(ledger, 30, bob.receiving_public)
    t = bob.absorb(ledger, withdraw=WithdrawLeg(10, RECEIVER))
    assert t.statement == "absorb_withdraw"
    assert t.payout.amount == 10
    assert bob.balance == 20


def test_absorb_and_transfer(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.transfer(ledger, 30, bob.receiving_public)
    t = bob.absorb(ledger, transfer=TransferLeg(5, alice.receiving_public))
    assert t.statement == "absorb_transfer"
    assert bob.balance == 25
    _, m, _ = alice.pending_notes(ledger)
    assert m == 5


def test_absorb_and_transfer_to_self_resets_stack(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.transfer(ledger, 30, bob.receiving_public)
    bob.absorb(ledger, transfer=TransferLeg(4, bob.receiving_public))
    assert bob.balance == 26
    stack, m, _ = bob.pending_notes(ledger)
    assert m == 4
    assert len(stack.notes) == 1


def test_absorb_needs_pending_notes(ledger, bob):
    bob.create(ledger, 0)
    with pytest.raises(ValueError):
        bob.prepare_absorb(ledger)


def test_failing_listener_leaves_state_untouched(ledger, alice):
    def boom(t, roots):
        raise RuntimeError("disk full")

    ledger.add_listener(boom)
    with pytest.raises(RuntimeError):
        alice.create(ledger, 10)
    assert ledger.size(ASSET_ID) == 0
    assert not ledger.is_used(ASSET_ID, alice.keys.nonce_commitment(0))


def test_listener_sees_roots_before_apply(ledger, alice):
    seen = []
    ledger.add_listener(lambda t, roots: seen.append((t, roots, ledger.size(ASSET_ID))))
    alice.create(ledger, 10)
    t, roots, size_then = seen[0]
    assert size_then == 0
    assert roots[0].root == ledger.root(ASSET_ID)
    assert roots[0].size == 1


def test_assets_are_independent(ledger, make_wallet):
    make_wallet(7, asset_id=2).create(ledger, 10)
    make_wallet(7, asset_id=3).create(ledger, 10)
    assert ledger.asset_ids() == [2, 3]
    assert ledger.size(2) == ledger.size(3) == 1
    assert ledger.root(2) != ledger.root(3)


def test_proofs_use_floored_depth(ledger, alice, config):
    alice.create(ledger, 10)
    proof = ledger.generate_proof(ASSET_ID, 0)
    assert proof.depth == config.min_proof_depth
    assert proof.verify()


def test_discovery_aggregate_tracks_entries(ledger, alice, bob):
    assert ledger.discovery_aggregate(ASSET_ID) is None
    alice.create(ledger, 10)
    bob.create(ledger, 0)
    alice.add_funds(ledger, 1)
    agg = ledger.discovery_aggregate(ASSET_ID)
    assert agg.count == 3
    assert agg.is_consistent()
    assert len(ledger.discovery_entries(ASSET_ID)) == 3
    assert len(ledger.discovery_entries(ASSET_ID, start=1, limit=1)) == 1
