import pytest

from services.crypto_core.poseidon_ctr import decrypt_state
from services.discovery.nonce_discovery import (
    DiscoveryAggregator,
    NonceDiscovery,
    reconstruct_opening,
)
from services.ledger.errors import DiscoveryExhausted, InvariantViolation
from services.ledger.state import OperationKind
from services.ledger.witness import TransferLeg, WithdrawLeg

from tests.conftest import ASSET_ID, CHAIN_ID, T0


def _scan(ledger, secret, **kw):
    return NonceDiscovery(ledger, secret, CHAIN_ID, ASSET_ID, **kw).scan()


def test_nothing_before_create(ledger):
    result = _scan(ledger, 7)
    assert result.current_nonce is None
    assert not result.registered
    assert result.next_nonce == 0
    assert result.history == ()


def test_nonce_after_create_and_one_deposit(ledger, alice):
    alice.create(ledger, 0)
    assert _scan(ledger, 7).current_nonce == 0
    alice.add_funds(ledger, 25)
    result = _scan(ledger, 7)
    assert result.current_nonce == 1
    assert result.balance == 25


def test_history_matches_ledger_states(ledger, alice):
    alice.create(ledger, 40)
    for amount in (5, 6, 7):
        alice.add_funds(ledger, amount)
    alice.withdraw(ledger, 20, 0xBEEF)

    result = _scan(ledger, 7)
    assert result.current_nonce == 4
    assert [e.kind for e in result.history] == [
        OperationKind.CREATE,
        OperationKind.ADD_FUNDS,
        OperationKind.ADD_FUNDS,
        OperationKind.ADD_FUNDS,
        OperationKind.WITHDRAW,
    ]
    assert [e.balance for e in result.history] == [40, 45, 51, 58, 38]
    assert result.history[-1].nullifier == 20

    for entry in result.history[1:]:
        state = ledger.read_encrypted_state(ASSET_ID, entry.nonce_commitment)
        assert (entry.encrypted_balance, entry.encrypted_nullifier) == (state.balance, state.nullifier)
        balance, nullifier = decrypt_state(state.balance, state.nullifier, alice.keys.view_key)
        minted = entry.minted_shares if entry.kind.mints else 0
        assert (balance + minted, nullifier) == (entry.balance, entry.nullifier)


def test_other_users_are_invisible(ledger, alice, bob):
    alice.create(ledger, 10)
    bob.create(ledger, 5)
    alice.add_funds(ledger, 1)
    assert _scan(ledger, 11).current_nonce == 0
    assert _scan(ledger, 7).current_nonce == 1


def test_reconstructed_opening_matches_wallet(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.add_funds(ledger, 10, lock_until=T0 - 1)
    alice.transfer(ledger, 30, bob.receiving_public)
    bob.absorb(ledger, withdraw=WithdrawLeg(5, 0xBEEF))
    bob.add_funds(ledger, 3)

    for wallet in (alice, bob):
        result = _scan(ledger, wallet.keys.secret)
        assert result.current_nonce == wallet.nonce
        assert reconstruct_opening(result, wallet.keys) == wallet.opening


def test_reconstructed_opening_keeps_lock(ledger, alice):
    alice.create(ledger, 0)
    alice.add_funds(ledger, 10, lock_until=T0 + 100)
    alice.add_funds(ledger, 1)
    result = _scan(ledger, 7)
    assert reconstruct_opening(result, alice.keys) == alice.opening


def test_resumed_wallet_can_transact(ledger, alice, make_wallet):
    alice.create(ledger, 100)
    alice.add_funds(ledger, 10)
    fresh = make_wallet(7)
    result = _scan(ledger, 7)
    fresh.resume(result.current_nonce, reconstruct_opening(result, fresh.keys))
    fresh.withdraw(ledger, 50, 0xBEEF)
    assert fresh.balance == 60


def test_exhaustion_carries_checkpoint(ledger, alice):
    alice.create(ledger, 1)
    for _ in range(4):
        alice.add_funds(ledger, 1)

    discovery = NonceDiscovery(ledger, 7, CHAIN_ID, ASSET_ID, max_steps=3)
    with pytest.raises(DiscoveryExhausted) as exc:
        discovery.scan()
    cp = exc.value.checkpoint
    assert cp.next_nonce == 3
    assert len(cp.history) == 3

    with pytest.raises(DiscoveryExhausted) as exc:
        discovery.scan(cp)
    result = discovery.scan(exc.value.checkpoint)
    assert result.current_nonce == 4
    assert result.balance == 5
    assert result.aggregate.count == 5


def test_checkpoint_must_match_its_history(ledger, alice):
    alice.create(ledger, 1)
    alice.add_funds(ledger, 1)
    cp = _scan(ledger, 7).checkpoint
    bad = type(cp)(cp.next_nonce, cp.history[:1], cp.gaps, cp.aggregate)
    with pytest.raises(InvariantViolation):
        NonceDiscovery(ledger, 7, CHAIN_ID, ASSET_ID).scan(bad)


class GappyOracle:
    """Ledger view that hides some of the user's nonces."""

    def __init__(self, ledger, hidden):
        self.ledger = ledger
        self.hidden = set(hidden)

    def is_used(self, asset_id, value):
        return value not in self.hidden and self.ledger.is_used(asset_id, value)

    def __getattr__(self, name):
        return getattr(self.ledger, name)


def test_lookahead_skips_single_gap(ledger, alice):
    alice.create(ledger, 1)
    for _ in range(3):
        alice.add_funds(ledger, 1)
    oracle = GappyOracle(ledger, [alice.keys.nonce_commitment(2)])

    result = NonceDiscovery(oracle, 7, CHAIN_ID, ASSET_ID, lookahead=1).scan()
    assert result.current_nonce == 3
    assert result.gaps == (2,)

    stopped = NonceDiscovery(oracle, 7, CHAIN_ID, ASSET_ID, lookahead=0).scan()
    assert stopped.current_nonce == 1


def test_wider_gap_needs_wider_lookahead(ledger, alice):
    alice.create(ledger, 1)
    for _ in range(4):
        alice.add_funds(ledger, 1)
    hidden = [alice.keys.nonce_commitment(n) for n in (2, 3)]
    oracle = GappyOracle(ledger, hidden)
    assert NonceDiscovery(oracle, 7, CHAIN_ID, ASSET_ID, lookahead=1).scan().current_nonce == 1
    result = NonceDiscovery(oracle, 7, CHAIN_ID, ASSET_ID, lookahead=2).scan()
    assert result.current_nonce == 4
    assert result.gaps == (2, 3)


def test_aggregator_matches_ledger(ledger, alice, bob):
    agg = DiscoveryAggregator(ledger, ASSET_ID)
    assert agg.sync() is None
    assert agg.matches_ledger()

    alice.create(ledger, 50)
    bob.create(ledger, 0)
    alice.transfer(ledger, 10, bob.receiving_public)
    agg.sync(batch=2)
    assert agg.cursor == 3
    assert agg.matches_ledger()

    bob.absorb(ledger, transfer=TransferLeg(2, alice.receiving_public))
    assert not agg.matches_ledger()
    agg.sync()
    assert agg.matches_ledger()

    assert agg.covers(_scan(ledger, 7))
    assert agg.covers(_scan(ledger, 11))


@pytest.mark.parametrize("batch", [0, -1])
def test_aggregator_rejects_empty_batch(ledger, alice, batch):
    alice.create(ledger, 5)
    agg = DiscoveryAggregator(ledger, ASSET_ID)
    with pytest.raises(ValueError):
        agg.sync(batch=batch)
    assert agg.cursor == 0


def test_scan_aggregate_is_consistent(ledger, alice):
    alice.create(ledger, 1)
    alice.add_funds(ledger, 2)
    result = _scan(ledger, 7)
    assert result.aggregate.count == 2
    assert result.aggregate.is_consistent()
