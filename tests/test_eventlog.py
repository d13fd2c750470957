import sqlite3

import pytest

from services.api.eventlog import EventLog, EventLogMismatch, open_ledger
from services.crypto_core.field import to_hex
from services.ledger.errors import ReplayDetected
from services.ledger.ledger import Ledger
from services.ledger.witness import WithdrawLeg

from tests.conftest import ASSET_ID


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "events.db"


@pytest.fixture
def logged(ledger, db_path):
    return EventLog(db_path).attach(ledger)


def _activity(ledger, alice, bob):
    alice.create(ledger, 100)
    bob.create(ledger, 0)
    alice.add_funds(ledger, 10)
    alice.transfer(ledger, 30, bob.receiving_public)
    bob.absorb(ledger, withdraw=WithdrawLeg(5, 0xBEEF))


def test_records_every_leaf_and_root(ledger, logged, alice, bob):
    _activity(ledger, alice, bob)
    counts = logged.counts()
    assert counts["transitions"] == 5
    assert counts["leaves"] == ledger.size(ASSET_ID) == 6
    assert logged.leaves(ASSET_ID) == ledger.leaves(ASSET_ID)
    assert logged.roots(ASSET_ID) == ledger.root_log(ASSET_ID)
    assert logged.ping()


def test_record_is_idempotent(ledger, logged, alice):
    seen = []
    ledger.add_listener(lambda t, roots: seen.append((t, roots)))
    alice.create(ledger, 1)
    t, roots = seen[0]
    assert logged.record(t, roots) == f"{ASSET_ID}:{to_hex(t.nonce_commitment)}"
    assert logged.counts()["transitions"] == 1


def test_replay_rebuilds_ledger(ledger, logged, alice, bob, config, clock, db_path, make_wallet):
    _activity(ledger, alice, bob)

    restored, log = open_ledger(db_path, Ledger(config, clock=clock))
    assert restored.root(ASSET_ID) == ledger.root(ASSET_ID)
    assert restored.root_log(ASSET_ID) == ledger.root_log(ASSET_ID)
    assert restored.discovery_aggregate(ASSET_ID) == ledger.discovery_aggregate(ASSET_ID)
    assert restored.is_used(ASSET_ID, alice.keys.nonce_commitment(2))
    assert restored.note_stack(ASSET_ID, bob.receiving_public) is None

    # the restored ledger accepts the next transition and keeps logging
    alice.withdraw(restored, 10, 0xBEEF)
    assert log.counts()["transitions"] == 6


def test_replay_into_populated_ledger_is_rejected(ledger, logged, alice, db_path):
    alice.create(ledger, 1)
    with pytest.raises(ReplayDetected):
        EventLog(db_path).replay(ledger)


def test_tampered_leaf_log_is_detected(ledger, logged, alice, config, clock, db_path):
    alice.create(ledger, 1)
    alice.add_funds(ledger, 1)
    cx = sqlite3.connect(db_path)
    with cx:
        cx.execute("UPDATE leaf_log SET leaf=? WHERE idx=1", ("0x" + "00" * 31 + "01",))
    cx.close()
    with pytest.raises(EventLogMismatch):
        EventLog(db_path).replay(Ledger(config, clock=clock))
