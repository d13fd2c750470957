import logging

import pytest

from services.ledger.config import LedgerConfig
from services.ledger.ledger import Ledger
from services.ledger.wallet import Wallet

CHAIN_ID = 1
ASSET_ID = 2
T0 = 1_700_000_000


class FixedClock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _drop_log_handlers():
    yield
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_shielded", False):
            root.removeHandler(h)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def config(tmp_path):
    return LedgerConfig(chain_id=CHAIN_ID, data_dir=str(tmp_path))


@pytest.fixture
def ledger(config, clock):
    return Ledger(config, clock=clock)


@pytest.fixture
def make_wallet(clock):
    def _make(secret: int, asset_id: int = ASSET_ID, chain_id: int = CHAIN_ID) -> Wallet:
        return Wallet(secret, chain_id, asset_id, clock=clock)

    return _make


@pytest.fixture
def alice(make_wallet):
    return make_wallet(7)


@pytest.fixture
def bob(make_wallet):
    return make_wallet(11)
