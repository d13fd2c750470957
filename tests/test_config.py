import logging

import pytest

from services.api.logging_config import ROOT_LOGGER, configure_logging, get_logger
from services.ledger.config import LedgerConfig
from services.ledger.errors import DiscoveryExhausted, StaleOrUnknownRoot


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CHAIN_ID", "0x10")
    monkeypatch.setenv("MIN_PROOF_DEPTH", "4")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_FORMAT", "JSON")
    cfg = LedgerConfig.from_env()
    assert cfg.chain_id == 16
    assert cfg.min_proof_depth == 4
    assert cfg.log_format == "json"
    assert cfg.db_path == str(tmp_path / "events.db")


def test_explicit_db_path(monkeypatch, tmp_path):
    monkeypatch.setenv("EVENTS_DB_PATH", str(tmp_path / "x.db"))
    assert LedgerConfig.from_env().db_path == str(tmp_path / "x.db")


def test_bad_env_value(monkeypatch):
    monkeypatch.setenv("CHAIN_ID", "one")
    with pytest.raises(ValueError):
        LedgerConfig.from_env()


def test_depth_bounds():
    with pytest.raises(ValueError):
        LedgerConfig(min_proof_depth=9, max_tree_depth=8)
    with pytest.raises(ValueError):
        LedgerConfig(max_tree_depth=33)


def test_error_payloads():
    err = StaleOrUnknownRoot("root was never produced by this tree", asset_id=2)
    assert err.to_dict() == {
        "code": "stale_or_unknown_root",
        "message": "root was never produced by this tree",
        "recoverable": True,
        "asset_id": 2,
    }
    exhausted = DiscoveryExhausted("out of steps", checkpoint="cp", steps=3)
    assert exhausted.checkpoint == "cp"
    assert exhausted.context == {"steps": 3}


def test_json_logging(capsys):
    configure_logging("DEBUG", "json")
    log = get_logger("test")
    assert log.name == f"{ROOT_LOGGER}.test"
    log.info("hello")
    assert '"msg":"hello"' in capsys.readouterr().err
    configure_logging("WARNING", "text")
    assert logging.getLogger().level == logging.WARNING
