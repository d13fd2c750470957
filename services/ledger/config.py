from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass

REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class LedgerConfig:
    chain_id: int = 1
    min_proof_depth: int = 8
    max_tree_depth: int = 32
    time_tolerance_sec: int = 300
    discovery_max_steps: int = 1024
    discovery_lookahead: int = 1
    data_dir: str = str(REPO_ROOT / "data")
    events_db_path: str = ""
    log_level: str = "INFO"
    log_format: str = "text"

    def __post_init__(self) -> None:
        if not 0 <= self.min_proof_depth <= self.max_tree_depth <= 32:
            raise ValueError("need 0 <= MIN_PROOF_DEPTH <= MAX_TREE_DEPTH <= 32")
        if self.time_tolerance_sec < 0:
            raise ValueError("TIME_TOLERANCE_SEC must be >= 0")
        if self.discovery_max_steps < 1:
            raise ValueError("DISCOVERY_MAX_STEPS must be >= 1")
        if self.discovery_lookahead < 0:
            raise ValueError("DISCOVERY_LOOKAHEAD must be >= 0")

    @property
    def db_path(self) -> str:
        return self.events_db_path or os.path.join(self.data_dir, "events.db")

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        return cls(
            chain_id=_env_int("CHAIN_ID", 1),
            min_proof_depth=_env_int("MIN_PROOF_DEPTH", 8),
            max_tree_depth=_env_int("MAX_TREE_DEPTH", 32),
            time_tolerance_sec=_env_int("TIME_TOLERANCE_SEC", 300),
            discovery_max_steps=_env_int("DISCOVERY_MAX_STEPS", 1024),
            discovery_lookahead=_env_int("DISCOVERY_LOOKAHEAD", 1),
            data_dir=os.getenv("DATA_DIR", str(REPO_ROOT / "data")),
            events_db_path=os.getenv("EVENTS_DB_PATH", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
        )


__all__ = ["REPO_ROOT", "LedgerConfig"]
