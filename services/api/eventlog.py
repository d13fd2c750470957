from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from services.api.logging_config import get_logger
from services.crypto_core.field import from_hex, to_hex
from services.ledger.ledger import Ledger
from services.ledger.state import HistoricalRoot, Transition

logger = get_logger("eventlog")

DDL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS tx_log(
  id TEXT PRIMARY KEY,
  asset_id INTEGER NOT NULL,
  seq INTEGER NOT NULL,
  kind TEXT NOT NULL,
  ts TEXT NOT NULL,
  payload TEXT NOT NULL,
  UNIQUE(asset_id, seq)
);

CREATE TABLE IF NOT EXISTS leaf_log(
  asset_id INTEGER NOT NULL,
  idx INTEGER NOT NULL,
  leaf TEXT NOT NULL,
  ts TEXT NOT NULL,
  PRIMARY KEY(asset_id, idx)
);

CREATE TABLE IF NOT EXISTS root_log(
  asset_id INTEGER NOT NULL,
  seq INTEGER NOT NULL,
  root TEXT NOT NULL,
  depth INTEGER NOT NULL,
  size INTEGER NOT NULL,
  PRIMARY KEY(asset_id, seq)
);
"""


class EventLogMismatch(RuntimeError):
    """Replayed state disagrees with the persisted leaf or root log."""


# ---------- storage ----------
def _conn(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    cx = sqlite3.connect(db_path)
    cx.execute("PRAGMA foreign_keys=ON;")
    return cx


def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _event_id(t: Transition) -> str:
    return f"{t.asset_id}:{to_hex(t.nonce_commitment)}"


class EventLog:
    """Append-only sqlite mirror of committed transitions.

    Registered as a ledger listener; each transition lands in one sqlite
    transaction together with its leaves and the roots they produce.
    """

    def __init__(self, db_path) -> None:
        self.db_path = Path(db_path)
        self._init()

    def _init(self) -> None:
        with _conn(self.db_path) as cx:
            cx.executescript(DDL)

    def ping(self) -> bool:
        with _conn(self.db_path) as cx:
            return cx.execute("SELECT 1").fetchone() == (1,)

    def attach(self, ledger: Ledger) -> "EventLog":
        ledger.add_listener(self.record)
        return self

    def record(self, t: Transition, roots: List[HistoricalRoot]) -> str:
        event_id = _event_id(t)
        ts = _now()
        blob = json.dumps(t.to_dict(), separators=(",", ":"))
        with _conn(self.db_path) as cx:
            if cx.execute("SELECT 1 FROM tx_log WHERE id=?", (event_id,)).fetchone():
                return event_id
            (seq,) = cx.execute(
                "SELECT COALESCE(MAX(seq), -1) + 1 FROM tx_log WHERE asset_id=?", (t.asset_id,)
            ).fetchone()
            cx.execute(
                "INSERT INTO tx_log(id,asset_id,seq,kind,ts,payload) VALUES(?,?,?,?,?,?)",
                (event_id, t.asset_id, seq, t.kind.value, ts, blob),
            )
            apply_event_row(cx, t, roots, ts)
        return event_id

    # ---------- reads ----------
    def transitions(self) -> List[Transition]:
        with _conn(self.db_path) as cx:
            rows: Iterable[Tuple[str]] = cx.execute(
                "SELECT payload FROM tx_log ORDER BY asset_id ASC, seq ASC"
            ).fetchall()
        return [Transition.from_dict(json.loads(payload)) for (payload,) in rows]

    def leaves(self, asset_id: int) -> List[int]:
        with _conn(self.db_path) as cx:
            rows = cx.execute("SELECT leaf FROM leaf_log WHERE asset_id=? ORDER BY idx", (asset_id,)).fetchall()
        return [from_hex(leaf) for (leaf,) in rows]

    def roots(self, asset_id: int) -> List[HistoricalRoot]:
        with _conn(self.db_path) as cx:
            rows = cx.execute(
                "SELECT root, depth, size FROM root_log WHERE asset_id=? ORDER BY seq", (asset_id,)
            ).fetchall()
        return [HistoricalRoot(from_hex(r), int(d), int(s)) for r, d, s in rows]

    def counts(self) -> Dict[str, Any]:
        with _conn(self.db_path) as cx:
            return {
                "transitions": cx.execute("SELECT COUNT(*) FROM tx_log").fetchone()[0],
                "leaves": cx.execute("SELECT COUNT(*) FROM leaf_log").fetchone()[0],
                "roots": cx.execute("SELECT COUNT(*) FROM root_log").fetchone()[0],
            }

    def replay(self, ledger: Ledger) -> int:
        """Rebuild ``ledger`` from the log and cross-check leaves and roots."""
        n = 0
        for t in self.transitions():
            ledger.restore(t)
            n += 1
        for asset_id in ledger.asset_ids():
            if ledger.leaves(asset_id) != self.leaves(asset_id):
                raise EventLogMismatch(f"leaf log disagrees with replay for asset {asset_id}")
            if ledger.root_log(asset_id) != self.roots(asset_id):
                raise EventLogMismatch(f"root log disagrees with replay for asset {asset_id}")
        logger.info(f"replayed {n} transitions from {self.db_path}")
        return n


def apply_event_row(cx: sqlite3.Connection, t: Transition, roots: List[HistoricalRoot], ts: str) -> None:
    if len(roots) != len(t.leaves):
        raise ValueError("one root snapshot per inserted leaf expected")
    for leaf, snap in zip(t.leaves, roots):
        idx = snap.size - 1
        cx.execute(
            "INSERT INTO leaf_log(asset_id,idx,leaf,ts) VALUES(?,?,?,?)",
            (t.asset_id, idx, to_hex(leaf), ts),
        )
        cx.execute(
            "INSERT INTO root_log(asset_id,seq,root,depth,size) VALUES(?,?,?,?,?)",
            (t.asset_id, idx, to_hex(snap.root), snap.depth, snap.size),
        )


def open_ledger(db_path, ledger: Ledger) -> Tuple[Ledger, EventLog]:
    """Replay ``db_path`` into ``ledger`` and keep logging new transitions there."""
    log = EventLog(db_path)
    log.replay(ledger)
    log.attach(ledger)
    return ledger, log


__all__ = [
    "DDL",
    "EventLogMismatch",
    "EventLog",
    "apply_event_row",
    "open_ledger",
]
