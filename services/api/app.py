# services/api/app.py
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, HTTPException, Query

from services.api.eventlog import EventLog, open_ledger
from services.api.health_checks import comprehensive_health_check, liveness_check, readiness_check
from services.api.logging_config import configure_logging, get_logger
from services.api.schemas_api import (
    DiscoveryEntriesRes,
    DiscoveryEntryRes,
    DiscoveryRes,
    HealthRes,
    NoteRes,
    NoteStackRes,
    Ok,
    ProofRes,
    RootInfo,
    StateRes,
    TreeInfo,
    UsedRes,
)
from services.crypto_core.babyjub import Point
from services.crypto_core.field import from_hex, to_hex
from services.ledger.config import LedgerConfig
from services.ledger.ledger import Ledger

logger = get_logger("api")

DEFAULT_PAGE = 256
MAX_PAGE = 4096


def _hex(value: str) -> int:
    try:
        return from_hex(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"not a canonical field element: {value!r}") from None


def _pt(p: Point):
    return [to_hex(p.x), to_hex(p.y)]


def create_app(
    ledger: Optional[Ledger] = None,
    config: Optional[LedgerConfig] = None,
    event_log: Optional[EventLog] = None,
) -> FastAPI:
    """
    Build the read-only HTTP surface over a ledger.

    With no ``ledger`` the app builds one from ``config`` (or the environment)
    and replays the sqlite event log at ``config.db_path`` into it.
    """
    if ledger is None:
        config = config or LedgerConfig.from_env()
        configure_logging(config.log_level, config.log_format)
        ledger, event_log = open_ledger(config.db_path, Ledger(config))
    config = ledger.config

    app = FastAPI(title="Shielded Ledger API", version="0.1.0")
    app.state.ledger = ledger
    app.state.event_log = event_log

    # =========================
    # Health
    # =========================

    @app.get("/health", response_model=HealthRes)
    async def health():
        return await comprehensive_health_check(ledger, event_log)

    @app.get("/health/live", response_model=Ok)
    async def live():
        await liveness_check()
        return Ok()

    @app.get("/health/ready", response_model=Ok)
    async def ready():
        if not await readiness_check(event_log):
            raise HTTPException(status_code=503, detail="event log unavailable")
        return Ok()

    # =========================
    # Tree
    # =========================

    @app.get("/assets/{asset_id}/tree", response_model=TreeInfo)
    def tree(asset_id: int):
        root = ledger.root(asset_id)
        size = ledger.size(asset_id)
        tree_depth = 0
        while (1 << tree_depth) < size:
            tree_depth += 1
        return TreeInfo(
            asset_id=asset_id,
            root=None if root is None else to_hex(root),
            depth=ledger.depth(asset_id),
            tree_depth=tree_depth,
            size=size,
        )

    @app.get("/assets/{asset_id}/roots/{root}", response_model=RootInfo)
    def root_info(asset_id: int, root: str):
        r = _hex(root)
        snap = ledger.historical_root(asset_id, r)
        if snap is None:
            return RootInfo(root=to_hex(r), historical=False)
        return RootInfo(root=to_hex(r), historical=True, depth=snap.depth, size=snap.size)

    @app.get("/assets/{asset_id}/proof/{index}", response_model=ProofRes)
    def proof(asset_id: int, index: int):
        try:
            p = ledger.generate_proof(asset_id, index)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return ProofRes(
            leaf=to_hex(p.leaf),
            index=p.index,
            depth=p.depth,
            root=to_hex(p.root),
            siblings=[to_hex(s) for s in p.siblings],
        )

    # =========================
    # Membership
    # =========================

    @app.get("/assets/{asset_id}/used/{value}", response_model=UsedRes)
    def used(asset_id: int, value: str):
        v = _hex(value)
        return UsedRes(value=to_hex(v), used=ledger.is_used(asset_id, v))

    @app.get("/assets/{asset_id}/states/{nonce_commitment}", response_model=StateRes)
    def state(asset_id: int, nonce_commitment: str):
        nc = _hex(nonce_commitment)
        enc = ledger.read_encrypted_state(asset_id, nc)
        info = ledger.read_operation_kind(asset_id, nc)
        if enc is None or info is None:
            raise HTTPException(status_code=404, detail="no state for nonce commitment")
        return StateRes(
            nonce_commitment=to_hex(nc),
            encrypted_balance=to_hex(enc.balance),
            encrypted_nullifier=to_hex(enc.nullifier),
            plaintext=enc.plaintext,
            kind=info.kind.value,
            statement=info.statement,
            minted_shares=info.minted_shares,
            lock_until=info.lock_until,
        )

    @app.get("/assets/{asset_id}/discovery", response_model=DiscoveryRes)
    def discovery(asset_id: int):
        agg = ledger.discovery_aggregate(asset_id)
        if agg is None:
            return DiscoveryRes(present=False)
        return DiscoveryRes(
            present=True,
            point=_pt(agg.point),
            m_sum=to_hex(agg.m_sum),
            r_sum=to_hex(agg.r_sum),
            count=agg.count,
        )

    @app.get("/assets/{asset_id}/discovery/entries", response_model=DiscoveryEntriesRes)
    def discovery_entries(
        asset_id: int,
        start: int = Query(0, ge=0),
        limit: int = Query(DEFAULT_PAGE, ge=1, le=MAX_PAGE),
    ):
        entries = ledger.discovery_entries(asset_id, start, limit)
        return DiscoveryEntriesRes(
            start=start,
            next=start + len(entries),
            entries=[DiscoveryEntryRes(point=_pt(e.point), nonce_commitment=to_hex(e.nonce_commitment)) for e in entries],
        )

    @app.get("/assets/{asset_id}/notes/{x}/{y}", response_model=NoteStackRes)
    def notes(asset_id: int, x: str, y: str):
        recipient = Point(_hex(x), _hex(y))
        stack = ledger.note_stack(asset_id, recipient)
        if stack is None:
            raise HTTPException(status_code=404, detail="no pending notes for recipient")
        return NoteStackRes(
            recipient=_pt(stack.recipient),
            point=_pt(stack.point),
            leaf=to_hex(stack.leaf),
            notes=[
                NoteRes(
                    sender_public=_pt(n.sender_public),
                    encrypted_amount=to_hex(n.encrypted_amount),
                    commitment=_pt(n.commitment),
                )
                for n in stack.notes
            ],
        )

    logger.info(f"ledger API ready (chain_id={config.chain_id}, assets={ledger.asset_ids()})")
    return app


def main() -> None:
    import uvicorn

    config = LedgerConfig.from_env()
    uvicorn.run(create_app(config=config), host="127.0.0.1", port=8000, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
