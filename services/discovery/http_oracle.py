from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from services.crypto_core.babyjub import Point
from services.crypto_core.commitments import Aggregate
from services.crypto_core.field import from_hex, to_hex
from services.ledger.state import DiscoveryEntry, EncryptedState, OperationInfo, OperationKind

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


def _point(v) -> Point:
    return Point(from_hex(v[0]), from_hex(v[1]))


class HttpMembershipOracle:
    """Membership oracle backed by the ledger's HTTP read surface."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 5.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, allow_404: bool = False):
        r = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        LOG.debug("GET %s -> %s", path, r.status_code)
        if allow_404 and r.status_code == 404:
            return None
        r.raise_for_status()
        return r.json()

    def is_used(self, asset_id: int, value: int) -> bool:
        return bool(self._get(f"/assets/{asset_id}/used/{to_hex(value)}")["used"])

    def _state(self, asset_id: int, nonce_commitment: int):
        return self._get(f"/assets/{asset_id}/states/{to_hex(nonce_commitment)}", allow_404=True)

    def read_encrypted_state(self, asset_id: int, nonce_commitment: int) -> Optional[EncryptedState]:
        j = self._state(asset_id, nonce_commitment)
        if j is None:
            return None
        return EncryptedState(from_hex(j["encrypted_balance"]), from_hex(j["encrypted_nullifier"]), bool(j["plaintext"]))

    def read_operation_kind(self, asset_id: int, nonce_commitment: int) -> Optional[OperationInfo]:
        j = self._state(asset_id, nonce_commitment)
        if j is None:
            return None
        return OperationInfo(
            OperationKind(j["kind"]),
            minted_shares=int(j["minted_shares"]),
            lock_until=int(j["lock_until"]),
            statement=j.get("statement", ""),
        )

    def discovery_aggregate(self, asset_id: int) -> Optional[Aggregate]:
        j = self._get(f"/assets/{asset_id}/discovery")
        if not j["present"]:
            return None
        return Aggregate(_point(j["point"]), from_hex(j["m_sum"]), from_hex(j["r_sum"]), int(j["count"]))

    def discovery_entries(self, asset_id: int, start: int = 0, limit: Optional[int] = None) -> List[DiscoveryEntry]:
        params: Dict[str, Any] = {"start": start}
        if limit is not None:
            params["limit"] = limit
        j = self._get(f"/assets/{asset_id}/discovery/entries", params=params)
        return [DiscoveryEntry(_point(e["point"]), from_hex(e["nonce_commitment"])) for e in j["entries"]]


__all__ = ["HttpMembershipOracle"]
