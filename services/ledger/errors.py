from __future__ import annotations

from typing import Any, Dict


class LedgerError(Exception):
    """Base class for every rejected transition or failed scan."""

    code = "ledger_error"
    recoverable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "recoverable": self.recoverable, **self.context}


class AuthenticationFailure(LedgerError):
    """Proof does not verify against the declared public inputs."""

    code = "authentication_failure"


class StaleOrUnknownRoot(LedgerError):
    """Claimed root was never produced by this asset's tree. Refresh and re-prove."""

    code = "stale_or_unknown_root"
    recoverable = True


class ReplayDetected(LedgerError):
    """Nonce commitment or leaf already used."""

    code = "replay_detected"


class InvariantViolation(LedgerError):
    """Opening does not reconstruct the claimed leaf, or balance is insufficient."""

    code = "invariant_violation"


class TimeWindowViolation(LedgerError):
    """Declared time too far from ledger time, or funds still locked."""

    code = "time_window_violation"
    recoverable = True


class DiscoveryExhausted(LedgerError):
    """Discovery scan ran out of steps. Resume from ``checkpoint``."""

    code = "discovery_exhausted"

    def __init__(self, message: str, checkpoint: Any = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.checkpoint = checkpoint


__all__ = [
    "LedgerError",
    "AuthenticationFailure",
    "StaleOrUnknownRoot",
    "ReplayDetected",
    "InvariantViolation",
    "TimeWindowViolation",
    "DiscoveryExhausted",
]
