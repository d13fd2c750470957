#!/usr/bin/env python3
"""
Health, readiness and liveness probes for the ledger read API.
"""
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from services.api.logging_config import get_logger

logger = get_logger("health")

SERVICE_STARTED_AT = time.time()
_MB = 1024 * 1024


async def check_eventlog_health(event_log) -> Dict[str, Any]:
    """
    Check event log connectivity and performance

    Returns:
        dict with status, response_time_ms, and error (if any)
    """
    if event_log is None:
        return {"status": "disabled"}
    try:
        start = time.time()
        event_log.ping()
        response_time = (time.time() - start) * 1000

        return {
            "status": "healthy",
            "response_time_ms": round(response_time, 2),
            **event_log.counts(),
        }
    except Exception as e:
        logger.error(f"Event log health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e)
        }


def check_ledger_health(ledger) -> Dict[str, Any]:
    """
    Summarise the in-memory ledger

    Args:
        ledger: the served Ledger

    Returns:
        dict with status and per-asset tree sizes
    """
    assets = {str(a): ledger.size(a) for a in ledger.asset_ids()}
    return {
        "status": "healthy",
        "chain_id": ledger.config.chain_id,
        "assets": assets,
    }


def _nearest_existing(path: str) -> Path:
    p = Path(path).resolve()
    while not p.exists() and p != p.parent:
        p = p.parent
    return p


def get_system_metrics(data_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Resources of the ledger process and of the volume holding its event log.

    The ledger keeps every tree, root log and note stack in memory, so the
    process RSS is the figure to watch as assets grow.
    """
    try:
        proc = psutil.Process()
        rss = proc.memory_info().rss
        volume = _nearest_existing(data_dir or "/")
        disk = psutil.disk_usage(str(volume))

        return {
            "process": {
                "pid": proc.pid,
                "rss_mb": round(rss / _MB, 2),
                "threads": proc.num_threads(),
            },
            "host_memory_percent": round(psutil.virtual_memory().percent, 2),
            "data_volume": {
                "path": str(volume),
                "usage_percent": round(disk.percent, 2),
                "free_mb": round(disk.free / _MB, 2),
            },
        }
    except (psutil.Error, OSError) as e:
        logger.error(f"Failed to read process metrics: {e}")
        return {"error": str(e)}


def _format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {secs}s"


def get_uptime(started_at: Optional[float] = None) -> Dict[str, Any]:
    """Seconds since the ledger service module was loaded (or since ``started_at``)."""
    elapsed = time.time() - (SERVICE_STARTED_AT if started_at is None else started_at)
    return {
        "uptime_seconds": round(elapsed, 2),
        "uptime_formatted": _format_duration(elapsed),
    }


async def comprehensive_health_check(ledger, event_log: Optional[Any] = None) -> Dict[str, Any]:
    """
    Perform comprehensive health check of all components

    Args:
        ledger: the served Ledger
        event_log: EventLog backing the ledger, or None when running in memory

    Returns:
        dict with overall status and component statuses
    """
    checks = {
        "event_log": await check_eventlog_health(event_log),
        "ledger": check_ledger_health(ledger),
        "system": get_system_metrics(ledger.config.data_dir),
        "uptime": get_uptime(),
    }

    component_statuses = [checks["event_log"].get("status"), checks["ledger"].get("status")]
    if all(s in ["healthy", "disabled"] for s in component_statuses):
        overall_status = "healthy"
    else:
        overall_status = "unhealthy"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
        "checks": checks
    }


async def readiness_check(event_log: Optional[Any] = None) -> bool:
    """Ready once the event log answers a ping; an in-memory ledger is always ready."""
    if event_log is None:
        return True
    check = await check_eventlog_health(event_log)
    return check["status"] == "healthy"


async def liveness_check() -> bool:
    """The process is serving requests."""
    return True
