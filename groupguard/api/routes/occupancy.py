"""
groupguard.api.routes.occupancy — Live occupancy read model & event ingest
===========================================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from groupguard.api.deps import get_current_admin, get_runtime
from groupguard.engine.events import event_from_dict
from groupguard.runtime import GroupGuardRuntime

router = APIRouter(prefix="/occupancy", tags=["occupancy"])


@router.get("")
def current_occupancy(runtime: GroupGuardRuntime = Depends(get_runtime)):
    return runtime.tracker.get_current_occupancy().to_dict()


@router.post("/events")
async def ingest_events(
    body: dict[str, Any] | list[dict[str, Any]],
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    """Accept one watcher payload or a list of them, applied in order."""
    payloads = body if isinstance(body, list) else [body]
    try:
        events = [event_from_dict(p) for p in payloads]
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    snapshot = await runtime.ingest(events)
    return {"applied": len(events), "activeCount": snapshot.active_count}
