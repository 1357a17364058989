"""
groupguard.api.routes.rules — Rule administration (JWT-protected)
==================================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from groupguard.api.deps import actor_of, get_current_admin, get_runtime
from groupguard.errors import ConfigurationError
from groupguard.runtime import GroupGuardRuntime

router = APIRouter(prefix="/admin/rules", tags=["rules"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RuleUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    name: str
    type: str
    enabled: bool = True
    action_type: str = Field(default="REJECT", alias="actionType")
    config: Any = None


class PriorityUpdate(BaseModel):
    priority: list[str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.get("")
def list_rules(
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    ruleset = runtime.store.snapshot()
    rows = runtime.store.list_rows()
    for row in rows:
        rule = ruleset.get(str(row["id"]))
        row["config_error"] = rule.config_error if rule else None
    return {
        "rules": rows,
        "priority": [p.value for p in ruleset.priority],
        "revision": ruleset.revision,
    }


@router.put("")
def upsert_rule(
    body: RuleUpsert,
    request: Request,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    try:
        row = runtime.store.upsert_rule(
            rule_id=body.id,
            name=body.name,
            rule_type=body.type,
            config=body.config,
            enabled=body.enabled,
            action_type=body.action_type,
            actor_id=actor_of(admin),
            ip_address=request.client.host if request.client else None,
        )
    except ConfigurationError as exc:
        raise HTTPException(422, str(exc))
    except ValueError as exc:
        raise HTTPException(422, f"Unknown rule or action type: {body.type}/{body.action_type}") from exc
    except LookupError:
        raise HTTPException(404, "Rule not found")
    return {"rule": row, "revision": runtime.store.snapshot().revision}


@router.put("/priority")
def update_priority(
    body: PriorityUpdate,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    priority = runtime.store.set_priority(body.priority, actor_id=actor_of(admin))
    return {"priority": [p.value for p in priority]}


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: int,
    request: Request,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    deleted = runtime.store.delete_rule(
        rule_id,
        actor_id=actor_of(admin),
        ip_address=request.client.host if request.client else None,
    )
    if not deleted:
        raise HTTPException(404, "Rule not found")
    return {"deleted": rule_id}
