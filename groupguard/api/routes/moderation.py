"""
groupguard.api.routes.moderation — Evaluation, interceptions, join requests
============================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from groupguard.api.deps import get_current_admin, get_runtime
from groupguard.engine.evaluator import Candidate
from groupguard.errors import UpstreamFetchError
from groupguard.runtime import GroupGuardRuntime

router = APIRouter(prefix="/moderation", tags=["moderation"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class CandidateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    display_name: str = Field(default="", alias="displayName")
    bio: str = ""
    status_description: str = Field(default="", alias="statusDescription")
    pronouns: str = ""
    tags: list[str] = Field(default_factory=list)
    age_verified: bool = Field(default=False, alias="ageVerified")
    age_verification_status: str | None = Field(default=None, alias="ageVerificationStatus")
    group_memberships: list[str] | None = Field(default=None, alias="groupMemberships")

    def to_candidate(self) -> Candidate:
        return Candidate(
            id=self.id,
            display_name=self.display_name,
            bio=self.bio,
            status_description=self.status_description,
            pronouns=self.pronouns,
            tags=tuple(self.tags),
            age_verified=self.age_verified,
            age_verification_status=self.age_verification_status,
            group_memberships=(
                frozenset(self.group_memberships)
                if self.group_memberships is not None
                else None
            ),
        )


class JoinRequestIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_id: str = Field(alias="groupId")
    candidate: CandidateIn


class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_id: str = Field(alias="groupId")


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
@router.post("/evaluate")
def evaluate_candidate(
    body: CandidateIn,
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    decision = runtime.rule_engine.evaluate(body.to_candidate(), runtime.store.snapshot())
    return decision.to_dict()


# ---------------------------------------------------------------------------
# Interception log
# ---------------------------------------------------------------------------
@router.get("/interceptions")
def list_interceptions(
    limit: int = Query(50, ge=1, le=500),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    return {
        "entries": [e.to_dict() for e in runtime.log.list(limit)],
        "total": len(runtime.log),
        "totalIntercepted": runtime.log.total_intercepted,
    }


@router.get("/interceptions/archive")
def interception_archive(
    subject_id: str | None = Query(None, alias="subjectId"),
    limit: int = Query(100, ge=1, le=1000),
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    return {"entries": runtime.archive.history(subject_id, limit)}


@router.delete("/interceptions/{entry_id}")
def dismiss_interception(
    entry_id: str,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    if not runtime.log.remove(entry_id):
        raise HTTPException(404, "Interception not found")
    logger.info("Interception %s dismissed by %s", entry_id, admin.get("sub"))
    return {"removed": entry_id}


@router.post("/interceptions/{entry_id}/reverse")
async def reverse_interception(
    entry_id: str,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    if runtime.directory is None:
        raise HTTPException(409, "No directory configured")
    try:
        reversed_ = await runtime.gatekeeper.reverse(entry_id)
    except UpstreamFetchError as exc:
        raise HTTPException(502, str(exc))
    if not reversed_:
        raise HTTPException(404, "Interception not found or has no group")
    return {"reversed": entry_id}


# ---------------------------------------------------------------------------
# Join requests
# ---------------------------------------------------------------------------
@router.post("/join-requests")
async def submit_join_request(
    body: JoinRequestIn,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    decision = await runtime.gatekeeper.process_join_request(
        body.group_id, body.candidate.to_candidate()
    )
    if decision is None:
        return {"duplicate": True, "decision": None}
    return {"duplicate": False, "decision": decision.to_dict()}


@router.post("/join-requests/{group_id}/process-pending")
async def process_pending(
    group_id: str,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    if runtime.directory is None:
        raise HTTPException(409, "No directory configured")
    try:
        decisions = await runtime.gatekeeper.process_pending(group_id)
    except UpstreamFetchError as exc:
        raise HTTPException(502, str(exc))
    return {
        "processed": len(decisions),
        "rejected": sum(1 for d in decisions if d.rejected),
    }


# ---------------------------------------------------------------------------
# Retroactive scans
# ---------------------------------------------------------------------------
@router.post("/scans")
async def start_scan(
    body: ScanRequest,
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    if runtime.scans is None:
        raise HTTPException(409, "No directory configured")
    if runtime.scans.running:
        raise HTTPException(409, "A scan is already running")
    try:
        report = await runtime.scans.scan_group(body.group_id, runtime.store.snapshot())
    except RuntimeError:
        # Another request started a scan since the check above
        raise HTTPException(409, "A scan is already running")
    except UpstreamFetchError as exc:
        raise HTTPException(502, str(exc))
    if runtime.alerts is not None:
        await runtime.alerts.send_scan_summary(
            body.group_id, report.scanned, report.violations, report.cancelled
        )
    return report.to_dict()


@router.post("/scans/cancel")
def cancel_scan(
    admin: dict = Depends(get_current_admin),
    runtime: GroupGuardRuntime = Depends(get_runtime),
):
    if runtime.scans is None or not runtime.scans.cancel():
        raise HTTPException(404, "No scan is running")
    return {"cancelled": True}
