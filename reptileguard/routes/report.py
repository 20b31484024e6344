# reptileguard/routes/report.py
from __future__ import annotations

import json
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from reptileguard.errors import ReptileGuardError
from reptileguard.models.report import (
    CreateReportResult,
    DeleteReportIn,
    ReportFilter,
    ReportIn,
    ReportStats,
    RescueStatus,
    SightingReport,
    StatusUpdateIn,
    ViewMode,
)
from reptileguard.models.user import UserProfile
from reptileguard.services import report_view, reports
from reptileguard.services.auth import get_current_principal

log = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


def report_filter(
    view_mode: Optional[ViewMode] = Query(None, description="MY or REGION (officers only)"),
    state: Optional[str] = Query(None),
    district: Optional[str] = Query(None, description="Ignored unless state is set"),
    status: Optional[RescueStatus] = Query(None, description="Omit for all statuses"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    search: str = Query("", description="Free text over id, species, reporter and place"),
    principal: UserProfile = Depends(get_current_principal),
) -> ReportFilter:
    """Query params layered over the principal's default dashboard filter."""
    flt = report_view.default_filter(principal)
    if view_mode is not None and principal.is_officer:
        flt = flt.model_copy(update={"view_mode": view_mode})
    if state is not None:
        flt = flt.with_state(state)
    if district is not None:
        flt = flt.model_copy(update={"district": district})
    return flt.model_copy(
        update={"status": status or "ALL", "start_date": start_date, "end_date": end_date, "search": search}
    )


@router.post("", status_code=201, response_model=CreateReportResult)
def create_report(body: ReportIn, principal: UserProfile = Depends(get_current_principal)):
    """
    Save a sighting and notify the regional officers. The notification
    summary is informational; the report is saved either way.
    """
    report, summary = reports.create_report(principal, body.reptileData, body.details, body.images)
    return CreateReportResult(report=report, notification=summary)


@router.get("", response_model=List[SightingReport])
def list_reports(
    flt: ReportFilter = Depends(report_filter),
    principal: UserProfile = Depends(get_current_principal),
):
    return report_view.filter_reports(report_view.fetch_reports(principal), principal, flt)


@router.get("/stats", response_model=ReportStats)
def report_stats(principal: UserProfile = Depends(get_current_principal)):
    if not principal.is_officer:
        raise HTTPException(status_code=403, detail="Only wildlife officers can view statistics.")
    return reports.get_report_stats()


@router.get("/stream", summary="Live report list as Server-Sent Events")
async def stream_reports(
    flt: ReportFilter = Depends(report_filter),
    principal: UserProfile = Depends(get_current_principal),
    interval: float = Query(report_view.POLL_INTERVAL, ge=0.5, le=60),
):
    """
    Emits a `snapshot` event with the whole filtered list every time the
    principal's reports change. A store error is sent as one `error` event
    and ends the stream; the client keeps what it last received.
    """

    async def events():
        try:
            async for snapshot in report_view.watch_reports(principal, interval=interval):
                visible = report_view.filter_reports(snapshot, principal, flt)
                payload = json.dumps([r.model_dump(mode="json") for r in visible])
                yield f"event: snapshot\ndata: {payload}\n\n"
        except ReptileGuardError as e:
            log.warning("Report stream for %s ended: %s", principal.id, e)
            yield f"event: error\ndata: {json.dumps({'detail': str(e)})}\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/{report_id}", response_model=SightingReport)
def get_report(report_id: str, principal: UserProfile = Depends(get_current_principal)):
    report = reports.get_report_by_id(report_id)
    # citizens may only read their own reports; hide the rest as not found
    if report is None or (not principal.is_officer and report.userId != principal.id):
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")
    return report


@router.patch("/{report_id}/status", response_model=SightingReport)
def update_report_status(
    report_id: str,
    body: StatusUpdateIn,
    principal: UserProfile = Depends(get_current_principal),
):
    return reports.update_status(
        report_id,
        body.status,
        principal,
        notes=body.notes,
        new_evidence_images=body.rescueImages,
    )


@router.delete("/{report_id}", status_code=204)
def delete_report(
    report_id: str,
    body: DeleteReportIn,
    principal: UserProfile = Depends(get_current_principal),
):
    reports.delete_report(report_id, body.reason, principal)
    return
