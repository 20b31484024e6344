# reptileguard/services/reports.py
"""
Report lifecycle: creation, officer status updates, audited deletion.

Every write path for the Reports table goes through this module. Reads for
dashboards live in services.report_view.
"""
from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from reptileguard.db import dynamo
from reptileguard.db.deletion_audit import add_deletion_record
from reptileguard.errors import AuthorizationError, NotFoundError, StoreUnavailable, ValidationError
from reptileguard.models.report import (
    EVIDENCE_REQUIRED,
    STATUS_SEQUENCE,
    TERMINAL_STATUSES,
    DeletionAuditRecord,
    NotificationSummary,
    OfficerSnapshot,
    OfficerUpdate,
    ReportDetails,
    ReportStats,
    RescueStatus,
    ReptileData,
    SightingReport,
)
from reptileguard.models.user import UserProfile
from reptileguard.services.notifications import notify_officers_about_sighting
from reptileguard.services.report_view import default_tz

log = logging.getLogger(__name__)

REQUIRED_LOCATION_FIELDS = ("state", "district", "taluk", "village", "pincode")
MAX_ID_ATTEMPTS = 5
# images are stored inline and a DynamoDB item is capped at 400 KB
MAX_IMAGE_BYTES = int(os.getenv("MAX_REPORT_IMAGE_BYTES", "350000"))


def _now_ms() -> int:
    return int(time.time() * 1000)


def readable_id(storage_key: str) -> str:
    """RPT-<last six chars of the storage key, upper-cased>."""
    return f"RPT-{storage_key[-6:].upper()}"


def officer_snapshot(officer: UserProfile) -> OfficerSnapshot:
    return OfficerSnapshot(
        id=officer.id,
        name=officer.name,
        email=officer.email,
        mobile=officer.mobile,
        designation=officer.designation or "Wildlife Officer",
    )


def _require_officer(principal: UserProfile, action: str) -> None:
    if not principal.is_officer:
        raise AuthorizationError(f"Only wildlife officers can {action}.")
    if principal.isGuest:
        raise AuthorizationError(f"Guest sessions cannot {action}. Please sign in.")


def _local_hhmm(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, default_tz()).strftime("%H:%M")


def _check_image_budget(images: List[str], what: str) -> None:
    size = sum(len(img.encode("utf-8")) for img in images)
    if size > MAX_IMAGE_BYTES:
        raise ValidationError(
            f"{what} are too large ({size // 1024} KB, limit {MAX_IMAGE_BYTES // 1024} KB). "
            "Please attach fewer or smaller photos."
        )


def _to_report(item: dict) -> SightingReport:
    return SightingReport.model_validate(item)


# ----------------------------
# Status policy
# ----------------------------

def check_transition(
    current: RescueStatus,
    target: RescueStatus,
    *,
    notes: Optional[str],
    evidence_count: int,
) -> None:
    """
    Forward-only workflow. Re-setting the current status is allowed so a
    repeated update stays idempotent; FALSE_ALARM closes any open case.
    """
    if target == RescueStatus.FALSE_ALARM:
        if current in TERMINAL_STATUSES and current != target:
            raise ValidationError(f"Report is already {current.value}; it cannot be changed.")
        if not (notes or "").strip():
            raise ValidationError("Please explain why this is a false alarm.")
        return

    if target != current:
        if current in TERMINAL_STATUSES:
            raise ValidationError(f"Report is already {current.value}; it cannot be changed.")
        if STATUS_SEQUENCE.index(target) < STATUS_SEQUENCE.index(current):
            raise ValidationError(
                f"Cannot move a report back from {current.value} to {target.value}."
            )

    if target in EVIDENCE_REQUIRED and evidence_count == 0:
        raise ValidationError("At least one evidence photo is required.")


# ----------------------------
# Operations
# ----------------------------

def create_report(
    principal: UserProfile,
    classification: ReptileData,
    details: ReportDetails,
    images: List[str],
    *,
    notify: Optional[Callable[[SightingReport], NotificationSummary]] = None,
) -> Tuple[SightingReport, NotificationSummary]:
    """
    Persist a new PENDING report with a copy of the reporter's contact
    details, then notify the regional officers.

    The report is saved once put_report returns. Notification runs after
    that and its outcome is only returned as a summary.
    """
    if principal.isGuest:
        raise AuthorizationError("Guest sessions cannot submit reports. Please register or sign in.")

    location = details.location.model_copy()
    missing = [f for f in REQUIRED_LOCATION_FIELDS if not getattr(location, f, "").strip()]
    if missing:
        raise ValidationError(f"Missing location fields: {', '.join(missing)}")
    if not location.landmark.strip():
        location.landmark = principal.landmark
    _check_image_budget(images, "Report photos")

    created_at = _now_ms()
    storage_key = uuid.uuid4().hex
    for _ in range(MAX_ID_ATTEMPTS):
        if dynamo.get_report_item(readable_id(storage_key)) is None:
            break
        storage_key = uuid.uuid4().hex
    else:
        raise StoreUnavailable("Could not allocate a report id. Please try again.")

    report = SightingReport(
        id=readable_id(storage_key),
        storageKey=storage_key,
        userId=principal.id,
        userName=principal.name,
        reporterRole=principal.role,
        reporterMobile=principal.mobile,
        reporterAltMobile=principal.altMobile or None,
        reporterEmail=principal.email or None,
        timestamp=created_at,
        sightingTime=(details.sightingTime or "").strip() or _local_hhmm(created_at),
        reptileData=classification,
        location=location,
        riskLevel=details.riskLevel,
        imageUrls=list(images),
        rescueImageUrls=[],
        status=RescueStatus.PENDING,
        officerNotes=None,
    )
    dynamo.put_report(report.model_dump(mode="json"))
    log.info("Report %s created by %s", report.id, principal.id)

    notify = notify or notify_officers_about_sighting
    try:
        summary = notify(report)
    except Exception as e:
        log.exception("Officer notification failed for %s: %s", report.id, e)
        summary = NotificationSummary(
            success=False,
            notifiedCount=0,
            message="Failed to send notifications. Report has been saved.",
        )
    return report, summary


def get_report_by_id(report_id: str) -> Optional[SightingReport]:
    item = dynamo.get_report_item(report_id)
    return _to_report(item) if item else None


def update_status(
    report_id: str,
    new_status: RescueStatus,
    acting_officer: UserProfile,
    *,
    notes: Optional[str] = None,
    new_evidence_images: Optional[List[str]] = None,
) -> SightingReport:
    """
    Officer status update. Evidence is appended, notes only overwrite when
    given, and updatedByOfficer is always re-stamped.
    """
    _require_officer(acting_officer, "update report status")

    current = get_report_by_id(report_id)
    if current is None:
        raise NotFoundError(f"Report {report_id} not found")

    new_images = list(new_evidence_images or [])
    notes = (notes or "").strip() or None

    check_transition(
        current.status,
        new_status,
        notes=notes or current.officerNotes,
        evidence_count=len(current.rescueImageUrls) + len(new_images),
    )
    if new_images:
        _check_image_budget(current.imageUrls + current.rescueImageUrls + new_images, "Report and rescue photos")

    stamp = OfficerUpdate(**officer_snapshot(acting_officer).model_dump(), updatedAt=_now_ms())
    dynamo.update_report_status(
        current.storageKey,
        status=new_status.value,
        officer_update=stamp.model_dump(mode="json"),
        notes=notes,
        new_images=new_images,
    )
    log.info("Report %s -> %s by officer %s", report_id, new_status.value, acting_officer.id)

    return current.model_copy(
        update={
            "status": new_status,
            "officerNotes": notes or current.officerNotes,
            "rescueImageUrls": current.rescueImageUrls + new_images,
            "updatedByOfficer": stamp,
        }
    )


def delete_report(report_id: str, reason: str, acting_officer: UserProfile) -> DeletionAuditRecord:
    """
    Audited delete: snapshot -> audit record -> conditional delete.
    The audit write must succeed before the report is removed; a crash in
    between can leave a duplicate audit record but never an untraced delete.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to delete a report.")
    _require_officer(acting_officer, "delete reports")

    item = dynamo.get_report_item(report_id)
    if item is None:
        raise NotFoundError(f"Report {report_id} not found")

    audit = add_deletion_record(
        report_id,
        item,
        officer_snapshot(acting_officer),
        reason,
    )
    dynamo.delete_report_item(item["storageKey"])
    log.info("Report %s deleted by officer %s (audit %s)", report_id, acting_officer.id, audit.auditId)
    return audit


def get_report_stats() -> ReportStats:
    reports = dynamo.query_all_reports()
    counts = {s: 0 for s in RescueStatus}
    for r in reports:
        try:
            counts[RescueStatus(r.get("status"))] += 1
        except ValueError:
            continue
    return ReportStats(
        total=len(reports),
        pending=counts[RescueStatus.PENDING],
        rescued=counts[RescueStatus.RESCUED],
        released=counts[RescueStatus.RELEASED],
    )
