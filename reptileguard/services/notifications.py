# reptileguard/services/notifications.py
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from reptileguard.db import dynamo
from reptileguard.errors import StoreUnavailable
from reptileguard.models.report import DangerLevel, NotificationSummary, SightingReport
from reptileguard.services.report_view import default_tz

log = logging.getLogger(__name__)

# Pull from env if you like
REGION = os.getenv("AWS_REGION", "ap-south-1")
SES_SENDER = os.getenv("SES_SENDER", "alerts@reptileguard.org")
SES_TEMPLATE = os.getenv("SES_TEMPLATE", "ReptileSightingAlert")
APP_NAME = os.getenv("APP_NAME", "ReptileGuard")
APP_URL = os.getenv("APP_URL", "http://localhost:5173")

DANGER_MARKERS = {
    DangerLevel.CRITICAL: "🔴",
    DangerLevel.HIGH: "🟠",
    DangerLevel.MEDIUM: "🟡",
    DangerLevel.LOW: "🟢",
}


@lru_cache(maxsize=1)
def ses_client():
    return boto3.client("ses", region_name=REGION)


# ----------------------------
# Recipient lookup
# ----------------------------

def _officer_info(item: Dict[str, Any]) -> Dict[str, str]:
    return {
        "id": item.get("id", ""),
        "name": item.get("name", ""),
        "email": item.get("email", ""),
        "mobile": item.get("mobile", ""),
        "district": item.get("district", ""),
        "state": item.get("state", ""),
    }


def get_officers_for_notification(district: str, state: str) -> List[Dict[str, str]]:
    """
    Officers registered in the report's district; if there are none, every
    officer in the state. Officers without an email are skipped.
    """
    officers = [_officer_info(it) for it in dynamo.scan_officers("district", district)]
    officers = [o for o in officers if o["email"]]
    if officers:
        return officers
    officers = [_officer_info(it) for it in dynamo.scan_officers("state", state)]
    return [o for o in officers if o["email"]]


# ----------------------------
# Formatters
# ----------------------------

def build_template_data(officer: Dict[str, str], report: SightingReport) -> Dict[str, str]:
    reptile = report.reptileData
    loc = report.location
    danger = f"{DANGER_MARKERS.get(reptile.dangerLevel, '')} {reptile.dangerLevel.value}".strip()

    return {
        "to_name": officer["name"],
        "to_email": officer["email"],
        "officer_district": officer["district"],

        "reporter_name": report.userName,
        "reporter_mobile": report.reporterMobile,
        "reporter_email": report.reporterEmail or "Not provided",

        "reptile_name": reptile.name,
        "scientific_name": reptile.scientificName,
        "danger_level": danger,
        "venomous_status": "⚠️ VENOMOUS" if reptile.isVenomous else "✅ Non-Venomous",
        "reptile_description": reptile.description,

        "location_type": loc.locationType.value,
        "village": loc.village,
        "taluk": loc.taluk,
        "district": loc.district,
        "state": loc.state,
        "landmark": loc.landmark,
        "pincode": loc.pincode,
        "full_address": f"{loc.village}, {loc.taluk}, {loc.district}, {loc.state} - {loc.pincode}",

        "risk_level": report.riskLevel.value,
        "sighting_time": report.sightingTime,
        "report_date": datetime.fromtimestamp(report.timestamp / 1000, default_tz()).strftime("%A, %d %B %Y"),
        "report_id": report.id,

        "app_name": APP_NAME,
        "app_url": APP_URL,
    }


# ----------------------------
# Publishers
# ----------------------------

def send_sighting_email(officer: Dict[str, str], template_data: Dict[str, str]) -> str:
    """Send one templated email through SES. Returns the SES MessageId."""
    resp = ses_client().send_templated_email(
        Source=SES_SENDER,
        Destination={"ToAddresses": [officer["email"]]},
        Template=SES_TEMPLATE,
        TemplateData=json.dumps(template_data),
    )
    return resp["MessageId"]


# ----------------------------
# One-call convenience
# ----------------------------

def notify_officers_about_sighting(report: SightingReport) -> NotificationSummary:
    """
    Email every responsible officer about a new report, one at a time.
    One failed recipient does not stop the rest. Never raises: the report is
    already saved, so the caller only gets a summary to show the citizen.
    """
    try:
        officers = get_officers_for_notification(report.location.district, report.location.state)
    except StoreUnavailable:
        return NotificationSummary(
            success=False,
            notifiedCount=0,
            message="Failed to send notifications. Report has been saved.",
        )

    if not officers:
        log.info("No registered officers for %s / %s", report.location.district, report.location.state)
        return NotificationSummary(
            success=False,
            notifiedCount=0,
            message="No wildlife officers registered in your area. Report saved for when officers register.",
        )

    scope = "district" if officers[0]["district"] == report.location.district else "state"
    log.info("Notifying %d officer(s) in %s for %s", len(officers), scope, report.id)

    sent = 0
    for officer in officers:
        try:
            send_sighting_email(officer, build_template_data(officer, report))
            sent += 1
        except (ClientError, BotoCoreError) as e:
            log.warning("Failed to notify %s about %s: %s", officer["email"], report.id, e)

    if sent == len(officers):
        message = f"{sent} wildlife officer(s) have been notified via email."
    else:
        message = f"Notification partially failed. {sent} of {len(officers)} officers notified."
    return NotificationSummary(success=sent > 0, notifiedCount=sent, message=message)
