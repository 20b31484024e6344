import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from boto3.dynamodb.conditions import Key

from reptileguard.db.dynamo import from_dynamo, get_table, store_errors
from reptileguard.models.report import DeletionAuditRecord, OfficerSnapshot

DELETED_REPORTS_TABLE = os.getenv("DELETED_REPORTS_TABLE", "DeletedReports")
DELETED_REPORTS_INDEX = os.getenv("DELETED_REPORTS_INDEX", "report-index")


def deleted_reports_table():
    return get_table(DELETED_REPORTS_TABLE)


def add_deletion_record(
    report_id: str,
    report_data: Dict[str, Any],
    deleted_by: OfficerSnapshot,
    reason: str,
) -> DeletionAuditRecord:
    """
    Append one audit record. Raises StoreUnavailable on failure so the
    caller never goes on to delete a report that left no trace.
    """
    record = DeletionAuditRecord(
        auditId=uuid.uuid4().hex,
        originalReportId=report_id,
        reportData=report_data,
        deletedBy=deleted_by,
        deletionReason=reason,
        deletedAt=datetime.now(timezone.utc).isoformat(),
    )
    with store_errors("add_deletion_record"):
        deleted_reports_table().put_item(Item=record.model_dump(mode="json"))
    return record


def get_deletion_records(report_id: str, limit: int = 100) -> List[DeletionAuditRecord]:
    """Audit records for a report id, newest first."""
    with store_errors("get_deletion_records"):
        resp = deleted_reports_table().query(
            IndexName=DELETED_REPORTS_INDEX,
            KeyConditionExpression=Key("originalReportId").eq(report_id),
            Limit=limit,
            ScanIndexForward=False,
        )
    return [DeletionAuditRecord.model_validate(from_dynamo(it)) for it in resp.get("Items", [])]
