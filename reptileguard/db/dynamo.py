# reptileguard/db/dynamo.py
import os
import logging
from contextlib import contextmanager
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key, Attr
from botocore.exceptions import BotoCoreError, ClientError

from reptileguard.errors import NotFoundError, StoreUnavailable, ValidationError

log = logging.getLogger(__name__)

REGION = os.getenv("AWS_REGION", "ap-south-1")
REPORTS_TABLE = os.getenv("REPORTS_TABLE", "Reports")
USERS_TABLE = os.getenv("USERS_TABLE", "Users")
REPORTS_FEED_INDEX = os.getenv("REPORTS_FEED_INDEX", "feed-timestamp-index")
REPORTS_USER_INDEX = os.getenv("REPORTS_USER_INDEX", "user-index")
REPORTS_ID_INDEX = os.getenv("REPORTS_ID_INDEX", "report-id-index")

# constant partition of the feed GSI so the whole collection can be read newest-first
FEED_PARTITION = "REPORT"

# request-shaped failures: retrying the same write can never succeed
INVALID_REQUEST_CODES = {
    "ValidationException",
    "ItemCollectionSizeLimitExceededException",
    "SerializationException",
}


@lru_cache(maxsize=1)
def get_dynamodb():
    return boto3.resource("dynamodb", region_name=REGION)


@lru_cache(maxsize=None)
def get_table(name: str):
    return get_dynamodb().Table(name)


def reports_table():
    return get_table(REPORTS_TABLE)


def users_table():
    return get_table(USERS_TABLE)


@contextmanager
def store_errors(action: str, *, missing_ok_as: Optional[str] = None):
    """
    Translate boto errors into the report core's taxonomy.
    A failed condition check means the target item is gone, which is
    reported as NotFoundError with `missing_ok_as` as the message.
    Malformed or oversized requests are permanent (ValidationError);
    everything else is treated as transient.
    """
    try:
        yield
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code == "ConditionalCheckFailedException" and missing_ok_as:
            raise NotFoundError(missing_ok_as) from e
        if code in INVALID_REQUEST_CODES:
            message = e.response.get("Error", {}).get("Message", code)
            log.warning("DynamoDB %s rejected the request (%s): %s", action, code, message)
            raise ValidationError(f"Storage rejected {action}: {message}") from e
        log.exception("DynamoDB %s failed (%s)", action, code)
        raise StoreUnavailable(f"Storage error during {action}. Please try again.") from e
    except BotoCoreError as e:
        log.exception("DynamoDB %s failed", action)
        raise StoreUnavailable(f"Storage error during {action}. Please try again.") from e


def from_dynamo(value: Any) -> Any:
    """Decimal -> int/float, recursively (boto3 returns every number as Decimal)."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    return value


def _query_all(table, **kwargs) -> List[Dict[str, Any]]:
    # follow LastEvaluatedKey until the query is exhausted
    items: List[Dict[str, Any]] = []
    lek: Optional[Dict[str, Any]] = None
    while True:
        if lek:
            kwargs["ExclusiveStartKey"] = lek
        resp = table.query(**kwargs)
        items.extend(resp.get("Items", []))
        lek = resp.get("LastEvaluatedKey")
        if not lek:
            break
    return [from_dynamo(it) for it in items]


# ----------------------------
# Reports
# ----------------------------

def put_report(item: Dict[str, Any]) -> None:
    """Insert a new report. Never overwrites an existing storage key."""
    item = {**item, "feed": FEED_PARTITION}
    with store_errors("put_report"):
        reports_table().put_item(
            Item=item,
            ConditionExpression=Attr("storageKey").not_exists(),
        )


def get_report_item(report_id: str) -> Optional[Dict[str, Any]]:
    """Look a report up by its human readable id (not the storage key)."""
    with store_errors("get_report"):
        resp = reports_table().query(
            IndexName=REPORTS_ID_INDEX,
            KeyConditionExpression=Key("id").eq(report_id),
            Limit=1,
        )
    items = resp.get("Items", [])
    if not items:
        return None
    return from_dynamo(items[0])


def query_all_reports(page_limit: int = 500) -> List[Dict[str, Any]]:
    """Officer scope: every report, newest first (server-side order)."""
    with store_errors("query_all_reports"):
        return _query_all(
            reports_table(),
            IndexName=REPORTS_FEED_INDEX,
            KeyConditionExpression=Key("feed").eq(FEED_PARTITION),
            ScanIndexForward=False,
            Limit=page_limit,
        )


def query_user_reports(user_id: str) -> List[Dict[str, Any]]:
    """Citizen scope. The user index has no sort key, so callers sort."""
    with store_errors("query_user_reports"):
        return _query_all(
            reports_table(),
            IndexName=REPORTS_USER_INDEX,
            KeyConditionExpression=Key("userId").eq(user_id),
        )


def update_report_status(
    storage_key: str,
    *,
    status: str,
    officer_update: Dict[str, Any],
    notes: Optional[str] = None,
    new_images: Optional[List[str]] = None,
) -> None:
    """
    Officer write. Evidence is appended store-side with list_append so two
    concurrent appends both survive; status/notes are last-write-wins.
    The write is conditional on the item still existing.
    """
    names = {"#s": "status", "#o": "updatedByOfficer"}
    values: Dict[str, Any] = {":s": status, ":o": officer_update}
    sets = ["#s = :s", "#o = :o"]

    if notes:
        names["#n"] = "officerNotes"
        values[":n"] = notes
        sets.append("#n = :n")

    if new_images:
        names["#r"] = "rescueImageUrls"
        values[":r"] = list(new_images)
        values[":empty"] = []
        sets.append("#r = list_append(if_not_exists(#r, :empty), :r)")

    with store_errors("update_report_status", missing_ok_as=f"Report {storage_key} not found"):
        reports_table().update_item(
            Key={"storageKey": storage_key},
            UpdateExpression="SET " + ", ".join(sets),
            ConditionExpression=Attr("storageKey").exists(),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )


def delete_report_item(storage_key: str) -> None:
    with store_errors("delete_report", missing_ok_as=f"Report {storage_key} not found"):
        reports_table().delete_item(
            Key={"storageKey": storage_key},
            ConditionExpression=Attr("storageKey").exists(),
        )


# ----------------------------
# Profiles
# ----------------------------

def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    with store_errors("get_profile"):
        resp = users_table().get_item(Key={"id": user_id})
    item = resp.get("Item")
    return from_dynamo(item) if item else None


def put_profile(profile: Dict[str, Any]) -> None:
    with store_errors("put_profile"):
        users_table().put_item(Item=profile)


def update_profile(user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Partial update; returns the whole profile after the write."""
    if not updates:
        current = get_profile(user_id)
        if current is None:
            raise NotFoundError("User not found.")
        return current

    names = {f"#f{i}": k for i, k in enumerate(updates)}
    values = {f":v{i}": v for i, v in enumerate(updates.values())}
    expr = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(updates)))

    with store_errors("update_profile", missing_ok_as="User not found."):
        resp = users_table().update_item(
            Key={"id": user_id},
            UpdateExpression=expr,
            ConditionExpression=Attr("id").exists(),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
    return from_dynamo(resp.get("Attributes", {}))


def delete_profile(user_id: str) -> None:
    with store_errors("delete_profile"):
        users_table().delete_item(Key={"id": user_id})


def scan_officers(field: str, value: str) -> List[Dict[str, Any]]:
    """
    Registered (non-guest) wildlife officers whose `field` equals `value`.
    The Users table is small, so a filtered scan is fine here.
    """
    filt = (
        Attr("role").eq("WILDLIFE_OFFICER")
        & Attr(field).eq(value)
        & Attr("isGuest").ne(True)
    )
    items: List[Dict[str, Any]] = []
    lek: Optional[Dict[str, Any]] = None
    with store_errors("scan_officers"):
        while True:
            kwargs: Dict[str, Any] = {"FilterExpression": filt}
            if lek:
                kwargs["ExclusiveStartKey"] = lek
            resp = users_table().scan(**kwargs)
            items.extend(resp.get("Items", []))
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                break
    return [from_dynamo(it) for it in items]
