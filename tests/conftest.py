import os

# Fake AWS/Cognito settings must be in place before the package is imported.
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "ap-south-1"
os.environ["AWS_REGION"] = "ap-south-1"
os.environ.setdefault("COGNITO_APP_CLIENT_ID", "test-client-id")
os.environ.setdefault("ALLOW_GUESTS", "true")
os.environ.setdefault("SES_SENDER", "alerts@reptileguard.org")
os.environ.setdefault("SES_TEMPLATE", "ReptileSightingAlert")

import time
from datetime import datetime

import boto3
import pytest
from moto import mock_aws

from reptileguard.db import dynamo
from reptileguard.db import deletion_audit
from reptileguard.models.report import (
    DangerLevel,
    Location,
    LocationType,
    ReportDetails,
    ReptileData,
    RescueStatus,
    RiskLevel,
    SightingReport,
)
from reptileguard.models.user import UserProfile, UserRole
from reptileguard.services import notifications


def _create_tables():
    ddb = boto3.client("dynamodb", region_name="ap-south-1")
    ddb.create_table(
        TableName=dynamo.REPORTS_TABLE,
        BillingMode="PAY_PER_REQUEST",
        KeySchema=[{"AttributeName": "storageKey", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "storageKey", "AttributeType": "S"},
            {"AttributeName": "id", "AttributeType": "S"},
            {"AttributeName": "userId", "AttributeType": "S"},
            {"AttributeName": "feed", "AttributeType": "S"},
            {"AttributeName": "timestamp", "AttributeType": "N"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": dynamo.REPORTS_ID_INDEX,
                "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": dynamo.REPORTS_USER_INDEX,
                "KeySchema": [{"AttributeName": "userId", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": dynamo.REPORTS_FEED_INDEX,
                "KeySchema": [
                    {"AttributeName": "feed", "KeyType": "HASH"},
                    {"AttributeName": "timestamp", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
    )
    ddb.create_table(
        TableName=dynamo.USERS_TABLE,
        BillingMode="PAY_PER_REQUEST",
        KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
    )
    ddb.create_table(
        TableName=deletion_audit.DELETED_REPORTS_TABLE,
        BillingMode="PAY_PER_REQUEST",
        KeySchema=[{"AttributeName": "auditId", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "auditId", "AttributeType": "S"},
            {"AttributeName": "originalReportId", "AttributeType": "S"},
            {"AttributeName": "deletedAt", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": deletion_audit.DELETED_REPORTS_INDEX,
                "KeySchema": [
                    {"AttributeName": "originalReportId", "KeyType": "HASH"},
                    {"AttributeName": "deletedAt", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
    )


def _setup_ses():
    ses = boto3.client("ses", region_name="ap-south-1")
    ses.verify_email_identity(EmailAddress=notifications.SES_SENDER)
    ses.create_template(
        Template={
            "TemplateName": notifications.SES_TEMPLATE,
            "SubjectPart": "New reptile sighting {{report_id}}",
            "TextPart": "Hello {{to_name}}, a {{reptile_name}} was reported.",
            "HtmlPart": "<p>Hello {{to_name}}, a {{reptile_name}} was reported.</p>",
        }
    )


def _clear_caches():
    dynamo.get_dynamodb.cache_clear()
    dynamo.get_table.cache_clear()
    notifications.ses_client.cache_clear()


@pytest.fixture
def aws():
    with mock_aws():
        _clear_caches()
        _create_tables()
        _setup_ses()
        yield
    _clear_caches()


# ---------- principals ----------

@pytest.fixture
def citizen():
    return UserProfile(
        id="u1",
        name="Asha Citizen",
        email="asha@example.com",
        role=UserRole.CITIZEN,
        mobile="9876543210",
        state="Karnataka",
        district="Bengaluru Urban",
        taluk="Bengaluru North",
        village="Yelahanka",
        landmark="Lake gate",
        pincode="560064",
    )


@pytest.fixture
def other_citizen():
    return UserProfile(
        id="u2",
        name="Ravi Citizen",
        email="ravi@example.com",
        role=UserRole.CITIZEN,
        mobile="9123456780",
        state="Kerala",
        district="Wayanad",
        taluk="Mananthavady",
        village="Tholpetty",
        landmark="",
        pincode="670646",
    )


@pytest.fixture
def officer():
    return UserProfile(
        id="o1",
        name="Head Wildlife Officer",
        email="officer@example.com",
        role=UserRole.WILDLIFE_OFFICER,
        mobile="9988776655",
        designation="Range Forest Officer",
        state="Karnataka",
        district="Bengaluru Urban",
        taluk="Aranya Bhavan",
        village="Malleshwaram",
        landmark="Forest Dept HQ",
        pincode="560003",
    )


# ---------- report data ----------

@pytest.fixture
def cobra():
    return ReptileData(
        name="Spectacled Cobra",
        scientificName="Naja naja",
        description="Large hooded elapid common across India.",
        isVenomous=True,
        dangerLevel=DangerLevel.CRITICAL,
        precautions=["Keep distance", "Do not attempt capture"],
        habitat="Farmland and urban edges",
    )


@pytest.fixture
def details():
    return ReportDetails(
        sightingTime="18:30",
        riskLevel=RiskLevel.IMMEDIATE_DANGER,
        location=Location(
            state="Karnataka",
            district="Bengaluru Urban",
            taluk="Bengaluru North",
            village="Yelahanka",
            landmark="",
            pincode="560064",
            locationType=LocationType.HOUSE,
        ),
    )


def make_report(
    report_id,
    *,
    user_id="u1",
    state="Karnataka",
    district="Bengaluru Urban",
    status=RescueStatus.PENDING,
    timestamp=None,
    name="Rat Snake",
):
    """Build a report object directly, without touching the store."""
    return SightingReport(
        id=report_id,
        storageKey=report_id.lower(),
        userId=user_id,
        userName="Reporter " + user_id,
        reporterRole=UserRole.CITIZEN,
        reporterMobile="9876543210",
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        sightingTime="10:00",
        reptileData=ReptileData(
            name=name,
            scientificName="Ptyas mucosa",
            description="Fast non-venomous colubrid.",
            isVenomous=False,
            dangerLevel=DangerLevel.LOW,
            precautions=["Let it pass"],
        ),
        location=Location(
            state=state,
            district=district,
            taluk="Taluk",
            village="Village",
            landmark="Temple",
            pincode="560001",
        ),
        riskLevel=RiskLevel.NON_AGGRESSIVE,
        status=status,
    )


def ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)
