# reptileguard/models/report.py
from __future__ import annotations

from datetime import date
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from reptileguard.models.user import UserRole


class RescueStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    RESCUED = "RESCUED"
    RELEASED = "RELEASED"
    FALSE_ALARM = "FALSE_ALARM"


# forward order of the rescue workflow; FALSE_ALARM sits outside it
STATUS_SEQUENCE = [
    RescueStatus.PENDING,
    RescueStatus.ASSIGNED,
    RescueStatus.RESCUED,
    RescueStatus.RELEASED,
]
TERMINAL_STATUSES = {RescueStatus.RELEASED, RescueStatus.FALSE_ALARM}
EVIDENCE_REQUIRED = {RescueStatus.RESCUED, RescueStatus.RELEASED}


class DangerLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        # Low=0 .. Critical=3
        return list(DangerLevel).index(self)


class LocationType(str, Enum):
    HOUSE = "House"
    FARM = "Farm"
    ROAD = "Road"
    SCHOOL = "School"
    WATER_BODY = "Water body"
    FOREST_EDGE = "Forest edge"


class RiskLevel(str, Enum):
    IMMEDIATE_DANGER = "Immediate danger"
    NON_AGGRESSIVE = "Non-aggressive"
    INJURED_ANIMAL = "Injured animal"


# Payload produced by the vision classifier (keep these names exactly)
class ReptileData(BaseModel):
    name: str
    scientificName: str
    description: str
    isVenomous: bool
    dangerLevel: DangerLevel
    precautions: List[str] = Field(default_factory=list)
    habitat: Optional[str] = None


class Location(BaseModel):
    state: str = ""
    district: str = ""
    taluk: str = ""
    village: str = ""
    landmark: str = ""
    pincode: str = ""
    locationType: LocationType = LocationType.HOUSE


class OfficerSnapshot(BaseModel):
    id: str
    name: str
    email: str
    mobile: str
    designation: str = "Wildlife Officer"


class OfficerUpdate(OfficerSnapshot):
    updatedAt: int = Field(..., description="Epoch milliseconds")


class SightingReport(BaseModel):
    id: str = Field(..., description="Human readable id, e.g. RPT-1A2B3C")
    storageKey: str = Field(..., description="DynamoDB partition key (internal)")
    userId: str
    userName: str
    reporterRole: UserRole
    reporterMobile: str
    reporterAltMobile: Optional[str] = None
    reporterEmail: Optional[str] = None
    timestamp: int = Field(..., description="Creation time, epoch milliseconds")
    sightingTime: str
    reptileData: ReptileData
    location: Location
    riskLevel: RiskLevel
    imageUrls: List[str] = Field(default_factory=list)
    rescueImageUrls: List[str] = Field(default_factory=list)
    status: RescueStatus = RescueStatus.PENDING
    officerNotes: Optional[str] = None
    updatedByOfficer: Optional[OfficerUpdate] = None


# ---------- request bodies ----------

class ReportDetails(BaseModel):
    sightingTime: Optional[str] = None
    location: Location
    riskLevel: RiskLevel = RiskLevel.NON_AGGRESSIVE


class ReportIn(BaseModel):
    reptileData: ReptileData
    details: ReportDetails
    images: List[str] = Field(default_factory=list, description="Base64 / data-URL images")


class StatusUpdateIn(BaseModel):
    status: RescueStatus
    notes: Optional[str] = None
    rescueImages: List[str] = Field(default_factory=list)


class DeleteReportIn(BaseModel):
    reason: str


class IdentifyIn(BaseModel):
    images: List[str] = Field(..., min_length=1, description="Base64 / data-URL images")


# ---------- derived records ----------

class DeletionAuditRecord(BaseModel):
    auditId: str
    originalReportId: str
    reportData: dict
    deletedBy: OfficerSnapshot
    deletionReason: str
    deletedAt: str


class NotificationSummary(BaseModel):
    success: bool
    notifiedCount: int = 0
    message: str


class CreateReportResult(BaseModel):
    report: SightingReport
    notification: NotificationSummary


class ReportStats(BaseModel):
    total: int
    pending: int
    rescued: int
    released: int


# ---------- dashboard filter ----------

class ViewMode(str, Enum):
    MY = "MY"
    REGION = "REGION"


class ReportFilter(BaseModel):
    view_mode: ViewMode = ViewMode.MY
    state: str = ""
    district: str = ""
    status: RescueStatus | Literal["ALL"] = "ALL"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: str = ""

    def with_state(self, state: str) -> "ReportFilter":
        # a district only makes sense inside the chosen state
        return self.model_copy(update={"state": state, "district": ""})
