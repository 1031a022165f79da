from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from eventgate.schemas.user import UserInfo


class CheckInStatusEnum(str, Enum):
    active = "active"
    cancelled = "cancelled"


class CheckInMethodEnum(str, Enum):
    qr_scanner = "qr_scanner"
    manual = "manual"


class CheckInErrorCode(str, Enum):
    camera_unavailable = "camera_unavailable"
    malformed_payload = "malformed_payload"
    incomplete_payload = "incomplete_payload"
    wrong_event_payload = "wrong_event_payload"
    not_found = "not_found"
    already_checked_in = "already_checked_in"
    lookup_failed = "lookup_failed"
    commit_failed = "commit_failed"
    entry_rejected = "entry_rejected"


# Infra failures the operator may retry by hand without re-scanning
RETRYABLE_ERRORS = {CheckInErrorCode.lookup_failed, CheckInErrorCode.commit_failed}


class CheckInError(BaseModel):
    code: CheckInErrorCode
    message: str
    existing_check_in: Optional["CheckInOut"] = None

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_ERRORS


class CheckInRequest(BaseModel):
    event_id: str
    user_id: str
    extras: Dict[str, Any] = Field(default_factory=dict)


class DependentSnapshot(BaseModel):
    id: Optional[str] = None
    full_name: str
    age: Optional[int] = None
    relationship: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class CheckInOut(BaseModel):
    id: str
    event_id: str
    registration_id: str
    user_id: str
    participant_name: str
    participant_email: Optional[str] = None
    dependent_count: int
    dependent_snapshot: List[DependentSnapshot] = []
    method: CheckInMethodEnum
    performed_by: str
    occurred_at: datetime
    status: CheckInStatusEnum
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None

    class Config:
        from_attributes = True


class ResolvedRegistration(BaseModel):
    registration_id: str
    event_id: str
    event_title: str
    user_id: str
    participant: UserInfo
    dependents: List[DependentSnapshot] = []
    active_check_in: Optional[CheckInOut] = None


class CheckInRosterEntry(CheckInOut):
    performed_by_name: str


class RosterParticipantTypeEnum(str, Enum):
    primary = "primary"
    dependent = "dependent"


class RosterRow(BaseModel):
    """One admitted person. Dependents point back at the registrant they came with."""
    check_in_id: str
    participant_type: RosterParticipantTypeEnum
    full_name: str
    email: Optional[str] = None
    age: Optional[int] = None
    relationship: Optional[str] = None
    primary_participant: str
    occurred_at: datetime
    performed_by_name: str
    notes: Optional[str] = None


# ========================
# Operator-facing result cards
# ========================

class SuccessCard(BaseModel):
    kind: Literal["success"] = "success"
    check_in: CheckInOut
    participant: UserInfo
    dependents: List[DependentSnapshot] = []


class PendingApprovalCard(BaseModel):
    kind: Literal["pending_approval"] = "pending_approval"
    resolved: ResolvedRegistration


class AlreadyCheckedInCard(BaseModel):
    kind: Literal["already_checked_in"] = "already_checked_in"
    check_in: CheckInOut
    performed_by_name: str


class InvalidCard(BaseModel):
    kind: Literal["invalid"] = "invalid"
    error: CheckInError


ScanCard = Annotated[
    Union[SuccessCard, PendingApprovalCard, AlreadyCheckedInCard, InvalidCard],
    Field(discriminator="kind"),
]


# ========================
# Request bodies
# ========================

class ScanPayloadIn(BaseModel):
    qrData: str


class CheckInNotesUpdate(BaseModel):
    notes: Optional[str] = None


CheckInError.model_rebuild()
